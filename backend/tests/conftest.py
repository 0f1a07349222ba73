from collections.abc import Callable, Generator

import pytest
from sqlalchemy import Engine
from sqlmodel import Session

from sitesearch.core.config import Settings, SiteConfig
from sitesearch.core.db import init_db, make_engine
from sitesearch.indexing.writer import IndexWriter
from sitesearch.models import Site, SiteStatus
from sitesearch.text.lemmatizer import Lemmatizer
from tests.utils import SITE_URL, FakeSite


@pytest.fixture(scope="session")
def lemmatizer() -> Lemmatizer:
    return Lemmatizer()


@pytest.fixture
def db_engine(tmp_path) -> Generator[Engine, None, None]:
    engine = make_engine(f"sqlite:///{tmp_path / 'test.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(db_engine: Engine) -> Generator[Session, None, None]:
    with Session(db_engine) as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        INDEXING_SITES=[SiteConfig(url=SITE_URL, name="Test site")],
        REQUEST_DELAY_MS=0,
        RETRY_DELAY_S=0,
        CRAWL_WORKERS=4,
        MAX_DEPTH=10,
        MAX_RETRIES=3,
    )


@pytest.fixture
def writer(db_engine: Engine, lemmatizer: Lemmatizer) -> IndexWriter:
    return IndexWriter(db_engine, lemmatizer)


@pytest.fixture
def make_site(db_engine: Engine) -> Callable[..., Site]:
    def factory(url: str = SITE_URL, name: str = "Test site", status: SiteStatus = SiteStatus.INDEXED) -> Site:
        with Session(db_engine, expire_on_commit=False) as session:
            site = Site(url=url, name=name, status=status)
            session.add(site)
            session.commit()
            return site

    return factory


@pytest.fixture
def fake_site() -> FakeSite:
    return FakeSite()

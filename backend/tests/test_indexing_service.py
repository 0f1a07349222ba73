import threading
from collections.abc import Generator

import pytest
from sqlalchemy import Engine
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from sitesearch.core.config import Settings, SiteConfig
from sitesearch.indexing.state import STOPPED_BY_USER
from sitesearch.indexing.writer import IndexWriter
from sitesearch.models import Site, SiteStatus
from sitesearch.services.indexing import IndexingService, belongs_to, is_valid_url
from sitesearch.text.lemmatizer import Lemmatizer
from tests.utils import SITE_URL, FakeSite, assert_frequencies_consistent, html_page, page_paths


@pytest.fixture
def service(
    db_engine: Engine, lemmatizer: Lemmatizer, test_settings: Settings, fake_site: FakeSite
) -> Generator[IndexingService, None, None]:
    service = IndexingService(test_settings, db_engine, lemmatizer, transport=fake_site.transport())
    yield service
    service.stop_crawl()
    service.wait(timeout=10)


def blocking_hook(fake_site: FakeSite, path: str) -> tuple[threading.Event, threading.Event]:
    """Hold requests for ``path`` until ``release`` is set."""
    entered = threading.Event()
    release = threading.Event()

    def hook() -> None:
        entered.set()
        release.wait(timeout=10)

    fake_site.hooks[path] = hook
    return entered, release


def get_site(engine: Engine) -> Site:
    with Session(engine) as session:
        return session.exec(select(Site).where(Site.url == SITE_URL)).one()


def test_is_valid_url() -> None:
    assert is_valid_url("https://site.test/a")
    assert is_valid_url("http://site.test")
    assert not is_valid_url("site.test/a")
    assert not is_valid_url("ftp://site.test/a")
    assert not is_valid_url("")


def test_belongs_to() -> None:
    assert belongs_to(SITE_URL, SITE_URL)
    assert belongs_to(SITE_URL + "/a/b", SITE_URL + "/")
    assert not belongs_to(SITE_URL + ".evil.test/a", SITE_URL)


def test_crawl_indexes_configured_site(db_engine: Engine, service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/", html_page("главная", links=["/a"]))
    fake_site.add("/a", html_page("кошка"))

    result = service.start_crawl()
    assert result.started
    assert service.wait(timeout=10)

    site = get_site(db_engine)
    assert site.status == SiteStatus.INDEXED
    assert site.name == "Test site"
    assert page_paths(db_engine) == ["/", "/a"]
    assert not service.state.is_in_progress()


def test_crawl_replaces_previous_data(
    db_engine: Engine, service: IndexingService, writer: IndexWriter, make_site, fake_site: FakeSite
) -> None:
    site = make_site()
    writer.index_page(site, SITE_URL + "/stale", 200, html_page("старый"))
    fake_site.add("/", html_page("новый"))

    assert service.start_crawl().started
    assert service.wait(timeout=10)

    assert page_paths(db_engine) == ["/"]
    with Session(db_engine) as session:
        assert_frequencies_consistent(session)


def test_second_start_is_rejected(db_engine: Engine, service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/", html_page("главная"))
    entered, release = blocking_hook(fake_site, "/")

    assert service.start_crawl().started
    assert entered.wait(timeout=10)
    second = service.start_crawl()
    assert not second.started
    assert second.message == "Indexing is already running"
    assert get_site(db_engine).status == SiteStatus.INDEXING

    release.set()
    assert service.wait(timeout=10)
    assert get_site(db_engine).status == SiteStatus.INDEXED


def test_concurrent_starts_single_run(service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/", html_page("главная"))
    entered, release = blocking_hook(fake_site, "/")
    barrier = threading.Barrier(8)
    started: list[bool] = []
    lock = threading.Lock()

    def start() -> None:
        barrier.wait()
        result = service.start_crawl()
        with lock:
            started.append(result.started)

    threads = [threading.Thread(target=start) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert started.count(True) == 1
    release.set()
    assert service.wait(timeout=10)
    assert fake_site.count("/") == 1


def test_stop_when_idle(service: IndexingService) -> None:
    result = service.stop_crawl()
    assert not result.stopped
    assert result.message == "Indexing is not running"


def test_stop_marks_sites_failed(db_engine: Engine, service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/", html_page("главная", links=["/a"]))
    fake_site.add("/a", html_page("кошка", links=["/b"]))
    fake_site.add("/b", html_page("собака"))
    entered, release = blocking_hook(fake_site, "/a")

    assert service.start_crawl().started
    assert entered.wait(timeout=10)
    assert service.stop_crawl().stopped
    release.set()
    assert service.wait(timeout=10)

    site = get_site(db_engine)
    assert site.status == SiteStatus.FAILED
    assert site.last_error == STOPPED_BY_USER
    assert "/a" not in page_paths(db_engine)
    assert fake_site.count("/b") == 0
    assert not service.state.is_in_progress()
    assert not service.stop_crawl().stopped

    # 停止后可以重新开始
    assert service.start_crawl().started
    assert service.wait(timeout=10)
    assert get_site(db_engine).status == SiteStatus.INDEXED


def test_failed_root_marks_site_failed(db_engine: Engine, service: IndexingService) -> None:
    assert service.start_crawl().started
    assert service.wait(timeout=10)

    site = get_site(db_engine)
    assert site.status == SiteStatus.FAILED
    assert site.last_error == "Site root returned HTTP 404"


def test_index_single_page(db_engine: Engine, service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/news", html_page("кошка собака"))

    result = service.index_single_page(SITE_URL + "/news")

    assert result.success
    assert result.message == "Page indexed"
    assert page_paths(db_engine) == ["/news"]
    site = get_site(db_engine)
    assert site.status == SiteStatus.INDEXED

    fake_site.add("/news", html_page("корова"))
    assert service.index_single_page(SITE_URL + "/news").success
    assert page_paths(db_engine) == ["/news"]
    with Session(db_engine) as session:
        assert_frequencies_consistent(session)


def test_index_single_page_http_error_removes_page(
    db_engine: Engine, service: IndexingService, fake_site: FakeSite
) -> None:
    fake_site.add("/gone", html_page("кошка"))
    assert service.index_single_page(SITE_URL + "/gone").success

    fake_site.pages.pop("/gone")
    result = service.index_single_page(SITE_URL + "/gone")

    assert not result.success
    assert result.message == "Page returned HTTP 404"
    assert page_paths(db_engine) == []


def test_index_single_page_unsupported_content(service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/doc", "%PDF", content_type="application/pdf")
    result = service.index_single_page(SITE_URL + "/doc")
    assert not result.success
    assert result.message == "Unsupported content type: application/pdf"


def test_index_single_page_timeout(service: IndexingService, fake_site: FakeSite) -> None:
    fake_site.add("/slow", html_page("кошка"))
    fake_site.timeouts["/slow"] = 1
    result = service.index_single_page(SITE_URL + "/slow")
    assert not result.success
    assert result.message.startswith("Timed out after 1 attempt(s)")
    assert fake_site.count("/slow") == 1


def test_index_single_page_outside_config(service: IndexingService, fake_site: FakeSite) -> None:
    result = service.index_single_page("https://elsewhere.test/page")
    assert not result.success
    assert result.message == "This page is outside the sites listed in the configuration"
    assert fake_site.requested == []


def test_index_single_page_invalid_url(service: IndexingService) -> None:
    for url in ("", "not a url", "mailto:someone@site.test"):
        result = service.index_single_page(url)
        assert not result.success
        assert result.message == "Invalid URL"


def test_failed_start_leaves_no_site_indexing(db_engine: Engine, service: IndexingService, monkeypatch) -> None:
    clear = service.writer.delete_site_data
    calls: list[int] = []

    def failing_clear(site_id: int) -> None:
        calls.append(site_id)
        if len(calls) == 2:
            raise OperationalError("DELETE FROM page", {}, Exception("disk I/O error"))
        clear(site_id)

    monkeypatch.setattr(service.writer, "delete_site_data", failing_clear)
    configs = [
        SiteConfig(url="https://a.test", name="A"),
        SiteConfig(url="https://b.test", name="B"),
        SiteConfig(url="https://c.test", name="C"),
    ]

    result = service.start_crawl(configs)

    assert not result.started
    assert "disk I/O error" in result.message
    with Session(db_engine) as session:
        sites = session.exec(select(Site)).all()
    # 第三个站点还没有被创建
    assert {site.url: site.status for site in sites} == {
        "https://a.test": SiteStatus.FAILED,
        "https://b.test": SiteStatus.FAILED,
    }
    assert all("disk I/O error" in site.last_error for site in sites)
    assert not service.state.is_in_progress()
    assert not service.is_running()

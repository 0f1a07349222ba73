from collections.abc import Generator
from functools import lru_cache
from typing import Annotated

from fastapi import Depends
from sqlmodel import Session

from sitesearch.core.config import settings
from sitesearch.core.db import engine
from sitesearch.search.engine import SearchEngine
from sitesearch.services.indexing import IndexingService
from sitesearch.text.lemmatizer import get_lemmatizer


def get_db() -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@lru_cache
def get_indexing_service() -> IndexingService:
    return IndexingService(settings, engine, get_lemmatizer())


@lru_cache
def get_search_engine() -> SearchEngine:
    return SearchEngine(engine, get_lemmatizer(), settings)


SessionDep = Annotated[Session, Depends(get_db)]
IndexingServiceDep = Annotated[IndexingService, Depends(get_indexing_service)]
SearchEngineDep = Annotated[SearchEngine, Depends(get_search_engine)]

from sqlmodel import SQLModel

from .lemma import Lemma
from .page import Page
from .responses import (
    CrawlStartResult,
    CrawlStopResult,
    PageIndexResult,
    SearchResponse,
    SearchResult,
    SiteStatistics,
    StatisticsResponse,
    TotalStatistics,
)
from .search_index import IndexEntry
from .site import Site, SiteStatus, utc_now

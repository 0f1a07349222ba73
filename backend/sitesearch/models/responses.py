from sqlmodel import SQLModel


# 通过 API 返回的属性
class CrawlStartResult(SQLModel):
    started: bool
    message: str


class CrawlStopResult(SQLModel):
    stopped: bool
    message: str


class PageIndexResult(SQLModel):
    success: bool
    message: str


class SearchResult(SQLModel):
    site: str
    site_name: str
    path: str
    title: str
    snippet: str
    relevance: float


class SearchResponse(SQLModel):
    success: bool
    total_count: int = 0
    results: list[SearchResult] = []
    error: str | None = None


class SiteStatistics(SQLModel):
    url: str
    name: str
    status: str
    status_time: int
    last_error: str | None = None
    page_count: int
    lemma_count: int


class TotalStatistics(SQLModel):
    total_sites: int
    total_pages: int
    total_lemmas: int
    any_site_indexing: bool


class StatisticsResponse(SQLModel):
    total: TotalStatistics
    per_site: list[SiteStatistics]

import asyncio
import logging
import threading
from typing import NamedTuple
from urllib.parse import urljoin, urlsplit

from sqlalchemy.exc import SQLAlchemyError

from sitesearch.core.config import Settings
from sitesearch.indexing.fetcher import FetchError, PageFetcher
from sitesearch.indexing.state import STOPPED_BY_USER, CrawlInterrupted, CrawlState
from sitesearch.indexing.writer import IndexWriter
from sitesearch.models import Site, SiteStatus
from sitesearch.text.html_cleaner import HtmlCleaner

logger = logging.getLogger(__name__)

# 非 HTML 资源
SKIPPED_EXTENSIONS = (
    ".jpg", ".jpeg", ".png", ".gif", ".bmp", ".svg", ".webp", ".ico", ".tif", ".tiff",
    ".pdf", ".doc", ".docx", ".xls", ".xlsx", ".ppt", ".pptx", ".odt",
    ".zip", ".rar", ".7z", ".gz", ".tar",
    ".mp3", ".mp4", ".avi", ".mov", ".wmv", ".webm",
    ".css", ".js", ".json", ".exe", ".dmg", ".apk",
)


class VisitedUrls:
    """URLs already scheduled during one crawl run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._urls: set[str] = set()

    def add(self, url: str) -> bool:
        """Add ``url``; False if it was already there."""
        with self._lock:
            if url in self._urls:
                return False
            self._urls.add(url)
            return True

    def __len__(self) -> int:
        return len(self._urls)


class CrawlTask(NamedTuple):
    url: str
    depth: int


class SiteCrawler:
    """
    Depth-bounded crawl of one site.

    Tasks live on an explicit queue consumed by ``CRAWL_WORKERS`` worker
    coroutines; ``pool`` is shared by all sites of a run and bounds the
    number of fetch+index operations in flight. Sibling order is not
    defined.
    """

    def __init__(
        self,
        site: Site,
        fetcher: PageFetcher,
        writer: IndexWriter,
        state: CrawlState,
        visited: VisitedUrls,
        settings: Settings,
        pool: asyncio.Semaphore | None = None,
    ):
        self.site = site
        self.base_url = site.url.rstrip("/")
        self.fetcher = fetcher
        self.writer = writer
        self.state = state
        self.visited = visited
        self.settings = settings
        self.pool = pool or asyncio.Semaphore(max(1, settings.CRAWL_WORKERS))
        self._fatal: Exception | None = None

    async def crawl(self) -> SiteStatus:
        """Crawl the site, record its terminal status and return it."""
        logger.info(f"Crawling {self.base_url} (max depth {self.settings.MAX_DEPTH})")
        try:
            await self._run()
        except CrawlInterrupted:
            return await self._finish(SiteStatus.FAILED, STOPPED_BY_USER)
        except Exception as e:
            logger.exception(f"Crawl of {self.base_url} failed")
            return await self._finish(SiteStatus.FAILED, str(e) or e.__class__.__name__)

        if self.state.is_stop_requested():
            return await self._finish(SiteStatus.FAILED, STOPPED_BY_USER)
        return await self._finish(SiteStatus.INDEXED, None)

    async def _finish(self, status: SiteStatus, error: str | None) -> SiteStatus:
        await asyncio.to_thread(self.writer.set_site_status, self.site.id, status, error)
        return status

    async def _run(self) -> None:
        queue: asyncio.Queue[CrawlTask] = asyncio.Queue()
        root = self.base_url + "/"
        self.visited.add(root)
        queue.put_nowait(CrawlTask(root, 0))

        workers = [
            asyncio.create_task(self._worker(queue))
            for _ in range(max(1, self.settings.CRAWL_WORKERS))
        ]
        try:
            await queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        if self._fatal is not None:
            raise self._fatal

    async def _worker(self, queue: "asyncio.Queue[CrawlTask]") -> None:
        while True:
            task = await queue.get()
            try:
                # 停止或出错后只清空队列
                if self._fatal is None and not self.state.is_stop_requested():
                    for link in await self._process(task):
                        queue.put_nowait(CrawlTask(link, task.depth + 1))
            except CrawlInterrupted:
                pass
            except Exception as e:
                if self._fatal is None:
                    self._fatal = e
            finally:
                queue.task_done()

    async def _process(self, task: CrawlTask) -> list[str]:
        """Fetch and index one URL; return the links to follow from it."""
        self.state.check_stop()
        if self.settings.REQUEST_DELAY_MS > 0:
            await asyncio.sleep(self.settings.REQUEST_DELAY_MS / 1000)

        async with self.pool:
            self.state.check_stop()
            try:
                result = await self.fetcher.fetch(task.url)
            except FetchError as e:
                if task.depth == 0:
                    raise
                logger.warning(f"Skipping {task.url}: {e}")
                return []

            if result.status_code >= 400:
                if task.depth == 0:
                    raise FetchError(f"Site root returned HTTP {result.status_code}")
                logger.info(f"Skipping {task.url}: HTTP {result.status_code}")
                return []
            if not result.is_indexable_content:
                logger.info(f"Skipping {task.url}: unsupported content type {result.content_type!r}")
                return []

            self.state.check_stop()
            try:
                await asyncio.to_thread(
                    self.writer.index_page, self.site, task.url, result.status_code, result.body
                )
            except SQLAlchemyError as e:
                logger.error(f"Failed to index {task.url}: {e}")

        if task.depth >= self.settings.MAX_DEPTH:
            return []
        return self.discover_links(task.url, result.body)

    def discover_links(self, page_url: str, html: str) -> list[str]:
        links = []
        for a in HtmlCleaner.parse(html).find_all("a", href=True):
            link = self._normalize(urljoin(page_url, a["href"].strip()))
            if self.is_crawlable(link) and self.visited.add(link):
                links.append(link)
        return links

    def _normalize(self, url: str) -> str:
        return self.base_url + "/" if url == self.base_url else url

    def is_crawlable(self, url: str) -> bool:
        if "#" in url:
            return False
        if not (url.startswith(self.base_url + "/") or url.startswith(self.base_url + "?")):
            return False
        return not urlsplit(url).path.lower().endswith(SKIPPED_EXTENSIONS)

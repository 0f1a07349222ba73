import asyncio
import logging
import threading
from urllib.parse import urlsplit

import httpx
from sqlalchemy import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from sitesearch.core.config import Settings, SiteConfig
from sitesearch.indexing.crawler import SiteCrawler, VisitedUrls
from sitesearch.indexing.fetcher import FetchError, FetchResult, PageFetcher
from sitesearch.indexing.state import STOPPED_BY_USER, CrawlState
from sitesearch.indexing.writer import IndexWriter, relative_path
from sitesearch.models import (
    CrawlStartResult,
    CrawlStopResult,
    Page,
    PageIndexResult,
    Site,
    SiteStatus,
    utc_now,
)
from sitesearch.text.lemmatizer import Lemmatizer

logger = logging.getLogger(__name__)


def is_valid_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


def belongs_to(url: str, site_url: str) -> bool:
    base = site_url.rstrip("/")
    return url == base or url.startswith(base + "/") or url.startswith(base + "?")


class IndexingService:
    """
    Start, stop and single-page indexing.

    A crawl run happens on one background thread with its own event loop;
    all configured sites are crawled concurrently inside it. The calling
    thread gets an answer as soon as the run has been scheduled.
    """

    def __init__(
        self,
        settings: Settings,
        engine: Engine,
        lemmatizer: Lemmatizer,
        state: CrawlState | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.engine = engine
        self.lemmatizer = lemmatizer
        self.state = state or CrawlState()
        self.transport = transport
        self.writer = IndexWriter(engine, lemmatizer)
        self._thread: threading.Thread | None = None

    def start_crawl(self, sites: list[SiteConfig] | None = None) -> CrawlStartResult:
        if not self.state.try_start():
            return CrawlStartResult(started=False, message="Indexing is already running")

        configs = self.settings.INDEXING_SITES if sites is None else sites
        try:
            site_rows = [self._prepare_site(config) for config in configs]
        except SQLAlchemyError as e:
            logger.exception("Could not prepare sites for indexing")
            message = f"Could not start indexing: {e}"
            # 已标记为 INDEXING 的站点不能留在该状态
            self._finish_run([config.url for config in configs], message)
            return CrawlStartResult(started=False, message=message)

        self._thread = threading.Thread(
            target=self._run, args=(site_rows,), name="crawl-run", daemon=True
        )
        self._thread.start()
        logger.info(f"Indexing started for {len(site_rows)} site(s)")
        return CrawlStartResult(started=True, message=f"Indexing started for {len(site_rows)} site(s)")

    def stop_crawl(self) -> CrawlStopResult:
        if not self.state.is_in_progress():
            return CrawlStopResult(stopped=False, message="Indexing is not running")
        self.state.request_stop()
        logger.info("Stop requested")
        return CrawlStopResult(stopped=True, message="Indexing is stopping")

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def wait(self, timeout: float | None = None) -> bool:
        """Join the current run; True once it has finished."""
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_running()

    def _prepare_site(self, config: SiteConfig) -> Site:
        with Session(self.engine, expire_on_commit=False) as session:
            site = session.exec(select(Site).where(Site.url == config.url)).first()
            if site is None:
                site = Site(url=config.url, name=config.name)
            site.name = config.name
            site.status = SiteStatus.INDEXING
            site.status_time = utc_now()
            site.last_error = None
            session.add(site)
            session.commit()
        self.writer.delete_site_data(site.id)
        return site

    def _run(self, sites: list[Site]) -> None:
        try:
            asyncio.run(self._crawl_sites(sites))
        except Exception:
            logger.exception("Crawl run crashed")
        finally:
            self._finish_run([site.url for site in sites])

    async def _crawl_sites(self, sites: list[Site]) -> None:
        visited = VisitedUrls()
        pool = asyncio.Semaphore(max(1, self.settings.CRAWL_WORKERS))
        async with PageFetcher(self.settings, self.state, self.transport) as fetcher:
            crawlers = [
                SiteCrawler(site, fetcher, self.writer, self.state, visited, self.settings, pool)
                for site in sites
            ]
            await asyncio.gather(*(crawler.crawl() for crawler in crawlers))

    def _finish_run(self, urls: list[str], error: str | None = None) -> None:
        """Fail the sites of ``urls`` still marked INDEXING and release the run."""
        if error is None:
            error = STOPPED_BY_USER if self.state.is_stop_requested() else "Indexing ended unexpectedly"
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(Site).where(Site.url.in_(urls), Site.status == SiteStatus.INDEXING)
                ).all()
                for row in rows:
                    row.status = SiteStatus.FAILED
                    row.last_error = error
                    row.status_time = utc_now()
                    session.add(row)
                session.commit()
        except SQLAlchemyError:
            logger.exception("Could not finalize site statuses")
        finally:
            self.state.reset()
            logger.info("Indexing run finished")

    def index_single_page(self, url: str) -> PageIndexResult:
        url = (url or "").strip()
        if not is_valid_url(url):
            return PageIndexResult(success=False, message="Invalid URL")

        config = next((c for c in self.settings.INDEXING_SITES if belongs_to(url, c.url)), None)
        if config is None:
            return PageIndexResult(
                success=False,
                message="This page is outside the sites listed in the configuration",
            )

        try:
            site = self._site_for_page(config)
            self._delete_existing(site, url)
            result = asyncio.run(self._fetch_once(url))
            if result.status_code >= 400:
                return PageIndexResult(success=False, message=f"Page returned HTTP {result.status_code}")
            if not result.is_indexable_content:
                return PageIndexResult(
                    success=False, message=f"Unsupported content type: {result.content_type}"
                )
            self.writer.index_page(site, url, result.status_code, result.body)
        except FetchError as e:
            logger.warning(f"Single page indexing of {url} failed: {e}")
            return PageIndexResult(success=False, message=str(e))
        except SQLAlchemyError as e:
            logger.exception(f"Single page indexing of {url} failed")
            return PageIndexResult(success=False, message=f"Indexing error: {e}")

        return PageIndexResult(success=True, message="Page indexed")

    def _site_for_page(self, config: SiteConfig) -> Site:
        with Session(self.engine, expire_on_commit=False) as session:
            site = session.exec(select(Site).where(Site.url == config.url)).first()
            if site is None:
                site = Site(url=config.url, name=config.name, status=SiteStatus.INDEXED)
                session.add(site)
                session.commit()
            return site

    def _delete_existing(self, site: Site, url: str) -> None:
        path = relative_path(site.url, url)
        with Session(self.engine) as session:
            page_id = session.exec(
                select(Page.id).where(Page.site_id == site.id, Page.path == path)
            ).first()
        if page_id is not None:
            self.writer.delete_page(page_id)

    async def _fetch_once(self, url: str) -> FetchResult:
        async with PageFetcher(self.settings, transport=self.transport) as fetcher:
            return await fetcher.fetch(url, retry=False)

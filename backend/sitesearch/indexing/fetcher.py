import logging

import httpx
from pydantic import BaseModel
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from sitesearch.core.config import Settings
from sitesearch.indexing.state import CrawlState

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """A URL could not be fetched or is not indexable."""


class FetchResult(BaseModel):
    url: str
    status_code: int
    content_type: str
    body: str

    @property
    def is_indexable_content(self) -> bool:
        content_type = self.content_type.lower()
        return content_type.startswith("text/") or "xml" in content_type


class PageFetcher:
    """
    HTTP GET with the configured user-agent and referrer.

    Timeouts are retried up to ``MAX_RETRIES`` attempts with a fixed delay;
    any other transport error fails the URL immediately. Use as an async
    context manager so one connection pool serves a whole crawl.
    """

    def __init__(
        self,
        settings: Settings,
        state: CrawlState | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.state = state
        self.transport = transport
        self.client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "PageFetcher":
        self.client = httpx.AsyncClient(
            headers={
                "User-Agent": self.settings.USER_AGENT,
                "Referer": self.settings.REFERRER,
                "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            },
            timeout=self.settings.REQUEST_TIMEOUT_S,
            follow_redirects=True,
            transport=self.transport,
        )
        return self

    async def __aexit__(self, *exc_info) -> None:
        if self.client:
            await self.client.aclose()
            self.client = None

    async def fetch(self, url: str, retry: bool = True) -> FetchResult:
        if self.client is None:
            raise RuntimeError("PageFetcher must be used as an async context manager")

        attempts = max(1, self.settings.MAX_RETRIES) if retry else 1
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_fixed(self.settings.RETRY_DELAY_S),
            retry=retry_if_exception_type(httpx.TimeoutException),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if self.state:
                        self.state.check_stop()
                    response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise FetchError(f"Timed out after {attempts} attempt(s): {url}") from e
        except httpx.HTTPError as e:
            raise FetchError(f"Request to {url} failed: {e}") from e

        content_type = response.headers.get("content-type", "")
        result = FetchResult(
            url=url,
            status_code=response.status_code,
            content_type=content_type,
            body="",
        )
        if result.is_indexable_content:
            result.body = response.text
        return result

import threading
from collections.abc import Callable

import httpx
from sqlalchemy import func
from sqlmodel import Session, select

from sitesearch.models import IndexEntry, Lemma, Page

SITE_URL = "https://site.test"


def html_page(body: str, title: str = "", links: list[str] | None = None) -> str:
    anchors = "".join(f'<a href="{href}">ссылка</a>' for href in links or [])
    return f"<html><head><title>{title}</title></head><body><p>{body}</p>{anchors}</body></html>"


class FakeSite:
    """In-memory web site served through ``httpx.MockTransport``."""

    def __init__(self, base_url: str = SITE_URL):
        self.base_url = base_url
        self.pages: dict[str, tuple[int, str, str]] = {}
        self.timeouts: dict[str, int] = {}
        self.hooks: dict[str, Callable[[], None]] = {}
        self.requested: list[str] = []
        self._lock = threading.Lock()

    def add(self, path: str, body: str, status: int = 200, content_type: str = "text/html; charset=utf-8") -> None:
        self.pages[path] = (status, content_type, body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.raw_path.decode()
        with self._lock:
            self.requested.append(path)
            if self.timeouts.get(path, 0) > 0:
                self.timeouts[path] -= 1
                raise httpx.ReadTimeout("timed out", request=request)
        hook = self.hooks.get(path)
        if hook is not None:
            hook()
        if path not in self.pages:
            return httpx.Response(404, text="not found", headers={"content-type": "text/html"})
        status, content_type, body = self.pages[path]
        return httpx.Response(status, content=body.encode("utf-8"), headers={"content-type": content_type})

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def count(self, path: str) -> int:
        return self.requested.count(path)


def assert_frequencies_consistent(session: Session) -> None:
    """Every lemma's frequency equals the number of index entries using it."""
    counts = dict(
        session.exec(
            select(IndexEntry.lemma_id, func.count(IndexEntry.id)).group_by(IndexEntry.lemma_id)
        ).all()
    )
    for lemma in session.exec(select(Lemma)).all():
        assert lemma.frequency == counts.get(lemma.id, 0), lemma.lemma
        assert lemma.frequency > 0


def lemma_frequencies(engine, site_id: int | None = None) -> dict[str, int]:
    with Session(engine) as session:
        statement = select(Lemma.lemma, Lemma.frequency)
        if site_id is not None:
            statement = statement.where(Lemma.site_id == site_id)
        return dict(session.exec(statement).all())


def page_paths(engine, site_id: int | None = None) -> list[str]:
    with Session(engine) as session:
        statement = select(Page.path).order_by(Page.path)
        if site_id is not None:
            statement = statement.where(Page.site_id == site_id)
        return list(session.exec(statement).all())

import logging
from collections.abc import Iterator, Sequence
from urllib.parse import urlsplit

from sqlalchemy import Engine, delete, insert, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from sitesearch.models import IndexEntry, Lemma, Page, Site, SiteStatus, utc_now
from sitesearch.text.html_cleaner import HtmlCleaner
from sitesearch.text.lemmatizer import Lemmatizer

logger = logging.getLogger(__name__)

UPSERT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


def _chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def relative_path(site_url: str, url: str) -> str:
    """Site-relative path of ``url``; the site root is "/"."""
    base = site_url.rstrip("/")
    if url.startswith(base):
        path = url[len(base):]
    else:
        parts = urlsplit(url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
    if not path.startswith("/"):
        path = "/" + path
    return path


class IndexWriter:
    """
    Writes Page, Lemma and IndexEntry rows.

    Invariant kept by every method: a lemma's ``frequency`` equals the number
    of index entries referencing it. Each page write or delete is a single
    transaction, so readers never see a page with half of its lemmas.
    """

    def __init__(self, engine: Engine, lemmatizer: Lemmatizer, chunk_size: int = 500):
        self.engine = engine
        self.lemmatizer = lemmatizer
        self.chunk_size = chunk_size

    def index_page(self, site: Site, url: str, code: int, html: str) -> int:
        """
        (Re)index one fetched page and return the new page id.

        A page already stored under the same path is deleted first, inside
        the same transaction, so its lemmas are never counted twice.
        """
        path = relative_path(site.url, url)
        lemmas = self.lemmatizer.extract_lemmas(HtmlCleaner.visible_text(html))

        with Session(self.engine) as session, session.begin():
            existing_id = session.scalars(
                select(Page.id).where(Page.site_id == site.id, Page.path == path)
            ).first()
            if existing_id is not None:
                logger.debug(f"Re-indexing {url}: removing page {existing_id}")
                self._delete_page(session, existing_id)

            page = Page(site_id=site.id, path=path, code=code, content=html)
            session.add(page)
            session.flush()
            page_id = page.id

            self._add_lemmas(session, site.id, page_id, lemmas)
            session.execute(
                update(Site).where(Site.id == site.id).values(status_time=utc_now())
            )

        logger.info(f"Indexed {url} ({len(lemmas)} lemmas)")
        return page_id

    def _add_lemmas(self, session: Session, site_id: int, page_id: int, lemmas: dict[str, int]) -> None:
        if not lemmas:
            return
        upsert = UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if upsert is None:
            raise NotImplementedError(f"No upsert support for dialect {session.get_bind().dialect.name}")

        lemma_table = Lemma.__table__
        # 固定顺序加锁，避免并发写入之间的死锁
        for chunk in _chunks(sorted(lemmas), self.chunk_size):
            stmt = upsert(lemma_table).values(
                [{"site_id": site_id, "lemma": text, "frequency": 1} for text in chunk]
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["site_id", "lemma"],
                set_={"frequency": lemma_table.c.frequency + 1},
            )
            session.execute(stmt)

            ids = dict(
                session.execute(
                    select(Lemma.lemma, Lemma.id).where(
                        Lemma.site_id == site_id, Lemma.lemma.in_(chunk)
                    )
                ).all()
            )
            session.execute(
                insert(IndexEntry.__table__),
                [
                    {"page_id": page_id, "lemma_id": ids[text], "rank": float(lemmas[text])}
                    for text in chunk
                ],
            )

    def delete_page(self, page_id: int) -> None:
        with Session(self.engine) as session, session.begin():
            self._delete_page(session, page_id)

    def _delete_page(self, session: Session, page_id: int) -> None:
        lemma_ids = list(
            session.scalars(select(IndexEntry.lemma_id).where(IndexEntry.page_id == page_id)).all()
        )
        lemma_table = Lemma.__table__
        for chunk in _chunks(lemma_ids, self.chunk_size):
            session.execute(
                update(lemma_table)
                .where(lemma_table.c.id.in_(chunk))
                .values(frequency=lemma_table.c.frequency - 1)
            )
        session.execute(delete(IndexEntry.__table__).where(IndexEntry.page_id == page_id))
        for chunk in _chunks(lemma_ids, self.chunk_size):
            session.execute(
                delete(lemma_table).where(lemma_table.c.id.in_(chunk), lemma_table.c.frequency <= 0)
            )
        session.execute(delete(Page.__table__).where(Page.id == page_id))

    def delete_site_data(self, site_id: int) -> None:
        """Remove every index entry, lemma and page of a site."""
        with Session(self.engine) as session, session.begin():
            page_ids = select(Page.id).where(Page.site_id == site_id)
            session.execute(delete(IndexEntry.__table__).where(IndexEntry.page_id.in_(page_ids)))
            session.execute(delete(Lemma.__table__).where(Lemma.site_id == site_id))
            session.execute(delete(Page.__table__).where(Page.site_id == site_id))
        logger.info(f"Cleared index data of site {site_id}")

    def set_site_status(self, site_id: int, status: SiteStatus, last_error: str | None = None) -> None:
        with Session(self.engine) as session, session.begin():
            session.execute(
                update(Site)
                .where(Site.id == site_id)
                .values(status=status, status_time=utc_now(), last_error=last_error)
            )
        logger.info(f"Site {site_id} -> {status.value}" + (f": {last_error}" if last_error else ""))

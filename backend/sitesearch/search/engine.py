import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sqlalchemy import Engine, func
from sqlmodel import Session, select

from sitesearch.core.config import Settings
from sitesearch.models import IndexEntry, Lemma, Page, SearchResponse, SearchResult, Site
from sitesearch.search.snippets import SnippetBuilder
from sitesearch.text.html_cleaner import HtmlCleaner
from sitesearch.text.lemmatizer import Lemmatizer

logger = logging.getLogger(__name__)

IN_CLAUSE_CHUNK = 500


@dataclass
class LemmaStats:
    """A query lemma within the search scope (one row per site)."""

    text: str
    frequency: int = 0
    ids: list[int] = field(default_factory=list)


class SearchEngine:
    """
    Ranked AND-search over the lemma index.

    Pipeline: lemmatize the query, drop lemmas the scope has never indexed
    and lemmas present on nearly every page (only for scopes of at least
    ``SMALL_SITE_PAGE_LIMIT`` pages), intersect page sets starting from the
    rarest lemma, score pages by summed rank normalised to the best page,
    paginate and build snippets.
    """

    def __init__(self, engine: Engine, lemmatizer: Lemmatizer, settings: Settings):
        self.engine = engine
        self.lemmatizer = lemmatizer
        self.settings = settings
        self.snippets = SnippetBuilder(
            lemmatizer,
            max_length=settings.SNIPPET_MAX_LENGTH,
            context_words=settings.SNIPPET_CONTEXT_WORDS,
        )

    def search(
        self,
        query: str,
        site_url: str | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> SearchResponse:
        if not query or not query.strip():
            logger.warning("Empty search query")
            return SearchResponse(success=False, error="Empty search query")
        if limit is None:
            limit = self.settings.SEARCH_DEFAULT_LIMIT
        if offset < 0 or limit < 0:
            return SearchResponse(success=False, error="offset and limit must not be negative")

        with Session(self.engine) as session:
            site = None
            if site_url:
                site = session.exec(select(Site).where(Site.url == site_url.strip().rstrip("/"))).first()
                if site is None:
                    logger.warning(f"Search scope not found: {site_url}")
                    return SearchResponse(success=False, error="Site not found")

            query_lemmas = sorted(self.lemmatizer.extract_lemmas(query))
            if not query_lemmas:
                logger.info(f"Query has no content words: {query!r}")
                return SearchResponse(success=True)

            stats = self._lemma_stats(session, site, query_lemmas)
            missing = [text for text in query_lemmas if text not in stats]
            if missing:
                # 索引中没有的词元不参与交集
                logger.info(f"Ignoring lemmas not indexed in scope: {missing}")
            if not stats:
                return SearchResponse(success=True)

            total_pages = self._count_pages(session, site)
            surviving = self._filter_common(stats, total_pages)
            if not surviving:
                logger.info("Every query lemma was filtered as too common")
                return SearchResponse(success=True)

            # 从最稀有的词元开始求交集
            surviving.sort(key=lambda s: (s.frequency, s.text))
            scores = self._intersect(session, surviving)
            if not scores:
                return SearchResponse(success=True)

            relevance = self._normalize(scores)
            ranked = sorted(relevance, key=lambda page_id: (-relevance[page_id], page_id))
            page_ids = ranked[offset:offset + limit]

            lemma_texts = {s.text for s in surviving}
            results = self._results(session, page_ids, relevance, lemma_texts)
            logger.info(f"Query {query!r}: {len(ranked)} pages, returning {len(results)}")
            return SearchResponse(success=True, total_count=len(ranked), results=results)

    def _lemma_stats(self, session: Session, site: Site | None, texts: list[str]) -> dict[str, LemmaStats]:
        statement = select(Lemma).where(Lemma.lemma.in_(texts))
        if site is not None:
            statement = statement.where(Lemma.site_id == site.id)
        stats: dict[str, LemmaStats] = {}
        for lemma in session.exec(statement).all():
            entry = stats.setdefault(lemma.lemma, LemmaStats(lemma.lemma))
            entry.frequency += lemma.frequency
            entry.ids.append(lemma.id)
        return stats

    @staticmethod
    def _count_pages(session: Session, site: Site | None) -> int:
        statement = select(func.count(Page.id))
        if site is not None:
            statement = statement.where(Page.site_id == site.id)
        return session.exec(statement).one()

    def _filter_common(self, stats: dict[str, LemmaStats], total_pages: int) -> list[LemmaStats]:
        if total_pages < self.settings.SMALL_SITE_PAGE_LIMIT:
            return list(stats.values())
        kept = []
        for entry in stats.values():
            ratio = entry.frequency / total_pages
            if ratio > self.settings.COMMON_LEMMA_THRESHOLD:
                logger.debug(f"Dropping common lemma {entry.text!r} ({ratio:.2%} of pages)")
                continue
            kept.append(entry)
        return kept

    def _intersect(self, session: Session, lemmas: list[LemmaStats]) -> dict[int, float]:
        """Pages indexed under every lemma, mapped to their summed rank."""
        candidates: dict[int, float] | None = None
        for entry in lemmas:
            found: dict[int, float] = {}
            for page_id, rank in self._postings(session, entry.ids, None if candidates is None else list(candidates)):
                found[page_id] = found.get(page_id, 0.0) + rank
            if candidates is None:
                candidates = found
            else:
                candidates = {page_id: candidates[page_id] + rank for page_id, rank in found.items()}
            if not candidates:
                return {}
        return candidates or {}

    @staticmethod
    def _postings(session: Session, lemma_ids: list[int], page_ids: list[int] | None) -> Iterable[tuple[int, float]]:
        if page_ids is None:
            yield from session.exec(
                select(IndexEntry.page_id, IndexEntry.rank).where(IndexEntry.lemma_id.in_(lemma_ids))
            ).all()
            return
        for start in range(0, len(page_ids), IN_CLAUSE_CHUNK):
            chunk = page_ids[start:start + IN_CLAUSE_CHUNK]
            yield from session.exec(
                select(IndexEntry.page_id, IndexEntry.rank).where(
                    IndexEntry.lemma_id.in_(lemma_ids), IndexEntry.page_id.in_(chunk)
                )
            ).all()

    @staticmethod
    def _normalize(scores: dict[int, float]) -> dict[int, float]:
        best = max(scores.values())
        if best <= 0:
            return {page_id: 0.0 for page_id in scores}
        return {page_id: score / best for page_id, score in scores.items()}

    def _results(
        self,
        session: Session,
        page_ids: list[int],
        relevance: dict[int, float],
        lemma_texts: set[str],
    ) -> list[SearchResult]:
        if not page_ids:
            return []
        pages = {page.id: page for page in session.exec(select(Page).where(Page.id.in_(page_ids))).all()}
        site_ids = {page.site_id for page in pages.values()}
        sites = {site.id: site for site in session.exec(select(Site).where(Site.id.in_(site_ids))).all()}

        results = []
        for page_id in page_ids:
            page = pages.get(page_id)
            if page is None:
                # 分页期间页面被重新索引
                continue
            site = sites[page.site_id]
            results.append(
                SearchResult(
                    site=site.url,
                    site_name=site.name,
                    path=page.path,
                    title=HtmlCleaner.title(page.content),
                    snippet=self.snippets.build(HtmlCleaner.visible_text(page.content), lemma_texts),
                    relevance=relevance[page_id],
                )
            )
        return results

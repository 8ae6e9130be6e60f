"""
Two-stage retrieval: cheap candidate discovery, then one deep fetch.

Responsibility: Stage 1 ranks index entries (no workspace calls); Stage 2
fetches the body of a single chosen page through the content cache and
expands a small, bounded set of related pages. This split bounds workspace
cost to one body fetch per answered query regardless of corpus size.
"""

import logging
from enum import Enum

from workspace_rag.core.config import CANDIDATE_LIMIT, RELATED_PAGE_LIMIT
from workspace_rag.core.errors import NoIndexError, NotFoundError, WorkspaceRAGError
from workspace_rag.core.models import CandidateSource, DetailedContent, RelatedPage
from workspace_rag.services.content_cache import ContentCache
from workspace_rag.services.page_index import IndexSnapshot, PageIndex
from workspace_rag.services.structured_search import StructuredSearch
from workspace_rag.services.text_processing import classify_document_type
from workspace_rag.services.workspace_client import WorkspaceClient

logger = logging.getLogger(__name__)


class RetrievalStage(str, Enum):
    NOT_STARTED = "not_started"
    CANDIDATES_FOUND = "candidates_found"
    DETAIL_FETCHED = "detail_fetched"
    DONE = "done"
    FAILED = "failed"


class TwoStageRetrieval:
    """Owns the wiring between page index, structured search and content cache."""

    def __init__(
        self,
        index: PageIndex,
        search: StructuredSearch,
        cache: ContentCache,
        workspace: WorkspaceClient,
        *,
        candidate_limit: int = CANDIDATE_LIMIT,
        related_limit: int = RELATED_PAGE_LIMIT,
    ) -> None:
        self.index = index
        self.search = search
        self.cache = cache
        self.workspace = workspace
        self.candidate_limit = candidate_limit
        self.related_limit = related_limit

    @property
    def is_initialized(self) -> bool:
        return self.index.is_initialized and self.search.is_initialized

    async def initialize(self) -> None:
        """Build index and search tables once; no-op when already done."""
        if self.is_initialized:
            logger.info("[retrieval:initialize] already initialized version=%d", self.index.version)
            return
        await self.refresh()

    async def refresh(self) -> None:
        """
        Rebuild the index, then the search tables, then drop cached bodies.

        Raises IndexBuildError if the traversal fails; the previous index,
        search tables and cache then stay as they were.
        """
        logger.info("[retrieval:refresh] IN")
        await self.index.initialize()
        self.search.initialize()
        self.cache.invalidate_all()
        logger.info("[retrieval:refresh] OUT version=%d", self.index.version)

    def session(self, query: str) -> "RetrievalSession":
        return RetrievalSession(self, query)

    def find_potential_sources(self, query: str) -> list[CandidateSource]:
        """Stage 1: index-only candidates, at most candidate_limit, all with score > 0."""
        if not self.is_initialized:
            raise NoIndexError("Two-stage retrieval used before the index was initialized")
        logger.info("[retrieval:find_potential_sources] IN  query=%r", query)
        candidates = self.search.search(query, self.candidate_limit)
        logger.info(
            "[retrieval:find_potential_sources] OUT candidates=%d ids=%s",
            len(candidates), [c.id for c in candidates],
        )
        return candidates

    async def get_detailed_content(self, page_id: str, query: str = "") -> DetailedContent:
        """
        Stage 2: body plus bounded related pages for one page.

        Raises NotFoundError when page_id is not in the current snapshot (the
        caller should re-run Stage 1) and FetchError when the body cannot be
        fetched and nothing is cached.
        """
        if not self.is_initialized:
            raise NoIndexError("Two-stage retrieval used before the index was initialized")
        snapshot = self.index.snapshot
        entry = snapshot.entries.get(page_id)
        if entry is None:
            logger.info("[retrieval:get_detailed_content] page_id=%s not in index version=%d", page_id, snapshot.version)
            raise NotFoundError(page_id, f"Page {page_id} is not in the current index")
        logger.info("[retrieval:get_detailed_content] IN  page_id=%s title=%r query=%r", page_id, entry.title, query)

        cached = await self.cache.get(page_id)
        related = await self._related_pages(snapshot, page_id, cached.related)
        detail = DetailedContent(
            id=entry.id,
            title=entry.title,
            path=entry.path,
            document_type=classify_document_type(cached.content),
            content=cached.content,
            related_pages=tuple(related),
            stale=cached.stale,
            url=entry.url,
        )
        logger.info(
            "[retrieval:get_detailed_content] OUT page_id=%s type=%s len=%d related=%d stale=%s",
            page_id, detail.document_type.value, len(detail.content), len(detail.related_pages), detail.stale,
        )
        return detail

    async def _related_pages(
        self, snapshot: IndexSnapshot, page_id: str, links: tuple[str, ...] | None
    ) -> list[RelatedPage]:
        """
        Children first, then explicit links, then siblings; indexed ids only, capped.

        links are the ids captured with the cached body. Only when the cache
        fetcher did not collect them (links is None) is the workspace asked,
        and a failure there only costs the link candidates.
        """
        picked: list[str] = []

        def take(ids) -> None:
            for rid in ids:
                if len(picked) >= self.related_limit:
                    return
                if rid != page_id and rid in snapshot.entries and rid not in picked:
                    picked.append(rid)

        take(snapshot.children.get(page_id, ()))
        if len(picked) < self.related_limit:
            if links is None:
                links = await self._lookup_links(page_id)
            take(links)
        parent_id = snapshot.entries[page_id].parent_id
        if parent_id is not None:
            take(snapshot.children.get(parent_id, ()))
        return [RelatedPage(id=rid, title=snapshot.entries[rid].title) for rid in picked]

    async def _lookup_links(self, page_id: str) -> tuple[str, ...]:
        try:
            return tuple(await self.workspace.list_related(page_id))
        except WorkspaceRAGError as e:
            logger.warning("[retrieval:related] link lookup failed page_id=%s: %s", page_id, e.message)
        except Exception:
            logger.exception("[retrieval:related] link lookup raised page_id=%s; skipping links", page_id)
        return ()


class RetrievalSession:
    """Per-query state machine: Stage 1 must succeed before Stage 2 runs.

    NOT_STARTED -> CANDIDATES_FOUND -> DETAIL_FETCHED -> DONE, or FAILED from
    any state. Stage 1 may be run again from any state.
    """

    def __init__(self, retrieval: TwoStageRetrieval, query: str) -> None:
        self.retrieval = retrieval
        self.query = query
        self.stage = RetrievalStage.NOT_STARTED
        self.candidates: list[CandidateSource] = []
        self.detail: DetailedContent | None = None

    def find_potential_sources(self, query: str | None = None) -> list[CandidateSource]:
        try:
            self.candidates = self.retrieval.find_potential_sources(query or self.query)
        except Exception:
            self.stage = RetrievalStage.FAILED
            raise
        self.stage = RetrievalStage.CANDIDATES_FOUND
        return self.candidates

    async def get_detailed_content(self, page_id: str) -> DetailedContent:
        if self.stage not in (RetrievalStage.CANDIDATES_FOUND, RetrievalStage.DETAIL_FETCHED):
            raise RuntimeError(f"Stage 2 requested in state {self.stage.value}; run Stage 1 first")
        try:
            self.detail = await self.retrieval.get_detailed_content(page_id, self.query)
        except Exception:
            # A NotFoundError here is recoverable: Stage 1 may be re-run from FAILED.
            self.stage = RetrievalStage.FAILED
            raise
        self.stage = RetrievalStage.DETAIL_FETCHED
        return self.detail

    def finish(self) -> None:
        if self.stage == RetrievalStage.DETAIL_FETCHED:
            self.stage = RetrievalStage.DONE

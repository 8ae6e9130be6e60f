"""
API handlers: call services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Marshalling and exception-to-HTTP mapping.
Lives in the API layer so services stay free of FastAPI/HTTP types.
"""

import logging
from dataclasses import asdict

from fastapi import HTTPException

from workspace_rag.api.state import AppState
from workspace_rag.core.errors import FetchError, IndexBuildError, NotFoundError, ServiceUnavailableError
from workspace_rag.core.models import CandidateSource, DetailedContent
from workspace_rag.schemas.query import (
    AgentResultOut,
    CandidateOut,
    PageOut,
    QueryResponse,
    RelatedPageOut,
)

logger = logging.getLogger(__name__)

NOT_READY_MESSAGE = "The knowledge base index is not ready yet. Try again after it has been built."


def require_index(state: AppState) -> None:
    if not state.retrieval.is_initialized:
        raise ServiceUnavailableError(NOT_READY_MESSAGE)


async def handle_query(state: AppState, question: str, agent_id: str | None = None) -> QueryResponse:
    question = question.strip()
    if not question:
        raise HTTPException(status_code=400, detail="Question must not be blank.")
    require_index(state)
    try:
        routed = await state.dispatcher.route(question, agent_id=agent_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message) from e
    return QueryResponse(
        answer=routed.message,
        success=routed.success,
        sources=routed.sources,
        results=[
            AgentResultOut(
                agent_id=r.agent_id,
                success=r.success,
                message=r.message,
                source=r.source,
                error=r.error.value if r.error else None,
            )
            for r in routed.results
        ],
    )


async def handle_refresh(state: AppState) -> dict:
    """Rebuild the index; the previous index keeps serving when the rebuild fails."""
    try:
        await state.retrieval.refresh()
    except IndexBuildError as e:
        logger.warning("[api:refresh] rebuild failed, previous index kept: %s", e.message)
        raise ServiceUnavailableError(f"Index rebuild failed: {e.message}") from e
    return handle_stats(state)


def handle_stats(state: AppState) -> dict:
    return {"index": state.index.stats(), "cache": state.cache.stats()}


def candidate_out(c: CandidateSource) -> CandidateOut:
    return CandidateOut(id=c.id, title=c.title, path=list(c.path), preview=c.preview, score=c.score, url=c.url)


def handle_search_pages(state: AppState, query: str, limit: int) -> list[CandidateOut]:
    query = (query or "").strip()
    if not query:
        return []
    require_index(state)
    return [candidate_out(c) for c in state.search.search(query, limit)]


def page_out(detail: DetailedContent) -> PageOut:
    data = asdict(detail)
    data["path"] = list(detail.path)
    data["document_type"] = detail.document_type.value
    data["related_pages"] = [RelatedPageOut(id=p.id, title=p.title) for p in detail.related_pages]
    return PageOut(**data)


async def handle_get_page(state: AppState, page_id: str) -> PageOut | None:
    """Detailed content for one indexed page; None when the id is not indexed."""
    require_index(state)
    try:
        detail = await state.retrieval.get_detailed_content(page_id.strip())
    except NotFoundError:
        return None
    except FetchError as e:
        raise HTTPException(status_code=502, detail=f"Workspace fetch failed: {e.message}") from e
    return page_out(detail)

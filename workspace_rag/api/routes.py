"""
API route aggregator: register endpoints; no logic, only delegate to handlers.
"""

import logging

from fastapi import APIRouter, Depends

from workspace_rag.api.handlers import handle_query, handle_refresh, handle_stats
from workspace_rag.api.state import AppState, get_state
from workspace_rag.schemas.query import QueryRequest, QueryResponse

logger = logging.getLogger(__name__)
router = APIRouter()


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Workspace RAG backend running"}


@router.get("/health", tags=["system"])
def health(state: AppState = Depends(get_state)):
    return {"ok": True, "index_ready": state.retrieval.is_initialized, "index_version": state.index.version}


@router.get("/agents", tags=["system"], summary="List registered agents")
def get_agents(state: AppState = Depends(get_state)) -> dict:
    return {"agents": [a.get_info() for a in state.dispatcher.get_agents()]}


# --- Index ---

@router.post(
    "/index/refresh",
    tags=["index"],
    summary="Rebuild the page index",
    description="Full workspace traversal; publishes a new index and clears cached bodies. 503 if the traversal fails (the previous index keeps serving).",
)
async def refresh_index(state: AppState = Depends(get_state)) -> dict:
    logger.info("[api:refresh_index] IN")
    stats = await handle_refresh(state)
    logger.info("[api:refresh_index] OUT version=%s", stats["index"]["version"])
    return stats


@router.get("/index/stats", tags=["index"], summary="Index and cache statistics")
def index_stats(state: AppState = Depends(get_state)) -> dict:
    return handle_stats(state)


# --- Query ---

@router.post(
    "/query",
    response_model=QueryResponse,
    tags=["query"],
    summary="Ask the agents",
    description="Dispatch a question to every capable agent (or only to agent_id when given) and return the synthesized answer with per-agent results. 503 while the index is not built.",
)
async def post_query(body: QueryRequest, state: AppState = Depends(get_state)) -> QueryResponse:
    logger.info("[api:post_query] IN  question=%r", body.question)
    response = await handle_query(state, body.question, agent_id=body.agent_id)
    logger.info("[api:post_query] OUT success=%s sources=%s answer_len=%d", response.success, response.sources, len(response.answer))
    return response


@router.post(
    "/agents/{agent_id}/query",
    response_model=QueryResponse,
    tags=["query"],
    summary="Ask one agent",
    description="Run the question on the named agent only, without asking whether it can handle it. 404 for an unknown agent id; an inactive agent answers with success=false.",
)
async def post_agent_query(agent_id: str, body: QueryRequest, state: AppState = Depends(get_state)) -> QueryResponse:
    logger.info("[api:post_agent_query] IN  agent_id=%s question=%r", agent_id, body.question)
    response = await handle_query(state, body.question, agent_id=agent_id)
    logger.info("[api:post_agent_query] OUT success=%s sources=%s", response.success, response.sources)
    return response

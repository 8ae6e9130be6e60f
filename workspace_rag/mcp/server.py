"""
Minimal MCP-style tool server: exposes the two retrieval stages as a
standardized tool interface so external agents can browse the workspace
index and pull one page at a time.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends

from workspace_rag.api.handlers import handle_get_page, handle_search_pages, handle_stats
from workspace_rag.api.state import AppState, get_state
from workspace_rag.schemas.query import GetPageRequest, SearchPagesRequest

logger = logging.getLogger(__name__)

# MCP tool schema for discovery / documentation
tools = [
    {
        "name": "search_pages",
        "description": "Rank indexed workspace pages by title and path (no page bodies are fetched)",
        "input_schema": {"query": "string", "limit": "integer (optional)"},
    },
    {
        "name": "get_page",
        "description": "Fetch one indexed page's content, document type and related pages",
        "input_schema": {"id": "string (page id from search_pages)"},
    },
    {
        "name": "index_stats",
        "description": "Index version, page counts per type and content cache counters",
        "input_schema": {},
    },
]

mcp_router = APIRouter(tags=["mcp"])


@mcp_router.get("/tools", summary="MCP tool discovery")
def mcp_list_tools() -> dict[str, list[dict[str, Any]]]:
    return {"tools": tools}


@mcp_router.post(
    "/tools/search_pages",
    summary="MCP tool: search_pages",
    description="Stage 1 candidate discovery over the page index. Empty query returns no results.",
)
def mcp_search_pages(body: SearchPagesRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    """Each result includes id so the agent can call get_page(id)."""
    logger.info("MCP tool called: search_pages")
    results = handle_search_pages(state, body.query, body.limit)
    return {"results": [r.model_dump() for r in results]}


@mcp_router.post(
    "/tools/get_page",
    summary="MCP tool: get_page",
    description="Stage 2 detail fetch for one page. Returns page null when the id is not in the current index.",
)
async def mcp_get_page(body: GetPageRequest, state: AppState = Depends(get_state)) -> dict[str, Any]:
    logger.info("MCP tool called: get_page")
    page = await handle_get_page(state, body.id)
    return {"page": page.model_dump() if page is not None else None}


@mcp_router.post(
    "/tools/index_stats",
    summary="MCP tool: index_stats",
    description="Index and cache status (system observability).",
)
def mcp_index_stats(state: AppState = Depends(get_state)) -> dict[str, Any]:
    logger.info("MCP tool called: index_stats")
    return handle_stats(state)

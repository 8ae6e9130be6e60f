"""Schemas for the query, index and MCP tool endpoints."""

from pydantic import BaseModel, Field

from workspace_rag.core.config import CANDIDATE_LIMIT


class QueryRequest(BaseModel):
    """Request body for POST /query and POST /agents/{agent_id}/query."""

    question: str = Field(..., min_length=1, description="User question dispatched to every capable agent.")
    agent_id: str | None = Field(None, description="Send the question to this agent only, skipping can_handle.")


class AgentResultOut(BaseModel):
    agent_id: str
    success: bool
    message: str | None = None
    source: str | None = None
    error: str | None = Field(None, description="ErrorKind value when the agent failed, timed out or was absent.")


class QueryResponse(BaseModel):
    """Response for POST /query."""

    answer: str = Field(..., description="Synthesized answer across agent results.")
    success: bool = Field(..., description="True when at least one agent answered successfully.")
    sources: list[str] = Field(default_factory=list, description="Source tags of the successful agents.")
    results: list[AgentResultOut] = Field(default_factory=list, description="One entry per dispatched agent.")


class SearchPagesRequest(BaseModel):
    """Request body for MCP tool search_pages."""

    query: str = ""
    limit: int = Field(CANDIDATE_LIMIT, ge=0, le=50)


class CandidateOut(BaseModel):
    id: str
    title: str
    path: list[str]
    preview: str
    score: float
    url: str | None = None


class GetPageRequest(BaseModel):
    """Request body for MCP tool get_page."""

    id: str = Field(..., min_length=1)


class RelatedPageOut(BaseModel):
    id: str
    title: str


class PageOut(BaseModel):
    id: str
    title: str
    path: list[str]
    document_type: str
    content: str
    related_pages: list[RelatedPageOut] = Field(default_factory=list)
    stale: bool = False
    url: str | None = None

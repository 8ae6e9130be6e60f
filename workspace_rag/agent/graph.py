"""
LangGraph pipeline behind KnowledgeAgent.process_query:
extract terms → find sources → (no results | fetch detail) → compose.

Orchestration only; retrieval and LLM work live on the agent. A stale id in
Stage 2 triggers one fresh Stage 1 pass before giving up.
"""

import logging
from typing import TYPE_CHECKING, Literal, TypedDict

from langgraph.graph import END, StateGraph

from workspace_rag.core.errors import FetchError, NotFoundError
from workspace_rag.core.models import AgentResponse, CandidateSource, DetailedContent, ErrorKind
from workspace_rag.services.retrieval_service import RetrievalSession

if TYPE_CHECKING:
    from workspace_rag.agent.knowledge_agent import KnowledgeAgent

logger = logging.getLogger(__name__)


class QueryState(TypedDict, total=False):
    query: str
    search_terms: str
    session: RetrievalSession
    candidates: list[CandidateSource]
    detail: DetailedContent | None
    response: AgentResponse | None


def build_query_graph(agent: "KnowledgeAgent"):
    """Compile the per-query graph for one agent instance."""

    async def extract_terms(state: QueryState) -> dict:
        query = state["query"]
        terms = await agent.extract_search_terms(query)
        logger.info("[graph:extract_terms] OUT query=%r terms=%r", query, terms)
        return {"search_terms": terms, "session": agent.retrieval.session(query)}

    async def find_sources(state: QueryState) -> dict:
        session = state["session"]
        terms = state.get("search_terms") or state["query"]
        candidates = session.find_potential_sources(terms)
        if not candidates and terms != state["query"]:
            logger.info("[graph:find_sources] no hits for terms, retrying raw query")
            candidates = session.find_potential_sources(state["query"])
        logger.info("[graph:find_sources] OUT candidates=%d", len(candidates))
        return {"candidates": candidates}

    async def no_results(state: QueryState) -> dict:
        terms = state.get("search_terms") or state["query"]
        message = f'I couldn\'t find any information about "{terms}" in our knowledge base.'
        return {"response": AgentResponse(success=False, message=message, source=agent.name)}

    async def fetch_detail(state: QueryState) -> dict:
        session = state["session"]
        candidates = state.get("candidates") or []
        top = candidates[0]
        try:
            return {"detail": await session.get_detailed_content(top.id)}
        except NotFoundError:
            logger.info("[graph:fetch_detail] stale candidate %s, re-running stage 1", top.id)
        except FetchError as e:
            return {"response": _fetch_failed(agent, top, e)}

        terms = state.get("search_terms") or state["query"]
        fresh = session.find_potential_sources(terms)
        if not fresh:
            return await no_results(state)
        try:
            return {"detail": await session.get_detailed_content(fresh[0].id), "candidates": fresh}
        except NotFoundError:
            logger.warning("[graph:fetch_detail] candidate %s vanished twice, giving up", fresh[0].id)
            message = "The page I found is no longer available. Please try asking again."
            return {"response": AgentResponse(success=False, message=message, source=agent.name, error=ErrorKind.NOT_FOUND)}
        except FetchError as e:
            return {"response": _fetch_failed(agent, fresh[0], e)}

    async def compose(state: QueryState) -> dict:
        session = state["session"]
        response = await agent.compose_answer(state["query"], state["detail"])
        session.finish()
        return {"response": response}

    def route_after_sources(state: QueryState) -> Literal["fetch_detail", "no_results"]:
        return "fetch_detail" if state.get("candidates") else "no_results"

    def route_after_detail(state: QueryState) -> Literal["compose", "__end__"]:
        return "compose" if state.get("detail") is not None else END

    graph = StateGraph(QueryState)
    graph.add_node("extract_terms", extract_terms)
    graph.add_node("find_sources", find_sources)
    graph.add_node("no_results", no_results)
    graph.add_node("fetch_detail", fetch_detail)
    graph.add_node("compose", compose)
    graph.set_entry_point("extract_terms")
    graph.add_edge("extract_terms", "find_sources")
    graph.add_conditional_edges(
        "find_sources", route_after_sources, {"fetch_detail": "fetch_detail", "no_results": "no_results"}
    )
    graph.add_conditional_edges("fetch_detail", route_after_detail, {"compose": "compose", END: END})
    graph.add_edge("no_results", END)
    graph.add_edge("compose", END)
    return graph.compile()


def _fetch_failed(agent: "KnowledgeAgent", candidate: CandidateSource, error: FetchError) -> AgentResponse:
    logger.warning("[graph:fetch_detail] fetch failed for %s: %s", candidate.id, error.message)
    message = f'I found "{candidate.title}" but could not retrieve its content right now. Please try again shortly.'
    return AgentResponse(success=False, message=message, source=agent.name, error=ErrorKind.FETCH)

"""
Application state: the component graph behind the HTTP adapter.

Built once in the FastAPI lifespan and stored on app.state; routes receive it
through the get_state dependency so tests can wire fakes instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from fastapi import Request

from workspace_rag.agent.knowledge_agent import KnowledgeAgent
from workspace_rag.agent.llm import ChatLLM, LLMClient
from workspace_rag.agent.synthesis import LLMSynthesizer
from workspace_rag.services.agent_service import AgentService
from workspace_rag.services.content_cache import ContentCache
from workspace_rag.services.page_index import PageIndex
from workspace_rag.services.retrieval_service import TwoStageRetrieval
from workspace_rag.services.structured_search import StructuredSearch
from workspace_rag.services.workspace_client import NotionWorkspaceClient, WorkspaceClient

logger = logging.getLogger(__name__)


@dataclass
class AppState:
    workspace: WorkspaceClient
    index: PageIndex
    search: StructuredSearch
    cache: ContentCache
    retrieval: TwoStageRetrieval
    dispatcher: AgentService
    closers: list[Callable[[], Awaitable[None]]] = field(default_factory=list)

    async def aclose(self) -> None:
        for close in self.closers:
            await close()


def build_app_state(workspace: WorkspaceClient, llm: LLMClient) -> AppState:
    """Wire index, search, cache, retrieval and the knowledge agent around one workspace."""
    index = PageIndex(workspace)
    search = StructuredSearch(index)
    cache = ContentCache(workspace.fetch_page)
    retrieval = TwoStageRetrieval(index, search, cache, workspace)
    dispatcher = AgentService(LLMSynthesizer(llm))
    dispatcher.register_agent(KnowledgeAgent(retrieval, llm))
    return AppState(
        workspace=workspace,
        index=index,
        search=search,
        cache=cache,
        retrieval=retrieval,
        dispatcher=dispatcher,
    )


def build_default_state() -> AppState:
    """State for the configured Notion workspace and chat LLM."""
    workspace = NotionWorkspaceClient()
    if not workspace.is_configured:
        logger.warning("[state] NOTION_API_KEY is not set; index builds will fail until it is configured")
    state = build_app_state(workspace, ChatLLM())
    state.closers.append(workspace.aclose)
    return state


def get_state(request: Request) -> AppState:
    return request.app.state.services

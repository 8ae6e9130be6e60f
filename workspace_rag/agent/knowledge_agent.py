"""
Knowledge agent: two-stage retrieval plus LLM calls behind the agent contract.

can_handle never runs Stage 2; process_query runs the LangGraph pipeline in
agent/graph.py. Every LLM step has a non-LLM fallback.
"""

import asyncio
import logging

from workspace_rag.agent.base import BaseAgent
from workspace_rag.agent.graph import build_query_graph
from workspace_rag.agent.llm import LLMClient
from workspace_rag.core.config import (
    AGENT_MAX_TOKENS,
    CLASSIFY_TIMEOUT,
    CONTENT_PROMPT_MAX_CHARS,
    EXTRACT_TERMS_TIMEOUT,
    LLM_API_TIMEOUT,
)
from workspace_rag.core.errors import LLMError, NoIndexError, WorkspaceRAGError
from workspace_rag.core.models import AgentResponse, DetailedContent
from workspace_rag.services.retrieval_service import TwoStageRetrieval
from workspace_rag.services.text_processing import strip_term_prefixes, truncate

logger = logging.getLogger(__name__)

KNOWLEDGE_KEYWORDS: tuple[str, ...] = (
    "notion", "wiki", "knowledge base", "documentation", "docs", "document", "page", "database",
)
INFO_PATTERNS: tuple[str, ...] = (
    "find", "search", "look up", "tell me about", "what is", "how to", "how do",
    "where can i", "information on", "details about", "policy", "process",
)

FALLBACK_SOURCE = "fallback"


class KnowledgeAgent(BaseAgent):
    """Answers questions from the indexed workspace."""

    def __init__(
        self,
        retrieval: TwoStageRetrieval,
        llm: LLMClient,
        *,
        agent_id: str = "knowledge",
        name: str = "Workspace Knowledge Base",
        compose_timeout: float = LLM_API_TIMEOUT,
        classify_timeout: float = CLASSIFY_TIMEOUT,
        extract_timeout: float = EXTRACT_TERMS_TIMEOUT,
    ) -> None:
        super().__init__(agent_id, name)
        self.retrieval = retrieval
        self.llm = llm
        self.compose_timeout = compose_timeout
        self.classify_timeout = classify_timeout
        self.extract_timeout = extract_timeout
        self._graph = build_query_graph(self)

    async def _ask(self, prompt: str, timeout: float, max_new_tokens: int) -> str:
        try:
            return await asyncio.wait_for(self.llm.complete(prompt, max_new_tokens), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise LLMError(f"LLM call exceeded {timeout:.1f}s") from e

    async def can_handle(self, query: str) -> bool:
        if not self.is_active or not query or not query.strip():
            return False
        lowered = query.lower()
        if any(k in lowered for k in KNOWLEDGE_KEYWORDS) or any(p in lowered for p in INFO_PATTERNS):
            logger.info("[knowledge:can_handle] keyword match query=%r", query)
            return True
        try:
            if self.retrieval.find_potential_sources(query):
                logger.info("[knowledge:can_handle] stage 1 match query=%r", query)
                return True
        except NoIndexError:
            logger.warning("[knowledge:can_handle] index not initialized; declining")
            return False
        return await self._classify(query)

    async def _classify(self, query: str) -> bool:
        prompt = (
            "You are a classifier that determines if a query is asking for information that would be "
            "stored in a company knowledge base (policies, procedures, contacts, forms, internal facts).\n"
            "Answer NO for greetings, small talk, or questions unrelated to company knowledge.\n"
            "Answer with ONLY a single word: YES or NO.\n\n"
            f"Query: {query}"
        )
        try:
            answer = (await self._ask(prompt, self.classify_timeout, max_new_tokens=5)).strip().upper()
        except WorkspaceRAGError as e:
            logger.warning("[knowledge:can_handle] classification failed, declining: %s", e.message)
            return False
        logger.info("[knowledge:can_handle] llm_raw=%r", answer)
        return answer.startswith("YES")

    async def extract_search_terms(self, query: str) -> str:
        """Rewrite a conversational query into search terms; the raw query on any failure."""
        prompt = (
            "Identify the key terms that would be most effective for searching a company knowledge base.\n"
            "Rules:\n"
            "- Remove filler words and conversational language\n"
            "- Keep nouns, names and specific terms\n"
            "- Output 2-8 words only, no punctuation except spaces\n"
            "- Return ONLY the search terms, nothing else\n\n"
            f"Query: {query}"
        )
        try:
            raw = await self._ask(prompt, self.extract_timeout, max_new_tokens=40)
        except WorkspaceRAGError as e:
            logger.warning("[knowledge:extract_search_terms] falling back to raw query: %s", e.message)
            return query
        terms = strip_term_prefixes(raw)
        if not terms or " OR " in terms:
            return query
        return terms

    async def compose_answer(self, query: str, detail: DetailedContent) -> AgentResponse:
        """One LLM call over the retrieved page; raw content verbatim when it fails."""
        breadcrumb = " > ".join([*detail.path, detail.title])
        body = truncate(detail.content, CONTENT_PROMPT_MAX_CHARS, "... (content truncated)")
        related = ""
        if detail.related_pages:
            related = "Related pages:\n" + "\n".join(
                f"{i}. {p.title}" for i, p in enumerate(detail.related_pages, start=1)
            )
        prompt = (
            "You are a professional assistant answering a colleague's question from the company knowledge base.\n"
            "Begin with a direct answer, then add only the supporting details that matter.\n"
            "Use ONLY the document below. If it does not contain the answer, say so briefly.\n"
            "Do not mention the words 'document' or 'context' in the answer.\n\n"
            f"Question: {query}\n\n"
            f"Title: {detail.title}\nPath: {breadcrumb}\nType: {detail.document_type.value}\n\n"
            f"{body}\n\n{related}\n\nAnswer:"
        )
        source = self.name if not detail.stale else f"{self.name} (cached)"
        try:
            answer = (await self._ask(prompt, self.compose_timeout, max_new_tokens=AGENT_MAX_TOKENS)).strip()
            if not answer:
                raise LLMError("empty composition")
        except WorkspaceRAGError as e:
            logger.warning("[knowledge:compose] LLM failed, returning raw content: %s", e.message)
            return AgentResponse(
                success=True,
                message=detail.content or f"{detail.title} ({breadcrumb})",
                source=FALLBACK_SOURCE,
            )
        logger.info("[knowledge:compose] OUT answer_len=%d stale=%s", len(answer), detail.stale)
        return AgentResponse(success=True, message=answer, source=source)

    async def process_query(self, query: str) -> AgentResponse:
        logger.info("[knowledge:process_query] IN  query=%r", query)
        if not self.retrieval.is_initialized:
            raise NoIndexError("Knowledge agent used before retrieval was initialized")
        state = await self._graph.ainvoke({"query": query})
        response = state.get("response") or AgentResponse(
            success=False, message="No answer generated.", source=self.name
        )
        logger.info("[knowledge:process_query] OUT success=%s source=%s", response.success, response.source)
        return response

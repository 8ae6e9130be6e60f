"""
Merge per-agent results into the single answer returned to the caller.
"""

import logging
from typing import Protocol

from workspace_rag.agent.llm import LLMClient
from workspace_rag.core.errors import WorkspaceRAGError
from workspace_rag.core.models import AgentResult

logger = logging.getLogger(__name__)


class Synthesizer(Protocol):
    async def synthesize(self, query: str, results: list[AgentResult]) -> str: ...


def fallback_message(results: list[AgentResult]) -> str:
    """Successful messages joined, else the first failure message."""
    ok = [r.message for r in results if r.success and r.message]
    if ok:
        return "\n\n".join(ok)
    for r in results:
        if r.message:
            return r.message
    return "I wasn't able to answer that."


class LLMSynthesizer:
    """One LLM pass over the successful agent answers; plain join when the LLM fails."""

    def __init__(self, llm: LLMClient, max_new_tokens: int = 512) -> None:
        self.llm = llm
        self.max_new_tokens = max_new_tokens

    async def synthesize(self, query: str, results: list[AgentResult]) -> str:
        ok = [r for r in results if r.success and r.message]
        if not ok:
            return fallback_message(results)
        if len(ok) == 1:
            return ok[0].message
        answers = "\n\n".join(f"[{r.source or r.agent_id}]\n{r.message}" for r in ok)
        prompt = (
            "Several assistants answered the same question. Combine their answers into one clear, "
            "non-repetitive response. Keep every concrete fact; do not add new ones.\n\n"
            f"Question: {query}\n\nAnswers:\n{answers}\n\nCombined answer:"
        )
        try:
            merged = (await self.llm.complete(prompt, self.max_new_tokens)).strip()
        except WorkspaceRAGError as e:
            logger.warning("[synthesis] LLM merge failed, joining answers: %s", e.message)
            return fallback_message(results)
        logger.info("[synthesis] OUT merged=%d answers len=%d", len(ok), len(merged))
        return merged or fallback_message(results)

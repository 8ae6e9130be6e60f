"""
Agent LLM: OpenAI (primary) or Hugging Face (fallback).
When OPENAI_API_KEY is set, uses OpenAI chat completions; otherwise uses HF router.

Failures raise LLMError so callers can degrade (raw-content answers,
can_handle=False) instead of acting on an empty string.
"""

import asyncio
import logging
from typing import Protocol

import httpx
from openai import AsyncOpenAI, OpenAIError

from workspace_rag.core.config import (
    AGENT_MAX_TOKENS,
    HF_API_KEY,
    HF_CHAT_URL,
    HF_LLM_MODEL,
    LLM_API_TIMEOUT,
    OPENAI_API_KEY,
    OPENAI_LLM_MODEL,
)
from workspace_rag.core.errors import LLMError

logger = logging.getLogger(__name__)


class LLMClient(Protocol):
    """The capability the agents depend on: complete(prompt) -> text."""

    async def complete(self, prompt: str, max_new_tokens: int = AGENT_MAX_TOKENS) -> str: ...


async def _call_openai(prompt: str, max_new_tokens: int) -> str:
    """Call OpenAI chat completions. Returns generated text ('' when the model says nothing)."""
    client = AsyncOpenAI(api_key=OPENAI_API_KEY, timeout=LLM_API_TIMEOUT)
    try:
        response = await client.chat.completions.create(
            model=OPENAI_LLM_MODEL,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_new_tokens,
        )
    except OpenAIError as e:
        logger.warning("[llm:openai] request failed: %s", e)
        return ""
    finally:
        await client.close()
    msg = response.choices[0].message if response.choices else None
    if not msg or not getattr(msg, "content", None):
        return ""
    out = (msg.content or "").strip()
    logger.info("[llm:openai] OUT response_len=%d", len(out))
    return out


async def _call_hf(prompt: str, max_new_tokens: int) -> str:
    """Call Hugging Face router chat completions. Raises LLMError on any failure."""
    if not HF_API_KEY:
        raise LLMError("No LLM configured: set OPENAI_API_KEY or HF_API_KEY")
    headers = {"Authorization": f"Bearer {HF_API_KEY}", "Content-Type": "application/json"}
    payload = {
        "model": HF_LLM_MODEL,
        "messages": [{"role": "user", "content": prompt}],
        "max_tokens": max_new_tokens,
    }
    try:
        async with httpx.AsyncClient(timeout=LLM_API_TIMEOUT) as client:
            response = await client.post(HF_CHAT_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.warning("[llm:hf] request failed: %s", e)
        raise LLMError(f"HF request failed: {e}") from e
    if response.status_code != 200:
        logger.warning("[llm:hf] HF LLM error %s: %s", response.status_code, response.text[:200])
        raise LLMError(f"HF LLM error {response.status_code}")
    try:
        data = response.json()
    except ValueError as e:
        raise LLMError("HF LLM returned invalid JSON") from e
    choices = data.get("choices") or []
    if choices and isinstance(choices[0], dict):
        msg = choices[0].get("message") or {}
        out = (msg.get("content") or "").strip()
        logger.info("[llm:hf] OUT response_len=%d", len(out))
        if out:
            return out
    raise LLMError("HF LLM returned no content")


async def complete(prompt: str, max_new_tokens: int = AGENT_MAX_TOKENS) -> str:
    """
    Call LLM for text generation. Uses OpenAI when OPENAI_API_KEY is set, else Hugging Face.
    If OpenAI fails or returns empty, falls back to HF. Raises LLMError when neither answers.
    """
    logger.info("[llm] IN  prompt_len=%d max_new_tokens=%d", len(prompt), max_new_tokens)
    logger.debug("[llm] prompt_sample=%r", prompt[:500])
    if OPENAI_API_KEY:
        out = await _call_openai(prompt, max_new_tokens)
        if out:
            return out
        logger.info("[llm] OpenAI returned empty; falling back to Hugging Face")
    return await _call_hf(prompt, max_new_tokens)


class ChatLLM:
    """LLMClient backed by complete(), with a per-call time budget."""

    def __init__(self, timeout: float = LLM_API_TIMEOUT) -> None:
        self.timeout = timeout

    async def complete(self, prompt: str, max_new_tokens: int = AGENT_MAX_TOKENS) -> str:
        try:
            return await asyncio.wait_for(complete(prompt, max_new_tokens), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            logger.warning("[llm] timed out after %.1fs", self.timeout)
            raise LLMError(f"LLM call timed out after {self.timeout:.0f}s") from e

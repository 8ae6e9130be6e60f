"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
Components take these as constructor defaults so tests can pass their own.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


# Notion workspace (from env)
NOTION_API_KEY: str = os.getenv("NOTION_API_KEY", "").strip()
NOTION_API_URL: str = "https://api.notion.com/v1"
NOTION_VERSION: str = "2022-06-28"
NOTION_PAGE_SIZE: int = 100
NOTION_MAX_RETRIES: int = _env_int("NOTION_MAX_RETRIES", 3)

# Depth of nested blocks rendered into a page body
BLOCK_MAX_DEPTH: int = 3

# Content cache (age in seconds; capacity in entries and characters)
CACHE_MAX_AGE_SECONDS: float = _env_float("CACHE_MAX_AGE_SECONDS", 3600.0)
CACHE_MAX_ENTRIES: int = _env_int("CACHE_MAX_ENTRIES", 500)
CACHE_MAX_TOTAL_CHARS: int = _env_int("CACHE_MAX_TOTAL_CHARS", 5_000_000)

# Scheduled index rebuild interval in seconds; 0 or less disables it
INDEX_REFRESH_SECONDS: float = _env_float("INDEX_REFRESH_SECONDS", 3600.0)

# Retrieval (tuning these affects answer quality and workspace call volume)
CANDIDATE_LIMIT: int = 5
RELATED_PAGE_LIMIT: int = 5
PREVIEW_MAX_CHARS: int = 200
CONTENT_PROMPT_MAX_CHARS: int = 4000

# Timeouts (seconds)
NOTION_API_TIMEOUT: float = 30.0
LLM_API_TIMEOUT: float = 60.0
AGENT_TIMEOUT_SECONDS: float = _env_float("AGENT_TIMEOUT_SECONDS", 12.0)
CAN_HANDLE_TIMEOUT: float = 5.0
CLASSIFY_TIMEOUT: float = 4.0
EXTRACT_TERMS_TIMEOUT: float = 5.0

# Hugging Face chat (fallback LLM)
HF_API_KEY: str = os.getenv("HF_API_KEY", "").strip()
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

# OpenAI (agent LLM). When set, the agent uses OpenAI instead of Hugging Face.
OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_LLM_MODEL: str = (
    os.getenv("OPENAI_LLM_MODEL", "gpt-4o-mini").strip() or "gpt-4o-mini"
)

# HF LLM for agent (fallback when OPENAI_API_KEY is not set). Router chat completions require a chat model.
HF_LLM_MODEL: str = (
    os.getenv("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct").strip()
    or "meta-llama/Llama-3.2-3B-Instruct"
)
AGENT_MAX_TOKENS: int = 512

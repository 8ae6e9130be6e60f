"""
Shared fakes for the retrieval and agent tests.

FakeWorkspace and FakeLLM are deterministic stand-ins for Notion and the chat
model; every call is recorded so tests can assert on fetch counts.
"""

import asyncio

import pytest

from workspace_rag.core.errors import FetchError, LLMError, NotFoundError
from workspace_rag.core.models import PageBody, PageEntry, PageType
from workspace_rag.services.content_cache import ContentCache
from workspace_rag.services.page_index import PageIndex
from workspace_rag.services.retrieval_service import TwoStageRetrieval
from workspace_rag.services.structured_search import StructuredSearch

pytest_plugins = ["pytest_asyncio"]

SAMPLE_PAGES = [
    PageEntry(id="hr", title="People Team"),
    PageEntry(id="leave", title="Leave Policy", parent_id="hr"),
    PageEntry(id="onboarding", title="Onboarding Process", parent_id="hr"),
    PageEntry(id="directory", title="Team Directory", type=PageType.DATABASE, parent_id="hr"),
    PageEntry(id="alice", title="Alice Smith", type=PageType.DATABASE_ROW, parent_id="directory"),
    PageEntry(id="finance", title="Finance"),
    PageEntry(id="acct", title="Accounting Process", parent_id="finance"),
]

SAMPLE_BODIES = {
    "hr": "Everything the people team owns.",
    "leave": "This policy grants 25 days of annual leave.\n\nRequest leave in the HR portal.",
    "onboarding": "Step 1: laptop.\nStep 2: accounts.",
    "directory": "Team Directory\n\nEmail and phone for every team member.",
    "alice": "Alice Smith, alice@example.com",
    "finance": "Finance home.",
    "acct": "Month-end close procedure.",
}


class FakeWorkspace:
    """In-memory WorkspaceClient with switchable failures and delays.

    fail_related may be True (FetchError) or an exception instance to raise.
    """

    def __init__(self, pages=None, bodies=None, related=None) -> None:
        self.pages = list(SAMPLE_PAGES if pages is None else pages)
        self.bodies = dict(SAMPLE_BODIES if bodies is None else bodies)
        self.related = dict(related or {})
        self.list_calls = 0
        self.fetch_calls: list[str] = []
        self.related_calls: list[str] = []
        self.fail_list = False
        self.fail_fetch = False
        self.fail_related = False
        self.fetch_delay = 0.0
        self.hang_fetch = False

    async def list_all_pages(self) -> list[PageEntry]:
        self.list_calls += 1
        if self.fail_list:
            raise FetchError("workspace unavailable")
        return list(self.pages)

    async def fetch_page_body(self, page_id: str) -> str:
        self.fetch_calls.append(page_id)
        if self.hang_fetch:
            await asyncio.Event().wait()
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fail_fetch:
            raise FetchError(f"fetch failed for {page_id}")
        if page_id not in self.bodies:
            raise NotFoundError(page_id)
        return self.bodies[page_id]

    async def fetch_page(self, page_id: str) -> PageBody:
        body = await self.fetch_page_body(page_id)
        return PageBody(content=body, related=tuple(self.related.get(page_id, ())))

    async def list_related(self, page_id: str) -> list[str]:
        self.related_calls.append(page_id)
        if isinstance(self.fail_related, Exception):
            raise self.fail_related
        if self.fail_related:
            raise FetchError("related lookup failed")
        return list(self.related.get(page_id, []))


class FakeLLM:
    """LLMClient returning a fixed reply, or reply(prompt) when callable."""

    def __init__(self, reply="", *, fail: bool = False, delay: float = 0.0) -> None:
        self.reply = reply
        self.fail = fail
        self.delay = delay
        self.prompts: list[str] = []

    async def complete(self, prompt: str, max_new_tokens: int = 512) -> str:
        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise LLMError("llm unavailable")
        return self.reply(prompt) if callable(self.reply) else self.reply


class FakeClock:
    def __init__(self, now: float = 1_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def workspace() -> FakeWorkspace:
    return FakeWorkspace()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def retrieval(workspace: FakeWorkspace, clock: FakeClock) -> TwoStageRetrieval:
    """Uninitialized pipeline over the fake workspace; tests await initialize()."""
    index = PageIndex(workspace)
    search = StructuredSearch(index)
    cache = ContentCache(workspace.fetch_page, max_age=3600, clock=clock)
    return TwoStageRetrieval(index, search, cache, workspace)


def scripted_reply(terms: str = "", answer: str = "", classify: str = "NO"):
    """Reply function routing on the prompt kind the knowledge agent sends."""

    def reply(prompt: str) -> str:
        if prompt.startswith("Identify the key terms"):
            return terms
        if prompt.startswith("You are a classifier"):
            return classify
        return answer

    return reply


@pytest.fixture
def make_llm():
    """FakeLLM factory: make_llm(terms=..., answer=..., classify=...) or make_llm(fail=True)."""

    def factory(*, fail: bool = False, delay: float = 0.0, **script) -> FakeLLM:
        return FakeLLM(scripted_reply(**script), fail=fail, delay=delay)

    return factory

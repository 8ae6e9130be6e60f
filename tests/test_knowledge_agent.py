"""
Tests for KnowledgeAgent: applicability checks and the query graph with a fake LLM.
"""

import asyncio

import pytest

from workspace_rag.agent.knowledge_agent import FALLBACK_SOURCE, KnowledgeAgent
from workspace_rag.core.errors import NoIndexError
from workspace_rag.core.models import ErrorKind
from workspace_rag.services.agent_service import AgentService

HOUR = 3600.0


class TestCanHandle:
    @pytest.mark.asyncio
    async def test_keyword_query_skips_llm(self, retrieval, make_llm) -> None:
        llm = make_llm()
        agent = KnowledgeAgent(retrieval, llm)
        await retrieval.initialize()
        assert await agent.can_handle("What is our leave policy?")
        assert llm.prompts == []

    @pytest.mark.asyncio
    async def test_stage_one_hit_claims_without_llm(self, retrieval, workspace, make_llm) -> None:
        llm = make_llm()
        agent = KnowledgeAgent(retrieval, llm)
        await retrieval.initialize()
        assert await agent.can_handle("Alice Smith")
        assert llm.prompts == []
        assert workspace.fetch_calls == []

    @pytest.mark.asyncio
    async def test_llm_decides_when_nothing_matches(self, retrieval, make_llm) -> None:
        await retrieval.initialize()
        assert not await KnowledgeAgent(retrieval, make_llm(classify="NO")).can_handle("Hi there")
        assert await KnowledgeAgent(retrieval, make_llm(classify="yes.")).can_handle("Hi there")

    @pytest.mark.asyncio
    async def test_llm_failure_declines(self, retrieval, make_llm) -> None:
        await retrieval.initialize()
        assert not await KnowledgeAgent(retrieval, make_llm(fail=True)).can_handle("Hi there")

    @pytest.mark.asyncio
    async def test_inactive_or_blank_declines(self, retrieval, make_llm) -> None:
        await retrieval.initialize()
        agent = KnowledgeAgent(retrieval, make_llm(classify="YES"))
        assert not await agent.can_handle("   ")
        agent.is_active = False
        assert not await agent.can_handle("leave policy")

    @pytest.mark.asyncio
    async def test_uninitialized_index_declines(self, retrieval, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(classify="YES"))
        assert not await agent.can_handle("Alice Smith")


class TestProcessQuery:
    @pytest.mark.asyncio
    async def test_answers_from_top_candidate(self, retrieval, workspace, make_llm) -> None:
        llm = make_llm(terms="Search terms: leave policy", answer="You get 25 days of annual leave.")
        agent = KnowledgeAgent(retrieval, llm)
        await retrieval.initialize()
        response = await agent.process_query("How many days off do I get per year?")
        assert response.success
        assert response.message == "You get 25 days of annual leave."
        assert response.source == agent.name
        assert workspace.fetch_calls == ["leave"]
        compose_prompt = llm.prompts[-1]
        assert "Title: Leave Policy" in compose_prompt
        assert "Path: People Team > Leave Policy" in compose_prompt
        assert "Type: policy" in compose_prompt

    @pytest.mark.asyncio
    async def test_llm_failure_returns_raw_content(self, retrieval, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(fail=True))
        await retrieval.initialize()
        response = await agent.process_query("leave policy")
        assert response.success
        assert response.source == FALLBACK_SOURCE
        assert "25 days of annual leave" in response.message

    @pytest.mark.asyncio
    async def test_no_candidates(self, retrieval, workspace, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(terms="quarterly revenue"))
        await retrieval.initialize()
        response = await agent.process_query("What was quarterly revenue?")
        assert not response.success
        assert "couldn't find any information" in response.message
        assert "quarterly revenue" in response.message
        assert workspace.fetch_calls == []

    @pytest.mark.asyncio
    async def test_unhelpful_terms_fall_back_to_raw_query(self, retrieval, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(terms="zzzz", answer="Month-end close."))
        await retrieval.initialize()
        response = await agent.process_query("accounting process")
        assert response.success
        assert response.message == "Month-end close."

    @pytest.mark.asyncio
    async def test_fetch_failure_reports_fetch_error(self, retrieval, workspace, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(terms="leave policy", answer="unused"))
        await retrieval.initialize()
        workspace.fail_fetch = True
        response = await agent.process_query("leave policy")
        assert not response.success
        assert response.error == ErrorKind.FETCH
        assert "Leave Policy" in response.message

    @pytest.mark.asyncio
    async def test_stale_body_still_answers_tagged_cached(self, retrieval, workspace, clock, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm(terms="leave policy", answer="You get 25 days."))
        await retrieval.initialize()
        first = await agent.process_query("leave policy")
        assert first.source == agent.name
        clock.advance(2 * HOUR)
        workspace.fail_fetch = True
        response = await agent.process_query("leave policy")
        assert response.success
        assert response.message == "You get 25 days."
        assert response.source == f"{agent.name} (cached)"
        assert workspace.fetch_calls == ["leave", "leave"]

    @pytest.mark.asyncio
    async def test_vanished_page_retries_stage_one_once(self, retrieval, workspace, make_llm) -> None:
        del workspace.bodies["leave"]
        agent = KnowledgeAgent(retrieval, make_llm(terms="leave policy", answer="unused"))
        await retrieval.initialize()
        response = await agent.process_query("leave policy")
        assert not response.success
        assert response.error == ErrorKind.NOT_FOUND
        assert workspace.fetch_calls == ["leave", "leave"]

    @pytest.mark.asyncio
    async def test_long_content_is_truncated_in_prompt(self, retrieval, workspace, make_llm) -> None:
        workspace.bodies["leave"] = "policy " * 2000
        llm = make_llm(terms="leave policy", answer="ok")
        agent = KnowledgeAgent(retrieval, llm)
        await retrieval.initialize()
        await agent.process_query("leave policy")
        assert "(content truncated)" in llm.prompts[-1]

    @pytest.mark.asyncio
    async def test_requires_initialized_retrieval(self, retrieval, make_llm) -> None:
        agent = KnowledgeAgent(retrieval, make_llm())
        with pytest.raises(NoIndexError):
            await agent.process_query("leave policy")


@pytest.mark.asyncio
async def test_extract_search_terms_fallbacks(retrieval, make_llm) -> None:
    assert await KnowledgeAgent(retrieval, make_llm(fail=True)).extract_search_terms("raw q") == "raw q"
    assert await KnowledgeAgent(retrieval, make_llm(terms="")).extract_search_terms("raw q") == "raw q"
    assert await KnowledgeAgent(retrieval, make_llm(terms="a OR b")).extract_search_terms("raw q") == "raw q"
    assert await KnowledgeAgent(retrieval, make_llm(terms='"expense report"')).extract_search_terms("raw q") == "expense report"


@pytest.mark.asyncio
async def test_dispatcher_timeout_during_fetch_releases_cache_slot(retrieval, workspace, make_llm) -> None:
    agent = KnowledgeAgent(retrieval, make_llm(terms="leave policy", answer="unused"))
    service = AgentService(agent_timeout=0.2)
    service.register_agent(agent)
    await retrieval.initialize()
    workspace.hang_fetch = True
    results = await service.dispatch("What is the leave policy?")
    assert [r.error for r in results] == [ErrorKind.TIMEOUT]
    assert results[0].message == "Workspace Knowledge Base did not answer within 0.2 seconds."
    await asyncio.sleep(0)
    assert retrieval.cache.stats()["in_flight"] == 0
    assert workspace.fetch_calls == ["leave"]

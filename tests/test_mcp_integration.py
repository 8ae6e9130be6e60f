"""
Integration tests for the HTTP and MCP tool endpoints.

The app is built around the fake workspace and LLM so tests do not require
Notion or a model API.
"""

import time
from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient

from workspace_rag.api.state import build_app_state
from workspace_rag.core.errors import IndexBuildError
from workspace_rag.main import create_app


@pytest.fixture
def state(workspace, make_llm):
    llm = make_llm(terms="leave policy", answer="You get 25 days.", classify="NO")
    return build_app_state(workspace, llm)


@pytest.fixture
def client(state):
    with TestClient(create_app(state)) as test_client:
        yield test_client


# --- system ---

def test_health_reports_index(client: TestClient) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"ok": True, "index_ready": True, "index_version": 1}


def test_agents_lists_knowledge_agent(client: TestClient) -> None:
    response = client.get("/agents")
    assert response.status_code == 200
    agents = response.json()["agents"]
    assert [a["id"] for a in agents] == ["knowledge"]
    assert agents[0]["is_active"] is True


# --- query ---

def test_query_returns_answer_and_results(client: TestClient) -> None:
    response = client.post("/query", json={"question": "What is the leave policy?"})
    assert response.status_code == 200
    data = response.json()
    assert data["answer"] == "You get 25 days."
    assert data["success"] is True
    assert data["sources"] == ["Workspace Knowledge Base"]
    assert data["results"][0]["agent_id"] == "knowledge"
    assert data["results"][0]["error"] is None


def test_query_no_capable_agent(client: TestClient) -> None:
    response = client.post("/query", json={"question": "Good morning"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["results"][0]["error"] == "no_capable_agent"


def test_query_validation(client: TestClient) -> None:
    assert client.post("/query", json={"question": ""}).status_code == 422
    assert client.post("/query", json={"question": "   "}).status_code == 400


def test_agent_query_skips_can_handle(client: TestClient, state) -> None:
    with patch.object(state.dispatcher.get_agents()[0], "can_handle", AsyncMock(return_value=False)) as claim:
        response = client.post("/agents/knowledge/query", json={"question": "leave policy"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["answer"] == "You get 25 days."
    assert [r["agent_id"] for r in data["results"]] == ["knowledge"]
    claim.assert_not_called()


def test_query_body_agent_id_targets_one_agent(client: TestClient) -> None:
    response = client.post("/query", json={"question": "Good morning", "agent_id": "knowledge"})
    assert response.status_code == 200
    assert response.json()["results"][0]["agent_id"] == "knowledge"


def test_agent_query_inactive_agent(client: TestClient, state) -> None:
    state.dispatcher.get_agents()[0].is_active = False
    response = client.post("/agents/knowledge/query", json={"question": "leave policy"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is False
    assert data["answer"] == "Agent Workspace Knowledge Base is not active"


def test_agent_query_unknown_agent_returns_404(client: TestClient) -> None:
    response = client.post("/agents/nobody/query", json={"question": "leave policy"})
    assert response.status_code == 404


def test_query_before_index_returns_503(workspace, state) -> None:
    workspace.fail_list = True
    with TestClient(create_app(state)) as client:
        assert client.get("/health").json()["index_ready"] is False
        response = client.post("/query", json={"question": "leave policy"})
        assert response.status_code == 503
        assert client.post("/mcp/tools/search_pages", json={"query": "leave"}).status_code == 503


# --- index ---

def test_refresh_rebuilds_and_clears_cache(client: TestClient, workspace) -> None:
    client.post("/mcp/tools/get_page", json={"id": "leave"})
    assert client.get("/index/stats").json()["cache"]["entries"] == 1
    response = client.post("/index/refresh")
    assert response.status_code == 200
    data = response.json()
    assert data["index"]["version"] == 2
    assert data["index"]["total_pages"] == 7
    assert data["cache"]["entries"] == 0


def test_refresh_failure_returns_503_and_keeps_index(client: TestClient, workspace) -> None:
    workspace.fail_list = True
    response = client.post("/index/refresh")
    assert response.status_code == 503
    assert client.get("/index/stats").json()["index"]["version"] == 1


def test_refresh_unexpected_build_error_maps_to_503(client: TestClient, state) -> None:
    with patch.object(state.retrieval, "refresh", AsyncMock(side_effect=IndexBuildError("boom"))):
        response = client.post("/index/refresh")
    assert response.status_code == 503


def wait_until(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_scheduled_refresh_rebuilds_and_survives_failures(state, workspace) -> None:
    app = create_app(state, refresh_interval=0.05)
    with TestClient(app):
        assert wait_until(lambda: state.index.version >= 2)
        workspace.fail_list = True
        failed_from = workspace.list_calls
        assert wait_until(lambda: workspace.list_calls >= failed_from + 2)
        assert not app.state.refresher.done()
        version = state.index.version
        workspace.fail_list = False
        assert wait_until(lambda: state.index.version > version)
    assert app.state.refresher.cancelled()


def test_scheduled_refresh_disabled(state) -> None:
    app = create_app(state, refresh_interval=0)
    with TestClient(app) as client:
        assert app.state.refresher is None
        assert client.get("/health").json()["index_version"] == 1


# --- MCP tools ---

def test_mcp_tool_discovery(client: TestClient) -> None:
    names = [t["name"] for t in client.get("/mcp/tools").json()["tools"]]
    assert names == ["search_pages", "get_page", "index_stats"]


def test_mcp_search_pages_returns_candidates(client: TestClient, workspace) -> None:
    response = client.post("/mcp/tools/search_pages", json={"query": "leave policy", "limit": 2})
    assert response.status_code == 200
    results = response.json()["results"]
    assert 1 <= len(results) <= 2
    assert results[0]["id"] == "leave"
    assert results[0]["path"] == ["People Team"]
    assert results[0]["preview"] == "People Team > Leave Policy (document)"
    assert results[0]["score"] > 0
    assert workspace.fetch_calls == []


def test_mcp_search_pages_empty_query_returns_empty_results(client: TestClient, state) -> None:
    with patch.object(state.search, "search") as mock_search:
        response = client.post("/mcp/tools/search_pages", json={"query": ""})
    assert response.status_code == 200
    assert response.json() == {"results": []}
    mock_search.assert_not_called()


def test_mcp_search_pages_missing_body_returns_422(client: TestClient) -> None:
    response = client.post("/mcp/tools/search_pages")
    assert response.status_code == 422


def test_mcp_get_page_returns_page(client: TestClient) -> None:
    response = client.post("/mcp/tools/get_page", json={"id": "leave"})
    assert response.status_code == 200
    page = response.json()["page"]
    assert page["title"] == "Leave Policy"
    assert page["document_type"] == "policy"
    assert page["stale"] is False
    assert [p["id"] for p in page["related_pages"]] == ["onboarding", "directory"]


def test_mcp_get_page_not_found_returns_null(client: TestClient) -> None:
    response = client.post("/mcp/tools/get_page", json={"id": "missing"})
    assert response.status_code == 200
    assert response.json() == {"page": None}


def test_mcp_get_page_fetch_failure_returns_502(client: TestClient, workspace) -> None:
    workspace.fail_fetch = True
    response = client.post("/mcp/tools/get_page", json={"id": "acct"})
    assert response.status_code == 502


def test_mcp_index_stats(client: TestClient) -> None:
    response = client.post("/mcp/tools/index_stats", json={})
    assert response.status_code == 200
    assert response.json()["index"]["pages_by_type"] == {"document": 5, "database": 1, "database-row": 1}

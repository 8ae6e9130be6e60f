"""
Unit tests for StructuredSearch ranking.
"""

import pytest

from workspace_rag.core.errors import NoIndexError
from workspace_rag.core.models import PageEntry, PageType
from workspace_rag.services.page_index import PageIndex
from workspace_rag.services.structured_search import StructuredSearch


async def make_search(workspace, pages) -> StructuredSearch:
    workspace.pages = pages
    index = PageIndex(workspace)
    await index.initialize()
    search = StructuredSearch(index)
    search.initialize()
    return search


@pytest.mark.asyncio
async def test_title_overlap_ranks_first(workspace) -> None:
    search = await make_search(
        workspace,
        [
            PageEntry(id="p1", title="Accounting Process", path=("Finance",)),
            PageEntry(id="p2", title="HR Policy", path=("People",)),
        ]
    )
    results = search.search("accounting process")
    ids = [r.id for r in results]
    assert ids[0] == "p1"
    assert "p2" not in ids
    assert results[0].preview == "Finance > Accounting Process (document)"


@pytest.mark.asyncio
async def test_results_bounded_and_positive(workspace) -> None:
    pages = [PageEntry(id=f"p{i}", title=f"Travel Guide {i}") for i in range(12)]
    search = await make_search(workspace, pages)
    results = search.search("travel", limit=5)
    assert len(results) == 5
    assert all(r.score > 0 for r in results)
    assert search.search("travel", limit=0) == []


@pytest.mark.asyncio
async def test_no_overlap_returns_nothing(workspace) -> None:
    search = await make_search(workspace, [PageEntry(id="a", title="Leave Policy")])
    assert search.search("quarterly revenue") == []
    assert search.search("") == []
    assert search.search("   ") == []


@pytest.mark.asyncio
async def test_path_match_scores_below_title_match(workspace) -> None:
    search = await make_search(
        workspace,
        [
            PageEntry(id="root", title="Benefits"),
            PageEntry(id="child", title="Dental", parent_id="root"),
            PageEntry(id="other", title="Benefits Overview"),
        ]
    )
    ids = [r.id for r in search.search("benefits")]
    assert ids.index("root") < ids.index("child")
    assert ids.index("other") < ids.index("child")


@pytest.mark.asyncio
async def test_partial_token_match(workspace) -> None:
    search = await make_search(workspace, [PageEntry(id="a", title="Onboarding Checklist")])
    assert [r.id for r in search.search("onboard")] == ["a"]


@pytest.mark.asyncio
async def test_document_outranks_database_row_with_same_title(workspace) -> None:
    search = await make_search(
        workspace,
        [
            PageEntry(id="row", title="Expense Report", type=PageType.DATABASE_ROW),
            PageEntry(id="doc", title="Expense Report"),
        ]
    )
    assert [r.id for r in search.search("expense report")] == ["doc", "row"]


@pytest.mark.asyncio
async def test_equal_scores_tie_break_on_id(workspace) -> None:
    search = await make_search(workspace, [PageEntry(id="b", title="Holiday"), PageEntry(id="a", title="Holiday")])
    results = search.search("holiday")
    assert [r.id for r in results] == ["a", "b"]
    assert results[0].score == results[1].score


@pytest.mark.asyncio
async def test_stop_word_only_query_matches_whole_phrase(workspace) -> None:
    search = await make_search(workspace, [PageEntry(id="a", title="Who We Are"), PageEntry(id="b", title="Are")])
    assert [r.id for r in search.search("who we are")] == ["a"]


@pytest.mark.asyncio
async def test_non_latin_titles_are_searchable(workspace) -> None:
    search = await make_search(
        workspace,
        [
            PageEntry(id="jp", title="人事規程"),
            PageEntry(id="ru", title="Политика отпусков"),
            PageEntry(id="de", title="Urlaubsübersicht"),
        ]
    )
    assert [r.id for r in search.search("人事規程")] == ["jp"]
    assert [r.id for r in search.search("ПОЛИТИКА")] == ["ru"]
    assert [r.id for r in search.search("urlaubsübersicht")] == ["de"]


def test_search_before_initialize_raises(workspace) -> None:
    search = StructuredSearch(PageIndex(workspace))
    with pytest.raises(NoIndexError):
        search.search("anything")
    with pytest.raises(NoIndexError):
        search.initialize()


@pytest.mark.asyncio
async def test_tables_follow_explicit_reinitialize(workspace) -> None:
    index = PageIndex(workspace)
    await index.initialize()
    search = StructuredSearch(index)
    search.initialize()
    workspace.pages = [PageEntry(id="fresh", title="Leave Calendar")]
    await index.initialize()
    assert search.index_version == 1
    search.initialize()
    assert search.index_version == 2
    assert [r.id for r in search.search("leave")] == ["fresh"]

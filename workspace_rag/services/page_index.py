"""
Page index: flat directory of every document in the workspace.

Responsibility: Enumerate the workspace once (or on explicit refresh), resolve
each entry's ancestor path and publish the result as an immutable snapshot.
Readers capture the current snapshot reference and never see a half-built one.
"""

import asyncio
import logging
import time
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, replace
from types import MappingProxyType

from workspace_rag.core.errors import IndexBuildError, WorkspaceRAGError
from workspace_rag.core.models import PageEntry, PageType
from workspace_rag.services.workspace_client import WorkspaceClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IndexSnapshot:
    """One published build of the index. Never mutated after construction."""

    version: int
    built_at: float
    entries: Mapping[str, PageEntry]
    children: Mapping[str, tuple[str, ...]]

    def __len__(self) -> int:
        return len(self.entries)


EMPTY_SNAPSHOT = IndexSnapshot(
    version=0, built_at=0.0, entries=MappingProxyType({}), children=MappingProxyType({})
)


class _TypeView:
    """Lazy, restartable iteration over one snapshot's entries of a given type."""

    def __init__(self, snapshot: IndexSnapshot, page_type: PageType) -> None:
        self._snapshot = snapshot
        self._type = page_type

    def __iter__(self) -> Iterator[PageEntry]:
        return (e for e in self._snapshot.entries.values() if e.type == self._type)


def build_snapshot(raw_entries: list[PageEntry], version: int) -> IndexSnapshot:
    """
    Normalize provider entries into a consistent snapshot.

    Duplicate ids keep their first occurrence. Parents that do not resolve
    inside the snapshot are cleared, and parent cycles are cut, so every
    remaining parent_id points at another entry of this snapshot.
    """
    by_id: dict[str, PageEntry] = {}
    for entry in raw_entries:
        if not entry.id:
            logger.warning("[page_index:build] skipping entry without id title=%r", entry.title)
            continue
        if entry.id in by_id:
            logger.warning("[page_index:build] duplicate id=%s kept first occurrence", entry.id)
            continue
        by_id[entry.id] = entry

    for page_id, entry in list(by_id.items()):
        if entry.parent_id is not None and (entry.parent_id not in by_id or entry.parent_id == page_id):
            logger.info("[page_index:build] id=%s parent=%s not indexed, treating as root", page_id, entry.parent_id)
            by_id[page_id] = replace(entry, parent_id=None)

    # Cut cycles: walk each chain and detach the entry that closes the loop.
    for page_id in list(by_id):
        seen: set[str] = set()
        current = page_id
        while current is not None and current not in seen:
            seen.add(current)
            parent = by_id[current].parent_id
            if parent in seen:
                logger.warning("[page_index:build] parent cycle at id=%s, detaching", current)
                by_id[current] = replace(by_id[current], parent_id=None)
                break
            current = parent

    resolved: dict[str, PageEntry] = {}
    children: dict[str, list[str]] = {}
    for page_id, entry in by_id.items():
        resolved[page_id] = replace(entry, path=_ancestor_titles(entry, by_id))
        if entry.parent_id is not None:
            children.setdefault(entry.parent_id, []).append(page_id)

    return IndexSnapshot(
        version=version,
        built_at=time.time(),
        entries=MappingProxyType(resolved),
        children=MappingProxyType({k: tuple(v) for k, v in children.items()}),
    )


def _ancestor_titles(entry: PageEntry, by_id: dict[str, PageEntry]) -> tuple[str, ...]:
    if entry.parent_id is None:
        return tuple(entry.path)
    titles: list[str] = []
    current = by_id.get(entry.parent_id)
    while current is not None:
        titles.append(current.title)
        if current.parent_id is None:
            titles.extend(reversed(current.path))
            break
        current = by_id.get(current.parent_id)
    return tuple(reversed(titles))


class PageIndex:
    """Owns the current IndexSnapshot and serializes rebuilds."""

    def __init__(self, workspace: WorkspaceClient) -> None:
        self.workspace = workspace
        self._snapshot: IndexSnapshot = EMPTY_SNAPSHOT
        self._build_lock = asyncio.Lock()

    @property
    def snapshot(self) -> IndexSnapshot:
        return self._snapshot

    @property
    def version(self) -> int:
        return self._snapshot.version

    @property
    def is_initialized(self) -> bool:
        return self._snapshot.version > 0

    async def initialize(self) -> IndexSnapshot:
        """
        Traverse the workspace and publish a fresh snapshot.

        All-or-nothing: any provider failure raises IndexBuildError and the
        previous snapshot stays live. Concurrent calls run one after another.
        """
        async with self._build_lock:
            next_version = self._snapshot.version + 1
            logger.info("[page_index:initialize] IN  building version=%d", next_version)
            started = time.monotonic()
            try:
                raw_entries = await self.workspace.list_all_pages()
            except WorkspaceRAGError as e:
                logger.warning("[page_index:initialize] traversal failed: %s", e.message)
                raise IndexBuildError(f"Workspace traversal failed: {e.message}") from e
            except Exception as e:
                logger.exception("[page_index:initialize] traversal crashed")
                raise IndexBuildError(f"Workspace traversal failed: {e}") from e
            snapshot = build_snapshot(list(raw_entries), next_version)
            self._snapshot = snapshot
            logger.info(
                "[page_index:initialize] OUT version=%d pages=%d elapsed=%.2fs",
                snapshot.version, len(snapshot), time.monotonic() - started,
            )
            return snapshot

    def lookup(self, page_id: str) -> PageEntry | None:
        return self._snapshot.entries.get(page_id)

    def by_type(self, page_type: PageType) -> _TypeView:
        return _TypeView(self._snapshot, page_type)

    def children(self, page_id: str) -> list[PageEntry]:
        snapshot = self._snapshot
        return [snapshot.entries[c] for c in snapshot.children.get(page_id, ())]

    def path_to(self, page_id: str) -> list[PageEntry]:
        """Ancestors root first, ending with the page itself; empty when unknown."""
        snapshot = self._snapshot
        chain: list[PageEntry] = []
        current = snapshot.entries.get(page_id)
        while current is not None:
            chain.append(current)
            current = snapshot.entries.get(current.parent_id) if current.parent_id else None
        return list(reversed(chain))

    def stats(self) -> dict:
        snapshot = self._snapshot
        per_type = {t.value: 0 for t in PageType}
        for entry in snapshot.entries.values():
            per_type[entry.type.value] += 1
        return {
            "version": snapshot.version,
            "built_at": snapshot.built_at,
            "total_pages": len(snapshot),
            "pages_by_type": per_type,
        }

"""
Structured search: lexical candidate ranking over the page index.

Responsibility: Turn a free-text query into a short, ranked list of candidate
pages using titles, ancestor paths and page type only. No page bodies and no
ML ranking; the LLM pass downstream refines what this funnel returns.
"""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import MappingProxyType

from workspace_rag.core.config import CANDIDATE_LIMIT, PREVIEW_MAX_CHARS
from workspace_rag.core.errors import NoIndexError
from workspace_rag.core.models import CandidateSource, PageEntry, PageType
from workspace_rag.services.page_index import IndexSnapshot, PageIndex
from workspace_rag.services.text_processing import build_preview, normalize_phrase, tokenize

logger = logging.getLogger(__name__)

PHRASE_WEIGHT = 5.0
TITLE_TOKEN_WEIGHT = 2.0
PARTIAL_TOKEN_WEIGHT = 1.0
PATH_TOKEN_WEIGHT = 0.5
MIN_PARTIAL_LEN = 3
DEPTH_PENALTY = 0.1

TYPE_WEIGHTS: dict[PageType, float] = {
    PageType.DOCUMENT: 1.0,
    PageType.DATABASE: 0.9,
    PageType.DATABASE_ROW: 0.75,
}


@dataclass(frozen=True)
class _SearchTables:
    """Lookup structures for one index snapshot, swapped as a unit."""

    snapshot: IndexSnapshot
    title_tokens: Mapping[str, frozenset[str]]
    path_tokens: Mapping[str, frozenset[str]]
    title_phrases: Mapping[str, str]
    entry_title_tokens: Mapping[str, frozenset[str]]


def _build_tables(snapshot: IndexSnapshot) -> _SearchTables:
    title_map: dict[str, set[str]] = {}
    path_map: dict[str, set[str]] = {}
    phrases: dict[str, str] = {}
    per_entry: dict[str, frozenset[str]] = {}
    for page_id, entry in snapshot.entries.items():
        tokens = frozenset(tokenize(entry.title))
        per_entry[page_id] = tokens
        phrases[page_id] = normalize_phrase(entry.title)
        for token in tokens:
            title_map.setdefault(token, set()).add(page_id)
        for token in set(tokenize(" ".join(entry.path))):
            path_map.setdefault(token, set()).add(page_id)
    return _SearchTables(
        snapshot=snapshot,
        title_tokens=MappingProxyType({k: frozenset(v) for k, v in title_map.items()}),
        path_tokens=MappingProxyType({k: frozenset(v) for k, v in path_map.items()}),
        title_phrases=MappingProxyType(phrases),
        entry_title_tokens=MappingProxyType(per_entry),
    )


def structural_weight(entry: PageEntry) -> float:
    """Type and depth multiplier; always positive so overlap decides inclusion."""
    return TYPE_WEIGHTS.get(entry.type, 0.75) / (1.0 + DEPTH_PENALTY * entry.depth)


class StructuredSearch:
    """Ranks index entries for a query. Re-run initialize() after each index rebuild."""

    def __init__(self, index: PageIndex, *, preview_chars: int = PREVIEW_MAX_CHARS) -> None:
        self.index = index
        self.preview_chars = preview_chars
        self._tables: _SearchTables | None = None

    @property
    def is_initialized(self) -> bool:
        return self._tables is not None

    @property
    def index_version(self) -> int:
        return self._tables.snapshot.version if self._tables else 0

    def initialize(self) -> None:
        if not self.index.is_initialized:
            raise NoIndexError("Page index has not been built; call PageIndex.initialize() first")
        tables = _build_tables(self.index.snapshot)
        self._tables = tables
        logger.info(
            "[search:initialize] version=%d pages=%d title_tokens=%d path_tokens=%d",
            tables.snapshot.version, len(tables.snapshot), len(tables.title_tokens), len(tables.path_tokens),
        )

    def search(self, query: str, limit: int = CANDIDATE_LIMIT) -> list[CandidateSource]:
        tables = self._tables
        if tables is None:
            raise NoIndexError("Structured search used before initialize()")
        logger.info("[search:search] IN  query=%r limit=%d", query, limit)
        if limit <= 0:
            return []
        query_tokens = list(dict.fromkeys(tokenize(query)))
        phrase = normalize_phrase(query)
        if not query_tokens and not phrase:
            logger.info("[search:search] OUT empty query, returning []")
            return []

        lexical = self._lexical_scores(tables, query_tokens, phrase)
        ranked: list[tuple[float, int, str]] = []
        for page_id, raw in lexical.items():
            if raw <= 0:
                continue
            entry = tables.snapshot.entries[page_id]
            ranked.append((raw * structural_weight(entry), entry.depth, page_id))
        ranked.sort(key=lambda r: (-r[0], r[1], r[2]))

        results: list[CandidateSource] = []
        for score, _, page_id in ranked[:limit]:
            entry = tables.snapshot.entries[page_id]
            results.append(
                CandidateSource(
                    id=entry.id,
                    title=entry.title,
                    path=entry.path,
                    preview=build_preview(entry.title, entry.path, entry.type.value, self.preview_chars),
                    score=round(score, 4),
                    url=entry.url,
                )
            )
        logger.info(
            "[search:search] OUT candidates=%d of matched=%d top=%s",
            len(results), len(ranked), [(r.title, r.score) for r in results[:3]],
        )
        return results

    def _lexical_scores(
        self, tables: _SearchTables, query_tokens: list[str], phrase: str
    ) -> dict[str, float]:
        scores: dict[str, float] = {}

        def add(page_ids, weight: float) -> None:
            for page_id in page_ids:
                scores[page_id] = scores.get(page_id, 0.0) + weight

        for token in query_tokens:
            exact = tables.title_tokens.get(token, frozenset())
            add(exact, TITLE_TOKEN_WEIGHT)
            if len(token) >= MIN_PARTIAL_LEN:
                partial: set[str] = set()
                for vocab_token, ids in tables.title_tokens.items():
                    if vocab_token == token:
                        continue
                    if token in vocab_token or (len(vocab_token) >= MIN_PARTIAL_LEN and vocab_token in token):
                        partial.update(ids)
                add(partial - exact, PARTIAL_TOKEN_WEIGHT)
            add(tables.path_tokens.get(token, frozenset()), PATH_TOKEN_WEIGHT)

        # Whole-phrase bonus only for entries already matched on some token.
        if phrase and len(query_tokens) > 1:
            for page_id in list(scores):
                if phrase in tables.title_phrases[page_id]:
                    scores[page_id] += PHRASE_WEIGHT
        elif phrase and not query_tokens:
            for page_id, title_phrase in tables.title_phrases.items():
                if title_phrase and phrase in title_phrase:
                    scores[page_id] = scores.get(page_id, 0.0) + PHRASE_WEIGHT
        return scores

"""
Core data records shared by the index, cache, retrieval and agent layers.

All records are frozen: an index snapshot is rebuilt wholesale, never edited
in place, and per-query records are produced once and handed on.
"""

from dataclasses import dataclass, field
from enum import Enum


class PageType(str, Enum):
    DOCUMENT = "document"
    DATABASE = "database"
    DATABASE_ROW = "database-row"


class DocumentType(str, Enum):
    """Coarse content classification used to frame the answer prompt."""

    POLICY = "policy"
    PROCEDURE = "procedure"
    CONTACT_LIST = "contact-list"
    FORM = "form"
    GENERAL_INFO = "general-info"


class ErrorKind(str, Enum):
    INDEX_BUILD = "index_build"
    FETCH = "fetch"
    NOT_FOUND = "not_found"
    LLM = "llm"
    TIMEOUT = "timeout"
    NO_INDEX = "no_index"
    NO_CAPABLE_AGENT = "no_capable_agent"
    INTERNAL = "internal"


@dataclass(frozen=True)
class PageEntry:
    """One document of the workspace as seen by the index.

    path holds ancestor titles, root first, excluding the entry's own title.
    """

    id: str
    title: str
    path: tuple[str, ...] = ()
    type: PageType = PageType.DOCUMENT
    parent_id: str | None = None
    url: str | None = None

    @property
    def depth(self) -> int:
        return len(self.path)


@dataclass(frozen=True)
class CandidateSource:
    """Stage 1 result: index-derived only, never carries the page body."""

    id: str
    title: str
    path: tuple[str, ...]
    preview: str
    score: float
    url: str | None = None


@dataclass(frozen=True)
class RelatedPage:
    id: str
    title: str


@dataclass(frozen=True)
class DetailedContent:
    """Stage 2 result for a single page."""

    id: str
    title: str
    path: tuple[str, ...]
    document_type: DocumentType
    content: str
    related_pages: tuple[RelatedPage, ...] = ()
    stale: bool = False
    url: str | None = None


@dataclass(frozen=True)
class PageBody:
    """A rendered body plus the page ids it links to, read in one walk.

    related is None when the provider did not collect links with the body.
    """

    content: str
    related: tuple[str, ...] | None = None


@dataclass(frozen=True)
class CacheEntry:
    id: str
    content: str
    fetched_at: float
    size_hint: int
    related: tuple[str, ...] | None = None


@dataclass(frozen=True)
class CachedContent:
    """What the content cache hands out: the body plus its freshness."""

    id: str
    content: str
    fetched_at: float
    stale: bool = False
    related: tuple[str, ...] | None = None


@dataclass(frozen=True)
class AgentResponse:
    """Return value of BaseAgent.process_query."""

    success: bool
    message: str | None = None
    source: str | None = None
    error: ErrorKind | None = None


@dataclass(frozen=True)
class AgentResult:
    """One agent's outcome for one dispatched query."""

    agent_id: str
    success: bool
    message: str | None = None
    source: str | None = None
    error: ErrorKind | None = None


@dataclass(frozen=True)
class RoutedResponse:
    """Final answer after dispatch and synthesis."""

    message: str
    success: bool
    sources: list[str] = field(default_factory=list)
    results: list[AgentResult] = field(default_factory=list)

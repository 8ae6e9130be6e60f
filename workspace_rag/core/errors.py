"""
Application errors for the retrieval pipeline.

Every error carries an ErrorKind so the dispatcher can record what went wrong
in an AgentResult without inspecting exception types. Use
ServiceUnavailableError at the HTTP edge when the pipeline cannot serve at all.
"""

from workspace_rag.core.models import ErrorKind


class WorkspaceRAGError(Exception):
    """Base class for pipeline errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class IndexBuildError(WorkspaceRAGError):
    """Raised when a full workspace traversal could not complete. Nothing is published."""

    kind = ErrorKind.INDEX_BUILD


class FetchError(WorkspaceRAGError):
    """Raised when a workspace call fails (transient, retryable)."""

    kind = ErrorKind.FETCH


class NotFoundError(WorkspaceRAGError):
    """Raised when an id is absent from the current index snapshot or the workspace."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, page_id: str, message: str | None = None) -> None:
        self.page_id = page_id
        super().__init__(message or f"Page {page_id} not found")


class LLMError(WorkspaceRAGError):
    """Raised when the language model call fails or returns nothing."""

    kind = ErrorKind.LLM


class AgentTimeoutError(WorkspaceRAGError):
    """Raised when an agent or LLM call exceeds its time budget."""

    kind = ErrorKind.TIMEOUT


class NoIndexError(WorkspaceRAGError):
    """Raised when retrieval is used before the index and search were initialized."""

    kind = ErrorKind.NO_INDEX


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. workspace API, index) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

"""
Base agent contract shared by every pluggable agent.

The dispatcher only calls can_handle, process_query and get_info.
"""

from abc import ABC, abstractmethod
from typing import Any

from workspace_rag.core.models import AgentResponse


class BaseAgent(ABC):
    def __init__(self, agent_id: str, name: str, config: dict[str, Any] | None = None) -> None:
        self.id = agent_id
        self.name = name
        self.config = config or {}
        self.is_active = True

    @abstractmethod
    async def can_handle(self, query: str) -> bool:
        """Fast applicability check. Return False rather than raising on ambiguous input."""

    @abstractmethod
    async def process_query(self, query: str) -> AgentResponse:
        """Answer the query; degrade to a partial answer where possible."""

    def get_info(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "is_active": self.is_active}

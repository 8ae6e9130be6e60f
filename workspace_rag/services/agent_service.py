"""
Agent dispatcher: fan a query out to every agent that claims it.

Responsibility: ask each registered agent can_handle concurrently, run
process_query for the claimants concurrently with a per-agent time budget,
and turn every outcome (answer, error, timeout) into exactly one
AgentResult. Called by the API; no HTTP here.
"""

import asyncio
import logging

from workspace_rag.agent.base import BaseAgent
from workspace_rag.agent.synthesis import Synthesizer, fallback_message
from workspace_rag.core.config import AGENT_TIMEOUT_SECONDS, CAN_HANDLE_TIMEOUT
from workspace_rag.core.errors import AgentTimeoutError, NotFoundError, WorkspaceRAGError
from workspace_rag.core.models import AgentResult, ErrorKind, RoutedResponse

logger = logging.getLogger(__name__)

NO_AGENT_MESSAGE = "I couldn't find an agent to handle your query."


def no_capable_agent_result() -> AgentResult:
    return AgentResult(
        agent_id="none",
        success=False,
        message=NO_AGENT_MESSAGE,
        source=None,
        error=ErrorKind.NO_CAPABLE_AGENT,
    )


def _failed(agent: BaseAgent, error: WorkspaceRAGError) -> AgentResult:
    return AgentResult(agent_id=agent.id, success=False, message=error.message, source=agent.name, error=error.kind)


class AgentService:
    def __init__(
        self,
        synthesizer: Synthesizer | None = None,
        *,
        agent_timeout: float = AGENT_TIMEOUT_SECONDS,
        can_handle_timeout: float = CAN_HANDLE_TIMEOUT,
    ) -> None:
        self.synthesizer = synthesizer
        self.agent_timeout = agent_timeout
        self.can_handle_timeout = can_handle_timeout
        self._agents: dict[str, BaseAgent] = {}

    def register_agent(self, agent: BaseAgent) -> None:
        if agent.id in self._agents:
            logger.warning("[dispatch:register] replacing agent id=%s", agent.id)
        self._agents[agent.id] = agent
        logger.info("[dispatch:register] id=%s name=%r", agent.id, agent.name)

    def get_agents(self) -> list[BaseAgent]:
        return list(self._agents.values())

    async def _claims(self, agent: BaseAgent, query: str) -> bool:
        try:
            return bool(await asyncio.wait_for(agent.can_handle(query), timeout=self.can_handle_timeout))
        except asyncio.TimeoutError:
            logger.warning("[dispatch:can_handle] agent=%s timed out after %.1fs", agent.id, self.can_handle_timeout)
        except Exception:
            logger.exception("[dispatch:can_handle] agent=%s raised; treating as False", agent.id)
        return False

    async def _run(self, agent: BaseAgent, query: str) -> AgentResult:
        """Exactly one AgentResult for one agent; never raises."""
        try:
            response = await asyncio.wait_for(agent.process_query(query), timeout=self.agent_timeout)
        except asyncio.TimeoutError:
            logger.warning("[dispatch:process] agent=%s timed out after %.1fs", agent.id, self.agent_timeout)
            return _failed(agent, AgentTimeoutError(f"{agent.name} did not answer within {self.agent_timeout:g} seconds."))
        except WorkspaceRAGError as e:
            logger.warning("[dispatch:process] agent=%s failed kind=%s: %s", agent.id, e.kind.value, e.message)
            return _failed(agent, e)
        except Exception:
            logger.exception("[dispatch:process] agent=%s raised unexpectedly", agent.id)
            return AgentResult(
                agent_id=agent.id,
                success=False,
                message=f"{agent.name} hit an internal error.",
                source=agent.name,
                error=ErrorKind.INTERNAL,
            )
        return AgentResult(
            agent_id=agent.id,
            success=response.success,
            message=response.message,
            source=response.source,
            error=response.error,
        )

    async def dispatch(
        self, query: str, agents: list[BaseAgent] | None = None, *, agent_id: str | None = None
    ) -> list[AgentResult]:
        """
        Results for every claiming agent, in registration order.

        With agent_id, only that agent runs and can_handle is not consulted.
        Completes within roughly can_handle_timeout + agent_timeout regardless
        of how slow any single agent is.
        """
        if agent_id is not None:
            return [await self._run_targeted(agent_id, query)]
        pool = [a for a in (agents if agents is not None else self.get_agents()) if a.is_active]
        logger.info("[dispatch] IN  query=%r agents=%d", query, len(pool))
        claims = await asyncio.gather(*(self._claims(a, query) for a in pool))
        claimants = [a for a, ok in zip(pool, claims) if ok]
        if not claimants:
            logger.info("[dispatch] OUT no capable agent")
            return [no_capable_agent_result()]
        results = list(await asyncio.gather(*(self._run(a, query) for a in claimants)))
        logger.info(
            "[dispatch] OUT results=%d ok=%d", len(results), sum(1 for r in results if r.success)
        )
        return results

    async def _run_targeted(self, agent_id: str, query: str) -> AgentResult:
        agent = self._agents.get(agent_id)
        if agent is None:
            raise NotFoundError(agent_id, f"No agent registered with id {agent_id}")
        logger.info("[dispatch:targeted] IN  agent=%s query=%r", agent_id, query)
        if not agent.is_active:
            return AgentResult(
                agent_id=agent.id,
                success=False,
                message=f"Agent {agent.name} is not active",
                source=agent.name,
                error=ErrorKind.NO_CAPABLE_AGENT,
            )
        result = await self._run(agent, query)
        logger.info("[dispatch:targeted] OUT agent=%s success=%s", agent_id, result.success)
        return result

    async def route(
        self, query: str, agents: list[BaseAgent] | None = None, *, agent_id: str | None = None
    ) -> RoutedResponse:
        results = await self.dispatch(query, agents, agent_id=agent_id)
        if self.synthesizer is not None:
            message = await self.synthesizer.synthesize(query, results)
        else:
            message = fallback_message(results)
        sources = []
        for r in results:
            if r.success and r.source and r.source not in sources:
                sources.append(r.source)
        return RoutedResponse(
            message=message,
            success=any(r.success for r in results),
            sources=sources,
            results=results,
        )

"""Node executor interface and a registry-backed implementation."""

import asyncio
import inspect
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from loguru import logger

from .models import FlowType, NodeType
from .state import ExecutionContext


class NodeExecutor(ABC):
    """Performs the actual agent work on the engine's behalf.

    The engine never contains agent logic. It calls :meth:`execute_node`
    for every node and, for decision nodes, :meth:`distribute_results_to_targets`
    once conditions have decided which targets are reachable.
    """

    @abstractmethod
    async def execute_node(
        self,
        node_id: str,
        agent_name: str,
        agent_kind: NodeType,
        incoming_flow: FlowType,
        context: ExecutionContext,
        target_agents: List[str],
        source_agent_name: str
    ) -> Any:
        """Run the named agent and return a JSON-serializable result.

        Raises:
            Exception: To signal an unrecoverable failure for this node
        """
        raise NotImplementedError("NodeExecutor must implement execute_node")

    @abstractmethod
    async def distribute_results_to_targets(
        self,
        source_agent_name: str,
        target_agents: List[str],
        result: Any,
        node_id: str,
        agent_kind: NodeType
    ) -> None:
        """Deliver a decision node's result to the targets that will run."""
        raise NotImplementedError("NodeExecutor must implement distribute_results_to_targets")


class AgentRegistryExecutor(NodeExecutor):
    """Runs nodes against a registry of agents keyed by agent name.

    An agent may be an object exposing ``arun(input)`` (awaited) or
    ``run(input)`` (run in the default thread pool), or a plain callable,
    sync or async. Entry nodes pass the initial input through and exit
    nodes return the last node output.

    Each agent receives a dict with the context snapshot, the hand-off
    metadata and anything delivered to its inbox by a decision node.
    """

    def __init__(self, agents: Optional[Dict[str, Any]] = None, input_key: str = "input"):
        """Initialize the executor.

        Args:
            agents: Agents keyed by agent name
            input_key: Context key the entry node passes through
        """
        self.agents: Dict[str, Any] = dict(agents or {})
        self.input_key = input_key
        self.inboxes: Dict[str, List[Dict[str, Any]]] = {}

    def register(self, agent_name: str, agent: Any) -> "AgentRegistryExecutor":
        self.agents[agent_name] = agent
        return self

    async def execute_node(
        self,
        node_id: str,
        agent_name: str,
        agent_kind: NodeType,
        incoming_flow: FlowType,
        context: ExecutionContext,
        target_agents: List[str],
        source_agent_name: str
    ) -> Any:
        if agent_kind is NodeType.ENTRY and agent_name not in self.agents:
            return context.get(self.input_key, context.snapshot())
        if agent_kind is NodeType.EXIT and agent_name not in self.agents:
            return context.last_node_output

        agent = self.agents.get(agent_name)
        if agent is None:
            raise KeyError(f"Agent not found in registry: {agent_name}")

        agent_input = {
            "node_id": node_id,
            "flow_type": incoming_flow.value,
            "source_agent": source_agent_name,
            "target_agents": list(target_agents),
            "context": context.snapshot(),
            "inbox": self.inboxes.pop(agent_name, []),
        }
        logger.debug(f"[AGENTS] {source_agent_name} →[{incoming_flow.value}]→ {agent_name} ({node_id})")
        return await self._call(agent, agent_input)

    async def distribute_results_to_targets(
        self,
        source_agent_name: str,
        target_agents: List[str],
        result: Any,
        node_id: str,
        agent_kind: NodeType
    ) -> None:
        for target in target_agents:
            self.inboxes.setdefault(target, []).append({
                "from_agent": source_agent_name,
                "from_node": node_id,
                "result": result,
            })
        logger.debug(f"[AGENTS] {source_agent_name} distributed result to {target_agents}")

    @staticmethod
    async def _call(agent: Any, agent_input: Dict[str, Any]) -> Any:
        if hasattr(agent, "arun"):
            return await agent.arun(agent_input)
        if hasattr(agent, "run"):
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, agent.run, agent_input)
        if callable(agent):
            result = agent(agent_input)
            if inspect.isawaitable(result):
                result = await result
            return result
        raise TypeError(f"Agent {agent!r} is not callable and has no run/arun method")

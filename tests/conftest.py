"""Shared fixtures: recording node executor, DAG builders and log capture."""

from typing import Any, Callable, Dict, List, Optional

import pytest
from loguru import logger

from agentflow.graph import (
    AgentDAG,
    DAGBuilder,
    ExecutionContext,
    FlowType,
    NodeExecutor,
    NodeType,
)
from agentflow.settings import Settings


class RecordingExecutor(NodeExecutor):
    """Node executor stub that records every call.

    ``outputs`` maps node ids to an output value, an exception instance to
    raise, or a callable taking the context.
    """

    def __init__(self, outputs: Optional[Dict[str, Any]] = None):
        self.outputs: Dict[str, Any] = dict(outputs or {})
        self.calls: List[Dict[str, Any]] = []
        self.distributions: List[Dict[str, Any]] = []

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
        self.calls.append({
            "node_id": node_id,
            "agent_name": agent_name,
            "agent_kind": agent_kind,
            "incoming_flow": incoming_flow,
            "target_agents": list(target_agents),
            "source_agent_name": source_agent_name,
        })
        output = self.outputs.get(node_id, {"node": node_id})
        if isinstance(output, Exception):
            raise output
        if callable(output):
            return output(context)
        return output

    async def distribute_results_to_targets(
        self,
        source_agent_name: str,
        target_agents: List[str],
        result: Any,
        node_id: str,
        agent_kind: NodeType
    ) -> None:
        self.distributions.append({
            "source_agent_name": source_agent_name,
            "target_agents": list(target_agents),
            "result": result,
            "node_id": node_id,
        })

    @property
    def executed(self) -> List[str]:
        return [call["node_id"] for call in self.calls]


@pytest.fixture
def recorder() -> Callable[..., RecordingExecutor]:
    return RecordingExecutor


@pytest.fixture
def settings() -> Settings:
    return Settings(_env_file=None)


@pytest.fixture
def log_messages():
    """Capture loguru messages for the duration of a test."""
    messages: List[str] = []
    handler_id = logger.add(lambda message: messages.append(str(message)), level="DEBUG", format="{level}|{message}")
    yield messages
    logger.remove(handler_id)


def linear_dag() -> AgentDAG:
    return (
        DAGBuilder("linear", "Linear")
        .entry()
        .node("a", "Researcher")
        .node("b", "Writer")
        .exit()
        .edge("entry", "a")
        .edge("a", "b", FlowType.LLM_CALL)
        .edge("b", "exit")
        .build()
    )


def diamond_dag() -> AgentDAG:
    return (
        DAGBuilder("diamond", "Diamond")
        .entry()
        .node("a")
        .node("b")
        .node("c")
        .node("d")
        .exit()
        .edge("entry", "a")
        .edge("a", "b")
        .edge("a", "c")
        .edge("b", "d")
        .edge("c", "d")
        .edge("d", "exit")
        .build()
    )


def decision_dag() -> AgentDAG:
    """entry -> x; x decides between y and z; both converge on w."""
    return (
        DAGBuilder("decision", "Decision")
        .entry()
        .node("x", "Judge")
        .node("y", "Publisher")
        .node("z", "Fixer")
        .node("w", "Summarizer")
        .exit()
        .edge("entry", "x")
        .edge("x", "y", FlowType.AUTONOMOUS_DECISION, condition="success===true")
        .edge("x", "z", FlowType.AUTONOMOUS_DECISION, condition="success===false")
        .edge("y", "w")
        .edge("z", "w")
        .edge("w", "exit")
        .build()
    )


@pytest.fixture
def linear() -> AgentDAG:
    return linear_dag()


@pytest.fixture
def diamond() -> AgentDAG:
    return diamond_dag()


@pytest.fixture
def decision() -> AgentDAG:
    return decision_dag()

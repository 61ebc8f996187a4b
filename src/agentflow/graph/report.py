"""Execution results and derived statistics."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class NodeExecutionResult:
    """Outcome of a single node execution. Created once, never mutated."""
    node_id: str
    agent_name: str
    agent_kind: str
    success: bool
    output: Any = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    duration_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_id": self.node_id,
            "agent_name": self.agent_name,
            "agent_kind": self.agent_kind,
            "success": self.success,
            "output": self.output,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
            "duration_ms": round(self.duration_ms, 3),
        }


@dataclass
class ExecutionResult:
    """Result of a DAG run.

    ``success`` is False iff an error escaped the run; ``node_results`` then
    still holds every node that completed before the failure.
    """
    dag_id: str
    dag_name: str
    execution_id: str
    success: bool
    start_time: datetime
    end_time: datetime
    duration_ms: float
    node_results: List[NodeExecutionResult]
    final_context: Dict[str, Any]
    error: Optional[str] = None
    error_type: Optional[str] = None
    pruned_nodes: List[str] = field(default_factory=list)
    stalled_nodes: List[str] = field(default_factory=list)

    @property
    def executed_nodes(self) -> List[str]:
        """Node ids in execution order."""
        return [result.node_id for result in self.node_results]

    def get_node_result(self, node_id: str) -> Optional[NodeExecutionResult]:
        for result in self.node_results:
            if result.node_id == node_id:
                return result
        return None

    def statistics(self) -> "ExecutionStatistics":
        return compute_statistics(self.node_results)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        data = {
            "dag_id": self.dag_id,
            "dag_name": self.dag_name,
            "execution_id": self.execution_id,
            "success": self.success,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration_ms": round(self.duration_ms, 3),
            "node_results": [result.to_dict() for result in self.node_results],
            "final_context": self.final_context,
            "pruned_nodes": self.pruned_nodes,
            "stalled_nodes": self.stalled_nodes,
        }
        if self.error is not None:
            data["error"] = self.error
            data["error_type"] = self.error_type
        return data


@dataclass
class ExecutionStatistics:
    """Summary statistics over a list of node results."""
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    success_rate: float = 0.0
    average_duration_ms: float = 0.0
    total_duration_ms: float = 0.0
    by_agent_kind: Dict[str, Dict[str, int]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Convert statistics to dictionary."""
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": round(self.success_rate, 3),
            "average_duration_ms": round(self.average_duration_ms, 3),
            "total_duration_ms": round(self.total_duration_ms, 3),
            "by_agent_kind": self.by_agent_kind,
        }


def compute_statistics(node_results: List[NodeExecutionResult]) -> ExecutionStatistics:
    """Derive statistics from node results. Pure, may be called any time."""
    total = len(node_results)
    succeeded = sum(1 for result in node_results if result.success)
    total_duration = sum(result.duration_ms for result in node_results)

    by_kind: Dict[str, Dict[str, int]] = {}
    for result in node_results:
        bucket = by_kind.setdefault(result.agent_kind, {"total": 0, "succeeded": 0, "failed": 0})
        bucket["total"] += 1
        bucket["succeeded" if result.success else "failed"] += 1

    return ExecutionStatistics(
        total=total,
        succeeded=succeeded,
        failed=total - succeeded,
        success_rate=succeeded / total if total else 0.0,
        average_duration_ms=total_duration / total if total else 0.0,
        total_duration_ms=total_duration,
        by_agent_kind=by_kind,
    )

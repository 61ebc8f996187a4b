"""Exceptions raised by the DAG engine."""

from typing import List, Optional


class DAGError(Exception):
    """Base class for all DAG engine errors."""


class DAGConfigurationError(DAGError):
    """Raised when a DAG definition is structurally invalid.

    Configuration errors are detected at construction/loading time; an
    engine is never created around an invalid graph.
    """

    def __init__(self, errors: List[str], dag_name: Optional[str] = None):
        self.errors = list(errors)
        self.dag_name = dag_name
        prefix = f"DAG '{dag_name}' validation failed" if dag_name else "DAG validation failed"
        super().__init__(prefix + ":\n" + "\n".join(f"  - {e}" for e in self.errors))


class NodeExecutionError(DAGError):
    """Raised when the node executor fails for a node."""

    def __init__(self, node_id: str, agent_name: str, cause: BaseException):
        self.node_id = node_id
        self.agent_name = agent_name
        self.cause = cause
        super().__init__(f"Node '{node_id}' ({agent_name}) failed: {cause}")


class DAGDeadlockError(DAGError):
    """Raised when reached nodes can never have their dependencies satisfied."""

    def __init__(self, stalled_nodes: List[str], pending: Optional[dict] = None):
        self.stalled_nodes = list(stalled_nodes)
        self.pending = pending or {}
        details = ", ".join(
            f"{node_id} (waiting on {sorted(self.pending.get(node_id, []))})"
            for node_id in self.stalled_nodes
        )
        super().__init__(f"Dependency deadlock, nodes can never run: {details}")

"""DAG execution engine for LLM and tool agents."""

from .conditions import Condition, ConditionEvaluator, ConditionKind, parse_condition
from .convergence import ConvergenceDetector
from .dag import AgentDAG, DAGBuilder, DAGComplexity, DAGValidationResult, validate_definition
from .dependencies import DependencyTracker, PruneMask
from .errors import DAGConfigurationError, DAGDeadlockError, DAGError, NodeExecutionError
from .events import DAGEvent, EventEmitter, EventType
from .executor import (
    BranchStrategy,
    ConcurrentBranchStrategy,
    DAGExecutor,
    SequentialBranchStrategy,
    get_branch_strategy,
)
from .loader import list_saved_dags, load_agent_dag, load_dag, save_dag
from .models import DAGDefinition, DAGEdgeSpec, DAGNodeSpec, EdgeConditionSpec, FlowType, NodeType
from .node_executor import AgentRegistryExecutor, NodeExecutor
from .report import ExecutionResult, ExecutionStatistics, NodeExecutionResult, compute_statistics
from .state import ContextEntry, ExecutionContext

__all__ = [
    "AgentDAG",
    "DAGBuilder",
    "DAGComplexity",
    "DAGValidationResult",
    "validate_definition",
    "DAGDefinition",
    "DAGNodeSpec",
    "DAGEdgeSpec",
    "EdgeConditionSpec",
    "NodeType",
    "FlowType",
    "Condition",
    "ConditionKind",
    "ConditionEvaluator",
    "parse_condition",
    "ExecutionContext",
    "ContextEntry",
    "DependencyTracker",
    "PruneMask",
    "ConvergenceDetector",
    "NodeExecutor",
    "AgentRegistryExecutor",
    "DAGExecutor",
    "BranchStrategy",
    "SequentialBranchStrategy",
    "ConcurrentBranchStrategy",
    "get_branch_strategy",
    "DAGEvent",
    "EventEmitter",
    "EventType",
    "NodeExecutionResult",
    "ExecutionResult",
    "ExecutionStatistics",
    "compute_statistics",
    "DAGError",
    "DAGConfigurationError",
    "NodeExecutionError",
    "DAGDeadlockError",
    "load_dag",
    "load_agent_dag",
    "save_dag",
    "list_saved_dags",
]

"""DAG executor: walks the graph, resolves decisions and joins branches.

The walk starts at the entry node. Single-successor chains are followed in
place, fan-outs are handed to a branch strategy, and once every branch of a
fan-out has finished the convergence step drives the nodes where the
branches rejoin. A node runs only when all of its remaining predecessors
have executed, and never twice.
"""

import asyncio
import time
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple

from loguru import logger

from ..settings import Settings
from .conditions import ConditionEvaluator, Predicate
from .convergence import ConvergenceDetector
from .dag import AgentDAG
from .dependencies import DependencyTracker
from .errors import DAGDeadlockError, NodeExecutionError
from .events import DAGEvent, EventEmitter, EventType
from .models import DAGEdgeSpec, FlowType
from .node_executor import NodeExecutor
from .report import ExecutionResult, NodeExecutionResult, compute_statistics
from .state import ExecutionContext


Branch = Tuple[str, FlowType]
BranchWalker = Callable[[str, FlowType], Awaitable[None]]


class BranchStrategy(ABC):
    """Policy for running the branches of a fan-out."""

    name: str = "abstract"

    @abstractmethod
    async def run(self, branches: Sequence[Branch], walk: BranchWalker) -> None:
        """Walk every branch. Must not return before all branches finish."""


class SequentialBranchStrategy(BranchStrategy):
    """Runs branches one at a time in source-edge order.

    This is the default: LLM-backed node executors are generally not safe
    to invoke concurrently.
    """

    name = "sequential"

    async def run(self, branches: Sequence[Branch], walk: BranchWalker) -> None:
        for node_id, flow in branches:
            await walk(node_id, flow)


class ConcurrentBranchStrategy(BranchStrategy):
    """Runs branches concurrently on the event loop.

    Only use with a node executor that tolerates concurrent calls. If one
    branch fails, the others are cancelled and the error propagates.
    """

    name = "concurrent"

    async def run(self, branches: Sequence[Branch], walk: BranchWalker) -> None:
        tasks = [asyncio.create_task(walk(node_id, flow)) for node_id, flow in branches]
        try:
            await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise


BRANCH_STRATEGIES = {
    SequentialBranchStrategy.name: SequentialBranchStrategy,
    ConcurrentBranchStrategy.name: ConcurrentBranchStrategy,
}


def get_branch_strategy(name: str) -> BranchStrategy:
    """Create a branch strategy by name (``sequential`` or ``concurrent``)."""
    try:
        return BRANCH_STRATEGIES[name]()
    except KeyError:
        raise ValueError(
            f"Unknown branch strategy '{name}', expected one of {sorted(BRANCH_STRATEGIES)}"
        ) from None


class DAGExecutor:
    """Executes an :class:`AgentDAG` through a :class:`NodeExecutor`."""

    def __init__(
        self,
        dag: AgentDAG,
        node_executor: NodeExecutor,
        settings: Optional[Settings] = None,
        emitter: Optional[EventEmitter] = None,
        branch_strategy: Optional[BranchStrategy] = None,
        predicates: Optional[Mapping[str, Predicate]] = None
    ):
        """Initialize executor.

        Args:
            dag: Validated DAG to execute
            node_executor: Collaborator that performs the agent work
            settings: Engine settings (defaults are loaded if None)
            emitter: Event emitter for lifecycle events (creates new if None)
            branch_strategy: Fan-out policy (from settings if None)
            predicates: Named predicates for ``predicate:<name>`` conditions
        """
        self.dag = dag
        self.node_executor = node_executor
        self.settings = settings or Settings()
        self.emitter = emitter or EventEmitter()
        self.branch_strategy = branch_strategy or get_branch_strategy(self.settings.branch_strategy)
        self.default_flow = FlowType(self.settings.default_flow_type)
        self._predicates: Dict[str, Predicate] = dict(predicates or {})

        self._reset()

    def _reset(self, initial_context: Optional[Mapping[str, Any]] = None) -> None:
        self.execution_id = f"exec_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"
        self.context = ExecutionContext(initial_context, promote_outputs=self.settings.promote_outputs)
        self.tracker = DependencyTracker(self.dag)
        self.convergence = ConvergenceDetector(self.dag, self.tracker)
        self.evaluator = ConditionEvaluator(
            self.dag.conditions,
            self._predicates,
            on_warning=self._on_condition_warning,
        )
        self.node_results: List[NodeExecutionResult] = []
        self._next_edges: Dict[str, List[DAGEdgeSpec]] = {}
        self._deferred: Dict[str, FlowType] = {}
        self._in_flight: Set[str] = set()
        self._condition_warnings: List[Tuple[DAGEdgeSpec, str]] = []
        self._state_lock = asyncio.Lock()

    def register_predicate(self, name: str, predicate: Predicate) -> None:
        self._predicates[name] = predicate
        self.evaluator.register_predicate(name, predicate)

    # ------------------------------------------------------------------
    # Top level
    # ------------------------------------------------------------------

    async def execute(self, initial_context: Optional[Mapping[str, Any]] = None) -> ExecutionResult:
        """Execute the DAG from its entry node.

        Never raises: any error is captured in the returned result, whose
        ``node_results`` still lists every node that ran before it.

        Args:
            initial_context: Initial context values

        Returns:
            Execution result
        """
        self._reset(initial_context)
        start_time = datetime.now()
        started = time.perf_counter()

        logger.info(
            f"[EXECUTOR] Starting DAG execution: {self.dag.name} "
            f"({len(self.dag.nodes)} nodes, {len(self.dag.edges)} edges, "
            f"strategy={self.branch_strategy.name}, id={self.execution_id})"
        )
        await self._emit(EventType.EXECUTION_START, data={
            "dag_name": self.dag.name,
            "node_count": len(self.dag.nodes),
            "edge_count": len(self.dag.edges),
        })

        error: Optional[Exception] = None
        stalled: List[str] = []
        try:
            await self.process_node(self.dag.entry_node, self.default_flow)
            await self._drain_deferred()

            stalled = self._stalled_nodes()
            if stalled:
                pending = {node_id: self.tracker.pending(node_id) for node_id in stalled}
                if self.settings.strict_liveness:
                    raise DAGDeadlockError(stalled, pending)
                logger.warning(f"[EXECUTOR] Stalled nodes never ran: {stalled} (pending: {pending})")
        except Exception as e:
            error = e
            logger.exception(f"[EXECUTOR] DAG '{self.dag.name}' failed: {e}")

        end_time = datetime.now()
        duration_ms = (time.perf_counter() - started) * 1000

        result = ExecutionResult(
            dag_id=self.dag.id,
            dag_name=self.dag.name,
            execution_id=self.execution_id,
            success=error is None,
            start_time=start_time,
            end_time=end_time,
            duration_ms=duration_ms,
            node_results=list(self.node_results),
            final_context=self.context.snapshot(),
            error=str(error) if error is not None else None,
            error_type=type(error).__name__ if error is not None else None,
            pruned_nodes=sorted(self.tracker.pruned),
            stalled_nodes=stalled,
        )

        stats = compute_statistics(result.node_results)
        if error is None:
            logger.info(
                f"[EXECUTOR] Completed: {stats.total}/{len(self.dag.nodes)} nodes, "
                f"pruned={len(result.pruned_nodes)}, time={duration_ms:.1f}ms"
            )
            await self._emit(EventType.EXECUTION_COMPLETE, data={
                "duration_ms": duration_ms,
                "nodes_executed": stats.total,
                "pruned_nodes": result.pruned_nodes,
            })
        else:
            await self._emit(EventType.EXECUTION_ERROR, data={
                "duration_ms": duration_ms,
                "nodes_executed": stats.total,
                "error": str(error),
                "error_type": type(error).__name__,
            })

        return result

    # ------------------------------------------------------------------
    # Walking
    # ------------------------------------------------------------------

    async def process_node(self, node_id: str, incoming_flow: FlowType) -> None:
        """Execute a node and continue down its single-successor chain.

        Deferred (returns without running) when dependencies are unmet; a
        later convergence pass re-drives it. No-op if already executed.
        """
        current, flow = node_id, incoming_flow
        while True:
            if self.tracker.is_pruned(current):
                logger.debug(f"[EXECUTOR] Node {current} is pruned, not executing")
                return
            if self.tracker.is_executed(current) or current in self._in_flight:
                logger.debug(f"[EXECUTOR] Node {current} already executed, skipping")
                return
            if not self.tracker.can_execute(current):
                self._defer(current, flow)
                return

            await self._execute_node_internal(current, flow)

            if self.dag.is_exit(current):
                logger.info(f"[EXECUTOR] Reached exit node: {current}")
                return

            next_edges = await self.get_next_edges(current)
            if not next_edges:
                logger.debug(f"[EXECUTOR] Node {current} has no next edges, path ends")
                return
            if len(next_edges) > 1:
                await self.execute_parallel_branches(current, next_edges)
                return

            current, flow = next_edges[0].to_node, next_edges[0].flow_type

    async def get_next_edges(self, node_id: str) -> List[DAGEdgeSpec]:
        """Outgoing edges to follow after ``node_id`` ran.

        Conditional edges are evaluated against the live context and the
        rejected branches are pruned. Computed once per node per run.
        """
        cached = self._next_edges.get(node_id)
        if cached is not None:
            return list(cached)

        edges = self.dag.outgoing_edges(node_id)
        conditional = [edge for edge in edges if edge.is_conditional]

        if conditional:
            selected = [edge for edge in conditional if self.evaluator.evaluate(edge, self.context)]
            await self._flush_condition_warnings(node_id)
            self.tracker.prune_unreachable(node_id, conditional, selected)
            selected_ids = {edge.id for edge in selected}
            edges = [edge for edge in edges if not edge.is_conditional or edge.id in selected_ids]
            logger.info(
                f"[EXECUTOR] Decision {node_id}: taking {[e.to_node for e in selected]} "
                f"of {[e.to_node for e in conditional]}"
            )

        self._next_edges[node_id] = edges
        return list(edges)

    async def _execute_node_internal(self, node_id: str, incoming_flow: FlowType) -> NodeExecutionResult:
        node = self.dag.nodes[node_id]
        self._in_flight.add(node_id)

        last_node = self.context.last_executed_node or node_id
        last_spec = self.dag.get_node(last_node)
        source_agent_name = last_spec.agent_name if last_spec is not None else last_node

        is_decision = self.dag.is_decision_node(node_id)
        # Decision targets are unknown until the node's own output is in
        target_agents: List[str] = [] if is_decision else [
            self.dag.nodes[target].agent_name for target in self.dag.get_dependents(node_id)
        ]

        logger.info(f"[EXECUTOR] ▶ Executing node {node_id} ({node.agent_name}) via {incoming_flow.value}")
        await self._emit(EventType.NODE_START, node_id=node_id, data={
            "agent_name": node.agent_name,
            "agent_kind": node.type.value,
            "flow_type": incoming_flow.value,
            "source_agent": source_agent_name,
        })

        started = time.perf_counter()
        try:
            output = await self.node_executor.execute_node(
                node_id,
                node.agent_name,
                node.type,
                incoming_flow,
                self.context,
                target_agents,
                source_agent_name,
            )

            async with self._state_lock:
                self.context.record_node_output(node_id, output)
                self.tracker.mark_executed(node_id)

            if is_decision:
                next_edges = await self.get_next_edges(node_id)
                valid_targets = [self.dag.nodes[edge.to_node].agent_name for edge in next_edges]
                await self.node_executor.distribute_results_to_targets(
                    node.agent_name, valid_targets, output, node_id, node.type
                )
        except asyncio.CancelledError:
            await self._record_failure(node_id, started, "cancelled", cancelled=True)
            raise
        except Exception as e:
            await self._record_failure(node_id, started, str(e))
            raise NodeExecutionError(node_id, node.agent_name, e) from e

        duration_ms = (time.perf_counter() - started) * 1000
        result = NodeExecutionResult(
            node_id=node_id,
            agent_name=node.agent_name,
            agent_kind=node.type.value,
            success=True,
            output=output,
            duration_ms=duration_ms,
        )
        self.node_results.append(result)
        self._in_flight.discard(node_id)
        self._deferred.pop(node_id, None)

        logger.info(f"[EXECUTOR] ✓ Node {node_id} completed in {duration_ms:.1f}ms")
        await self._emit(EventType.NODE_COMPLETE, node_id=node_id, data={
            "agent_name": node.agent_name,
            "agent_kind": node.type.value,
            "duration_ms": duration_ms,
        })
        return result

    async def _record_failure(self, node_id: str, started: float, error: str, cancelled: bool = False) -> None:
        """Close out a node that raised or was cancelled mid-run."""
        node = self.dag.nodes[node_id]
        duration_ms = (time.perf_counter() - started) * 1000
        self.node_results.append(NodeExecutionResult(
            node_id=node_id,
            agent_name=node.agent_name,
            agent_kind=node.type.value,
            success=False,
            error=error,
            duration_ms=duration_ms,
        ))
        self.tracker.mark_executed(node_id)
        self._in_flight.discard(node_id)

        if cancelled:
            logger.warning(f"[EXECUTOR] ✗ Node {node_id} ({node.agent_name}) cancelled after {duration_ms:.1f}ms")
        else:
            logger.error(f"[EXECUTOR] ✗ Node {node_id} ({node.agent_name}) failed after {duration_ms:.1f}ms: {error}")
        await self._emit(EventType.NODE_ERROR, node_id=node_id, data={
            "agent_name": node.agent_name,
            "agent_kind": node.type.value,
            "duration_ms": duration_ms,
            "error": error,
            "cancelled": cancelled,
        })

    # ------------------------------------------------------------------
    # Fan-out and convergence
    # ------------------------------------------------------------------

    async def execute_parallel_branches(self, source_node_id: str, edges: Sequence[DAGEdgeSpec]) -> None:
        """Walk every branch of a fan-out, then run the convergence step."""
        # One branch per target, first edge wins
        first_flow: Dict[str, FlowType] = {}
        for edge in edges:
            first_flow.setdefault(edge.to_node, edge.flow_type)
        branches: List[Branch] = list(first_flow.items())
        branch_ids = list(first_flow)

        logger.info(
            f"[EXECUTOR] 🔀 Node {source_node_id} fans out to {branch_ids} ({self.branch_strategy.name})"
        )
        await self._emit(EventType.PARALLEL_START, node_id=source_node_id, data={
            "branches": branch_ids,
            "strategy": self.branch_strategy.name,
        })

        await self.branch_strategy.run(branches, self.execute_branch)

        await self._emit(EventType.PARALLEL_COMPLETE, node_id=source_node_id, data={"branches": branch_ids})
        await self.execute_convergence_point(branch_ids)

    async def execute_branch(self, start_node_id: str, flow: FlowType) -> None:
        """Advance one branch until it ends, fans out again or hits a join."""
        current, current_flow = start_node_id, flow
        first = True
        while True:
            if self.tracker.is_pruned(current):
                return
            if self.tracker.is_executed(current) or current in self._in_flight:
                return
            if not first and len(self.dag.incoming_edges(current)) > 1:
                # Join point: left to the convergence step
                self._defer(current, current_flow)
                return
            if not self.tracker.can_execute(current):
                self._defer(current, current_flow)
                return

            await self._execute_node_internal(current, current_flow)

            if self.dag.is_exit(current):
                logger.info(f"[EXECUTOR] Reached exit node: {current}")
                return

            next_edges = await self.get_next_edges(current)
            if not next_edges:
                return
            if len(next_edges) > 1:
                await self.execute_parallel_branches(current, next_edges)
                return

            current, current_flow = next_edges[0].to_node, next_edges[0].flow_type
            first = False

    async def execute_convergence_point(self, branch_node_ids: Sequence[str]) -> None:
        """Drive the nodes where the given branches rejoin.

        Nodes having every branch start as an ancestor are driven first,
        then deferred nodes that have become executable.
        """
        points = self.convergence.find_convergence_points(branch_node_ids)
        for node_id in points:
            if self.tracker.is_executed(node_id) or self.tracker.is_pruned(node_id):
                continue
            incoming = self.dag.incoming_edges(node_id)
            flow = incoming[0].flow_type if incoming else self.default_flow
            logger.info(f"[CONVERGENCE] Branches {list(branch_node_ids)} converge at {node_id}")
            await self.process_node(node_id, flow)

        await self._drain_deferred()

    async def _drain_deferred(self) -> None:
        """Re-drive deferred nodes until a pass makes no progress."""
        progress = True
        while progress:
            progress = False
            for node_id, flow in list(self._deferred.items()):
                if self.tracker.is_executed(node_id) or self.tracker.is_pruned(node_id):
                    self._deferred.pop(node_id, None)
                    continue
                if node_id in self._in_flight or not self.tracker.can_execute(node_id):
                    continue
                self._deferred.pop(node_id, None)
                logger.debug(f"[EXECUTOR] Re-driving deferred node {node_id}")
                await self.process_node(node_id, flow)
                progress = True

    def _defer(self, node_id: str, flow: FlowType) -> None:
        if node_id not in self._deferred:
            self._deferred[node_id] = flow
            logger.debug(
                f"[EXECUTOR] ⏸ Node {node_id} deferred, waiting for {sorted(self.tracker.pending(node_id))}"
            )

    def _stalled_nodes(self) -> List[str]:
        return [
            node_id for node_id in self._deferred
            if not self.tracker.is_executed(node_id) and not self.tracker.is_pruned(node_id)
        ]

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _on_condition_warning(self, edge: DAGEdgeSpec, message: str) -> None:
        self._condition_warnings.append((edge, message))

    async def _flush_condition_warnings(self, node_id: str) -> None:
        warnings, self._condition_warnings = self._condition_warnings, []
        for edge, message in warnings:
            await self._emit(EventType.CONDITION_WARNING, node_id=node_id, data={
                "edge_id": edge.id,
                "from": edge.from_node,
                "to": edge.to_node,
                "message": message,
            })

    async def _emit(self, event_type: EventType, node_id: Optional[str] = None, data: Optional[Dict[str, Any]] = None) -> None:
        await self.emitter.emit(DAGEvent(
            type=event_type,
            dag_id=self.dag.id,
            execution_id=self.execution_id,
            node_id=node_id,
            data=data or {},
        ))

    def get_execution_context(self) -> ExecutionContext:
        return self.context

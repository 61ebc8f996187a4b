"""Per-node dependency bookkeeping and conditional-branch pruning."""

from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Set

from loguru import logger

from .dag import AgentDAG
from .models import DAGEdgeSpec


@dataclass(frozen=True)
class PruneMask:
    """Nodes made unreachable by one decision node firing."""
    version: int
    source_node: str
    selected_targets: FrozenSet[str]
    pruned_nodes: FrozenSet[str]

    def to_dict(self) -> Dict[str, object]:
        return {
            "version": self.version,
            "source_node": self.source_node,
            "selected_targets": sorted(self.selected_targets),
            "pruned_nodes": sorted(self.pruned_nodes),
        }


class DependencyTracker:
    """Tracks, per node, the predecessors that still have to run.

    A node may run once every remaining predecessor is executed. Pruning a
    conditional branch removes the unreachable nodes from every dependency
    set in the graph, so convergence nodes several hops downstream do not
    wait for a predecessor that will never run.

    None of these operations raise.
    """

    def __init__(self, dag: AgentDAG):
        self.dag = dag
        self._dependencies: Dict[str, Set[str]] = {}
        self._executed: Set[str] = set()
        self._pruned: Set[str] = set()
        self._rejected_edges: Set[str] = set()
        self._masks: List[PruneMask] = []
        self.initialize(dag)

    def initialize(self, dag: AgentDAG) -> None:
        """Reset every dependency set to the node's static predecessors."""
        self.dag = dag
        self._dependencies = {node_id: set(dag.get_dependencies(node_id)) for node_id in dag.nodes}
        self._executed = set()
        self._pruned = set()
        self._rejected_edges = set()
        self._masks = []

    def mark_executed(self, node_id: str) -> None:
        """Record a completed node and drop it from its successors' sets."""
        self._executed.add(node_id)
        for dependent in self.dag.get_dependents(node_id):
            self._dependencies.get(dependent, set()).discard(node_id)

    def is_executed(self, node_id: str) -> bool:
        return node_id in self._executed

    def is_pruned(self, node_id: str) -> bool:
        return node_id in self._pruned

    def can_execute(self, node_id: str) -> bool:
        """True iff every remaining predecessor has executed."""
        remaining = self._dependencies.get(node_id, set())
        return all(dep in self._executed for dep in remaining)

    def pending(self, node_id: str) -> Set[str]:
        """Predecessors of ``node_id`` that have not executed yet."""
        return {dep for dep in self._dependencies.get(node_id, set()) if dep not in self._executed}

    @property
    def executed(self) -> FrozenSet[str]:
        return frozenset(self._executed)

    @property
    def pruned(self) -> FrozenSet[str]:
        return frozenset(self._pruned)

    @property
    def masks(self) -> List[PruneMask]:
        return list(self._masks)

    def prune_unreachable(
        self,
        source_node_id: str,
        conditional_edges: Iterable[DAGEdgeSpec],
        selected_edges: Iterable[DAGEdgeSpec]
    ) -> PruneMask:
        """Prune the targets of conditional edges that were not taken.

        A rejected target is pruned unless another live edge can still
        reach it. Nodes whose every incoming edge comes from a pruned node
        are pruned too. All pruned ids are removed from every dependency
        set in the graph.

        Args:
            source_node_id: Decision node that just fired
            conditional_edges: All conditional edges leaving the decision node
            selected_edges: The edges whose condition evaluated true

        Returns:
            The prune mask for this decision
        """
        selected = list(selected_edges)
        selected_ids = {edge.id for edge in selected}
        selected_targets = frozenset(edge.to_node for edge in selected)
        rejected = [edge for edge in conditional_edges if edge.id not in selected_ids]

        self._rejected_edges.update(edge.id for edge in rejected)
        rejected_edge_ids = self._rejected_edges
        newly_pruned: Set[str] = set()

        candidates = [edge.to_node for edge in rejected if edge.to_node not in selected_targets]
        for target in dict.fromkeys(candidates):
            if self._is_dead(target, newly_pruned, rejected_edge_ids):
                newly_pruned.add(target)

        # Exclusive dependents: walk downstream in topological order
        if newly_pruned:
            frontier: Set[str] = set()
            for node_id in newly_pruned:
                frontier.update(self.dag.descendants(node_id))
            for node_id in self.dag.topological_order():
                if node_id in frontier and node_id not in newly_pruned:
                    if self._is_dead(node_id, newly_pruned, rejected_edge_ids):
                        newly_pruned.add(node_id)

        self._pruned.update(newly_pruned)
        for node_id in newly_pruned:
            for deps in self._dependencies.values():
                deps.discard(node_id)

        mask = PruneMask(
            version=len(self._masks) + 1,
            source_node=source_node_id,
            selected_targets=selected_targets,
            pruned_nodes=frozenset(newly_pruned),
        )
        self._masks.append(mask)

        if newly_pruned:
            logger.info(
                f"[DEPS] Decision '{source_node_id}' pruned {sorted(newly_pruned)} "
                f"(selected: {sorted(selected_targets)}, mask v{mask.version})"
            )
        else:
            logger.debug(f"[DEPS] Decision '{source_node_id}' pruned nothing (mask v{mask.version})")
        return mask

    def _is_dead(self, node_id: str, newly_pruned: Set[str], rejected_edge_ids: Set[str]) -> bool:
        """True if no live incoming edge can still deliver ``node_id``."""
        if node_id in self._executed or node_id == self.dag.entry_node:
            return False
        for edge in self.dag.incoming_edges(node_id):
            if edge.id in rejected_edge_ids:
                continue
            if edge.from_node in self._pruned or edge.from_node in newly_pruned:
                continue
            return False
        return True

    def snapshot(self) -> Dict[str, List[str]]:
        """Remaining (not yet executed) predecessors for every node."""
        return {node_id: sorted(self.pending(node_id)) for node_id in self._dependencies}

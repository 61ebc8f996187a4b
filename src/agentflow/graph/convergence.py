"""Join detection for fanned-out branches."""

from typing import Iterable, List

from loguru import logger

from .dag import AgentDAG
from .dependencies import DependencyTracker


class ConvergenceDetector:
    """Finds the nodes where the branches of a fan-out rejoin.

    A node converges a fan-out when every branch start is one of its
    ancestors. Graph authors do not have to mark join points.
    """

    def __init__(self, dag: AgentDAG, tracker: DependencyTracker):
        self.dag = dag
        self.tracker = tracker

    def common_descendants(self, branch_node_ids: Iterable[str]) -> List[str]:
        """Pending nodes reachable from every branch start, in topological order."""
        branches = list(dict.fromkeys(branch_node_ids))
        if not branches:
            return []
        return [
            node_id for node_id in self.dag.topological_order()
            if not self.tracker.is_executed(node_id)
            and not self.tracker.is_pruned(node_id)
            and all(self.dag.is_ancestor(branch, node_id) for branch in branches)
        ]

    def find_convergence_points(self, branch_node_ids: Iterable[str]) -> List[str]:
        """Convergence nodes whose dependencies are satisfied right now.

        Args:
            branch_node_ids: Start node of each branch of the fan-out

        Returns:
            Node ids that are safe to execute next, in topological order
        """
        branches = list(dict.fromkeys(branch_node_ids))
        candidates = self.common_descendants(branches)
        ready = [node_id for node_id in candidates if self.tracker.can_execute(node_id)]

        logger.debug(
            f"[CONVERGENCE] Branches {branches}: candidates={candidates}, ready={ready}"
        )
        return ready

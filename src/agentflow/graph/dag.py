"""Static DAG model: nodes, edges, entry/exit nodes and structural queries."""

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List, Optional, Set

from loguru import logger

from .conditions import Condition, parse_condition
from .errors import DAGConfigurationError
from .models import DAGDefinition, DAGEdgeSpec, DAGNodeSpec, FlowType, NodeType


@dataclass
class DAGComplexity:
    """Complexity metrics of a DAG."""
    node_count: int
    edge_count: int
    max_depth: int                # Longest path from the entry node
    branching_factor: float       # Average outgoing edges per node
    parallel_paths: int           # Edges leaving fan-out nodes
    cyclomatic_complexity: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "node_count": self.node_count,
            "edge_count": self.edge_count,
            "max_depth": self.max_depth,
            "branching_factor": round(self.branching_factor, 3),
            "parallel_paths": self.parallel_paths,
            "cyclomatic_complexity": self.cyclomatic_complexity,
        }


@dataclass
class DAGValidationResult:
    """Result of validating a DAG definition."""
    valid: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    metrics: Optional[DAGComplexity] = None


def validate_definition(definition: DAGDefinition) -> DAGValidationResult:
    """Validate a DAG definition without constructing an engine.

    Errors: empty graph, duplicate node ids, missing entry/exit nodes,
    edges referencing unknown nodes and cycles. Unreachable nodes and
    conditions on edges that are not decision edges are reported as warnings.

    Args:
        definition: Parsed DAG document

    Returns:
        Validation result with complexity metrics when the graph is sound
    """
    errors: List[str] = []
    warnings: List[str] = []

    node_ids: Set[str] = set()
    for node in definition.nodes:
        if node.id in node_ids:
            errors.append(f"Duplicate node id: {node.id}")
        node_ids.add(node.id)

    if not definition.nodes:
        errors.append("DAG has no nodes")

    if definition.entry_node not in node_ids:
        errors.append(f"Entry node not found: {definition.entry_node}")

    if not definition.exit_nodes:
        warnings.append("No exit nodes declared")
    for exit_node in definition.exit_nodes:
        if exit_node not in node_ids:
            errors.append(f"Exit node not found: {exit_node}")

    edge_ids: Set[str] = set()
    dangling = False
    for edge in definition.edges:
        if edge.id in edge_ids:
            warnings.append(f"Duplicate edge id: {edge.id}")
        edge_ids.add(edge.id)
        if edge.from_node not in node_ids:
            errors.append(f"Edge {edge.id} references non-existent source node: {edge.from_node}")
            dangling = True
        if edge.to_node not in node_ids:
            errors.append(f"Edge {edge.id} references non-existent target node: {edge.to_node}")
            dangling = True
        if edge.condition is not None and not edge.is_conditional:
            warnings.append(
                f"Edge {edge.id} has a condition but flow type {edge.flow_type.value}; the condition is ignored"
            )

    metrics = None
    if not dangling:
        outgoing = _adjacency(definition)
        cycles = _detect_cycles(list(node_ids), outgoing)
        if cycles:
            errors.append("Cycles detected:\n" + "\n".join(cycles))
        elif definition.entry_node in node_ids:
            unreachable = _find_unreachable(definition, outgoing)
            if unreachable:
                warnings.append(f"Unreachable nodes: {', '.join(unreachable)}")
            metrics = _calculate_complexity(definition, outgoing)

    return DAGValidationResult(valid=not errors, errors=errors, warnings=warnings, metrics=metrics)


def _adjacency(definition: DAGDefinition) -> Dict[str, List[str]]:
    outgoing: Dict[str, List[str]] = {node.id: [] for node in definition.nodes}
    for edge in definition.edges:
        outgoing.setdefault(edge.from_node, []).append(edge.to_node)
    return outgoing


def _detect_cycles(node_ids: List[str], outgoing: Dict[str, List[str]]) -> List[str]:
    """Detect cycles using DFS, reporting each as a path."""
    cycles: List[str] = []
    visited: Set[str] = set()
    rec_stack: Set[str] = set()

    def visit(node: str, path: List[str]) -> None:
        visited.add(node)
        rec_stack.add(node)
        path.append(node)

        for neighbor in outgoing.get(node, []):
            if neighbor not in visited:
                visit(neighbor, list(path))
            elif neighbor in rec_stack:
                start = path.index(neighbor) if neighbor in path else 0
                cycles.append(" → ".join(path[start:] + [neighbor]))

        rec_stack.discard(node)

    for node in sorted(node_ids):
        if node not in visited:
            visit(node, [])

    return cycles


def _find_unreachable(definition: DAGDefinition, outgoing: Dict[str, List[str]]) -> List[str]:
    reachable = _reachable_from(definition.entry_node, outgoing)
    reachable.add(definition.entry_node)
    return [node.id for node in definition.nodes if node.id not in reachable]


def _reachable_from(start: str, outgoing: Dict[str, List[str]]) -> Set[str]:
    """All nodes reachable from ``start`` (excluding start unless on a cycle)."""
    seen: Set[str] = set()
    queue = deque(outgoing.get(start, []))
    while queue:
        node = queue.popleft()
        if node in seen:
            continue
        seen.add(node)
        queue.extend(outgoing.get(node, []))
    return seen


def _calculate_complexity(definition: DAGDefinition, outgoing: Dict[str, List[str]]) -> DAGComplexity:
    node_count = len(definition.nodes)
    edge_count = len(definition.edges)

    depths: Dict[str, int] = {}

    def depth(node: str) -> int:
        if node in depths:
            return depths[node]
        children = outgoing.get(node, [])
        value = 1 + max((depth(child) for child in children), default=0)
        depths[node] = value
        return value

    parallel_paths = sum(len(children) for children in outgoing.values() if len(children) > 1)

    return DAGComplexity(
        node_count=node_count,
        edge_count=edge_count,
        max_depth=depth(definition.entry_node),
        branching_factor=edge_count / node_count if node_count else 0.0,
        parallel_paths=parallel_paths,
        cyclomatic_complexity=edge_count - node_count + 2,
    )


class AgentDAG:
    """Immutable, validated DAG of agent nodes.

    Construction fails fast with :class:`DAGConfigurationError` when the
    definition is invalid, so an engine can never be built around a broken
    graph. Reachability is precomputed once, which makes ancestor queries
    during convergence detection constant time.
    """

    def __init__(self, definition: DAGDefinition):
        """Build the DAG.

        Args:
            definition: Parsed DAG document

        Raises:
            DAGConfigurationError: If the definition is invalid
        """
        self.definition = definition
        self.id = definition.id
        self.name = definition.name

        self.validation = validate_definition(definition)
        if not self.validation.valid:
            logger.error(f"[DAG:{self.name}] Validation failed: {self.validation.errors}")
            raise DAGConfigurationError(self.validation.errors, dag_name=self.name)
        for warning in self.validation.warnings:
            logger.warning(f"[DAG:{self.name}] {warning}")

        self.nodes: Dict[str, DAGNodeSpec] = {node.id: node for node in definition.nodes}
        self.edges: List[DAGEdgeSpec] = list(definition.edges)
        self.entry_node: str = definition.entry_node
        self.exit_nodes: FrozenSet[str] = frozenset(definition.exit_nodes)

        self._outgoing: Dict[str, List[DAGEdgeSpec]] = {node_id: [] for node_id in self.nodes}
        self._incoming: Dict[str, List[DAGEdgeSpec]] = {node_id: [] for node_id in self.nodes}
        for edge in self.edges:
            self._outgoing[edge.from_node].append(edge)
            self._incoming[edge.to_node].append(edge)

        adjacency = {node_id: [e.to_node for e in edges] for node_id, edges in self._outgoing.items()}
        self._descendants: Dict[str, FrozenSet[str]] = {
            node_id: frozenset(_reachable_from(node_id, adjacency)) for node_id in self.nodes
        }
        self._topological_order = self._compute_topological_order()

        # Conditions are decoded once, evaluated lazily at traversal time
        self.conditions: Dict[str, Condition] = {
            edge.id: parse_condition(edge.condition) for edge in self.edges
        }

        logger.debug(
            f"[DAG:{self.name}] Loaded {len(self.nodes)} nodes, {len(self.edges)} edges "
            f"(entry={self.entry_node}, exits={sorted(self.exit_nodes)})"
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentDAG":
        return cls(DAGDefinition.from_dict(data))

    @classmethod
    def from_json(cls, text: str) -> "AgentDAG":
        return cls(DAGDefinition.from_json(text))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_node(self, node_id: str) -> Optional[DAGNodeSpec]:
        return self.nodes.get(node_id)

    def outgoing_edges(self, node_id: str) -> List[DAGEdgeSpec]:
        return list(self._outgoing.get(node_id, []))

    def incoming_edges(self, node_id: str) -> List[DAGEdgeSpec]:
        return list(self._incoming.get(node_id, []))

    def get_dependencies(self, node_id: str) -> List[str]:
        """Get the source ids of all incoming edges (in edge order, unique)."""
        return list(dict.fromkeys(edge.from_node for edge in self._incoming.get(node_id, [])))

    def get_dependents(self, node_id: str) -> List[str]:
        return list(dict.fromkeys(edge.to_node for edge in self._outgoing.get(node_id, [])))

    def is_exit(self, node_id: str) -> bool:
        return node_id in self.exit_nodes

    def is_decision_node(self, node_id: str) -> bool:
        """True if any outgoing edge is a conditional branch."""
        return any(edge.is_conditional for edge in self._outgoing.get(node_id, []))

    def conditional_edges(self, node_id: str) -> List[DAGEdgeSpec]:
        return [edge for edge in self._outgoing.get(node_id, []) if edge.is_conditional]

    def get_condition(self, edge_id: str) -> Optional[Condition]:
        return self.conditions.get(edge_id)

    # ------------------------------------------------------------------
    # Reachability
    # ------------------------------------------------------------------

    def descendants(self, node_id: str) -> FrozenSet[str]:
        return self._descendants.get(node_id, frozenset())

    def is_ancestor(self, ancestor_id: str, node_id: str) -> bool:
        """True if there is any path from ``ancestor_id`` to ``node_id``."""
        return node_id in self._descendants.get(ancestor_id, frozenset())

    def topological_order(self) -> List[str]:
        return list(self._topological_order)

    def _compute_topological_order(self) -> List[str]:
        """Kahn's algorithm, ties broken by declaration order."""
        in_degree = {node_id: 0 for node_id in self.nodes}
        for edge in self.edges:
            in_degree[edge.to_node] += 1

        queue = deque(node_id for node_id in self.nodes if in_degree[node_id] == 0)
        order: List[str] = []
        while queue:
            node_id = queue.popleft()
            order.append(node_id)
            for edge in self._outgoing[node_id]:
                in_degree[edge.to_node] -= 1
                if in_degree[edge.to_node] == 0:
                    queue.append(edge.to_node)
        return order

    def get_execution_order(self) -> List[List[str]]:
        """Get topological execution levels.

        Returns:
            List of lists, where each inner list contains nodes that could run in parallel
        """
        in_degree = {name: 0 for name in self.nodes}
        for edge in self.edges:
            in_degree[edge.to_node] += 1

        levels = []
        processed: Set[str] = set()

        while len(processed) < len(self.nodes):
            current_level = [
                name for name, degree in in_degree.items()
                if degree == 0 and name not in processed
            ]
            if not current_level:
                raise DAGConfigurationError(["Unable to determine execution order"], dag_name=self.name)

            levels.append(current_level)
            processed.update(current_level)

            for node_name in current_level:
                for edge in self._outgoing[node_name]:
                    in_degree[edge.to_node] -= 1

        return levels

    def visualize(self) -> str:
        """Generate a text visualization of the DAG.

        Returns:
            String representation of the DAG
        """
        lines = [f"DAG: {self.name} ({self.id}) v{self.definition.version}", "=" * 50]
        if self.definition.description:
            lines.append(self.definition.description)

        lines.append(f"\nEntry: {self.entry_node}")
        lines.append(f"Exit: {', '.join(sorted(self.exit_nodes))}")

        lines.append(f"\nNodes ({len(self.nodes)}):")
        for node in self.nodes.values():
            marker = ""
            if node.type is NodeType.ENTRY or node.id == self.entry_node:
                marker = " [entry]"
            elif node.id in self.exit_nodes:
                marker = " [exit]"
            elif self.is_decision_node(node.id):
                marker = " [decision]"
            lines.append(f"  - {node.id}: {node.agent_name} ({node.type.value}){marker}")

        lines.append(f"\nEdges ({len(self.edges)}):")
        for edge in self.edges:
            cond = ""
            condition = self.conditions.get(edge.id)
            if condition is not None and condition.expression:
                cond = f" if {condition.expression}"
            lines.append(f"  {edge.from_node} →[{edge.flow_type.value}]→ {edge.to_node}{cond}")

        lines.append("\nExecution Order:")
        for i, level in enumerate(self.get_execution_order()):
            lines.append(f"  Level {i + 1}: {', '.join(level)}")

        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"AgentDAG(name={self.name!r}, nodes={len(self.nodes)}, edges={len(self.edges)})"


class DAGBuilder:
    """Fluent builder for DAG definitions."""

    def __init__(self, dag_id: str, name: Optional[str] = None, description: str = "", version: str = "1.0.0"):
        self._id = dag_id
        self._name = name or dag_id
        self._description = description
        self._version = version
        self._nodes: List[Dict[str, Any]] = []
        self._edges: List[Dict[str, Any]] = []
        self._entry: Optional[str] = None
        self._exits: List[str] = []

    def node(
        self,
        node_id: str,
        agent_name: Optional[str] = None,
        node_type: NodeType = NodeType.AGENT,
        **metadata: Any
    ) -> "DAGBuilder":
        self._nodes.append({
            "id": node_id,
            "type": node_type,
            "agentName": agent_name or node_id,
            "metadata": metadata,
        })
        return self

    def entry(self, node_id: str = "entry", agent_name: str = "UserInput") -> "DAGBuilder":
        self._entry = node_id
        return self.node(node_id, agent_name, NodeType.ENTRY)

    def exit(self, node_id: str = "exit", agent_name: str = "Output") -> "DAGBuilder":
        self._exits.append(node_id)
        return self.node(node_id, agent_name, NodeType.EXIT)

    def edge(
        self,
        from_node: str,
        to_node: str,
        flow_type: FlowType = FlowType.CONTEXT_PASS,
        condition: Optional[str] = None,
        edge_id: Optional[str] = None
    ) -> "DAGBuilder":
        """Add an edge; ``condition`` is the condition expression text."""
        edge: Dict[str, Any] = {
            "id": edge_id or f"e{len(self._edges) + 1}",
            "from": from_node,
            "to": to_node,
            "flowType": flow_type,
        }
        if condition is not None:
            edge["condition"] = {"type": "result", "expression": condition}
        self._edges.append(edge)
        return self

    def definition(self) -> DAGDefinition:
        return DAGDefinition.from_dict({
            "id": self._id,
            "name": self._name,
            "description": self._description,
            "version": self._version,
            "nodes": self._nodes,
            "edges": self._edges,
            "entryNode": self._entry or (self._nodes[0]["id"] if self._nodes else ""),
            "exitNodes": self._exits,
        })

    def build(self) -> AgentDAG:
        return AgentDAG(self.definition())

"""Edge condition language.

Conditions are decoded once, when the graph is loaded, into a tagged
:class:`Condition`. Evaluation is lazy: it happens when the edge is
traversed, because its input (the source node's output) only exists once
that node has run.

Unparseable conditions never stop a run. They evaluate to ``True`` and a
warning is logged (fail-open).
"""

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Mapping, Optional, Union

from loguru import logger

from .models import DAGEdgeSpec, EdgeConditionSpec
from .state import ExecutionContext, LAST_NODE_OUTPUT


class ConditionKind(Enum):
    """Kinds of edge condition."""
    ALWAYS = "always"
    PRIOR_SUCCEEDED = "prior_succeeded"
    PRIOR_FAILED = "prior_failed"
    PREDICATE = "predicate"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class Condition:
    """Decoded edge condition."""
    kind: ConditionKind
    expression: str = ""
    predicate: Optional[str] = None  # Predicate name for PREDICATE

    @property
    def is_permissive(self) -> bool:
        return self.kind in (ConditionKind.ALWAYS, ConditionKind.UNKNOWN)


ALWAYS = Condition(ConditionKind.ALWAYS)

_PREFIX = r"(?:result\.|output\.|context\.)?"

_SUCCESS_PATTERNS = [
    re.compile(rf"^{_PREFIX}success(?:===|==|=)true$"),
    re.compile(rf"^{_PREFIX}success(?:!==|!=)false$"),
    re.compile(rf"^{_PREFIX}success$"),
    re.compile(r"^(?:passed|succeeded|on_success|validation_passed|is_valid|valid)$"),
]

_FAILURE_PATTERNS = [
    re.compile(rf"^{_PREFIX}success(?:===|==|=)false$"),
    re.compile(rf"^{_PREFIX}success(?:!==|!=)true$"),
    re.compile(rf"^!{_PREFIX}success$"),
    re.compile(r"^(?:failed|failure|on_failure|validation_failed|invalid)$"),
]

_PREDICATE_PATTERN = re.compile(r"^predicate(?::|\()([\w.\-]+)\)?$", re.IGNORECASE)

_FAILED_MARKER = re.compile(r'"success"\s*:\s*false', re.IGNORECASE)


def parse_condition(raw: Union[EdgeConditionSpec, str, Dict[str, Any], None]) -> Condition:
    """Decode an edge condition into a :class:`Condition`.

    Args:
        raw: Decoded condition object, raw (undecodable) text or None

    Returns:
        Decoded condition. Never raises; anything outside the vocabulary
        becomes ``ConditionKind.UNKNOWN``.
    """
    if raw is None:
        return ALWAYS

    if isinstance(raw, dict):
        try:
            raw = EdgeConditionSpec.model_validate(raw)
        except ValueError:
            return Condition(ConditionKind.UNKNOWN, expression=json.dumps(raw, default=str))

    if isinstance(raw, str):
        # Text that could not be decoded as a condition object
        return Condition(ConditionKind.UNKNOWN, expression=raw)

    expression = raw.expression or ""
    normalized = _normalize(expression)
    if not normalized:
        return ALWAYS

    # Predicate names keep their case
    match = _PREDICATE_PATTERN.match(re.sub(r"\s+", "", expression.strip()))
    if match:
        return Condition(ConditionKind.PREDICATE, expression=expression, predicate=match.group(1))

    if any(p.match(normalized) for p in _FAILURE_PATTERNS):
        return Condition(ConditionKind.PRIOR_FAILED, expression=expression)
    if any(p.match(normalized) for p in _SUCCESS_PATTERNS):
        return Condition(ConditionKind.PRIOR_SUCCEEDED, expression=expression)

    return Condition(ConditionKind.UNKNOWN, expression=expression)


def _normalize(expression: str) -> str:
    text = expression.strip().lower()
    text = re.sub(r"\s+", "", text)
    text = text.strip("'\"`")
    # Unwrap one level of redundant parentheses: "(success===true)"
    if text.startswith("(") and text.endswith(")"):
        text = text[1:-1]
    return text


def output_succeeded(output: Any) -> bool:
    """Decide whether a node output reports success.

    A mapping with a ``success`` key is read structurally. Anything else is
    serialized and checked for a ``"success": false`` marker.
    """
    if isinstance(output, Mapping) and "success" in output:
        return _truthy(output["success"])
    return _FAILED_MARKER.search(_serialize(output)) is None


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "ok")
    return bool(value)


def _serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, default=str)
    except (TypeError, ValueError):
        return str(value)


Predicate = Callable[[ExecutionContext], bool]
WarningCallback = Callable[[DAGEdgeSpec, str], None]


class ConditionEvaluator:
    """Evaluates edge conditions against the live execution context."""

    def __init__(
        self,
        conditions: Optional[Mapping[str, Condition]] = None,
        predicates: Optional[Mapping[str, Predicate]] = None,
        on_warning: Optional[WarningCallback] = None
    ):
        """Initialize the evaluator.

        Args:
            conditions: Conditions decoded at graph load, keyed by edge id
            predicates: Named predicates for ``predicate:<name>`` conditions
            on_warning: Called with (edge, message) when a condition is
                evaluated permissively because it could not be understood
        """
        self._conditions: Dict[str, Condition] = dict(conditions or {})
        self._predicates: Dict[str, Predicate] = dict(predicates or {})
        self._on_warning = on_warning

    def register_predicate(self, name: str, predicate: Predicate) -> None:
        self._predicates[name] = predicate

    def condition_for(self, edge: DAGEdgeSpec) -> Condition:
        condition = self._conditions.get(edge.id)
        if condition is None:
            condition = parse_condition(edge.condition)
            self._conditions[edge.id] = condition
        return condition

    def evaluate(self, edge: DAGEdgeSpec, context: ExecutionContext) -> bool:
        """Check whether an edge may be traversed.

        Args:
            edge: Edge to check
            context: Current execution context

        Returns:
            True if the edge is open
        """
        condition = self.condition_for(edge)

        if condition.kind is ConditionKind.ALWAYS:
            return True

        if condition.kind is ConditionKind.UNKNOWN:
            self._warn(edge, f"Unrecognized condition {condition.expression!r}, treating as true")
            return True

        if condition.kind is ConditionKind.PREDICATE:
            predicate = self._predicates.get(condition.predicate)
            if predicate is None:
                self._warn(edge, f"Unknown predicate '{condition.predicate}', treating as true")
                return True
            try:
                result = bool(predicate(context))
            except Exception as e:
                self._warn(edge, f"Predicate '{condition.predicate}' raised {e!r}, treating as true")
                return True
            logger.debug(f"[CONDITION] {edge.id}: predicate {condition.predicate} -> {result}")
            return result

        prior = self._prior_output(edge, context)
        succeeded = output_succeeded(prior)
        result = succeeded if condition.kind is ConditionKind.PRIOR_SUCCEEDED else not succeeded
        logger.debug(
            f"[CONDITION] {edge.id} ({edge.from_node}->{edge.to_node}): "
            f"{condition.kind.value}, prior succeeded={succeeded} -> {result}"
        )
        return result

    @staticmethod
    def _prior_output(edge: DAGEdgeSpec, context: ExecutionContext) -> Any:
        if context.has_node_output(edge.from_node):
            return context.node_output(edge.from_node)
        return context.get(LAST_NODE_OUTPUT)

    def _warn(self, edge: DAGEdgeSpec, message: str) -> None:
        logger.warning(f"[CONDITION] Edge {edge.id} ({edge.from_node}->{edge.to_node}): {message}")
        if self._on_warning is not None:
            self._on_warning(edge, message)

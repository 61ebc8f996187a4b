"""Execution context shared by the nodes of a DAG run."""

from typing import Dict, Any, Optional, List, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from loguru import logger


LAST_NODE_OUTPUT = "lastNodeOutput"
LAST_EXECUTED_NODE = "lastExecutedNode"
RESERVED_KEYS = frozenset({LAST_NODE_OUTPUT, LAST_EXECUTED_NODE})


@dataclass
class ContextEntry:
    """Individual context entry with metadata."""
    key: str
    value: Any
    timestamp: datetime = field(default_factory=datetime.now)
    source: Optional[str] = None  # Which node wrote this

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "key": self.key,
            "value": self.value,
            "timestamp": self.timestamp.isoformat(),
            "source": self.source,
        }


class ExecutionContext:
    """Mutable key/value context for one DAG execution.

    Each node's raw output is stored under its node id. When the output is a
    mapping and ``promote_outputs`` is enabled, its keys are also merged into
    the top level, so a later node can overwrite a key written by an earlier
    one. Shadowed keys are logged at debug level.

    Raw outputs are also kept in a separate store read by ``node_output``,
    which promotion cannot overwrite.
    """

    def __init__(self, initial: Optional[Mapping[str, Any]] = None, promote_outputs: bool = True):
        """Initialize the context.

        Args:
            initial: Initial values (written with source "initial")
            promote_outputs: Merge mapping outputs into the top level
        """
        self._entries: Dict[str, ContextEntry] = {}
        self._history: List[ContextEntry] = []
        self._node_outputs: Dict[str, Any] = {}
        self.promote_outputs = promote_outputs

        for key, value in (initial or {}).items():
            self.set(key, value, source="initial")

    def set(self, key: str, value: Any, source: Optional[str] = None) -> None:
        """Set a value in the context.

        Args:
            key: Context key
            value: Value to store
            source: Node id that produced the value
        """
        entry = ContextEntry(key=key, value=value, source=source)
        self._entries[key] = entry
        self._history.append(entry)

        logger.debug(f"[STATE] Set '{key}' = {str(value)[:100]} (source: {source})")

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        return entry.value

    def has(self, key: str) -> bool:
        return key in self._entries

    def get_entry(self, key: str) -> Optional[ContextEntry]:
        return self._entries.get(key)

    def record_node_output(self, node_id: str, output: Any) -> None:
        """Store a node's output and update the bookkeeping keys.

        Args:
            node_id: Node that produced the output
            output: Raw output returned by the node executor
        """
        self._node_outputs[node_id] = output
        self.set(node_id, output, source=node_id)

        if self.promote_outputs and isinstance(output, Mapping):
            for key, value in output.items():
                key = str(key)
                if key in RESERVED_KEYS:
                    logger.warning(f"[STATE] Node '{node_id}' output key '{key}' is reserved, not promoted")
                    continue
                if key == node_id:
                    logger.debug(f"[STATE] Node '{node_id}' output key matches its node id, not promoted")
                    continue
                previous = self._entries.get(key)
                if previous is not None and previous.source != node_id:
                    logger.debug(
                        f"[STATE] Key '{key}' from '{previous.source}' shadowed by output of '{node_id}'"
                    )
                self.set(key, value, source=node_id)

        self.set(LAST_NODE_OUTPUT, output, source=node_id)
        self.set(LAST_EXECUTED_NODE, node_id, source=node_id)

    def has_node_output(self, node_id: str) -> bool:
        return node_id in self._node_outputs

    def node_output(self, node_id: str, default: Any = None) -> Any:
        """Get the raw output a node returned, regardless of promoted keys."""
        return self._node_outputs.get(node_id, default)

    @property
    def last_executed_node(self) -> Optional[str]:
        return self.get(LAST_EXECUTED_NODE)

    @property
    def last_node_output(self) -> Any:
        return self.get(LAST_NODE_OUTPUT)

    def snapshot(self) -> Dict[str, Any]:
        """Get all context values as a plain dictionary."""
        return {key: entry.value for key, entry in self._entries.items()}

    def get_history(self, key: Optional[str] = None) -> List[ContextEntry]:
        """Get context change history.

        Args:
            key: Optional key to filter history

        Returns:
            List of context entries
        """
        if key is None:
            return self._history.copy()
        return [entry for entry in self._history if entry.key == key]

    def to_dict(self) -> Dict[str, Any]:
        """Export context with entry metadata."""
        return {key: entry.to_dict() for key, entry in self._entries.items()}

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"ExecutionContext(entries={len(self._entries)})"

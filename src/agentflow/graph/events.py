"""Lifecycle events emitted by the DAG executor.

Events are a side channel for dashboards, log sinks and tracing. Handler
failures are logged and never affect the run.
"""

import inspect
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


class EventType(str, Enum):
    """Types of events emitted during execution."""
    EXECUTION_START = "executionStart"
    NODE_START = "nodeStart"
    NODE_COMPLETE = "nodeComplete"
    NODE_ERROR = "nodeError"
    PARALLEL_START = "parallelStart"
    PARALLEL_COMPLETE = "parallelComplete"
    CONDITION_WARNING = "conditionWarning"
    EXECUTION_COMPLETE = "executionComplete"
    EXECUTION_ERROR = "executionError"


@dataclass
class DAGEvent:
    """An event in a DAG run."""
    type: EventType
    dag_id: str
    execution_id: str
    node_id: Optional[str] = None
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.type.value,
            "dag_id": self.dag_id,
            "execution_id": self.execution_id,
            "node_id": self.node_id,
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }


EventHandler = Callable[[DAGEvent], Any]


class EventEmitter:
    """Minimal observer registry.

    Example:
        emitter = EventEmitter()
        emitter.on(EventType.NODE_COMPLETE, lambda e: print(e.node_id))
        emitter.on_any(timeline.append)
    """

    def __init__(self, max_history: int = 1000):
        self._handlers: Dict[Optional[EventType], List[EventHandler]] = {}
        self._history: List[DAGEvent] = []
        self._max_history = max_history

    def on(self, event_type: EventType, handler: EventHandler) -> None:
        self._handlers.setdefault(event_type, []).append(handler)

    def on_any(self, handler: EventHandler) -> None:
        """Subscribe to every event type."""
        self._handlers.setdefault(None, []).append(handler)

    def off(self, event_type: Optional[EventType], handler: EventHandler) -> bool:
        handlers = self._handlers.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)
            return True
        return False

    async def emit(self, event: DAGEvent) -> None:
        """Deliver an event to matching handlers, in subscription order.

        Handlers may be plain functions or coroutine functions.
        """
        self._history.append(event)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

        handlers = self._handlers.get(event.type, []) + self._handlers.get(None, [])
        for handler in handlers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[EVENTS] Handler error for {event.type.value}: {e}")

    def get_history(self, event_type: Optional[EventType] = None) -> List[DAGEvent]:
        if event_type is None:
            return list(self._history)
        return [event for event in self._history if event.type is event_type]

    def clear_history(self) -> None:
        self._history.clear()

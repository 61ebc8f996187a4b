"""OpenTelemetry tracing for DAG runs.

This module provides tracing for:
- DAG execution (one ``dag.execute`` span per run)
- Node executions (one ``dag.node.<id>`` child span per node)
- Fan-outs and condition warnings (span events on the run span)

Tracing is driven entirely by executor events, so the engine itself has no
tracing code: attach a :class:`DAGTracer` to the executor's emitter.
"""

from typing import Any, Dict, Optional, Tuple

from loguru import logger
from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode

from .graph.events import DAGEvent, EventEmitter, EventType
from .settings import Settings


class TelemetryConfig:
    """Configuration for OpenTelemetry tracing."""

    def __init__(
        self,
        service_name: str = "agentflow-dag",
        exporter_type: str = "console",  # console, otlp, none
        otlp_endpoint: Optional[str] = None,
        enabled: bool = True
    ):
        """Initialize telemetry configuration.

        Args:
            service_name: Name of the service for tracing
            exporter_type: Type of exporter (console, otlp, none)
            otlp_endpoint: OTLP endpoint URL (e.g., "http://localhost:4317")
            enabled: Whether tracing is enabled
        """
        self.service_name = service_name
        self.exporter_type = exporter_type
        self.otlp_endpoint = otlp_endpoint or "http://localhost:4317"
        self.enabled = enabled and exporter_type != "none"

    @classmethod
    def from_settings(cls, settings: Settings) -> "TelemetryConfig":
        return cls(
            service_name=settings.telemetry_service_name,
            exporter_type=settings.telemetry_exporter,
            otlp_endpoint=settings.telemetry_otlp_endpoint,
            enabled=settings.telemetry_enabled,
        )


def setup_telemetry(config: TelemetryConfig) -> Optional[trace.Tracer]:
    """Setup OpenTelemetry tracing.

    Args:
        config: Telemetry configuration

    Returns:
        Tracer instance if enabled, None otherwise
    """
    if not config.enabled:
        return None

    try:
        resource = Resource(attributes={
            SERVICE_NAME: config.service_name
        })
        provider = TracerProvider(resource=resource)

        if config.exporter_type == "console":
            exporter = ConsoleSpanExporter()
            logger.info("[TELEMETRY] Using console exporter")
        elif config.exporter_type == "otlp":
            exporter = OTLPSpanExporter(endpoint=config.otlp_endpoint)
            logger.info(f"[TELEMETRY] Using OTLP exporter at {config.otlp_endpoint}")
        else:
            logger.error(f"[TELEMETRY] Unknown exporter type: {config.exporter_type}")
            return None

        provider.add_span_processor(BatchSpanProcessor(exporter))
        trace.set_tracer_provider(provider)

        tracer = trace.get_tracer(__name__)
        logger.info(f"[TELEMETRY] Tracing initialized for service '{config.service_name}'")
        return tracer

    except Exception as e:
        logger.exception(f"[TELEMETRY] Failed to setup telemetry: {e}")
        return None


def _attribute(value: Any) -> Any:
    if isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return list(value)
    return str(value)


class DAGTracer:
    """Maps executor events to OpenTelemetry spans.

    Example:
        tracer = initialize_telemetry(exporter_type="console")
        executor = DAGExecutor(dag, node_executor)
        tracer.attach(executor.emitter)
    """

    def __init__(self, tracer: Optional[trace.Tracer] = None):
        """Initialize DAG tracer.

        Args:
            tracer: OpenTelemetry tracer instance (tracing disabled if None)
        """
        self.tracer = tracer
        self.enabled = tracer is not None
        self._runs: Dict[str, Span] = {}
        self._nodes: Dict[Tuple[str, str], Span] = {}

    def attach(self, emitter: EventEmitter) -> "DAGTracer":
        """Subscribe to every event of ``emitter``."""
        if self.enabled:
            emitter.on_any(self.handle_event)
        return self

    def detach(self, emitter: EventEmitter) -> None:
        emitter.off(None, self.handle_event)

    def handle_event(self, event: DAGEvent) -> None:
        if not self.enabled:
            return

        handlers = {
            EventType.EXECUTION_START: self._start_run,
            EventType.NODE_START: self._start_node,
            EventType.NODE_COMPLETE: self._end_node,
            EventType.NODE_ERROR: self._end_node,
            EventType.PARALLEL_START: self._add_run_event,
            EventType.PARALLEL_COMPLETE: self._add_run_event,
            EventType.CONDITION_WARNING: self._add_run_event,
            EventType.EXECUTION_COMPLETE: self._end_run,
            EventType.EXECUTION_ERROR: self._end_run,
        }
        handlers[event.type](event)

    def _start_run(self, event: DAGEvent) -> None:
        span = self.tracer.start_span(
            "dag.execute",
            attributes={
                "dag.id": event.dag_id,
                "dag.name": _attribute(event.data.get("dag_name", "")),
                "dag.execution_id": event.execution_id,
                "dag.node_count": _attribute(event.data.get("node_count", 0)),
                "dag.edge_count": _attribute(event.data.get("edge_count", 0)),
            },
        )
        self._runs[event.execution_id] = span

    def _start_node(self, event: DAGEvent) -> None:
        parent = self._runs.get(event.execution_id)
        ctx = trace.set_span_in_context(parent) if parent is not None else otel_context.get_current()
        span = self.tracer.start_span(
            f"dag.node.{event.node_id}",
            context=ctx,
            attributes={
                "dag.node.id": event.node_id or "",
                "dag.node.agent_name": _attribute(event.data.get("agent_name", "")),
                "dag.node.agent_kind": _attribute(event.data.get("agent_kind", "")),
                "dag.node.flow_type": _attribute(event.data.get("flow_type", "")),
            },
        )
        self._nodes[(event.execution_id, event.node_id)] = span

    def _end_node(self, event: DAGEvent) -> None:
        span = self._nodes.pop((event.execution_id, event.node_id), None)
        if span is None:
            return
        span.set_attribute("dag.node.duration_ms", float(event.data.get("duration_ms", 0.0)))
        if event.type is EventType.NODE_ERROR:
            span.set_status(Status(StatusCode.ERROR, str(event.data.get("error", ""))))
            if event.data.get("cancelled"):
                span.set_attribute("dag.node.cancelled", True)
        else:
            span.set_status(Status(StatusCode.OK))
        span.end()

    def _add_run_event(self, event: DAGEvent) -> None:
        span = self._runs.get(event.execution_id)
        if span is None:
            return
        attributes = {key: _attribute(value) for key, value in event.data.items()}
        if event.node_id:
            attributes["node_id"] = event.node_id
        span.add_event(event.type.value, attributes=attributes)

    def _end_run(self, event: DAGEvent) -> None:
        span = self._runs.pop(event.execution_id, None)
        if span is None:
            return
        span.set_attribute("dag.nodes_executed", int(event.data.get("nodes_executed", 0)))
        span.set_attribute("dag.duration_ms", float(event.data.get("duration_ms", 0.0)))
        if event.type is EventType.EXECUTION_ERROR:
            span.set_attribute("dag.error_type", str(event.data.get("error_type", "")))
            span.set_status(Status(StatusCode.ERROR, str(event.data.get("error", ""))))
        else:
            span.set_status(Status(StatusCode.OK))
        span.end()


# Global tracer instance
_global_tracer: Optional[DAGTracer] = None


def get_tracer() -> DAGTracer:
    """Get the global DAG tracer (disabled until telemetry is initialized)."""
    global _global_tracer
    if _global_tracer is None:
        _global_tracer = DAGTracer()
    return _global_tracer


def initialize_telemetry(
    service_name: str = "agentflow-dag",
    exporter_type: str = "console",
    otlp_endpoint: Optional[str] = None,
    enabled: bool = True,
    settings: Optional[Settings] = None
) -> DAGTracer:
    """Initialize global telemetry.

    Args:
        service_name: Name of the service
        exporter_type: Type of exporter (console, otlp, none)
        otlp_endpoint: OTLP endpoint URL
        enabled: Whether to enable tracing
        settings: Read the configuration from settings instead

    Returns:
        DAGTracer instance
    """
    global _global_tracer

    if settings is not None:
        config = TelemetryConfig.from_settings(settings)
    else:
        config = TelemetryConfig(
            service_name=service_name,
            exporter_type=exporter_type,
            otlp_endpoint=otlp_endpoint,
            enabled=enabled
        )

    _global_tracer = DAGTracer(setup_telemetry(config))
    return _global_tracer

import structlog
import logging
import sys
import time
from contextlib import contextmanager
from typing import Dict, Any, Iterator, Optional
from datetime import datetime
import os


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "convo-agent"
) -> None:
    """Setup structured logging configuration"""

    # Configure Python logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO)
    )

    # Processors for structlog
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        add_service_context,
    ]

    # Add appropriate renderer based on format
    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    # Configure structlog
    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Set service name in context
    structlog.contextvars.bind_contextvars(
        service=service_name,
        environment=os.getenv("ENVIRONMENT", "development"),
    )


def add_service_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Add turn context to all log entries"""

    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.utcnow().isoformat()

    bound = structlog.contextvars.get_contextvars()
    for key in ("trace_id", "session_id", "conversation_id"):
        if bound.get(key) and key not in event_dict:
            event_dict[key] = bound[key]

    return event_dict


def bind_turn_context(session_id: str, conversation_id: str, trace_id: Optional[str] = None) -> None:
    """Attach the current turn's identifiers to every log line on this task"""

    values = {"session_id": session_id, "conversation_id": conversation_id}
    if trace_id:
        values["trace_id"] = trace_id
    structlog.contextvars.bind_contextvars(**values)


class AgentLogger:
    """Specialized logger for orchestration events"""

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_turn_event(
        self,
        event_type: str,
        planner: str,
        session_id: str,
        data: Optional[Dict[str, Any]] = None,
        **kwargs
    ):
        """Log turn lifecycle events (started, settled, cancelled, failed)"""

        self.logger.info(
            "turn_event",
            event_type=event_type,
            planner=planner,
            session_id=session_id,
            data=data or {},
            **kwargs
        )

    def log_tool_execution(
        self,
        tool_name: str,
        call_id: str,
        session_id: str,
        status: str,
        duration_ms: Optional[float] = None,
        error: Optional[str] = None
    ):
        """Log tool execution events"""

        log = self.logger.warning if status == "error" else self.logger.info
        log(
            "tool_execution",
            tool_name=tool_name,
            call_id=call_id,
            session_id=session_id,
            status=status,
            duration_ms=duration_ms,
            error=error
        )

    def log_round_transition(
        self,
        session_id: str,
        round_index: int,
        from_node: str,
        to_node: str,
        condition: Optional[str] = None
    ):
        """Log transitions between completion round stages"""

        self.logger.debug(
            "round_transition",
            session_id=session_id,
            round_index=round_index,
            from_node=from_node,
            to_node=to_node,
            condition=condition
        )


# Global logger instance
agent_logger = AgentLogger("convo_agent")


class MetricsCollector:
    """Collect latency and counter metrics and log each sample"""

    def __init__(self):
        self.latencies: Dict[str, Dict[str, float]] = {}
        self.counters: Dict[str, int] = {}
        self.gauges: Dict[str, float] = {}

    def record_latency(self, operation: str, duration_ms: float, tags: Optional[Dict[str, str]] = None):
        """Record operation latency"""

        stats = self.latencies.setdefault(operation, {
            "count": 0,
            "sum": 0.0,
            "min": float("inf"),
            "max": 0.0
        })
        stats["count"] += 1
        stats["sum"] += duration_ms
        stats["min"] = min(stats["min"], duration_ms)
        stats["max"] = max(stats["max"], duration_ms)

        agent_logger.logger.debug(
            "metric",
            metric_type="latency",
            operation=operation,
            duration_ms=duration_ms,
            tags=tags or {}
        )

    def increment_counter(self, name: str, value: int = 1, tags: Optional[Dict[str, str]] = None):
        """Increment a counter metric"""

        self.counters[name] = self.counters.get(name, 0) + value

        agent_logger.logger.debug(
            "metric",
            metric_type="counter",
            name=name,
            value=value,
            tags=tags or {}
        )

    def set_gauge(self, name: str, value: float, tags: Optional[Dict[str, str]] = None):
        """Set a gauge metric"""

        self.gauges[name] = value

        agent_logger.logger.debug(
            "metric",
            metric_type="gauge",
            name=name,
            value=value,
            tags=tags or {}
        )

    @contextmanager
    def measure(self, operation: str, tags: Optional[Dict[str, str]] = None) -> Iterator[None]:
        """Time the enclosed block, recording it even when it raises"""

        started = time.perf_counter()
        try:
            yield
        finally:
            self.record_latency(operation, (time.perf_counter() - started) * 1000, tags)

    def get_metrics_summary(self) -> Dict[str, Any]:
        """Get summary of all metrics"""

        summary: Dict[str, Any] = {}
        for operation, stats in self.latencies.items():
            summary[f"latency.{operation}"] = {
                "count": stats["count"],
                "avg": stats["sum"] / stats["count"] if stats["count"] > 0 else 0,
                "min": stats["min"] if stats["min"] != float("inf") else 0,
                "max": stats["max"]
            }
        summary.update(self.counters)
        summary.update({f"gauge.{name}": value for name, value in self.gauges.items()})
        return summary


# Global metrics collector
metrics = MetricsCollector()

import structlog
import logging
import sys
from dataclasses import dataclass
from typing import Dict, Any, List, Optional

# Request-scoped ids copied onto every entry when bound via contextvars
REQUEST_CONTEXT_KEYS = ("user_id", "session_id")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    service_name: str = "memory-gate"
) -> None:
    """Configure structlog on top of the stdlib root logger.

    ``log_format`` is ``json`` for deployed services and anything else
    (usually ``console``) for a human-readable development renderer.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
        force=True
    )

    renderer = structlog.processors.JSONRenderer() if log_format == "json" else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            add_request_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=service_name)


def add_request_context(logger: logging.Logger, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    bound = structlog.contextvars.get_contextvars()
    for key in REQUEST_CONTEXT_KEYS:
        if bound.get(key):
            event_dict.setdefault(key, bound[key])
    return event_dict


class MemoryLogger:
    """Structured events for the memory pipeline.

    Each method emits one event name so retrieval, tool-call and
    distillation activity can be filtered out of the JSON log stream.
    """

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def log_retrieval(
        self,
        user_id: str,
        mode: str,
        candidate_ids: List[str],
        duration_ms: Optional[float] = None,
        **kwargs
    ):
        self.logger.info(
            "memory.retrieval",
            user_id=user_id,
            mode=mode,
            selected=candidate_ids,
            selected_count=len(candidate_ids),
            duration_ms=duration_ms,
            **kwargs
        )

    def log_tool_call(
        self,
        session_id: str,
        phase: str,
        tool_name: str,
        call_id: str,
        toolkit: Optional[str] = None
    ):
        """``phase`` is ``started`` or ``completed``"""

        self.logger.info(
            "stream.tool_call",
            session_id=session_id,
            phase=phase,
            tool_name=tool_name,
            toolkit=toolkit,
            call_id=call_id
        )

    def log_distillation(
        self,
        users_processed: int,
        total_insights: int,
        error_count: int,
        duration_ms: Optional[float] = None
    ):
        level = self.logger.warning if error_count else self.logger.info
        level(
            "memory.distillation",
            users_processed=users_processed,
            total_insights=total_insights,
            error_count=error_count,
            duration_ms=duration_ms
        )


memory_logger = MemoryLogger("memory")


@dataclass
class LatencyStats:
    count: int = 0
    total_ms: float = 0.0
    min_ms: Optional[float] = None
    max_ms: float = 0.0

    def add(self, duration_ms: float) -> None:
        self.count += 1
        self.total_ms += duration_ms
        self.min_ms = duration_ms if self.min_ms is None else min(self.min_ms, duration_ms)
        self.max_ms = max(self.max_ms, duration_ms)

    def summary(self) -> Dict[str, float]:
        return {
            "count": self.count,
            "avg": self.total_ms / self.count if self.count else 0,
            "min": self.min_ms or 0,
            "max": self.max_ms,
        }


class MetricsCollector:
    """Process-local latencies and counters, surfaced on the health endpoint"""

    def __init__(self):
        self.latencies: Dict[str, LatencyStats] = {}
        self.counters: Dict[str, int] = {}

    def record_latency(self, operation: str, duration_ms: float):
        self.latencies.setdefault(operation, LatencyStats()).add(duration_ms)
        memory_logger.logger.debug("metric.latency", operation=operation, duration_ms=duration_ms)

    def increment_counter(self, name: str, value: int = 1):
        self.counters[name] = self.counters.get(name, 0) + value
        memory_logger.logger.debug("metric.counter", name=name, value=value)

    def get_metrics_summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {f"latency.{name}": stats.summary() for name, stats in self.latencies.items()}
        summary.update(self.counters)
        return summary


metrics = MetricsCollector()

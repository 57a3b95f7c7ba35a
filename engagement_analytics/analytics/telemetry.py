"""
Analytics Pipeline Telemetry
============================

**Version**: 1.0.0
**Status**: Active

Stage-level timing and outcome tracking for analytics requests.

EVENTS
------
    request.started     operation, filter summary
    stage.started       stage
    stage.completed     stage, duration_ms, success
    request.completed   duration_ms, row_count, total_count
    request.failed      duration_ms, error_code, error_category

Stages, in pipeline order: validation, authorization, compilation,
execution, lookup, transform.

Every event is logged as one structured line:

    [ANALYTICS] event=stage.completed | request_id=ar_3f2a9c1b7d4e | operation=engagement | stage=execution | duration_ms=41.27

and kept in a bounded in-memory buffer for `get_stats()`.

USAGE
-----
```python
telemetry = get_telemetry()

with telemetry.track_request("engagement", filters) as ctx:
    with ctx.track_stage(Stage.COMPILATION):
        compilation = compiler.compile(filters, group_by, pagination)
    ...
    ctx.set_result(row_count=len(rows), total_count=total)
```
"""

from __future__ import annotations

import logging
import time
import uuid
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass, field as dataclass_field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, Generator, List, Optional, Union

from engagement_analytics.analytics.errors import AnalyticsError
from engagement_analytics.analytics.filters import AnalyticsFilters

logger = logging.getLogger(__name__)


class EventType(Enum):
    REQUEST_STARTED = "request.started"
    REQUEST_COMPLETED = "request.completed"
    REQUEST_FAILED = "request.failed"
    STAGE_STARTED = "stage.started"
    STAGE_COMPLETED = "stage.completed"


class Stage(Enum):
    VALIDATION = "validation"
    AUTHORIZATION = "authorization"
    COMPILATION = "compilation"
    EXECUTION = "execution"
    LOOKUP = "lookup"
    TRANSFORM = "transform"


@dataclass
class TelemetryEvent:
    """
    Single telemetry event.

    PARAMETERS:
        event_type: What happened
        timestamp: ISO-8601 UTC
        request_id: Correlates every event of one request
        operation: engagement / role_distribution / geographic_breakdown / growth
        stage: Pipeline stage, for stage events
        duration_ms: Elapsed time, for completion events
        success: False for failures
        data: Extra structured fields
    """
    event_type: EventType
    timestamp: str
    request_id: str
    operation: str
    stage: Optional[str] = None
    duration_ms: Optional[float] = None
    success: bool = True
    data: Dict[str, Any] = dataclass_field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type.value,
            "timestamp": self.timestamp,
            "request_id": self.request_id,
            "operation": self.operation,
            "stage": self.stage,
            "duration_ms": self.duration_ms,
            "success": self.success,
            "data": self.data,
        }

    def to_log_line(self) -> str:
        parts = [
            f"event={self.event_type.value}",
            f"request_id={self.request_id}",
            f"operation={self.operation}",
        ]

        if self.stage:
            parts.append(f"stage={self.stage}")

        if self.duration_ms is not None:
            parts.append(f"duration_ms={self.duration_ms:.2f}")

        if not self.success:
            parts.append("success=false")

        for key in ("row_count", "total_count", "error_code", "error_category"):
            if key in self.data:
                parts.append(f"{key}={self.data[key]}")

        return " | ".join(parts)


@dataclass
class RequestMetrics:
    """Timing and outcome summary for one request."""
    request_id: str
    operation: str
    start_time: float
    end_time: Optional[float] = None
    stages: Dict[str, float] = dataclass_field(default_factory=dict)
    row_count: int = 0
    total_count: int = 0
    error_code: Optional[str] = None
    success: bool = True

    @property
    def total_duration_ms(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time) * 1000

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_id": self.request_id,
            "operation": self.operation,
            "total_duration_ms": self.total_duration_ms,
            "stages": self.stages,
            "row_count": self.row_count,
            "total_count": self.total_count,
            "error_code": self.error_code,
            "success": self.success,
        }


# =============================================================================
# REQUEST CONTEXT
# =============================================================================

class RequestContext:
    """
    Tracks one analytics request through the pipeline.

    Used as a context manager; an exception escaping the block marks the
    request failed and is re-raised unchanged.
    """

    def __init__(
        self,
        collector: "TelemetryCollector",
        request_id: str,
        operation: str,
        filters: Optional[AnalyticsFilters] = None,
    ):
        self.collector = collector
        self.request_id = request_id
        self.operation = operation
        self.filters = filters
        self.metrics = RequestMetrics(
            request_id=request_id, operation=operation, start_time=time.time()
        )

    def emit(self, event_type: EventType, **kwargs) -> None:
        event = TelemetryEvent(
            event_type=event_type,
            timestamp=datetime.utcnow().isoformat() + "Z",
            request_id=self.request_id,
            operation=self.operation,
            **kwargs,
        )
        self.collector.record(event)

    @contextmanager
    def track_stage(self, stage: Union[Stage, str]) -> Generator[None, None, None]:
        name = stage.value if isinstance(stage, Stage) else stage
        started = time.time()
        self.emit(EventType.STAGE_STARTED, stage=name)

        try:
            yield
        except Exception as e:
            duration_ms = (time.time() - started) * 1000
            self.metrics.stages[name] = duration_ms
            self.emit(
                EventType.STAGE_COMPLETED,
                stage=name,
                duration_ms=duration_ms,
                success=False,
                data={"error": str(e)},
            )
            raise

        duration_ms = (time.time() - started) * 1000
        self.metrics.stages[name] = duration_ms
        self.emit(EventType.STAGE_COMPLETED, stage=name, duration_ms=duration_ms)

    def set_result(self, row_count: int, total_count: int = 0) -> None:
        self.metrics.row_count = row_count
        self.metrics.total_count = total_count

    def __enter__(self) -> "RequestContext":
        data = {}
        if self.filters is not None:
            data["filters"] = self.filters.describe()
        self.emit(EventType.REQUEST_STARTED, data=data)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.metrics.end_time = time.time()
        duration_ms = self.metrics.total_duration_ms

        if exc_type is None:
            self.emit(
                EventType.REQUEST_COMPLETED,
                duration_ms=duration_ms,
                data={
                    "row_count": self.metrics.row_count,
                    "total_count": self.metrics.total_count,
                },
            )
        else:
            self.metrics.success = False
            if isinstance(exc_val, AnalyticsError):
                failure = {
                    "error_code": exc_val.code.value,
                    "error_category": exc_val.category.value,
                }
            else:
                failure = {"error_code": exc_type.__name__, "error_category": "internal"}
            self.metrics.error_code = failure["error_code"]
            self.emit(
                EventType.REQUEST_FAILED,
                duration_ms=duration_ms,
                success=False,
                data=failure,
            )

        self.collector.record_metrics(self.metrics)
        return False


# =============================================================================
# TELEMETRY COLLECTOR
# =============================================================================

class TelemetryCollector:
    """
    Central telemetry collection for the analytics engine.

    WHAT: Logs every event and keeps the most recent events and request
    metrics in memory.

    WHY: "Which stage is slow" and "what is failing" must be answerable
    from logs alone.

    PARAMETERS:
        enabled: When False, nothing is logged or buffered
        buffer_size: Events / metrics kept in memory
    """

    def __init__(self, enabled: bool = True, buffer_size: int = 1000):
        self.enabled = enabled
        self.buffer_size = buffer_size
        self._events: Deque[TelemetryEvent] = deque(maxlen=buffer_size)
        self._metrics: Deque[RequestMetrics] = deque(maxlen=buffer_size)
        self._request_count = 0
        self._error_count = 0
        self._total_duration_ms = 0.0

    def track_request(
        self,
        operation: str,
        filters: Optional[AnalyticsFilters] = None,
    ) -> RequestContext:
        return RequestContext(
            collector=self,
            request_id=self._generate_request_id(),
            operation=operation,
            filters=filters,
        )

    def record(self, event: TelemetryEvent) -> None:
        if not self.enabled:
            return

        log_line = f"[ANALYTICS] {event.to_log_line()}"
        if event.success:
            logger.info(log_line)
        else:
            logger.warning(log_line)

        self._events.append(event)

        if event.event_type == EventType.REQUEST_COMPLETED:
            self._request_count += 1
            if event.duration_ms:
                self._total_duration_ms += event.duration_ms
        elif event.event_type == EventType.REQUEST_FAILED:
            self._request_count += 1
            self._error_count += 1

    def record_metrics(self, metrics: RequestMetrics) -> None:
        if self.enabled:
            self._metrics.append(metrics)

    def get_recent_events(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent first."""
        return [e.to_dict() for e in list(self._events)[-limit:][::-1]]

    def get_recent_metrics(self, limit: int = 100) -> List[Dict[str, Any]]:
        """Most recent first."""
        return [m.to_dict() for m in list(self._metrics)[-limit:][::-1]]

    def get_stats(self) -> Dict[str, Any]:
        """
        Aggregated statistics.

        RETURNS:
            request_count, error_count, error_rate, avg_duration_ms,
            operation_distribution, error_codes
        """
        completed = self._request_count - self._error_count
        avg_duration = self._total_duration_ms / completed if completed > 0 else 0.0
        error_rate = self._error_count / self._request_count if self._request_count else 0.0

        return {
            "request_count": self._request_count,
            "error_count": self._error_count,
            "error_rate": error_rate,
            "avg_duration_ms": avg_duration,
            "operation_distribution": dict(Counter(m.operation for m in self._metrics)),
            "error_codes": dict(Counter(m.error_code for m in self._metrics if m.error_code)),
        }

    def reset(self) -> None:
        self._events.clear()
        self._metrics.clear()
        self._request_count = 0
        self._error_count = 0
        self._total_duration_ms = 0.0

    def _generate_request_id(self) -> str:
        return f"ar_{uuid.uuid4().hex[:12]}"


# =============================================================================
# DEFAULT INSTANCE
# =============================================================================

_default_collector: Optional[TelemetryCollector] = None


def get_telemetry() -> TelemetryCollector:
    """Process-wide collector, created on first use."""
    global _default_collector
    if _default_collector is None:
        _default_collector = TelemetryCollector()
    return _default_collector


def set_telemetry(collector: TelemetryCollector) -> None:
    """Replace the process-wide collector (tests, custom configuration)."""
    global _default_collector
    _default_collector = collector

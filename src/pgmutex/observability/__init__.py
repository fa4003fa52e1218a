"""
Tracing support for pgmutex.

OpenTelemetry is optional; without it ``create_tracer`` always returns a
NullTracer and lock operations run untraced.
"""

from pgmutex.observability.attributes import (
    ATTR_DB_SYSTEM,
    ATTR_ERROR_TYPE,
    ATTR_HOLDER_ID,
    ATTR_LOCK_ACQUIRED,
    ATTR_LOCK_ID,
    ATTR_LOCK_OUTCOME,
    ATTR_LOCK_RELEASED,
)
from pgmutex.observability.tracer import (
    OTEL_AVAILABLE,
    MockSpan,
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    Tracer,
    create_tracer,
)

__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockSpan",
    "MockTracer",
    "create_tracer",
    "ATTR_DB_SYSTEM",
    "ATTR_LOCK_ID",
    "ATTR_HOLDER_ID",
    "ATTR_LOCK_ACQUIRED",
    "ATTR_LOCK_RELEASED",
    "ATTR_LOCK_OUTCOME",
    "ATTR_ERROR_TYPE",
]

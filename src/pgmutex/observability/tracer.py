"""
Pluggable tracing for lock operations.

DistributedLock receives a Tracer instead of calling OpenTelemetry directly,
so spans can be disabled in production or recorded in tests without touching
the locking code. OpenTelemetry is optional (``pip install pgmutex[telemetry]``).

Example:
    >>> tracer = create_tracer(__name__, enable_tracing=True)
    >>> with tracer.span("pgmutex.lock.try_acquire", {ATTR_LOCK_ID: 42}) as span:
    ...     granted = await session.try_advisory_lock(42)
    ...     if span:
    ...         span.set_attribute(ATTR_LOCK_ACQUIRED, granted)
"""

from __future__ import annotations

import contextlib
from collections.abc import Iterator
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from opentelemetry.trace import Span

try:
    import opentelemetry.trace  # noqa: F401

    OTEL_AVAILABLE = True
except ImportError:
    OTEL_AVAILABLE = False


@runtime_checkable
class Tracer(Protocol):
    """
    Anything that can open a span around a lock operation.

    ``span()`` yields an object with ``set_attribute`` or None; callers
    check before recording results on it.
    """

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Any]: ...

    @property
    def enabled(self) -> bool: ...


class NullTracer:
    """Tracer used when tracing is off. Spans are None."""

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[None]:
        yield None

    @property
    def enabled(self) -> bool:
        return False


class OpenTelemetryTracer:
    """
    Tracer backed by the global OpenTelemetry tracer provider.

    Args:
        tracer_name: Instrumentation scope name, usually the module's __name__

    Raises:
        ImportError: If opentelemetry-api is not installed
    """

    def __init__(self, tracer_name: str) -> None:
        from opentelemetry import trace

        self._tracer = trace.get_tracer(tracer_name)

    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> AbstractContextManager[Span]:
        return self._tracer.start_as_current_span(name, attributes=attributes or {})

    @property
    def enabled(self) -> bool:
        return True


class MockSpan:
    """Recorded span; attributes include those set while it was open."""

    def __init__(self, name: str, attributes: dict[str, Any] | None) -> None:
        self.name = name
        self.attributes: dict[str, Any] = dict(attributes or {})

    def set_attribute(self, key: str, value: Any) -> None:
        self.attributes[key] = value


class MockTracer:
    """
    Tracer that keeps every span for assertions.

    Attributes:
        spans: ``(name, attributes)`` exactly as passed to ``span()``
        recorded: MockSpan per call, including attributes set later

    Example:
        >>> tracer = MockTracer()
        >>> lock = DistributedLock(session, tracer=tracer)
        >>> await lock.try_acquire(42)
        >>> tracer.span_names
        ['pgmutex.lock.try_acquire']
        >>> tracer.recorded[0].attributes["pgmutex.lock.acquired"]
        True
    """

    def __init__(self) -> None:
        self.spans: list[tuple[str, dict[str, Any] | None]] = []
        self.recorded: list[MockSpan] = []

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: dict[str, Any] | None = None,
    ) -> Iterator[MockSpan]:
        self.spans.append((name, attributes))
        recorded = MockSpan(name, attributes)
        self.recorded.append(recorded)
        yield recorded

    @property
    def enabled(self) -> bool:
        return True

    @property
    def span_names(self) -> list[str]:
        return [name for name, _ in self.spans]

    def clear(self) -> None:
        self.spans.clear()
        self.recorded.clear()


def create_tracer(name: str, enable_tracing: bool = True) -> Tracer:
    """
    Pick a tracer for a component.

    Returns an OpenTelemetryTracer when tracing is requested and OpenTelemetry
    is importable, otherwise a NullTracer.

    Example:
        >>> self._tracer = tracer or create_tracer(__name__, enable_tracing)
    """
    if enable_tracing and OTEL_AVAILABLE:
        return OpenTelemetryTracer(name)
    return NullTracer()


__all__ = [
    "OTEL_AVAILABLE",
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockSpan",
    "MockTracer",
    "create_tracer",
]

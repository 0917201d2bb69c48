"""Span handles and the stack of open group spans."""

from typing import Any, Iterator, Mapping, Optional

from opentelemetry import baggage, context, trace
from opentelemetry.context import Context
from opentelemetry.trace import Span, Status, StatusCode

from pytest_trace_reporter.errors import SpanAlreadyClosedError, SpanOrderError
from pytest_trace_reporter.propagation import TraceContextPropagator


class SpanHandle:
    """Owns one open span until it is closed."""

    __slots__ = ("span", "_closed")

    def __init__(self, span: Span) -> None:
        self.span = span
        self._closed = False

    @property
    def is_closed(self) -> bool:
        return self._closed

    def add_fields(self, fields: Mapping[str, Any]) -> None:
        """Attach key/value fields to the span."""
        for key, value in fields.items():
            if value is None:
                continue
            self.span.set_attribute(key, value)

    def rename(self, name: str) -> None:
        self.span.update_name(name)

    def mark_failed(self, description: Optional[str] = None) -> None:
        self.span.set_status(Status(StatusCode.ERROR, description))

    def close(self, fields: Optional[Mapping[str, Any]] = None) -> None:
        """Attach ``fields`` and end the span. A handle closes only once."""
        if self._closed:
            raise SpanAlreadyClosedError("span has already been closed")
        if fields:
            self.add_fields(fields)
        self._closed = True
        self.span.end()


def start_span(
    tracer: trace.Tracer,
    propagator: TraceContextPropagator,
    name: str,
    attributes: Optional[Mapping[str, Any]] = None,
    parent: Optional[Context] = None,
) -> SpanHandle:
    """Start a span and publish its trace header if none is published yet.

    Without an explicit ``parent`` the span is a child of the current span.
    Only when no span is current does it join the propagated trace, or
    become the root of a new one. Trace-level fields carried as baggage in
    the parent context are copied onto the span.
    """
    ctx = parent if parent is not None else context.get_current()
    trace_fields = baggage.get_all(ctx)
    if not trace.get_current_span(ctx).get_span_context().is_valid:
        ctx = propagator.extract()

    handle = SpanHandle(tracer.start_span(name, context=ctx))
    handle.add_fields(trace_fields)
    if attributes:
        handle.add_fields(attributes)

    header = propagator.header_for(handle.span)
    if header:
        propagator.publish_if_absent(header)
    return handle


class SpanStack:
    """Open group spans, in strict LIFO order.

    New spans are children of the top of the stack. With an empty stack they
    are children of the ``root`` handle given to :meth:`open`, or else of the
    current span (see :func:`start_span`).
    """

    def __init__(self, tracer: trace.Tracer, propagator: TraceContextPropagator) -> None:
        self._tracer = tracer
        self._propagator = propagator
        self._handles: list[SpanHandle] = []

    def __len__(self) -> int:
        return len(self._handles)

    def __bool__(self) -> bool:
        return bool(self._handles)

    def __iter__(self) -> Iterator[SpanHandle]:
        return iter(self._handles)

    @property
    def top(self) -> Optional[SpanHandle]:
        return self._handles[-1] if self._handles else None

    def open(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        root: Optional[SpanHandle] = None,
    ) -> SpanHandle:
        """Start a span under the current top without pushing it."""
        parent = self.top or root
        ctx = trace.set_span_in_context(parent.span) if parent is not None else None
        return start_span(self._tracer, self._propagator, name, attributes, parent=ctx)

    def push(
        self,
        name: str,
        attributes: Optional[Mapping[str, Any]] = None,
        root: Optional[SpanHandle] = None,
    ) -> SpanHandle:
        handle = self.open(name, attributes, root=root)
        self._handles.append(handle)
        return handle

    def pop(self) -> SpanHandle:
        """Remove and return the most recently pushed span."""
        if not self._handles:
            raise SpanOrderError("pop from an empty span stack")
        return self._handles.pop()

    def close(self, handle: SpanHandle, fields: Optional[Mapping[str, Any]] = None) -> None:
        """Attach ``fields`` to the span and flush it."""
        handle.close(fields)

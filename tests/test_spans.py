"""Tests for the spans module."""

import pytest
from opentelemetry import baggage, context
from opentelemetry.trace import StatusCode

from pytest_trace_reporter.errors import SpanAlreadyClosedError, SpanOrderError
from pytest_trace_reporter.spans import SpanStack, start_span

TRACEPARENT = "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"


@pytest.fixture
def stack(tracer, propagator):
    return SpanStack(tracer, propagator)


class TestSpanHandle:
    """Tests for SpanHandle."""

    def test_close_attaches_fields(self, tracer, propagator, span_exporter):
        handle = start_span(tracer, propagator, "work", {"a": 1})
        handle.close({"b": "two", "skipped": None})

        (span,) = span_exporter.get_finished_spans()
        assert span.attributes == {"a": 1, "b": "two"}
        assert handle.is_closed

    def test_close_twice_is_an_error(self, tracer, propagator, span_exporter):
        handle = start_span(tracer, propagator, "work")
        handle.close()

        with pytest.raises(SpanAlreadyClosedError):
            handle.close()

        assert len(span_exporter.get_finished_spans()) == 1

    def test_rename_and_mark_failed(self, tracer, propagator, span_exporter):
        handle = start_span(tracer, propagator, "unknown")
        handle.rename("does the thing")
        handle.mark_failed("boom")
        handle.close()

        (span,) = span_exporter.get_finished_spans()
        assert span.name == "does the thing"
        assert span.status.status_code == StatusCode.ERROR
        assert span.status.description == "boom"


class TestStartSpan:
    """Tests for joining and publishing the trace context."""

    def test_first_span_publishes_its_header(self, tracer, propagator):
        handle = start_span(tracer, propagator, "first")
        ctx = handle.span.get_span_context()

        assert propagator.current_trace_header() == f"00-{ctx.trace_id:032x}-{ctx.span_id:016x}-01"

    def test_joins_inherited_trace(self, tracer, propagator, environ, span_exporter):
        environ[propagator.env_var] = TRACEPARENT

        start_span(tracer, propagator, "child").close()

        (span,) = span_exporter.get_finished_spans()
        assert span.context.trace_id == int("0af7651916cd43dd8448eb211c80319c", 16)
        assert span.parent.span_id == int("b7ad6b7169203331", 16)
        assert environ[propagator.env_var] == TRACEPARENT

    def test_later_spans_join_the_first(self, tracer, propagator, span_exporter):
        first = start_span(tracer, propagator, "first")
        start_span(tracer, propagator, "second").close()
        first.close()

        second_span, first_span = span_exporter.get_finished_spans()
        assert second_span.context.trace_id == first_span.context.trace_id
        assert second_span.parent.span_id == first_span.context.span_id

    def test_current_span_wins_over_header(self, tracer, propagator, environ, span_exporter):
        environ[propagator.env_var] = TRACEPARENT

        with tracer.start_as_current_span("current") as current:
            start_span(tracer, propagator, "child").close()

        child_span, _ = span_exporter.get_finished_spans()
        assert child_span.parent.span_id == current.get_span_context().span_id

    def test_copies_baggage_fields(self, tracer, propagator, span_exporter):
        token = context.attach(baggage.set_baggage("process.full_name", "pytest"))
        try:
            start_span(tracer, propagator, "work", {"a": 1}).close()
        finally:
            context.detach(token)

        (span,) = span_exporter.get_finished_spans()
        assert span.attributes == {"process.full_name": "pytest", "a": 1}

    def test_malformed_header_starts_root(self, tracer, propagator, environ, span_exporter):
        environ[propagator.env_var] = "garbage"

        start_span(tracer, propagator, "root").close()

        (span,) = span_exporter.get_finished_spans()
        assert span.parent is None


class TestSpanStack:
    """Tests for SpanStack."""

    def test_pop_empty_stack_is_an_error(self, stack):
        with pytest.raises(SpanOrderError):
            stack.pop()

    def test_lifo_order(self, stack, span_exporter):
        """Well-nested pushes and pops close spans in reverse order."""
        names = ["outer", "middle", "inner"]
        for name in names:
            stack.push(name)

        assert len(stack) == 3
        assert stack.top is not None

        while stack:
            stack.close(stack.pop())

        assert len(stack) == 0
        assert stack.top is None
        assert [span.name for span in span_exporter.get_finished_spans()] == names[::-1]

    def test_pushed_spans_nest(self, stack, span_exporter):
        outer = stack.push("outer")
        inner = stack.push("inner")
        stack.close(stack.pop())
        stack.close(stack.pop())

        inner_span, outer_span = span_exporter.get_finished_spans()
        assert inner_span.parent.span_id == outer_span.context.span_id
        assert inner.span.get_span_context().trace_id == outer.span.get_span_context().trace_id

    def test_open_under_root_when_empty(self, stack, tracer, propagator, span_exporter):
        root = start_span(tracer, propagator, "suite")

        group = stack.push("group", root=root)
        example = stack.open("example", root=root)
        stack.close(example)
        stack.close(stack.pop())
        root.close()

        example_span, group_span, suite_span = span_exporter.get_finished_spans()
        assert group_span.parent.span_id == suite_span.context.span_id
        assert example_span.parent.span_id == group_span.context.span_id
        assert list(stack) == []
        assert group.is_closed

    def test_open_does_not_push(self, stack):
        stack.open("example")

        assert not stack

    def test_close_with_fields(self, stack, span_exporter):
        stack.push("group", {"kind": "group"})
        stack.close(stack.pop(), {"extra": 3})

        (span,) = span_exporter.get_finished_spans()
        assert span.attributes == {"kind": "group", "extra": 3}

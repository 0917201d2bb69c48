"""Lifecycle event handlers that turn a test run into spans.

The reporter keeps one suite span for the run, a stack of group spans that
mirrors the nesting of test groups, and at most one example span at a time.
Every callback is expected in the order a test run produces them; anything
else raises :class:`~pytest_trace_reporter.errors.SpanOrderError`.
"""

import logging
import re
from typing import Optional

from opentelemetry import trace

from pytest_trace_reporter.errors import SpanOrderError
from pytest_trace_reporter.notifications import (
    ExampleNotification,
    FailedExampleNotification,
    GroupNotification,
    MessageNotification,
    SeedNotification,
    StartNotification,
    StopNotification,
)
from pytest_trace_reporter.propagation import TraceContextPropagator
from pytest_trace_reporter.spans import SpanHandle, SpanStack

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = "rspec"

# Name of an example span until its result is known
UNKNOWN_EXAMPLE = "unknown"

RESULT_PASSED = "passed"
RESULT_FAILED = "failed"
RESULT_PENDING = "pending"

TYPE_GROUP = "group"
TYPE_EXAMPLE = "example"

_ANSI_ESCAPE = re.compile(r"\x1b\[[\d;]+m")


def strip_ansi(text: str) -> str:
    """Remove ANSI color sequences (``ESC [ <digits/semicolons> m``)."""
    while True:
        stripped = _ANSI_ESCAPE.sub("", text)
        if stripped == text:
            return stripped
        text = stripped


class Reporter:
    """Receives test lifecycle notifications and manages their spans.

    Field names are prefixed with ``namespace``, which is also the name of
    the suite span.
    """

    def __init__(
        self,
        tracer: trace.Tracer,
        propagator: TraceContextPropagator,
        namespace: str = DEFAULT_NAMESPACE,
        log_messages: bool = False,
    ) -> None:
        self.namespace = namespace
        self.log_messages = log_messages
        self._groups = SpanStack(tracer, propagator)
        self._suite: Optional[SpanHandle] = None
        self._example: Optional[SpanHandle] = None

    @property
    def groups(self) -> SpanStack:
        return self._groups

    def _field(self, name: str) -> str:
        return f"{self.namespace}.{name}"

    def _require_suite(self, event: str) -> SpanHandle:
        if self._suite is None:
            raise SpanOrderError(f"{event} received before the suite started")
        return self._suite

    # Suite

    def start(self, notification: StartNotification) -> None:
        if self._suite is not None:
            raise SpanOrderError("suite started twice")

        self._suite = self._groups.open(
            self.namespace,
            {
                self._field("example_count"): notification.count,
                self._field("load_time_ms"): notification.load_time * 1000,
            },
        )

    def stop(self, notification: StopNotification) -> None:
        suite = self._require_suite("stop")
        if self._groups:
            raise SpanOrderError(f"suite stopped with {len(self._groups)} group(s) still open")
        if self._example is not None:
            raise SpanOrderError("suite stopped while an example is still running")

        self._suite = None
        self._groups.close(
            suite,
            {
                self._field("failed_count"): len(notification.failed_examples),
                self._field("pending_count"): len(notification.pending_examples),
            },
        )

    def seed(self, notification: SeedNotification) -> None:
        suite = self._require_suite("seed")
        if notification.seed_used:
            suite.add_fields({self._field("seed"): notification.seed})

    def start_dump(self, notification: object = None) -> None:
        """Summary output is about to start. Nothing is traced for it yet."""

    def message(self, notification: MessageNotification) -> None:
        if self.log_messages:
            logger.info("%s", notification.message)

    # Groups

    def example_group_started(self, notification: GroupNotification) -> None:
        self._groups.push(
            notification.description,
            {
                self._field("type"): TYPE_GROUP,
                self._field("file_path"): notification.file_path,
                self._field("location"): notification.location,
            },
            root=self._suite,
        )

    def example_group_finished(self, notification: Optional[GroupNotification] = None) -> None:
        self._groups.close(self._groups.pop())

    # Examples

    def example_started(self, notification: ExampleNotification) -> None:
        if self._example is not None:
            raise SpanOrderError("example started while another example is still running")

        self._example = self._groups.open(
            UNKNOWN_EXAMPLE,
            {
                self._field("type"): TYPE_EXAMPLE,
                self._field("file_path"): notification.file_path,
                self._field("location"): notification.location,
            },
            root=self._suite,
        )

    def example_passed(self, notification: ExampleNotification) -> None:
        example = self._finish_example("example_passed", notification)
        self._groups.close(example, {self._field("result"): RESULT_PASSED})

    def example_failed(self, notification: FailedExampleNotification) -> None:
        example = self._finish_example("example_failed", notification)
        message = strip_ansi("\n".join(notification.message_lines))
        example.mark_failed(message)
        self._groups.close(example, self._diagnostics(RESULT_FAILED, notification, message))

    def example_pending(self, notification: FailedExampleNotification) -> None:
        example = self._finish_example("example_pending", notification)
        message = strip_ansi("\n".join(notification.message_lines))
        self._groups.close(example, self._diagnostics(RESULT_PENDING, notification, message))

    def _finish_example(self, event: str, notification: ExampleNotification) -> SpanHandle:
        """Take ownership of the running example span and name it."""
        example = self._example
        if example is None:
            raise SpanOrderError(f"{event} received without a started example")

        self._example = None
        example.rename(notification.description)
        example.add_fields({self._field("description"): notification.description})
        return example

    def _diagnostics(
        self, result: str, notification: FailedExampleNotification, message: str
    ) -> dict:
        return {
            self._field("result"): result,
            self._field("message"): message,
            self._field("backtrace"): "\n".join(notification.formatted_backtrace),
        }

"""Process-level span covering the whole program invocation.

The span is opened once per process and stays the current span until it is
closed, so every span started later in the process belongs to its trace.
It is closed on every exit path with a ``process.exit_code`` field:

- the status of a deliberate exit,
- the class name of an unhandled exception,
- ``"unknown"`` when neither was recorded.

``process.full_name`` and ``process.args`` are trace-level fields: they are
carried as baggage and copied onto every span started under the process span.
"""

import atexit
import logging
import os
import sys
from types import TracebackType
from typing import Optional, Sequence, Type, Union

from opentelemetry import baggage, context, trace

from pytest_trace_reporter.errors import SpanAlreadyClosedError
from pytest_trace_reporter.propagation import TraceContextPropagator
from pytest_trace_reporter.spans import SpanHandle, start_span

logger = logging.getLogger(__name__)

ATTR_PROCESS_FULL_NAME = "process.full_name"
ATTR_PROCESS_ARGS = "process.args"
ATTR_PROCESS_EXIT_CODE = "process.exit_code"

UNKNOWN_EXIT = "unknown"

ExitCause = Union[int, str]


class ProcessSpanGuard:
    """Owns the process span and closes it exactly once.

    The span is the current span from construction until :meth:`close`.
    Can be used as a context manager; exceptions leaving the block are
    recorded as the exit cause and re-raised.
    """

    def __init__(
        self,
        tracer: trace.Tracer,
        propagator: TraceContextPropagator,
        argv: Optional[Sequence[str]] = None,
    ) -> None:
        argv = list(sys.argv if argv is None else argv) or [""]
        self._cause: Optional[ExitCause] = None
        self._handle: SpanHandle = start_span(
            tracer,
            propagator,
            os.path.basename(argv[0]) or "python",
            {
                ATTR_PROCESS_FULL_NAME: argv[0],
                ATTR_PROCESS_ARGS: argv[1:],
            },
        )

        ctx = trace.set_span_in_context(self._handle.span)
        ctx = baggage.set_baggage(ATTR_PROCESS_FULL_NAME, argv[0], ctx)
        ctx = baggage.set_baggage(ATTR_PROCESS_ARGS, argv[1:], ctx)
        self._token: Optional[object] = context.attach(ctx)

    @property
    def span(self) -> trace.Span:
        return self._handle.span

    @property
    def is_closed(self) -> bool:
        return self._handle.is_closed

    @property
    def exit_cause(self) -> ExitCause:
        return UNKNOWN_EXIT if self._cause is None else self._cause

    def record_exit(self, code: object) -> None:
        """Record a deliberate exit with ``code``, as ``sys.exit`` reports it."""
        if code is None:
            self._cause = 0
        elif isinstance(code, int):
            self._cause = int(code)
        else:
            # sys.exit("message") prints the message and exits with 1
            self._cause = 1

    def record_exception(self, exc: BaseException) -> None:
        """Record the unhandled exception that is ending the process."""
        if isinstance(exc, SystemExit):
            self.record_exit(exc.code)
        else:
            self._cause = type(exc).__name__

    def close(self) -> None:
        if self._handle.is_closed:
            raise SpanAlreadyClosedError("process span has already been closed")
        if self._token is not None:
            context.detach(self._token)
            self._token = None
        self._handle.close({ATTR_PROCESS_EXIT_CODE: self.exit_cause})
        logger.debug("Closed process span with exit code %s", self.exit_cause)

    def __enter__(self) -> "ProcessSpanGuard":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        if exc is not None:
            self.record_exception(exc)
        self.close()


# Installed guard for this process, if any
_guard: Optional[ProcessSpanGuard] = None


def install_process_span(
    tracer: trace.Tracer,
    propagator: TraceContextPropagator,
    argv: Optional[Sequence[str]] = None,
) -> Optional[ProcessSpanGuard]:
    """Open the process span and close it when the interpreter exits.

    Does nothing when a guard is already installed or a span is already
    active in this process.
    """
    global _guard

    if _guard is not None:
        return None

    if trace.get_current_span().get_span_context().is_valid:
        logger.debug("Active span found, not installing a process span")
        return None

    guard = ProcessSpanGuard(tracer, propagator, argv)
    _guard = guard

    previous_hook = sys.excepthook

    def _record_unhandled(
        exc_type: Type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        guard.record_exception(exc)
        previous_hook(exc_type, exc, tb)

    sys.excepthook = _record_unhandled
    atexit.register(_close_at_exit, guard)
    logger.debug("Installed process span")
    return guard


def _close_at_exit(guard: ProcessSpanGuard) -> None:
    if not guard.is_closed:
        guard.close()


def get_process_span() -> Optional[ProcessSpanGuard]:
    """Return the installed process span guard."""
    return _guard

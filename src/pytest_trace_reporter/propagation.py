"""Trace context propagation through an environment variable.

The first span created in a process either joins the trace named by the
variable or starts a new root trace and publishes its own header there, so
that child processes and later spans join the same trace tree.
"""

import logging
import os
from typing import MutableMapping, Optional

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import Span
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

logger = logging.getLogger(__name__)

DEFAULT_TRACE_ENV_VAR = "TRACEPARENT"

# Carrier key used by the W3C trace context propagator
_TRACEPARENT = "traceparent"


class TraceContextPropagator:
    """Reads and writes the serialized trace header in the environment.

    The variable is written at most once: after a header is published it is
    never overwritten, so every span in the process belongs to one trace.
    With ``enabled=False`` nothing is read or written and every process
    starts its own trace.
    """

    def __init__(
        self,
        env_var: str = DEFAULT_TRACE_ENV_VAR,
        enabled: bool = True,
        environ: Optional[MutableMapping[str, str]] = None,
    ) -> None:
        self.env_var = env_var
        self.enabled = enabled
        self._environ = os.environ if environ is None else environ
        self._format = TraceContextTextMapPropagator()

    def current_trace_header(self) -> Optional[str]:
        """Return the published trace header, if any."""
        if not self.enabled:
            return None
        return self._environ.get(self.env_var) or None

    def publish_if_absent(self, header: str) -> bool:
        """Publish ``header`` unless a header is already present.

        Returns True when the header was written.
        """
        if not self.enabled or self.current_trace_header() is not None:
            return False

        self._environ[self.env_var] = header
        logger.debug("Published trace header to %s: %s", self.env_var, header)
        return True

    def extract(self) -> Context:
        """Context to parent the first span of this process on.

        A missing or malformed header yields an empty context, which makes
        the next span the root of a new trace.
        """
        header = self.current_trace_header()
        if header is None:
            return Context()

        ctx = self._format.extract({_TRACEPARENT: header})
        if not trace.get_current_span(ctx).get_span_context().is_valid:
            logger.debug("Ignoring malformed trace header in %s: %r", self.env_var, header)
        return ctx

    def header_for(self, span: Span) -> str:
        """Serialize ``span`` into a trace header."""
        carrier: dict[str, str] = {}
        self._format.inject(carrier, context=trace.set_span_in_context(span))
        return carrier.get(_TRACEPARENT, "")

"""OpenTelemetry SDK configuration and reporter settings."""

import atexit
import logging
import os
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from opentelemetry import trace
from opentelemetry.sdk import trace as sdktrace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)

from pytest_trace_reporter.propagation import DEFAULT_TRACE_ENV_VAR
from pytest_trace_reporter.reporter import DEFAULT_NAMESPACE

if TYPE_CHECKING:
    import pytest

logger = logging.getLogger(__name__)

DEFAULT_SERVICE_NAME = "pytest"
TRACER_NAME = "pytest-trace-reporter"

_TRUTHY = ("1", "true", "yes", "on")


def _get_otlp_exporter() -> Optional[SpanExporter]:
    """Get OTLP span exporter if configured."""
    endpoint = os.environ.get("OTEL_EXPORTER_OTLP_ENDPOINT") or os.environ.get(
        "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT"
    )
    if not endpoint:
        return None

    try:
        # Plain host:port endpoints are gRPC, URLs are HTTP
        if endpoint.startswith("http://") or endpoint.startswith("https://"):
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import (
                OTLPSpanExporter,
            )

            return OTLPSpanExporter()
        else:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )

            return OTLPSpanExporter()
    except ImportError:
        logger.warning("OTLP exporter not available, spans will not be exported")
        return None


def _env_flag(name: str) -> Optional[bool]:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return None
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class ReporterSettings:
    """User-facing knobs of the reporter.

    Read from pytest ini options; a matching ``TRACE_REPORTER_*``
    environment variable takes precedence.
    """

    namespace: str = DEFAULT_NAMESPACE
    propagate: bool = True
    trace_env_var: str = DEFAULT_TRACE_ENV_VAR
    log_messages: bool = False
    process_span: bool = True
    debug: bool = False

    @classmethod
    def from_env(cls, base: Optional["ReporterSettings"] = None) -> "ReporterSettings":
        """Apply ``TRACE_REPORTER_*`` environment overrides to ``base``."""
        base = base or cls()

        def flag(name: str, default: bool) -> bool:
            value = _env_flag(name)
            return default if value is None else value

        return cls(
            namespace=os.environ.get("TRACE_REPORTER_NAMESPACE") or base.namespace,
            propagate=flag("TRACE_REPORTER_PROPAGATE", base.propagate),
            trace_env_var=os.environ.get("TRACE_REPORTER_ENV_VAR") or base.trace_env_var,
            log_messages=flag("TRACE_REPORTER_LOG_MESSAGES", base.log_messages),
            process_span=flag("TRACE_REPORTER_PROCESS_SPAN", base.process_span),
            debug=flag("TRACE_REPORTER_DEBUG", base.debug),
        )

    @classmethod
    def from_pytest_config(cls, config: "pytest.Config") -> "ReporterSettings":
        base = cls(
            namespace=config.getini("trace_reporter_namespace") or DEFAULT_NAMESPACE,
            propagate=bool(config.getini("trace_reporter_propagate")),
            trace_env_var=config.getini("trace_reporter_env_var") or DEFAULT_TRACE_ENV_VAR,
            log_messages=bool(config.getini("trace_reporter_log_messages")),
            process_span=bool(config.getini("trace_reporter_process_span")),
            debug=bool(config.getini("trace_reporter_debug")),
        )
        return cls.from_env(base)


class TelemetryConfig:
    """Singleton configuration for OpenTelemetry in pytest.

    Handles initialization of the tracer provider and its exporters.

    Thread-safe: Uses a lock to protect initialization in concurrent scenarios.
    """

    _instance: Optional["TelemetryConfig"] = None
    _is_configured: bool = False
    _tracer_provider: Optional[sdktrace.TracerProvider] = None
    _shutdown_registered: bool = False
    _lock: threading.Lock = threading.Lock()

    def __new__(cls) -> "TelemetryConfig":
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
            return cls._instance

    def configure(self, debug: bool = False) -> None:
        """Initialize the OpenTelemetry SDK."""
        with self._lock:
            if self._is_configured:
                return

            # Set up environment defaults for insecure connections
            self._prepare_env()

            # Initialize tracer provider
            self._init_tracer(debug)

            self._is_configured = True
            logger.debug("pytest-trace-reporter telemetry configured")

    def _prepare_env(self) -> None:
        """Prepare environment for OTLP configuration."""
        # Auto-configure insecure flag for http:// endpoints
        endpoint_vars = [
            ("OTEL_EXPORTER_OTLP_ENDPOINT", "OTEL_EXPORTER_OTLP_INSECURE"),
            ("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT", "OTEL_EXPORTER_OTLP_TRACES_INSECURE"),
        ]
        for endpoint_var, insecure_var in endpoint_vars:
            endpoint = os.environ.get(endpoint_var, "")
            if endpoint.startswith("http://"):
                os.environ.setdefault(insecure_var, "true")

        # Resource.create() picks the service name up from here
        os.environ.setdefault("OTEL_SERVICE_NAME", DEFAULT_SERVICE_NAME)

    def _init_tracer(self, debug: bool) -> None:
        """Initialize the tracer provider with OTLP exporter."""
        # Shutdown is registered below so that hooks registered later
        # (the process span) run before it.
        self._tracer_provider = sdktrace.TracerProvider(
            resource=Resource.create(), shutdown_on_exit=False
        )

        exporter = _get_otlp_exporter()
        if exporter:
            self._tracer_provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.debug("Added OTLP span exporter")
        else:
            logger.debug("No OTLP endpoint configured, spans will not be exported")

        if debug:
            self._tracer_provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
            logger.debug("Added console span exporter")

        trace.set_tracer_provider(self._tracer_provider)
        if not self._shutdown_registered:
            atexit.register(self.shutdown)
            self._shutdown_registered = True

    def get_tracer(self) -> trace.Tracer:
        """Get a tracer for pytest instrumentation."""
        self.configure()
        version = __import__("pytest_trace_reporter").__version__
        if self._tracer_provider:
            return self._tracer_provider.get_tracer(TRACER_NAME, version)
        return trace.get_tracer(TRACER_NAME, version)

    def flush(self) -> None:
        """Export spans that are still buffered."""
        with self._lock:
            if self._tracer_provider:
                self._tracer_provider.force_flush()

    def shutdown(self) -> None:
        """Flush and shutdown providers."""
        with self._lock:
            if self._tracer_provider:
                self._tracer_provider.force_flush()
                self._tracer_provider.shutdown()
                self._tracer_provider = None
                logger.debug("Tracer provider shut down")

            self._is_configured = False


# Global singleton instance
_config = TelemetryConfig()


def configure(debug: bool = False) -> None:
    """Configure OpenTelemetry for pytest."""
    _config.configure(debug)


def get_tracer() -> trace.Tracer:
    """Get a tracer for pytest instrumentation."""
    return _config.get_tracer()


def flush() -> None:
    """Flush buffered spans."""
    _config.flush()


def shutdown() -> None:
    """Shutdown OpenTelemetry providers."""
    _config.shutdown()

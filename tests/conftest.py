"""Test configuration for pytest-trace-reporter tests."""

import pytest
from opentelemetry import context
from opentelemetry.context import Context
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

pytest_plugins = ["pytester"]

# Private variable so tests never touch the trace header of the run itself
TEST_TRACE_ENV_VAR = "TEST_TRACE_REPORTER_HEADER"


@pytest.fixture(autouse=True)
def empty_context():
    """Run each test outside the current span of the run itself."""
    token = context.attach(Context())
    yield
    context.detach(token)


@pytest.fixture
def span_exporter():
    """Collect finished spans in memory."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer(span_exporter):
    """A tracer that is not registered globally."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    yield provider.get_tracer("tests")
    provider.shutdown()


@pytest.fixture
def environ():
    """An isolated environment mapping for the propagator."""
    return {}


@pytest.fixture
def propagator(environ):
    from pytest_trace_reporter.propagation import TraceContextPropagator

    return TraceContextPropagator(env_var=TEST_TRACE_ENV_VAR, environ=environ)


@pytest.fixture
def finished(span_exporter):
    """Return finished spans by name."""

    def by_name(name):
        return [span for span in span_exporter.get_finished_spans() if span.name == name]

    return by_name


@pytest.fixture
def reset_telemetry():
    """Reset telemetry state for the test and restore it afterwards."""
    from pytest_trace_reporter import config

    with config._config._lock:
        saved = (config._config._is_configured, config._config._tracer_provider)
        config._config._is_configured = False
        config._config._tracer_provider = None

    yield config._config

    # Restore the singleton state (thread-safe access)
    with config._config._lock:
        provider = config._config._tracer_provider
        config._config._is_configured, config._config._tracer_provider = saved

    if provider is not None and provider is not saved[1]:
        provider.shutdown()

"""Pytest plugin hooks for trace reporting.

This module provides the pytest hooks that report a test run as
OpenTelemetry spans. The plugin is auto-discovered via the pytest11
entry point defined in pyproject.toml.

Instrumentation failures are logged and never change the outcome of the
test run.
"""

import logging
from typing import Generator, Optional

import pytest
from _pytest.reports import TestReport

from pytest_trace_reporter import config as otel_config
from pytest_trace_reporter import process
from pytest_trace_reporter.bridge import PytestEventBridge
from pytest_trace_reporter.config import ReporterSettings
from pytest_trace_reporter.propagation import DEFAULT_TRACE_ENV_VAR, TraceContextPropagator
from pytest_trace_reporter.reporter import DEFAULT_NAMESPACE, Reporter

logger = logging.getLogger(__name__)

bridge_key = pytest.StashKey[PytestEventBridge]()

_RELAY_NAME = "trace-reporter-messages"


def pytest_addoption(parser: pytest.Parser) -> None:
    """Add plugin command-line and ini options."""
    group = parser.getgroup("trace-reporter", "OpenTelemetry trace reporting")
    group.addoption(
        "--no-trace-reporter",
        action="store_true",
        default=False,
        help="Disable reporting the test run as OpenTelemetry spans",
    )
    parser.addini(
        "trace_reporter_namespace",
        help="Prefix of span field names and name of the suite span",
        default=DEFAULT_NAMESPACE,
    )
    parser.addini(
        "trace_reporter_propagate",
        help="Join and publish the trace context through an environment variable",
        type="bool",
        default=True,
    )
    parser.addini(
        "trace_reporter_env_var",
        help="Environment variable carrying the trace header",
        default=DEFAULT_TRACE_ENV_VAR,
    )
    parser.addini(
        "trace_reporter_log_messages",
        help="Log informational messages (pytest warnings) locally",
        type="bool",
        default=False,
    )
    parser.addini(
        "trace_reporter_process_span",
        help="Wrap the whole process in a span closed at interpreter exit",
        type="bool",
        default=True,
    )
    parser.addini(
        "trace_reporter_debug",
        help="Print finished spans to stdout",
        type="bool",
        default=False,
    )


def _bridge(config: pytest.Config) -> Optional[PytestEventBridge]:
    return config.stash.get(bridge_key, None)


def pytest_configure(config: pytest.Config) -> None:
    """Initialize OpenTelemetry and the reporter on pytest startup."""
    if config.option.no_trace_reporter:
        logger.debug("Trace reporting disabled via --no-trace-reporter")
        return

    try:
        settings = ReporterSettings.from_pytest_config(config)
        otel_config.configure(debug=settings.debug)
        tracer = otel_config.get_tracer()
        propagator = TraceContextPropagator(
            env_var=settings.trace_env_var, enabled=settings.propagate
        )

        if settings.process_span:
            process.install_process_span(tracer, propagator)

        reporter = Reporter(
            tracer,
            propagator,
            namespace=settings.namespace,
            log_messages=settings.log_messages,
        )
        bridge = PytestEventBridge(reporter)
        config.stash[bridge_key] = bridge
        config.pluginmanager.register(_MessageRelay(bridge), _RELAY_NAME)
        logger.debug("Trace reporting enabled")
    except Exception as e:
        logger.warning("Failed to initialize trace reporting: %s", e)


def pytest_unconfigure(config: pytest.Config) -> None:
    """Flush spans on pytest shutdown.

    Providers are shut down at interpreter exit, after the process span.
    """
    if config.stash.get(bridge_key, None) is None:
        return

    del config.stash[bridge_key]
    if config.pluginmanager.has_plugin(_RELAY_NAME):
        config.pluginmanager.unregister(name=_RELAY_NAME)

    try:
        otel_config.flush()
    except Exception as e:
        logger.warning("Error flushing spans: %s", e)


def pytest_sessionstart(session: pytest.Session) -> None:
    bridge = _bridge(session.config)
    if bridge is None:
        return

    try:
        bridge.session_started()
    except Exception as e:
        logger.warning("Failed to record session start: %s", e)


def pytest_collection_finish(session: pytest.Session) -> None:
    """Start the suite span once the number of tests is known."""
    bridge = _bridge(session.config)
    if bridge is None:
        return

    try:
        bridge.collection_finished(session)
    except Exception as e:
        logger.warning("Failed to start suite span: %s", e)


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """Close remaining spans and record the exit status of the process."""
    bridge = _bridge(session.config)
    if bridge is None:
        return

    try:
        bridge.session_finished()
    except Exception as e:
        logger.warning("Failed to end suite span: %s", e)

    guard = process.get_process_span()
    if guard is not None and not guard.is_closed:
        guard.record_exit(int(exitstatus))


@pytest.hookimpl(wrapper=True, tryfirst=True)
def pytest_runtest_protocol(
    item: pytest.Item, nextitem: Optional[pytest.Item]
) -> Generator[None, object, object]:
    """Wrap the full test lifecycle (setup, call, teardown) in one example span."""
    bridge = _bridge(item.config)
    if bridge is None:
        return (yield)

    try:
        bridge.item_started(item)
    except Exception as e:
        logger.warning("Failed to start example span for %s: %s", item.nodeid, e)
        return (yield)

    try:
        return (yield)
    finally:
        # Always end span
        try:
            bridge.item_finished(item, nextitem)
        except Exception as e:
            logger.warning("Failed to end example span for %s: %s", item.nodeid, e)


@pytest.hookimpl(wrapper=True, tryfirst=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo
) -> Generator[None, TestReport, TestReport]:
    """Collect the final phase reports of the running test."""
    report: TestReport = yield

    bridge = _bridge(item.config)
    if bridge is not None:
        try:
            bridge.report_logged(report)
        except Exception as e:
            logger.warning("Failed to record report for %s: %s", item.nodeid, e)

    return report


def pytest_terminal_summary(config: pytest.Config) -> None:
    bridge = _bridge(config)
    if bridge is None:
        return

    try:
        bridge.dump_started()
    except Exception as e:
        logger.warning("Failed to report summary start: %s", e)


class _MessageRelay:
    """Forwards pytest warnings, whose hook does not receive the config."""

    def __init__(self, bridge: PytestEventBridge) -> None:
        self.bridge = bridge

    def pytest_warning_recorded(self, warning_message, when, nodeid, location) -> None:
        try:
            self.bridge.message(str(warning_message.message))
        except Exception as e:
            logger.warning("Failed to report message: %s", e)

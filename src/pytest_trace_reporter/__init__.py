"""Pytest plugin that reports a test run as OpenTelemetry spans.

Every test group (package, module, class) and every test example becomes a
span, nested under a suite span and, when enabled, a process-level span that
covers the whole invocation. The trace context is shared with child
processes through an environment variable carrying a W3C ``traceparent``.

The plugin is automatically loaded when installed via the pytest11 entry point.
Spans are exported over OTLP when ``OTEL_EXPORTER_OTLP_ENDPOINT`` is set.
"""

__version__ = "0.1.0"

# Plugin hooks are exported from plugin.py and auto-discovered by pytest
# via the entry point in pyproject.toml

"""Integration tests to verify the plugin works end-to-end.

Run these tests with OTEL environment variables set to see spans exported.
Example:
    OTEL_EXPORTER_OTLP_ENDPOINT=http://localhost:4318 \
    TRACEPARENT=00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01 \
    pytest tests/test_integration.py -v

Or print the spans locally instead:
    TRACE_REPORTER_DEBUG=true pytest tests/test_integration.py
"""

import logging
import warnings

import pytest


def test_simple_pass():
    """A simple passing test."""
    assert 1 + 1 == 2


def test_with_logging():
    """Log records do not create spans."""
    logger = logging.getLogger(__name__)
    logger.info("This is an info message from the test")
    logger.warning("This is a warning message")
    assert True


def test_with_warning():
    """Warnings are reported to the plugin as informational messages."""
    with pytest.warns(UserWarning):
        warnings.warn("This warning is expected", UserWarning)


class TestClass:
    """Test class to verify class-based group hierarchy."""

    def test_in_class(self):
        """Test method inside a class."""
        assert "hello".upper() == "HELLO"

    def test_another_in_class(self):
        """Another test method."""
        assert [1, 2, 3][-1] == 3

    class TestNested:
        """Nested classes become nested groups."""

        def test_nested(self):
            assert {"a": 1}.get("a") == 1


@pytest.mark.skip(reason="reported as a pending example")
def test_pending():
    assert False


# Uncomment to test failure handling:
# def test_failure():
#     """This test will fail."""
#     assert False, "This failure should be recorded in the span"

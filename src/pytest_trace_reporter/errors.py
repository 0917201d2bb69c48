"""Errors raised by the reporter core."""


class ReporterError(Exception):
    """Base class for all errors raised by the trace reporter."""


class SpanOrderError(ReporterError):
    """A lifecycle notification arrived out of order.

    Raised when the event source breaks its contract, e.g. a group finishes
    with no group open or an example result arrives without a started
    example. Masking these would silently corrupt the trace tree.
    """


class SpanAlreadyClosedError(ReporterError):
    """A span was closed more than once."""

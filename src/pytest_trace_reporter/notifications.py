"""Payloads delivered to the reporter for each lifecycle event."""

from dataclasses import dataclass, field
from typing import Any, Sequence


@dataclass(frozen=True)
class StartNotification:
    """The suite is about to run ``count`` examples."""

    count: int
    load_time: float  # seconds


@dataclass(frozen=True)
class StopNotification:
    """The suite finished. Only the sizes of the sequences are reported."""

    failed_examples: Sequence[Any] = ()
    pending_examples: Sequence[Any] = ()


@dataclass(frozen=True)
class SeedNotification:
    seed: int
    seed_used: bool


@dataclass(frozen=True)
class GroupNotification:
    description: str
    file_path: str
    location: str


@dataclass(frozen=True)
class ExampleNotification:
    description: str
    file_path: str
    location: str


@dataclass(frozen=True)
class FailedExampleNotification(ExampleNotification):
    """An example that failed or is pending, with its diagnostics."""

    message_lines: Sequence[str] = field(default_factory=tuple)
    formatted_backtrace: Sequence[str] = field(default_factory=tuple)


@dataclass(frozen=True)
class MessageNotification:
    message: str

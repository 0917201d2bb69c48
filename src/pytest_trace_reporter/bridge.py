"""Translation of pytest hooks into reporter notifications.

Packages, modules and classes become groups; test items become examples.
Groups are opened lazily when the first item inside them starts and closed
as soon as the next item no longer belongs to them, the same way pytest
tears down its fixture scopes.
"""

import logging
import time
from typing import TYPE_CHECKING, Optional

import pytest
from _pytest.reports import TestReport

from pytest_trace_reporter.notifications import (
    ExampleNotification,
    FailedExampleNotification,
    GroupNotification,
    MessageNotification,
    SeedNotification,
    StartNotification,
    StopNotification,
)
from pytest_trace_reporter.reporter import (
    RESULT_FAILED,
    RESULT_PASSED,
    RESULT_PENDING,
    Reporter,
)

if TYPE_CHECKING:
    from _pytest.nodes import Node

logger = logging.getLogger(__name__)

# Collector types reported as groups; Session and plain directories are not
_GROUP_TYPES = (pytest.Package, pytest.Module, pytest.Class)


def group_chain(item: pytest.Item) -> list:
    """Return the group collectors enclosing ``item``, outermost first."""
    return [node for node in item.listchain() if isinstance(node, _GROUP_TYPES)]


def _file_path(node: "Node") -> str:
    return node.nodeid.split("::")[0]


def describe_group(node: "Node") -> GroupNotification:
    path = _file_path(node)
    location = path
    if isinstance(node, pytest.Class):
        _, lineno, _ = node.reportinfo()
        if lineno is not None:
            location = f"{path}:{lineno + 1}"
    return GroupNotification(description=node.name, file_path=path, location=location)


def describe_example(item: pytest.Item) -> ExampleNotification:
    path, lineno, _ = item.location
    location = f"{path}:{lineno + 1}" if lineno is not None else path
    return ExampleNotification(description=item.name, file_path=path, location=location)


def classify(reports: list) -> tuple[str, Optional[TestReport]]:
    """Reduce the phase reports of one item to a result.

    Any failed phase fails the example, any skipped phase (skip, xfail)
    makes it pending. Returns the result and the report that decided it.
    """
    for report in reports:
        if report.failed:
            return RESULT_FAILED, report
    for report in reports:
        if report.skipped:
            return RESULT_PENDING, report
    return RESULT_PASSED, None


def failure_message(report: TestReport) -> str:
    longrepr = report.longrepr
    if isinstance(longrepr, tuple) and len(longrepr) == 3:
        # Skips are reported as (path, lineno, reason)
        return str(longrepr[2])
    if hasattr(report, "wasxfail"):
        return f"XFAIL {report.wasxfail}".rstrip()
    crash = getattr(longrepr, "reprcrash", None)
    if crash is not None:
        return crash.message
    return report.longreprtext


def _randomly_seed(config: pytest.Config) -> Optional[SeedNotification]:
    """Seed used by pytest-randomly, when that plugin is installed."""
    seed = getattr(config.option, "randomly_seed", None)
    if seed is None:
        return None
    used = isinstance(seed, int) and config.pluginmanager.hasplugin("randomly")
    return SeedNotification(seed=seed if isinstance(seed, int) else 0, seed_used=used)


class PytestEventBridge:
    """Feeds a :class:`Reporter` from pytest's hooks."""

    def __init__(self, reporter: Reporter) -> None:
        self.reporter = reporter
        self._groups: list = []
        self._reports: dict[str, list] = {}
        self._failed: list[str] = []
        self._pending: list[str] = []
        self._session_started_at: Optional[float] = None
        self._started = False

    @property
    def open_groups(self) -> list:
        return list(self._groups)

    def session_started(self) -> None:
        self._session_started_at = time.perf_counter()

    def collection_finished(self, session: pytest.Session) -> None:
        if self._started:
            return

        started_at = self._session_started_at or time.perf_counter()
        self.reporter.start(
            StartNotification(
                count=len(session.items),
                load_time=time.perf_counter() - started_at,
            )
        )
        self._started = True

        seed = _randomly_seed(session.config)
        if seed is not None:
            self.reporter.seed(seed)

    def item_started(self, item: pytest.Item) -> None:
        chain = group_chain(item)
        self._leave_groups(chain)
        for node in chain[len(self._groups):]:
            self.reporter.example_group_started(describe_group(node))
            self._groups.append(node)
            logger.debug("Opened group %s", node.nodeid)

        self._reports[item.nodeid] = []
        self.reporter.example_started(describe_example(item))

    def report_logged(self, report: TestReport) -> None:
        reports = self._reports.get(report.nodeid)
        if reports is not None:
            reports.append(report)

    def item_finished(self, item: pytest.Item, nextitem: Optional[pytest.Item]) -> None:
        reports = self._reports.pop(item.nodeid, [])
        result, decisive = classify(reports)
        example = describe_example(item)

        if result == RESULT_PASSED:
            self.reporter.example_passed(example)
        else:
            notification = FailedExampleNotification(
                description=example.description,
                file_path=example.file_path,
                location=example.location,
                message_lines=failure_message(decisive).splitlines(),
                formatted_backtrace=decisive.longreprtext.splitlines(),
            )
            if result == RESULT_FAILED:
                self._failed.append(item.nodeid)
                self.reporter.example_failed(notification)
            else:
                self._pending.append(item.nodeid)
                self.reporter.example_pending(notification)

        self._leave_groups(group_chain(nextitem) if nextitem is not None else [])

    def message(self, text: str) -> None:
        self.reporter.message(MessageNotification(message=text))

    def dump_started(self) -> None:
        self.reporter.start_dump()

    def session_finished(self) -> None:
        if not self._started:
            return

        self._leave_groups([])
        self.reporter.stop(
            StopNotification(
                failed_examples=list(self._failed),
                pending_examples=list(self._pending),
            )
        )
        self._started = False

    def _leave_groups(self, chain: list) -> None:
        """Close open groups until they are a prefix of ``chain``."""
        while self._groups and not self._is_prefix(chain):
            node = self._groups.pop()
            self.reporter.example_group_finished(describe_group(node))
            logger.debug("Closed group %s", node.nodeid)

    def _is_prefix(self, chain: list) -> bool:
        size = len(self._groups)
        return chain[:size] == self._groups

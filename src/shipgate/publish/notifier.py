"""Terminal run notifications.

A Notifier emits exactly one status message per run through ``notify`` and
a separate completion signal through ``finished``, which is sent whatever
the outcome.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional, TextIO

from rich.console import Console
from rich.markup import escape

from shipgate.core.logging import get_logger
from shipgate.core.models import RunResult, RunStatus

LOGGER = get_logger(__name__)


def format_status(result: RunResult) -> str:
    """One-line status for a finished run."""
    status = result.status
    if status == RunStatus.SUCCESS:
        return f"Pipeline run #{result.run_id} succeeded"
    if status == RunStatus.SUCCESS_WITH_WARNINGS:
        count = sum(len(failure.reasons) for failure in result.advisory_failures)
        return f"Pipeline run #{result.run_id} succeeded with {count} warning(s)"
    if status == RunStatus.CANCELLED:
        stage = f" during stage '{result.halted_at_stage}'" if result.halted_at_stage else ""
        return f"Pipeline run #{result.run_id} was cancelled{stage}"
    return (
        f"Pipeline run #{result.run_id} failed at stage '{result.halted_at_stage}': "
        f"{result.fatal_reason}"
    )


class Notifier(ABC):
    """Receives the terminal status of a run."""

    @abstractmethod
    def notify(self, result: RunResult) -> None:
        """Emit the run's terminal status message."""

    @abstractmethod
    def finished(self, result: RunResult) -> None:
        """Emit the completion signal (sent for every outcome)."""


class ConsoleNotifier(Notifier):
    """Writes the status and warnings to a text stream."""

    _STYLES = {
        RunStatus.SUCCESS: "bold green",
        RunStatus.SUCCESS_WITH_WARNINGS: "bold yellow",
        RunStatus.FAILED: "bold red",
        RunStatus.CANCELLED: "bold magenta",
    }

    def __init__(self, output: TextIO = sys.stdout, use_rich: bool = False) -> None:
        self._output = output
        self._console: Optional[Console] = None
        if use_rich:
            self._console = Console(file=output)

    def notify(self, result: RunResult) -> None:
        self._print(format_status(result), self._STYLES[result.status])
        for warning in result.iter_warnings():
            self._print(f"  warning {warning}", "yellow")
        for report in result.reports:
            counts = ", ".join(
                f"{severity}={count}" for severity, count in report.to_dict()["counts"].items()
            )
            self._print(f"  {report.source_tool} ({report.status.value}): {counts}", "dim")

    def finished(self, result: RunResult) -> None:
        self._print(f"Pipeline run #{result.run_id} finished ({result.status.value})", "bold")

    def _print(self, message: str, style: str) -> None:
        if self._console:
            self._console.print(f"[{style}]{escape(message)}[/{style}]")
        else:
            print(message, file=self._output, flush=True)


class CallbackNotifier(Notifier):
    """Forwards notifications to callables."""

    def __init__(
        self,
        on_status: Optional[Callable[[RunResult, str], None]] = None,
        on_finished: Optional[Callable[[RunResult], None]] = None,
    ) -> None:
        self._on_status = on_status
        self._on_finished = on_finished

    def notify(self, result: RunResult) -> None:
        if self._on_status:
            self._on_status(result, format_status(result))

    def finished(self, result: RunResult) -> None:
        if self._on_finished:
            self._on_finished(result)


class CompositeNotifier(Notifier):
    """Fans out to several notifiers; one failing does not stop the others."""

    def __init__(self, notifiers: Iterable[Notifier]) -> None:
        self._notifiers: List[Notifier] = list(notifiers)

    def notify(self, result: RunResult) -> None:
        self._each(lambda n: n.notify(result), "notify")

    def finished(self, result: RunResult) -> None:
        self._each(lambda n: n.finished(result), "finished")

    def _each(self, call: Callable[[Notifier], None], what: str) -> None:
        for notifier in self._notifiers:
            try:
                call(notifier)
            except Exception as e:
                LOGGER.error(f"{type(notifier).__name__}.{what} failed: {e}")

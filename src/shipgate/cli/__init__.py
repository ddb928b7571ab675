"""shipgate CLI package."""

from __future__ import annotations

from typing import Iterable, Optional

from shipgate.cli.runner import CLIRunner, get_version
from shipgate.cli.arguments import build_parser
from shipgate.cli.exit_codes import (
    EXIT_SUCCESS,
    EXIT_PIPELINE_FAILED,
    EXIT_INTERNAL_ERROR,
    EXIT_INVALID_USAGE,
    EXIT_CANCELLED,
)


def main(argv: Optional[Iterable[str]] = None) -> int:
    """CLI entrypoint.

    Returns an exit code suitable for use as a console script.
    """
    runner = CLIRunner()
    return runner.run(argv)


__all__ = [
    "main",
    "build_parser",
    "get_version",
    "CLIRunner",
    "EXIT_SUCCESS",
    "EXIT_PIPELINE_FAILED",
    "EXIT_INTERNAL_ERROR",
    "EXIT_INVALID_USAGE",
    "EXIT_CANCELLED",
]

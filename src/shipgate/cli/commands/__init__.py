"""CLI commands package.

This module provides the base Command class and exports all command implementations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from argparse import Namespace
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from shipgate.config.models import ShipgateConfig


class Command(ABC):
    """Base class for CLI commands."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Command identifier."""

    @abstractmethod
    def execute(self, args: Namespace, config: "ShipgateConfig | None" = None) -> int:
        """Execute the command.

        Args:
            args: Parsed command-line arguments.
            config: Loaded shipgate configuration.

        Returns:
            Exit code (0 for success, non-zero for error).
        """


# ruff: noqa: E402
from shipgate.cli.commands.run import RunCommand
from shipgate.cli.commands.stages import StagesCommand
from shipgate.cli.commands.validate import ValidateCommand

__all__ = [
    "Command",
    "RunCommand",
    "StagesCommand",
    "ValidateCommand",
]

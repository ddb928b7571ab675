"""Stream handlers for live tool output during a pipeline run.

Provides a unified interface for streaming command output to different
targets:
- CLI: Print to console, optionally through a Rich console
- Callback: Forward events to another system
- Null: Drop everything
"""

from __future__ import annotations

import sys
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TextIO

from rich.console import Console
from rich.markup import escape


class StreamType(str, Enum):
    """Type of stream output."""

    STDOUT = "stdout"
    STDERR = "stderr"
    STATUS = "status"


@dataclass
class StreamEvent:
    """A streaming event from a tool execution."""

    tool_name: str
    stream_type: StreamType
    content: str
    line_number: Optional[int] = None


class StreamHandler(ABC):
    """Abstract base class for stream handlers.

    Implementations must be thread-safe: sub-actions of a stage may run
    concurrently and emit events from different threads.
    """

    @abstractmethod
    def emit(self, event: StreamEvent) -> None:
        """Emit a stream event."""

    @abstractmethod
    def start_tool(self, tool_name: str) -> None:
        """Signal that a tool has started execution."""

    @abstractmethod
    def end_tool(self, tool_name: str, success: bool) -> None:
        """Signal that a tool has finished execution."""


class NullStreamHandler(StreamHandler):
    """No-op handler used when streaming is disabled."""

    def emit(self, event: StreamEvent) -> None:
        pass

    def start_tool(self, tool_name: str) -> None:
        pass

    def end_tool(self, tool_name: str, success: bool) -> None:
        pass


class CLIStreamHandler(StreamHandler):
    """Thread-safe console stream handler."""

    def __init__(
        self,
        output: TextIO = sys.stderr,
        show_output: bool = True,
        use_rich: bool = False,
    ):
        """Initialize CLIStreamHandler.

        Args:
            output: Output stream to write to (default: stderr).
            show_output: Whether to show raw tool output lines.
            use_rich: Whether to format output through a Rich console.
        """
        self._output = output
        self._show_output = show_output
        self._lock = threading.Lock()
        self._console: Optional[Console] = None

        if use_rich:
            self._console = Console(file=output, force_terminal=True)

    def emit(self, event: StreamEvent) -> None:
        if not self._show_output:
            return

        with self._lock:
            if event.stream_type == StreamType.STATUS:
                self._print_status(f"[{event.tool_name}] {event.content}")
            else:
                self._print_line(f"  {event.tool_name}: ", event.content)

    def start_tool(self, tool_name: str) -> None:
        with self._lock:
            self._print_status(f"[{tool_name}] Starting...")

    def end_tool(self, tool_name: str, success: bool) -> None:
        with self._lock:
            self._print_status(f"[{tool_name}] {'Done' if success else 'Failed'}")

    def _print_status(self, message: str) -> None:
        if self._console:
            self._console.print(f"[bold cyan]{escape(message)}[/bold cyan]")
        else:
            print(message, file=self._output, flush=True)

    def _print_line(self, prefix: str, content: str) -> None:
        if self._console:
            self._console.print(f"[dim]{escape(prefix)}[/dim]{escape(content)}")
        else:
            print(f"{prefix}{content}", file=self._output, flush=True)


class CallbackStreamHandler(StreamHandler):
    """Handler that invokes callbacks for stream events."""

    def __init__(
        self,
        on_event: Optional[Callable[[StreamEvent], None]] = None,
        on_start: Optional[Callable[[str], None]] = None,
        on_end: Optional[Callable[[str, bool], None]] = None,
    ):
        self._on_event = on_event
        self._on_start = on_start
        self._on_end = on_end
        self._lock = threading.Lock()

    def emit(self, event: StreamEvent) -> None:
        if self._on_event:
            with self._lock:
                self._on_event(event)

    def start_tool(self, tool_name: str) -> None:
        if self._on_start:
            with self._lock:
                self._on_start(tool_name)
        if self._on_event:
            self.emit(
                StreamEvent(
                    tool_name=tool_name,
                    stream_type=StreamType.STATUS,
                    content="started",
                )
            )

    def end_tool(self, tool_name: str, success: bool) -> None:
        if self._on_end:
            with self._lock:
                self._on_end(tool_name, success)
        if self._on_event:
            self.emit(
                StreamEvent(
                    tool_name=tool_name,
                    stream_type=StreamType.STATUS,
                    content="completed" if success else "failed",
                )
            )

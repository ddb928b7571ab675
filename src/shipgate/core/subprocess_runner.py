"""Subprocess execution with live output streaming.

Runs a command with one reader thread per output stream, forwards lines to
a StreamHandler and keeps a bounded tail of each stream. Every wait is
bounded: the process is terminated on timeout or cancellation.
"""

from __future__ import annotations

import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Mapping, Optional

from shipgate.core.cancellation import CancellationToken, PipelineCancelled
from shipgate.core.logging import get_logger
from shipgate.core.streaming import NullStreamHandler, StreamEvent, StreamHandler, StreamType

LOGGER = get_logger(__name__)

# Characters retained per stream; older output is dropped
DEFAULT_MAX_OUTPUT = 64_000

POLL_INTERVAL = 0.1
TERMINATE_GRACE_SECONDS = 5.0
READER_JOIN_SECONDS = 5.0


@dataclass
class CommandResult:
    """Exit status and captured output of a finished command."""

    returncode: int
    stdout: str
    stderr: str
    duration_ms: int = 0


class BoundedBuffer:
    """Thread-safe text buffer that keeps only the last ``limit`` characters."""

    def __init__(self, limit: int = DEFAULT_MAX_OUTPUT) -> None:
        self._limit = limit
        self._chunks: List[str] = []
        self._size = 0
        self._truncated = False
        self._lock = threading.Lock()

    def append(self, text: str) -> None:
        with self._lock:
            self._chunks.append(text)
            self._size += len(text)
            while self._size > self._limit and len(self._chunks) > 1:
                dropped = self._chunks.pop(0)
                self._size -= len(dropped)
                self._truncated = True
            if self._size > self._limit:
                self._chunks[0] = self._chunks[0][-self._limit:]
                self._size = len(self._chunks[0])
                self._truncated = True

    @property
    def truncated(self) -> bool:
        return self._truncated

    def getvalue(self) -> str:
        with self._lock:
            return "".join(self._chunks)


def _pump(
    pipe: IO[str],
    buffer: BoundedBuffer,
    handler: StreamHandler,
    tool_name: str,
    stream_type: StreamType,
) -> None:
    """Copy lines from ``pipe`` into ``buffer`` and the stream handler."""
    line_number = 0
    try:
        for line in iter(pipe.readline, ""):
            line_number += 1
            buffer.append(line)
            handler.emit(
                StreamEvent(
                    tool_name=tool_name,
                    stream_type=stream_type,
                    content=line.rstrip("\n"),
                    line_number=line_number,
                )
            )
    except ValueError:
        # Pipe closed underneath us after the process was killed
        pass
    finally:
        pipe.close()


def _terminate(process: subprocess.Popen) -> None:
    """Terminate ``process``, escalating to kill after a grace period."""
    if process.poll() is not None:
        return
    process.terminate()
    try:
        process.wait(timeout=TERMINATE_GRACE_SECONDS)
    except subprocess.TimeoutExpired:
        LOGGER.debug(f"Process {process.pid} ignored SIGTERM, killing")
        process.kill()
        process.wait()


def run_with_streaming(
    cmd: List[str],
    cwd: Optional[Path] = None,
    tool_name: str = "",
    stream_handler: Optional[StreamHandler] = None,
    timeout: Optional[float] = None,
    env: Optional[Mapping[str, str]] = None,
    stdin_data: Optional[str] = None,
    cancel_token: Optional[CancellationToken] = None,
    max_output: int = DEFAULT_MAX_OUTPUT,
) -> CommandResult:
    """Run a command, streaming its output.

    Args:
        cmd: Command and arguments.
        cwd: Working directory.
        tool_name: Label used for stream events.
        stream_handler: Receives output lines; defaults to a no-op handler.
        timeout: Seconds before the process is terminated.
        env: Full environment for the child process.
        stdin_data: Text written to the child's stdin, then closed.
        cancel_token: Polled while waiting; cancellation terminates the process.
        max_output: Characters retained per stream.

    Returns:
        CommandResult with exit code and (bounded) output.

    Raises:
        FileNotFoundError: If the executable does not exist.
        subprocess.TimeoutExpired: If ``timeout`` elapsed.
        PipelineCancelled: If ``cancel_token`` fired while running.
    """
    handler = stream_handler or NullStreamHandler()
    name = tool_name or Path(cmd[0]).name

    start = time.monotonic()
    process = subprocess.Popen(
        cmd,
        cwd=str(cwd) if cwd else None,
        env=dict(env) if env is not None else None,
        stdin=subprocess.PIPE if stdin_data is not None else subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        encoding="utf-8",
        errors="replace",
    )
    handler.start_tool(name)

    stdout_buffer = BoundedBuffer(max_output)
    stderr_buffer = BoundedBuffer(max_output)
    readers = [
        threading.Thread(
            target=_pump,
            args=(process.stdout, stdout_buffer, handler, name, StreamType.STDOUT),
            daemon=True,
        ),
        threading.Thread(
            target=_pump,
            args=(process.stderr, stderr_buffer, handler, name, StreamType.STDERR),
            daemon=True,
        ),
    ]
    for reader in readers:
        reader.start()

    if stdin_data is not None and process.stdin is not None:
        try:
            process.stdin.write(stdin_data)
        except BrokenPipeError:
            LOGGER.debug(f"{name} closed stdin before reading it")
        finally:
            try:
                process.stdin.close()
            except BrokenPipeError:
                pass

    deadline = start + timeout if timeout else None
    success = False
    try:
        while True:
            try:
                returncode = process.wait(timeout=POLL_INTERVAL)
                break
            except subprocess.TimeoutExpired:
                pass

            if cancel_token is not None and cancel_token.cancelled:
                LOGGER.warning(f"Cancelling {name} (pid {process.pid})")
                _terminate(process)
                raise PipelineCancelled(cancel_token.reason or "cancelled")

            if deadline is not None and time.monotonic() >= deadline:
                LOGGER.warning(f"{name} timed out after {timeout} seconds")
                _terminate(process)
                for reader in readers:
                    reader.join(READER_JOIN_SECONDS)
                raise subprocess.TimeoutExpired(
                    cmd,
                    timeout,
                    output=stdout_buffer.getvalue(),
                    stderr=stderr_buffer.getvalue(),
                )
        success = True
    finally:
        for reader in readers:
            reader.join(READER_JOIN_SECONDS)
        handler.end_tool(name, success and returncode == 0)

    return CommandResult(
        returncode=returncode,
        stdout=stdout_buffer.getvalue(),
        stderr=stderr_buffer.getvalue(),
        duration_ms=int((time.monotonic() - start) * 1000),
    )

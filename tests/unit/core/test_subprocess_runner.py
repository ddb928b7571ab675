"""Tests for shipgate.core.subprocess_runner."""

from __future__ import annotations

import subprocess
import sys
import threading
from typing import List

import pytest

from shipgate.core.cancellation import CancellationToken, PipelineCancelled
from shipgate.core.streaming import CallbackStreamHandler, StreamEvent, StreamType
from shipgate.core.subprocess_runner import BoundedBuffer, run_with_streaming


def py(code: str) -> List[str]:
    return [sys.executable, "-c", code]


class TestRunWithStreaming:
    """Tests for run_with_streaming."""

    def test_captures_output_and_exit_code(self) -> None:
        result = run_with_streaming(
            py("import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)")
        )
        assert result.returncode == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"

    def test_passes_stdin_data(self) -> None:
        result = run_with_streaming(
            py("import sys; print(sys.stdin.read().upper())"),
            stdin_data="secret",
        )
        assert result.stdout.strip() == "SECRET"

    def test_missing_executable_raises(self) -> None:
        with pytest.raises(FileNotFoundError):
            run_with_streaming(["shipgate-no-such-binary-xyz"])

    def test_timeout_terminates_and_raises(self) -> None:
        with pytest.raises(subprocess.TimeoutExpired) as exc_info:
            run_with_streaming(
                py("import time; print('started', flush=True); time.sleep(30)"),
                timeout=0.5,
            )
        assert "started" in exc_info.value.output

    def test_cancellation_terminates_and_raises(self) -> None:
        token = CancellationToken()
        timer = threading.Timer(0.3, token.cancel, args=("received SIGINT",))
        timer.start()
        try:
            with pytest.raises(PipelineCancelled, match="SIGINT"):
                run_with_streaming(py("import time; time.sleep(30)"), cancel_token=token)
        finally:
            timer.cancel()

    def test_streams_lines_to_handler(self) -> None:
        events: List[StreamEvent] = []
        handler = CallbackStreamHandler(on_event=events.append)

        run_with_streaming(py("print('a'); print('b')"), tool_name="demo", stream_handler=handler)

        stdout = [e.content for e in events if e.stream_type == StreamType.STDOUT]
        status = [e.content for e in events if e.stream_type == StreamType.STATUS]
        assert stdout == ["a", "b"]
        assert status == ["started", "completed"]
        assert all(e.tool_name == "demo" for e in events)


class TestBoundedBuffer:
    def test_keeps_tail_when_over_limit(self) -> None:
        buffer = BoundedBuffer(limit=10)
        for chunk in ["aaaa", "bbbb", "cccc"]:
            buffer.append(chunk)
        assert buffer.getvalue() == "bbbbcccc"
        assert buffer.truncated

    def test_truncates_single_large_chunk(self) -> None:
        buffer = BoundedBuffer(limit=4)
        buffer.append("0123456789")
        assert buffer.getvalue() == "6789"

    def test_under_limit_is_untouched(self) -> None:
        buffer = BoundedBuffer(limit=100)
        buffer.append("hello\n")
        assert buffer.getvalue() == "hello\n"
        assert not buffer.truncated

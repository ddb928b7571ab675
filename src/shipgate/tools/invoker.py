"""Tool invocation with an explicit contract.

A ToolSpec states what a command needs (argv, environment, secrets), what
it must produce (expected output files) and how its exit code is read
(allowed codes, tolerated "findings" codes). ToolInvoker runs it and
returns a ToolInvocationResult; it never raises for tool failures.
"""

from __future__ import annotations

import os
import subprocess
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, FrozenSet, List, Mapping, Optional, Sequence, Union

from shipgate.core.cancellation import CancellationToken
from shipgate.core.logging import get_logger
from shipgate.core.models import CredentialHandle, PipelineContext, ToolInvocationResult
from shipgate.core.streaming import StreamHandler
from shipgate.core.subprocess_runner import DEFAULT_MAX_OUTPUT, run_with_streaming

LOGGER = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 600.0

MASK = "****"


@dataclass(frozen=True)
class SecretRef:
    """Placeholder for a credential resolved at invocation time."""

    name: str
    prefix: str = ""

    def __str__(self) -> str:
        return f"{self.prefix}{MASK}"


Arg = Union[str, SecretRef]


@dataclass(frozen=True)
class ToolSpec:
    """Contract for one external command."""

    name: str
    command: Sequence[Arg]
    expected_outputs: Sequence[Path] = ()
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    allowed_exit_codes: FrozenSet[int] = frozenset({0})
    findings_exit_codes: FrozenSet[int] = frozenset()
    env: Mapping[str, Arg] = field(default_factory=dict)
    stdin_secret: Optional[SecretRef] = None
    cwd: Optional[Path] = None

    def display_command(self) -> List[str]:
        """argv with every secret masked, safe for logs and results."""
        return [str(arg) for arg in self.command]


class ToolInvoker:
    """Runs ToolSpecs and interprets their outcome."""

    def __init__(
        self,
        stream_handler: Optional[StreamHandler] = None,
        cancel_token: Optional[CancellationToken] = None,
        max_output: int = DEFAULT_MAX_OUTPUT,
    ) -> None:
        self._stream_handler = stream_handler
        self._cancel_token = cancel_token
        self._max_output = max_output

    @property
    def cancel_token(self) -> Optional[CancellationToken]:
        return self._cancel_token

    def invoke(
        self,
        spec: ToolSpec,
        context: Optional[PipelineContext] = None,
        cancellable: bool = True,
    ) -> ToolInvocationResult:
        """Run ``spec`` and return its result.

        Args:
            spec: Command contract.
            context: Pipeline context supplying credentials and workspace.
            cancellable: When False the command runs to completion (or
                timeout) even if the run is cancelled. Used for cleanup.

        Returns:
            ToolInvocationResult describing success or failure.

        Raises:
            PipelineCancelled: If the run was cancelled while the command ran.
            KeyError: If a referenced credential is not available.
        """
        token = self._cancel_token if cancellable else None
        if token is not None:
            token.raise_if_cancelled()

        credentials = context.credentials if context else CredentialHandle()
        argv = [self._resolve(arg, credentials) for arg in spec.command]
        display = spec.display_command()
        cwd = spec.cwd or (context.workspace if context else None)

        env: Optional[Dict[str, str]] = None
        if spec.env:
            env = dict(os.environ)
            env.update({key: self._resolve(value, credentials) for key, value in spec.env.items()})

        stdin_data = None
        if spec.stdin_secret is not None:
            stdin_data = credentials.resolve(spec.stdin_secret.name)

        expected = [self._absolute(path, cwd) for path in spec.expected_outputs]
        # Outputs must come from this invocation
        for path in expected:
            if path.is_file():
                LOGGER.debug(f"{spec.name}: removing stale {path}")
                path.unlink()

        LOGGER.debug(f"Running {spec.name}: {' '.join(display)}")
        start = time.monotonic()

        try:
            completed = run_with_streaming(
                cmd=argv,
                cwd=cwd,
                tool_name=spec.name,
                stream_handler=self._stream_handler,
                timeout=spec.timeout,
                env=env,
                stdin_data=stdin_data,
                cancel_token=token,
                max_output=self._max_output,
            )
        except FileNotFoundError:
            LOGGER.error(f"{spec.name}: executable '{display[0]}' not found")
            return ToolInvocationResult(
                tool=spec.name,
                command=display,
                reason="not_found",
                duration_ms=self._elapsed(start),
            )
        except subprocess.TimeoutExpired as e:
            return ToolInvocationResult(
                tool=spec.name,
                command=display,
                stdout=self._text(e.output),
                stderr=self._text(e.stderr),
                missing_outputs=[p for p in expected if not p.exists()],
                reason="timeout",
                duration_ms=self._elapsed(start),
            )

        result = ToolInvocationResult(
            tool=spec.name,
            command=display,
            exit_code=completed.returncode,
            stdout=completed.stdout,
            stderr=completed.stderr,
            produced_files=[p for p in expected if p.exists()],
            missing_outputs=[p for p in expected if not p.exists()],
            duration_ms=completed.duration_ms,
        )

        if completed.returncode in spec.allowed_exit_codes:
            result.succeeded = True
        elif completed.returncode in spec.findings_exit_codes:
            result.succeeded = True
            result.had_findings = True
        else:
            result.reason = "exit_code"

        # Output existence is part of the contract, not just exit status
        if result.succeeded and result.missing_outputs:
            result.succeeded = False
            result.reason = "missing_output"

        if result.succeeded:
            findings = " (findings reported)" if result.had_findings else ""
            LOGGER.debug(f"{spec.name} succeeded in {result.duration_ms}ms{findings}")
        else:
            LOGGER.warning(result.describe_failure())
        return result

    @staticmethod
    def _resolve(arg: Arg, credentials: CredentialHandle) -> str:
        if isinstance(arg, SecretRef):
            return f"{arg.prefix}{credentials.resolve(arg.name)}"
        return arg

    @staticmethod
    def _absolute(path: Path, cwd: Optional[Path]) -> Path:
        path = Path(path)
        if path.is_absolute() or cwd is None:
            return path
        return Path(cwd) / path

    @staticmethod
    def _elapsed(start: float) -> int:
        return int((time.monotonic() - start) * 1000)

    @staticmethod
    def _text(value: object) -> str:
        if value is None:
            return ""
        if isinstance(value, bytes):
            return value.decode("utf-8", errors="replace")
        return str(value)

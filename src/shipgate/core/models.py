"""Core data models for shipgate.

Defines the pipeline context threaded through every stage, the results
produced by tool invocations and report aggregation, and the terminal
RunResult of a pipeline run.
"""

from __future__ import annotations

import os
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple


class Severity(str, Enum):
    """Unified severity buckets used across all scanners."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Any) -> "Severity":
        """Map a scanner severity string onto a bucket.

        Matching is case-insensitive. Anything that is not one of the four
        known levels lands in UNKNOWN so totals stay reconcilable.
        """
        if isinstance(value, str):
            normalized = value.strip().upper()
            for member in cls.ranked():
                if member.value == normalized:
                    return member
        return cls.UNKNOWN

    @classmethod
    def ranked(cls) -> Tuple["Severity", ...]:
        """Known severity levels, most severe first."""
        return (cls.CRITICAL, cls.HIGH, cls.MEDIUM, cls.LOW)

    @property
    def rank(self) -> int:
        """Position in the ranking (0 = most severe, UNKNOWN last)."""
        ranked = self.ranked()
        return ranked.index(self) if self in ranked else len(ranked)


class FailurePolicy(str, Enum):
    """What a failing action does to the run."""

    FATAL = "fatal"
    ADVISORY = "advisory"


class ParseStatus(str, Enum):
    """Outcome of reading a scanner report."""

    OK = "ok"
    MISSING = "missing"
    MALFORMED = "malformed"


class FailureKind(str, Enum):
    """Classification of an action failure.

    INFRASTRUCTURE and GATE failures halt the run whatever the stage policy.
    PARSE, FINDINGS and PARTIAL_EXTRACTION failures never do. TOOL failures
    follow the stage's FailurePolicy.
    """

    TOOL = "tool"
    INFRASTRUCTURE = "infrastructure"
    PARTIAL_EXTRACTION = "partial_extraction"
    PARSE = "parse"
    FINDINGS = "findings"
    GATE = "gate"

    @property
    def always_fatal(self) -> bool:
        return self in (FailureKind.INFRASTRUCTURE, FailureKind.GATE)

    @property
    def always_advisory(self) -> bool:
        return self in (
            FailureKind.PARTIAL_EXTRACTION,
            FailureKind.PARSE,
            FailureKind.FINDINGS,
        )


@dataclass
class ImageReference:
    """Container image reference. The tag may be changed during a run."""

    name: str
    tag: str = "latest"
    registry: str = ""

    @property
    def ref(self) -> str:
        """Fully qualified reference, e.g. ``registry.io/team/app:42``."""
        repository = f"{self.registry.rstrip('/')}/{self.name}" if self.registry else self.name
        return f"{repository}:{self.tag}"

    def __str__(self) -> str:
        return self.ref


class CredentialHandle:
    """Opaque handle to secrets held in environment variables.

    Only logical secret names are stored. Values are read at use time and
    never appear in ``repr`` or ``str``.
    """

    def __init__(
        self,
        env_vars: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._env_vars = dict(env_vars or {})
        self._environ = environ

    @property
    def names(self) -> List[str]:
        return sorted(self._env_vars)

    def has(self, name: str) -> bool:
        """Whether a secret is declared and currently resolvable."""
        env_var = self._env_vars.get(name)
        if not env_var:
            return False
        return bool(self._source().get(env_var))

    def resolve(self, name: str) -> str:
        """Return the secret value.

        Raises:
            KeyError: If the secret is not declared or its variable is unset.
        """
        env_var = self._env_vars.get(name)
        if env_var is None:
            raise KeyError(f"Unknown credential '{name}'")
        value = self._source().get(env_var)
        if not value:
            raise KeyError(f"Credential '{name}' is not set (expected ${env_var})")
        return value

    def _source(self) -> Mapping[str, str]:
        return self._environ if self._environ is not None else os.environ

    def __repr__(self) -> str:
        return f"CredentialHandle(names={self.names})"

    __str__ = __repr__


class PipelineContext:
    """State shared across stages for one pipeline run.

    Identity fields (run id, image, registry, credentials, workspace) are
    read-only. Stages may append artifacts and severity reports; only the
    StageRunner advances the stage index, and only forwards.
    """

    def __init__(
        self,
        run_id: int,
        image: ImageReference,
        workspace: Path,
        credentials: Optional[CredentialHandle] = None,
        registry: str = "",
    ) -> None:
        if run_id < 1:
            raise ValueError(f"run_id must be a positive integer, got {run_id}")
        self._run_id = run_id
        self._image = image
        self._workspace = Path(workspace)
        self._credentials = credentials or CredentialHandle()
        self._registry = registry or image.registry
        self._artifacts: List[Path] = []
        self._reports: List["SeverityReport"] = []
        self._stage_index = -1
        self._lock = threading.Lock()

    @property
    def run_id(self) -> int:
        return self._run_id

    @property
    def image(self) -> ImageReference:
        return self._image

    @property
    def registry(self) -> str:
        return self._registry

    @property
    def credentials(self) -> CredentialHandle:
        return self._credentials

    @property
    def workspace(self) -> Path:
        return self._workspace

    @property
    def current_stage_index(self) -> int:
        return self._stage_index

    @property
    def artifacts(self) -> Tuple[Path, ...]:
        """Snapshot of accumulated artifact paths, in insertion order."""
        return tuple(self._artifacts)

    @property
    def reports(self) -> Tuple["SeverityReport", ...]:
        return tuple(self._reports)

    def add_artifact(self, path: Path) -> None:
        """Append an artifact path (duplicates are ignored)."""
        path = Path(path)
        with self._lock:
            if path not in self._artifacts:
                self._artifacts.append(path)

    def add_report(self, report: "SeverityReport") -> None:
        with self._lock:
            self._reports.append(report)

    def advance_to(self, index: int) -> None:
        """Move to stage ``index``. Called by StageRunner only.

        Raises:
            ValueError: If ``index`` does not move forward.
        """
        if index <= self._stage_index:
            raise ValueError(
                f"Stage index can only advance (current {self._stage_index}, requested {index})"
            )
        self._stage_index = index

    def __repr__(self) -> str:
        return (
            f"PipelineContext(run_id={self._run_id}, image={self._image.ref!r}, "
            f"stage_index={self._stage_index}, artifacts={len(self._artifacts)})"
        )


@dataclass
class ToolInvocationResult:
    """Outcome of running one external command."""

    tool: str
    command: List[str]
    exit_code: Optional[int] = None
    stdout: str = ""
    stderr: str = ""
    produced_files: List[Path] = field(default_factory=list)
    missing_outputs: List[Path] = field(default_factory=list)
    succeeded: bool = False
    had_findings: bool = False
    reason: Optional[str] = None  # exit_code, timeout, missing_output, not_found
    duration_ms: int = 0

    def describe_failure(self) -> str:
        """One-line explanation of why the invocation failed."""
        if self.succeeded:
            return ""
        if self.reason == "timeout":
            return f"{self.tool} timed out"
        if self.reason == "not_found":
            return f"{self.tool} executable not found"
        if self.reason == "missing_output":
            missing = ", ".join(p.name for p in self.missing_outputs)
            return f"{self.tool} did not produce expected output: {missing}"
        detail = self.stderr.strip().splitlines()[-1] if self.stderr.strip() else ""
        message = f"{self.tool} exited with code {self.exit_code}"
        return f"{message}: {detail}" if detail else message


def _zero_counts() -> Dict[Severity, int]:
    return {severity: 0 for severity in Severity}


@dataclass
class SeverityReport:
    """Normalized severity counts for one scanner report."""

    source_tool: str
    counts: Dict[Severity, int] = field(default_factory=_zero_counts)
    status: ParseStatus = ParseStatus.OK
    diagnostic: str = ""
    report_path: Optional[Path] = None

    def count(self, severity: Severity) -> int:
        return self.counts.get(severity, 0)

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def at_or_above(self, threshold: Severity) -> int:
        """Number of findings at ``threshold`` or more severe."""
        return sum(
            self.count(severity)
            for severity in Severity.ranked()
            if severity.rank <= threshold.rank
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tool": self.source_tool,
            "status": self.status.value,
            "counts": {severity.value: self.count(severity) for severity in Severity},
            "total": self.total,
            "diagnostic": self.diagnostic,
            "report_path": str(self.report_path) if self.report_path else None,
        }


@dataclass
class ActionResult:
    """Outcome of one stage action."""

    action: str
    succeeded: bool = True
    kind: Optional[FailureKind] = None
    reason: str = ""
    artifacts: List[Path] = field(default_factory=list)

    @classmethod
    def ok(cls, action: str, artifacts: Optional[List[Path]] = None) -> "ActionResult":
        return cls(action=action, artifacts=list(artifacts or []))

    @classmethod
    def failed(
        cls,
        action: str,
        kind: FailureKind,
        reason: str,
        artifacts: Optional[List[Path]] = None,
    ) -> "ActionResult":
        return cls(
            action=action,
            succeeded=False,
            kind=kind,
            reason=reason,
            artifacts=list(artifacts or []),
        )


@dataclass
class AdvisoryFailure:
    """Recorded, non-halting failures of one stage."""

    stage: str
    reasons: List[str] = field(default_factory=list)

    def __str__(self) -> str:
        return f"{self.stage}: {'; '.join(self.reasons)}"


class RunStatus(str, Enum):
    """Terminal status of a pipeline run."""

    SUCCESS = "success"
    SUCCESS_WITH_WARNINGS = "success_with_warnings"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class RunResult:
    """Terminal outcome record of one pipeline execution."""

    run_id: int
    completed: bool = False
    halted_at_stage: Optional[str] = None
    fatal_reason: str = ""
    advisory_failures: List[AdvisoryFailure] = field(default_factory=list)
    cancelled: bool = False
    stages_run: List[str] = field(default_factory=list)
    reports: List[SeverityReport] = field(default_factory=list)
    published: List[Path] = field(default_factory=list)
    started_at: str = ""
    finished_at: str = ""
    duration_ms: int = 0

    @property
    def status(self) -> RunStatus:
        if self.cancelled:
            return RunStatus.CANCELLED
        if not self.completed:
            return RunStatus.FAILED
        if self.advisory_failures:
            return RunStatus.SUCCESS_WITH_WARNINGS
        return RunStatus.SUCCESS

    @property
    def succeeded(self) -> bool:
        return self.status in (RunStatus.SUCCESS, RunStatus.SUCCESS_WITH_WARNINGS)

    def iter_warnings(self) -> Iterator[str]:
        for failure in self.advisory_failures:
            for reason in failure.reasons:
                yield f"[{failure.stage}] {reason}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status.value,
            "completed": self.completed,
            "halted_at_stage": self.halted_at_stage,
            "fatal_reason": self.fatal_reason,
            "cancelled": self.cancelled,
            "advisory_failures": [
                {"stage": f.stage, "reasons": list(f.reasons)}
                for f in self.advisory_failures
            ],
            "stages_run": list(self.stages_run),
            "reports": [report.to_dict() for report in self.reports],
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
        }

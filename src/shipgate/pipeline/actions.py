"""Concrete stage actions.

- ToolAction: run one external command.
- ParallelAction: run independent sub-actions concurrently.
- ExtractAction: pull report files out of an ephemeral volume.
- AggregateAction: summarize a scanner report into severity counts.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from shipgate.artifacts.extractor import EphemeralResource, EphemeralResourceError
from shipgate.core.cancellation import PipelineCancelled
from shipgate.core.logging import get_logger
from shipgate.core.models import (
    ActionResult,
    FailureKind,
    ParseStatus,
    PipelineContext,
    Severity,
    ToolInvocationResult,
)
from shipgate.pipeline.stage import Action, StageServices
from shipgate.reports.adapters import SchemaAdapter
from shipgate.reports.aggregator import exceeds_gate, format_counts, severity_warnings
from shipgate.tools.invoker import ToolSpec

LOGGER = get_logger(__name__)

# Most severe first; a combined result reports the worst kind
_KIND_ORDER = (
    FailureKind.INFRASTRUCTURE,
    FailureKind.GATE,
    FailureKind.TOOL,
    FailureKind.PARTIAL_EXTRACTION,
    FailureKind.PARSE,
    FailureKind.FINDINGS,
)


def _missing_credential(error: KeyError) -> str:
    return error.args[0] if error.args else str(error)


class ToolAction(Action):
    """Invoke a single tool and record the files it produced."""

    def __init__(self, spec: ToolSpec) -> None:
        self.spec = spec

    @property
    def name(self) -> str:
        return self.spec.name

    def describe(self) -> str:
        return " ".join(self.spec.display_command())

    def run(self, context: PipelineContext, services: StageServices) -> ActionResult:
        try:
            result = services.invoker.invoke(self.spec, context)
        except KeyError as e:
            return ActionResult.failed(self.name, FailureKind.TOOL, _missing_credential(e))

        for path in result.produced_files:
            context.add_artifact(path)

        if not result.succeeded:
            return ActionResult.failed(
                self.name, FailureKind.TOOL, result.describe_failure(), result.produced_files
            )
        return ActionResult.ok(self.name, result.produced_files)


class ParallelAction(Action):
    """Run independent sub-actions concurrently.

    Every sub-action runs to completion (or failure) before this action
    resolves. It succeeds only if all of them succeed.
    """

    def __init__(self, name: str, actions: Iterable[Action]) -> None:
        self._name = name
        self.actions: Tuple[Action, ...] = tuple(actions)

    @property
    def name(self) -> str:
        return self._name

    def describe(self) -> str:
        return f"{self._name} [{' | '.join(a.name for a in self.actions)}]"

    def run(self, context: PipelineContext, services: StageServices) -> ActionResult:
        if not self.actions:
            return ActionResult.ok(self.name)

        results: List[ActionResult] = []
        cancelled: Optional[PipelineCancelled] = None

        with ThreadPoolExecutor(max_workers=len(self.actions), thread_name_prefix=self.name) as pool:
            futures = [(action, pool.submit(action.run, context, services)) for action in self.actions]
            for action, future in futures:
                try:
                    results.append(future.result())
                except PipelineCancelled as e:
                    cancelled = cancelled or e
                except Exception as e:
                    LOGGER.error(f"{action.name} raised: {e}")
                    results.append(ActionResult.failed(action.name, FailureKind.TOOL, f"{action.name}: {e}"))

        if cancelled is not None:
            raise cancelled

        artifacts = [path for result in results for path in result.artifacts]
        failures = [result for result in results if not result.succeeded]
        if not failures:
            return ActionResult.ok(self.name, artifacts)

        kind = min((f.kind or FailureKind.TOOL for f in failures), key=_KIND_ORDER.index)
        reason = "; ".join(f.reason for f in failures)
        return ActionResult.failed(self.name, kind, reason, artifacts)


ProducerFactory = Callable[[EphemeralResource, PipelineContext], ToolSpec]


class ExtractAction(Action):
    """Produce reports inside an ephemeral volume and copy them out."""

    def __init__(
        self,
        name: str,
        expected_files: Sequence[str],
        destination: Path = Path("."),
        producer: Optional[ProducerFactory] = None,
    ) -> None:
        self._name = name
        self.expected_files = tuple(expected_files)
        self.destination = Path(destination)
        self.producer = producer

    @property
    def name(self) -> str:
        return self._name

    def describe(self) -> str:
        return f"{self._name} -> {', '.join(self.expected_files)}"

    def run(self, context: PipelineContext, services: StageServices) -> ActionResult:
        if services.extractor is None:
            return ActionResult.failed(
                self.name, FailureKind.INFRASTRUCTURE, "No container runtime configured for extraction"
            )

        destination = self.destination
        if not destination.is_absolute():
            destination = context.workspace / destination

        produce: Optional[Callable[[EphemeralResource], ToolInvocationResult]] = None
        if self.producer is not None:
            factory = self.producer

            def produce(resource: EphemeralResource) -> ToolInvocationResult:
                return services.invoker.invoke(factory(resource, context), context)

        try:
            extraction = services.extractor.extract(
                context,
                services.stage_name or self.name,
                self.expected_files,
                destination,
                producer=produce,
            )
        except EphemeralResourceError as e:
            return ActionResult.failed(self.name, FailureKind.INFRASTRUCTURE, str(e))
        except KeyError as e:
            return ActionResult.failed(self.name, FailureKind.TOOL, _missing_credential(e))

        for path in extraction.copied:
            context.add_artifact(path)

        reasons: List[str] = []
        if extraction.producer_failed and extraction.producer_result is not None:
            reasons.append(extraction.producer_result.describe_failure())
        if extraction.missing:
            reasons.append(extraction.diagnostic)
        if reasons:
            return ActionResult.failed(self.name, FailureKind.TOOL, "; ".join(reasons), extraction.copied)

        if extraction.failed_copies:
            return ActionResult.failed(
                self.name, FailureKind.PARTIAL_EXTRACTION, extraction.diagnostic, extraction.copied
            )
        return ActionResult.ok(self.name, extraction.copied)


class AggregateAction(Action):
    """Summarize a scanner report and apply warning/gate thresholds.

    Unreadable reports degrade to zero counts and a PARSE failure. Findings
    at the ``warn_on`` levels are FINDINGS failures (advisory). Findings at
    or above ``fail_on`` are a GATE failure (fatal); gating is off by default.
    """

    def __init__(
        self,
        name: str,
        report_path: Path,
        adapter: SchemaAdapter,
        warn_on: Iterable[Severity] = (Severity.CRITICAL, Severity.HIGH),
        fail_on: Optional[Severity] = None,
    ) -> None:
        self._name = name
        self.report_path = Path(report_path)
        self.adapter = adapter
        self.warn_on = tuple(warn_on)
        self.fail_on = fail_on

    @property
    def name(self) -> str:
        return self._name

    def describe(self) -> str:
        return f"{self._name} ({self.adapter.tool_name}: {self.report_path})"

    def run(self, context: PipelineContext, services: StageServices) -> ActionResult:
        path = self.report_path
        if not path.is_absolute():
            path = context.workspace / path

        report = services.aggregator.aggregate(path, self.adapter)
        context.add_report(report)

        if report.status != ParseStatus.OK:
            LOGGER.warning(f"{report.source_tool} report {report.status.value}: {report.diagnostic}")
            return ActionResult.failed(self.name, FailureKind.PARSE, report.diagnostic)

        LOGGER.info(f"{report.source_tool}: {format_counts(report)}")

        gate = self.fail_on
        if gate is not None and exceeds_gate(report, gate):
            return ActionResult.failed(
                self.name,
                FailureKind.GATE,
                f"{report.source_tool}: {report.at_or_above(gate)} {self.adapter.finding_noun} "
                f"at or above {gate.value} (fail_on gate)",
                [path],
            )

        warnings = severity_warnings(report, self.warn_on, self.adapter.finding_noun)
        for warning in warnings:
            LOGGER.warning(warning)
        if warnings:
            return ActionResult.failed(self.name, FailureKind.FINDINGS, "; ".join(warnings), [path])
        return ActionResult.ok(self.name, [path])

"""Sequential stage execution.

StageRunner walks the stage list in order, leases an executor for each
stage, classifies action failures as fatal or advisory and always
finalizes the run (publish, then notify) exactly once.
"""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Dict, Optional, Sequence

from shipgate.core.cancellation import PipelineCancelled
from shipgate.core.logging import get_logger
from shipgate.core.models import (
    ActionResult,
    AdvisoryFailure,
    FailureKind,
    FailurePolicy,
    PipelineContext,
    RunResult,
)
from shipgate.pipeline.pools import (
    DEFAULT_LEASE_TIMEOUT,
    DEFAULT_POOL,
    PoolRegistry,
    PoolUnavailableError,
)
from shipgate.pipeline.stage import Action, Stage, StageServices
from shipgate.publish.notifier import Notifier
from shipgate.publish.sink import PublishSink

LOGGER = get_logger(__name__)


class _StageHalted(Exception):
    """Internal signal: a fatal failure stops the run."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def is_fatal(kind: FailureKind, policy: FailurePolicy) -> bool:
    """Whether a failure of ``kind`` halts a stage running under ``policy``."""
    if kind.always_fatal:
        return True
    if kind.always_advisory:
        return False
    return policy == FailurePolicy.FATAL


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class StageRunner:
    """Runs stages in order against one PipelineContext."""

    def __init__(
        self,
        services: StageServices,
        pools: Optional[PoolRegistry] = None,
        sink: Optional[PublishSink] = None,
        notifier: Optional[Notifier] = None,
        lease_timeout: float = DEFAULT_LEASE_TIMEOUT,
    ) -> None:
        self._services = services
        self._pools = pools or PoolRegistry.from_sizes({DEFAULT_POOL: 1})
        self._sink = sink
        self._notifier = notifier
        self._lease_timeout = lease_timeout

    def run(self, stages: Sequence[Stage], context: PipelineContext) -> RunResult:
        """Execute ``stages`` and return the terminal RunResult.

        Never raises for pipeline failures; they are reported on the result.
        """
        result = RunResult(run_id=context.run_id, started_at=_now())
        started = time.monotonic()
        advisories: Dict[str, AdvisoryFailure] = {}
        current: Optional[Stage] = None
        token = self._services.cancel_token

        LOGGER.info(f"Starting pipeline run #{context.run_id} for {context.image.ref}")
        try:
            for index, stage in enumerate(stages):
                current = stage
                context.advance_to(index)
                if token is not None:
                    token.raise_if_cancelled()

                self._run_stage(stage, context, advisories)
                result.stages_run.append(stage.name)

            result.completed = True
        except _StageHalted as e:
            result.halted_at_stage = current.name if current else None
            result.fatal_reason = e.reason
            LOGGER.error(f"Pipeline halted at stage '{result.halted_at_stage}': {e.reason}")
        except PipelineCancelled as e:
            result.cancelled = True
            result.halted_at_stage = current.name if current else None
            result.fatal_reason = e.reason
            LOGGER.warning(f"Pipeline cancelled during stage '{result.halted_at_stage}': {e.reason}")
        finally:
            result.advisory_failures = list(advisories.values())
            result.reports = list(context.reports)
            result.finished_at = _now()
            result.duration_ms = int((time.monotonic() - started) * 1000)
            self._finalize(context, result)

        return result

    def _run_stage(
        self,
        stage: Stage,
        context: PipelineContext,
        advisories: Dict[str, AdvisoryFailure],
    ) -> None:
        if not stage.actions:
            LOGGER.info(f"Stage '{stage.name}': nothing to do")
            return

        try:
            with self._pools.lease(stage.pool, self._lease_timeout) as executor:
                LOGGER.info(f"Stage '{stage.name}' on {executor.name} ({len(stage.actions)} action(s))")
                self._run_actions(stage, context, advisories)
        except PoolUnavailableError as e:
            raise _StageHalted(str(e)) from e

    def _run_actions(
        self,
        stage: Stage,
        context: PipelineContext,
        advisories: Dict[str, AdvisoryFailure],
    ) -> None:
        services = self._services.for_stage(stage.name)
        token = services.cancel_token

        for action in stage.actions:
            if token is not None:
                token.raise_if_cancelled()

            outcome = self._run_action(action, context, services)
            if outcome.succeeded:
                continue

            kind = outcome.kind or FailureKind.TOOL
            if is_fatal(kind, stage.policy):
                raise _StageHalted(outcome.reason or f"{action.name} failed")

            LOGGER.warning(f"Stage '{stage.name}' advisory failure ({kind.value}): {outcome.reason}")
            advisory = advisories.setdefault(stage.name, AdvisoryFailure(stage=stage.name))
            advisory.reasons.append(outcome.reason or f"{action.name} failed")

    def _run_action(self, action: Action, context: PipelineContext, services: StageServices) -> ActionResult:
        LOGGER.debug(f"Running action {action.describe()}")
        try:
            return action.run(context, services)
        except PipelineCancelled:
            raise
        except Exception as e:
            LOGGER.error(f"Action {action.name} raised {type(e).__name__}: {e}")
            return ActionResult.failed(action.name, FailureKind.TOOL, f"{action.name}: {e}")

    def _finalize(self, context: PipelineContext, result: RunResult) -> None:
        if self._sink is not None:
            try:
                self._sink.publish(context, result)
            except Exception as e:
                LOGGER.error(f"Publishing reports failed: {e}")

        if self._notifier is None:
            return
        try:
            self._notifier.notify(result)
        except Exception as e:
            LOGGER.error(f"Run notification failed: {e}")
        try:
            self._notifier.finished(result)
        except Exception as e:
            LOGGER.error(f"Completion signal failed: {e}")


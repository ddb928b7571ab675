"""Stage and action definitions.

A Stage is an immutable, named unit of pipeline work: the pool it must run
on, an ordered tuple of actions and a failure policy. Actions receive the
shared PipelineContext and the StageServices for the stage being run.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Optional, Tuple

from shipgate.artifacts.extractor import ArtifactExtractor
from shipgate.core.cancellation import CancellationToken
from shipgate.core.models import ActionResult, FailurePolicy, PipelineContext
from shipgate.pipeline.pools import DEFAULT_POOL
from shipgate.reports.aggregator import ReportAggregator
from shipgate.tools.invoker import ToolInvoker


@dataclass(frozen=True)
class StageServices:
    """Collaborators available to actions while a stage runs."""

    invoker: ToolInvoker
    aggregator: ReportAggregator
    extractor: Optional[ArtifactExtractor] = None
    cancel_token: Optional[CancellationToken] = None
    stage_name: str = ""

    def for_stage(self, stage_name: str) -> "StageServices":
        return replace(self, stage_name=stage_name)


class Action(ABC):
    """One step of a stage."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Action identifier used in logs and failure reasons."""

    @abstractmethod
    def run(self, context: PipelineContext, services: StageServices) -> ActionResult:
        """Execute the action.

        Failures are returned as ActionResult; only cancellation is raised.

        Raises:
            PipelineCancelled: If the run was cancelled mid-action.
        """

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True)
class Stage:
    """Named, ordered unit of pipeline work with a failure policy."""

    name: str
    actions: Tuple[Action, ...] = ()
    policy: FailurePolicy = FailurePolicy.FATAL
    pool: str = DEFAULT_POOL
    description: str = ""

    def __post_init__(self) -> None:
        # Accept any sequence but store a tuple so the definition stays immutable
        if not isinstance(self.actions, tuple):
            object.__setattr__(self, "actions", tuple(self.actions))
        if not isinstance(self.policy, FailurePolicy):
            object.__setattr__(self, "policy", FailurePolicy(self.policy))

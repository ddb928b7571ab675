"""Stage orchestration: stages, actions, resource pools and the runner."""

from shipgate.pipeline.actions import AggregateAction, ExtractAction, ParallelAction, ToolAction
from shipgate.pipeline.definition import build_pipeline, report_specs
from shipgate.pipeline.pools import Executor, PoolRegistry, PoolUnavailableError, ResourcePool
from shipgate.pipeline.runner import StageRunner, is_fatal
from shipgate.pipeline.stage import Action, Stage, StageServices

__all__ = [
    "Action",
    "AggregateAction",
    "Executor",
    "ExtractAction",
    "ParallelAction",
    "PoolRegistry",
    "PoolUnavailableError",
    "ResourcePool",
    "Stage",
    "StageRunner",
    "StageServices",
    "ToolAction",
    "build_pipeline",
    "is_fatal",
    "report_specs",
]

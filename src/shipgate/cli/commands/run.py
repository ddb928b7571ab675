"""Run command implementation."""

from __future__ import annotations

import sys
from argparse import Namespace
from pathlib import Path
from typing import Optional

from shipgate.artifacts.extractor import ArtifactExtractor
from shipgate.artifacts.runtime import DockerRuntime
from shipgate.cli.commands import Command
from shipgate.cli.exit_codes import (
    EXIT_CANCELLED,
    EXIT_INVALID_USAGE,
    EXIT_PIPELINE_FAILED,
    EXIT_SUCCESS,
)
from shipgate.config.models import ShipgateConfig
from shipgate.core.cancellation import CancellationToken, install_signal_handlers
from shipgate.core.logging import get_logger
from shipgate.core.models import (
    CredentialHandle,
    ImageReference,
    PipelineContext,
    RunResult,
    RunStatus,
)
from shipgate.core.streaming import CLIStreamHandler, StreamHandler
from shipgate.pipeline.definition import build_pipeline, report_specs
from shipgate.pipeline.pools import PoolRegistry
from shipgate.pipeline.runner import StageRunner
from shipgate.pipeline.stage import StageServices
from shipgate.publish.notifier import ConsoleNotifier
from shipgate.publish.sink import PublishSink
from shipgate.reports.aggregator import ReportAggregator
from shipgate.tools.invoker import ToolInvoker

LOGGER = get_logger(__name__)

STATUS_EXIT_CODES = {
    RunStatus.SUCCESS: EXIT_SUCCESS,
    RunStatus.SUCCESS_WITH_WARNINGS: EXIT_SUCCESS,
    RunStatus.FAILED: EXIT_PIPELINE_FAILED,
    RunStatus.CANCELLED: EXIT_CANCELLED,
}


def build_context(config: ShipgateConfig, run_id: int, workspace: Path) -> PipelineContext:
    """Create the PipelineContext for one run.

    Raises:
        ValueError: If no image name is configured or run_id is invalid.
    """
    if not config.image.name:
        raise ValueError("No image name given (use --image or image.name in config)")
    image = ImageReference(
        name=config.image.name,
        tag=config.image.tag or str(run_id),
        registry=config.image.registry,
    )
    return PipelineContext(
        run_id=run_id,
        image=image,
        workspace=workspace,
        credentials=CredentialHandle(config.credentials.env),
        registry=config.image.registry,
    )


def exit_code_for(result: RunResult) -> int:
    return STATUS_EXIT_CODES[result.status]


class RunCommand(Command):
    """Executes one pipeline run."""

    @property
    def name(self) -> str:
        return "run"

    def execute(self, args: Namespace, config: ShipgateConfig | None = None) -> int:
        """Execute the run command.

        Returns:
            Exit code derived from the RunResult status.
        """
        if config is None:
            LOGGER.error("Configuration is required for run command")
            return EXIT_INVALID_USAGE

        workspace = Path(args.workspace).resolve()
        if not workspace.is_dir():
            LOGGER.error(f"Workspace does not exist: {workspace}")
            return EXIT_INVALID_USAGE

        try:
            context = build_context(config, args.run_id, workspace)
        except ValueError as e:
            LOGGER.error(str(e))
            return EXIT_INVALID_USAGE

        token = CancellationToken()
        restore = install_signal_handlers(token)
        try:
            result = self._run(args, config, context, token)
        finally:
            restore()

        return exit_code_for(result)

    def _run(
        self,
        args: Namespace,
        config: ShipgateConfig,
        context: PipelineContext,
        token: CancellationToken,
    ) -> RunResult:
        stream_handler: Optional[StreamHandler] = None
        if getattr(args, "stream", False):
            stream_handler = CLIStreamHandler(
                output=sys.stderr,
                show_output=True,
                use_rich=False,
            )

        invoker = ToolInvoker(stream_handler=stream_handler, cancel_token=token)
        extraction = config.extraction
        extractor = ArtifactExtractor(
            DockerRuntime(invoker, docker_binary=extraction.docker_binary),
            helper_image=extraction.helper_image,
            mount_point=extraction.mount_point,
            helper_ttl_seconds=extraction.helper_ttl,
        )
        services = StageServices(
            invoker=invoker,
            aggregator=ReportAggregator(),
            extractor=extractor,
            cancel_token=token,
        )

        sink: Optional[PublishSink] = None
        if config.publish.enabled:
            root = Path(config.publish.root)
            if not root.is_absolute():
                root = context.workspace / root
            sink = PublishSink(root, report_specs(config))

        runner = StageRunner(
            services,
            pools=PoolRegistry.from_sizes(config.pools.sizes),
            sink=sink,
            notifier=ConsoleNotifier(sys.stdout, use_rich=sys.stdout.isatty()),
            lease_timeout=config.pools.lease_timeout,
        )
        return runner.run(build_pipeline(config, context), context)

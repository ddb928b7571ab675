"""Stages command implementation."""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path

from shipgate.cli.commands import Command
from shipgate.cli.commands.run import build_context
from shipgate.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from shipgate.config.models import ShipgateConfig
from shipgate.pipeline.definition import build_pipeline


class StagesCommand(Command):
    """Lists the pipeline stages with their policy, pool and actions."""

    @property
    def name(self) -> str:
        return "stages"

    def execute(self, args: Namespace, config: ShipgateConfig | None = None) -> int:
        config = config or ShipgateConfig()
        if not config.image.name:
            config.image.name = "<image>"

        try:
            context = build_context(config, args.run_id, Path(args.workspace).resolve())
        except ValueError as e:
            print(f"Error: {e}")
            return EXIT_INVALID_USAGE

        print(f"Pipeline for {context.image.ref}:")
        print()
        for index, stage in enumerate(build_pipeline(config, context), start=1):
            print(f"  {index}. {stage.name} [{stage.policy.value}, pool={stage.pool}]")
            if not stage.actions:
                print("       (no actions)")
            for action in stage.actions:
                print(f"       - {action.describe()}")
        return EXIT_SUCCESS

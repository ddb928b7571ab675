"""CLI runner: parses arguments, loads config and dispatches commands."""

from __future__ import annotations

import traceback
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from shipgate.cli.arguments import build_parser
from shipgate.cli.commands import Command, RunCommand, StagesCommand, ValidateCommand
from shipgate.cli.config_bridge import ConfigBridge
from shipgate.cli.exit_codes import EXIT_INTERNAL_ERROR, EXIT_INVALID_USAGE, EXIT_SUCCESS
from shipgate.config.loader import ConfigError, load_config
from shipgate.core.logging import configure_logging, get_logger

LOGGER = get_logger(__name__)


def get_version() -> str:
    try:
        return version("shipgate")
    except PackageNotFoundError:
        # Editable installs that have not built metadata yet
        from shipgate import __version__

        return __version__


class CLIRunner:
    """Entry point object behind ``shipgate``."""

    def __init__(self) -> None:
        self.parser = build_parser()
        commands: List[Command] = [RunCommand(), StagesCommand(), ValidateCommand()]
        self.commands: Dict[str, Command] = {command.name: command for command in commands}

    def run(self, argv: Optional[Iterable[str]] = None) -> int:
        argv_list = list(argv) if argv is not None else None
        try:
            args = self.parser.parse_args(argv_list)
        except SystemExit as e:
            # argparse exits 0 for --help and 2 for usage errors
            return EXIT_SUCCESS if e.code in (0, None) else EXIT_INVALID_USAGE

        configure_logging(debug=args.debug, verbose=args.verbose, quiet=args.quiet)

        if args.version:
            print(get_version())
            return EXIT_SUCCESS

        command = self.commands.get(args.command or "")
        if command is None:
            self.parser.print_help()
            return EXIT_SUCCESS

        try:
            config = None
            if command.name != "validate":
                config = load_config(
                    project_root=Path(args.workspace).resolve(),
                    cli_config_path=args.config,
                    cli_overrides=ConfigBridge.args_to_overrides(args),
                )
        except ConfigError as e:
            LOGGER.error(str(e))
            return EXIT_INVALID_USAGE

        try:
            return command.execute(args, config)
        except Exception as e:
            LOGGER.error(f"{command.name} failed: {e}")
            if args.debug:
                traceback.print_exc()
            return EXIT_INTERNAL_ERROR

"""Validate command implementation."""

from __future__ import annotations

from argparse import Namespace
from pathlib import Path

import yaml

from shipgate.cli.commands import Command
from shipgate.cli.exit_codes import EXIT_INVALID_USAGE, EXIT_SUCCESS
from shipgate.config.loader import ConfigError, find_project_config, load_yaml_file
from shipgate.config.models import ShipgateConfig
from shipgate.config.validation import validate_config


class ValidateCommand(Command):
    """Validates a configuration file and prints any warnings."""

    @property
    def name(self) -> str:
        return "validate"

    def execute(self, args: Namespace, config: ShipgateConfig | None = None) -> int:
        """Returns EXIT_SUCCESS for a clean file, EXIT_INVALID_USAGE otherwise."""
        path = args.config or find_project_config(Path(args.workspace).resolve())
        if path is None:
            print("No configuration file found (.shipgate.yml)")
            return EXIT_INVALID_USAGE
        if not path.exists():
            print(f"Config file not found: {path}")
            return EXIT_INVALID_USAGE

        try:
            data = load_yaml_file(path)
        except (yaml.YAMLError, ConfigError) as e:
            print(f"Invalid configuration in {path}: {e}")
            return EXIT_INVALID_USAGE

        warnings = validate_config(data, source=str(path))
        if not warnings:
            print(f"{path}: OK")
            return EXIT_SUCCESS

        print(f"{path}: {len(warnings)} warning(s)")
        for warning in warnings:
            print(f"  - {warning}")
        return EXIT_INVALID_USAGE

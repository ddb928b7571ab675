"""Argument parser for the shipgate CLI."""

from __future__ import annotations

import argparse
from pathlib import Path

SEVERITY_CHOICES = ["critical", "high", "medium", "low"]


def _positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"'{value}' is not an integer") from None
    if number < 1:
        raise argparse.ArgumentTypeError(f"run id must be a positive integer, got {number}")
    return number


def _add_config_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        metavar="PATH",
        type=Path,
        help="Path to config file (default: .shipgate.yml in the workspace).",
    )
    parser.add_argument(
        "--workspace",
        metavar="DIR",
        type=Path,
        default=Path("."),
        help="Working directory for the run (default: current directory).",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shipgate",
        description="shipgate - build, scan and deploy pipeline orchestrator.",
    )

    # Global options
    parser.add_argument(
        "--version",
        action="store_true",
        help="Show shipgate version and exit.",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose (info-level) logging.",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        help="Reduce logging output to errors only.",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")

    run = subparsers.add_parser("run", help="Execute one pipeline run.")
    run.add_argument(
        "--image",
        metavar="NAME",
        help="Image name to build, scan and push (overrides image.name).",
    )
    run.add_argument(
        "--tag",
        metavar="TAG",
        help="Image tag (default: the run id).",
    )
    run.add_argument(
        "--registry",
        metavar="HOST",
        help="Registry endpoint (overrides image.registry).",
    )
    run.add_argument(
        "--run-id",
        metavar="N",
        type=_positive_int,
        required=True,
        help="Monotonically increasing run identifier supplied by the caller.",
    )
    run.add_argument(
        "--target",
        metavar="URL",
        help="Target endpoint for the dynamic scan.",
    )
    run.add_argument(
        "--warn-on",
        metavar="LEVELS",
        help="Comma-separated severities reported as warnings (default: critical,high).",
    )
    run.add_argument(
        "--fail-on",
        choices=SEVERITY_CHOICES,
        default=None,
        help="Fail the run if findings at or above this severity are reported.",
    )
    run.add_argument(
        "--skip",
        action="append",
        dest="skip_scanners",
        metavar="SCANNER",
        choices=["snyk", "sonar", "trivy", "zap"],
        help="Disable a scanner for this run (can be specified multiple times).",
    )
    run.add_argument(
        "--stream",
        action="store_true",
        help="Stream tool output to stderr while stages run.",
    )
    _add_config_options(run)

    stages = subparsers.add_parser("stages", help="List the pipeline stages and their actions.")
    stages.add_argument(
        "--run-id",
        metavar="N",
        type=_positive_int,
        default=1,
        help="Run id used to render commands (default: 1).",
    )
    stages.add_argument("--image", metavar="NAME", help="Image name used to render commands.")
    stages.add_argument("--target", metavar="URL", help="Dynamic scan target.")
    _add_config_options(stages)

    validate = subparsers.add_parser("validate", help="Validate the configuration file.")
    _add_config_options(validate)

    return parser

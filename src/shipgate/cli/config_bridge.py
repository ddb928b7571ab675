"""Bridge between CLI arguments and configuration models."""

from __future__ import annotations

import argparse
from typing import Any, Dict

from shipgate.core.logging import get_logger

LOGGER = get_logger(__name__)


class ConfigBridge:
    """Translates CLI arguments to configuration overrides."""

    @staticmethod
    def args_to_overrides(args: argparse.Namespace) -> Dict[str, Any]:
        """Convert CLI arguments to a config override dict.

        Only options given on the command line are included, so config file
        values survive when a flag is absent. Uses getattr for subcommand
        compatibility.
        """
        overrides: Dict[str, Any] = {}

        image: Dict[str, Any] = {}
        if getattr(args, "image", None):
            image["name"] = args.image
        if getattr(args, "tag", None):
            image["tag"] = args.tag
        if getattr(args, "registry", None):
            image["registry"] = args.registry
        if image:
            overrides["image"] = image

        if getattr(args, "target", None):
            overrides["target"] = args.target

        thresholds: Dict[str, Any] = {}
        warn_on = getattr(args, "warn_on", None)
        if warn_on:
            thresholds["warn_on"] = [level.strip() for level in warn_on.split(",") if level.strip()]
        if getattr(args, "fail_on", None):
            thresholds["fail_on"] = args.fail_on
        if thresholds:
            overrides["thresholds"] = thresholds

        skipped = getattr(args, "skip_scanners", None) or []
        if skipped:
            overrides["scanners"] = {name: {"enabled": False} for name in skipped}

        if overrides:
            LOGGER.debug(f"CLI overrides: {sorted(overrides)}")
        return overrides

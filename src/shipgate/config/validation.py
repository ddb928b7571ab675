"""Configuration validation for shipgate.

Validates known configuration keys and warns on unknown ones.
Scanner-specific options are passed through without validation.
"""

from __future__ import annotations

from dataclasses import dataclass
from difflib import get_close_matches
from typing import Any, Dict, List, Optional, Set

from shipgate.core.logging import get_logger

LOGGER = get_logger(__name__)

VALID_TOP_LEVEL_KEYS: Set[str] = {
    "image",
    "repository",
    "target",
    "thresholds",
    "scanners",
    "deploy",
    "publish",
    "extraction",
    "pools",
    "credentials",
}

VALID_SECTION_KEYS: Dict[str, Set[str]] = {
    "image": {"name", "registry", "tag"},
    "repository": {"url", "branch", "directory"},
    "thresholds": {"warn_on", "fail_on"},
    "deploy": {"enabled", "compose_file", "project_name", "timeout"},
    "publish": {"enabled", "root"},
    "extraction": {"helper_image", "mount_point", "helper_ttl", "docker_binary"},
    "pools": {"sizes", "lease_timeout"},
}

VALID_SCANNERS: Set[str] = {"snyk", "sonar", "trivy", "zap"}

VALID_SEVERITIES: Set[str] = {"critical", "high", "medium", "low"}


@dataclass
class ConfigValidationWarning:
    """A validation warning for configuration."""

    message: str
    source: str
    key: Optional[str] = None
    suggestion: Optional[str] = None

    def __str__(self) -> str:
        text = f"{self.message} in {self.source}"
        if self.suggestion:
            text += f" (did you mean '{self.suggestion}'?)"
        return text


def validate_config(
    data: Dict[str, Any],
    source: str,
) -> List[ConfigValidationWarning]:
    """Validate a configuration dictionary.

    Does not raise - returns (and logs) warnings instead.

    Args:
        data: Config dictionary to validate.
        source: Source file path for warning messages.

    Returns:
        List of validation warnings.
    """
    warnings: List[ConfigValidationWarning] = []

    if not isinstance(data, dict):
        warnings.append(ConfigValidationWarning(
            message=f"Config must be a mapping, got {type(data).__name__}",
            source=source,
        ))
        return warnings

    for key in data.keys():
        if key not in VALID_TOP_LEVEL_KEYS:
            _add(warnings, ConfigValidationWarning(
                message=f"Unknown top-level key '{key}'",
                source=source,
                key=key,
                suggestion=_suggest_key(key, VALID_TOP_LEVEL_KEYS),
            ))

    for section, valid_keys in VALID_SECTION_KEYS.items():
        value = data.get(section)
        if value is None:
            continue
        if not isinstance(value, dict):
            _add(warnings, ConfigValidationWarning(
                message=f"'{section}' must be a mapping, got {type(value).__name__}",
                source=source,
                key=section,
            ))
            continue
        for key in value.keys():
            if key not in valid_keys:
                _add(warnings, ConfigValidationWarning(
                    message=f"Unknown key '{section}.{key}'",
                    source=source,
                    key=f"{section}.{key}",
                    suggestion=_suggest_key(key, valid_keys),
                ))

    thresholds = data.get("thresholds")
    if isinstance(thresholds, dict):
        _validate_thresholds(thresholds, source, warnings)

    scanners = data.get("scanners")
    if scanners is not None:
        if not isinstance(scanners, dict):
            _add(warnings, ConfigValidationWarning(
                message=f"'scanners' must be a mapping, got {type(scanners).__name__}",
                source=source,
                key="scanners",
            ))
        else:
            for name, scanner_config in scanners.items():
                if name not in VALID_SCANNERS:
                    _add(warnings, ConfigValidationWarning(
                        message=f"Unknown scanner '{name}'",
                        source=source,
                        key=f"scanners.{name}",
                        suggestion=_suggest_key(name, VALID_SCANNERS),
                    ))
                if isinstance(scanner_config, dict):
                    enabled = scanner_config.get("enabled")
                    if enabled is not None and not isinstance(enabled, bool):
                        _add(warnings, ConfigValidationWarning(
                            message=f"'scanners.{name}.enabled' must be a boolean",
                            source=source,
                            key=f"scanners.{name}.enabled",
                        ))

    credentials = data.get("credentials")
    if credentials is not None and not isinstance(credentials, dict):
        _add(warnings, ConfigValidationWarning(
            message=f"'credentials' must map names to environment variables, got {type(credentials).__name__}",
            source=source,
            key="credentials",
        ))

    return warnings


def _validate_thresholds(
    thresholds: Dict[str, Any], source: str, warnings: List[ConfigValidationWarning]
) -> None:
    warn_on = thresholds.get("warn_on")
    levels: List[Any] = []
    if isinstance(warn_on, str):
        levels = [item.strip() for item in warn_on.split(",")]
    elif isinstance(warn_on, list):
        levels = warn_on
    elif warn_on is not None:
        _add(warnings, ConfigValidationWarning(
            message="'thresholds.warn_on' must be a list of severities",
            source=source,
            key="thresholds.warn_on",
        ))

    for level in levels:
        _check_severity(str(level), "thresholds.warn_on", source, warnings)

    fail_on = thresholds.get("fail_on")
    if fail_on is not None:
        _check_severity(str(fail_on), "thresholds.fail_on", source, warnings)


def _check_severity(
    value: str, key: str, source: str, warnings: List[ConfigValidationWarning]
) -> None:
    if value.lower() not in VALID_SEVERITIES:
        _add(warnings, ConfigValidationWarning(
            message=f"Invalid severity '{value}' for '{key}'",
            source=source,
            key=key,
            suggestion=_suggest_key(value.lower(), VALID_SEVERITIES),
        ))


def _suggest_key(invalid_key: str, valid_keys: Set[str]) -> Optional[str]:
    """Closest matching valid key for a likely typo, or None."""
    matches = get_close_matches(invalid_key, list(valid_keys), n=1, cutoff=0.6)
    return matches[0] if matches else None


def _add(warnings: List[ConfigValidationWarning], warning: ConfigValidationWarning) -> None:
    warnings.append(warning)
    LOGGER.warning(str(warning))

"""Configuration file loading and merging.

Handles loading configuration from YAML files with:
- Project-level config (.shipgate.yml)
- Global config (~/.shipgate/config/config.yml)
- Environment variable expansion (${VAR})
- Config merging with proper precedence
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from shipgate.config.models import (
    DEFAULT_CREDENTIALS,
    DEFAULT_POOLS,
    CredentialsConfig,
    DeployConfig,
    ExtractionConfig,
    ImageConfig,
    PoolConfig,
    PublishConfig,
    RepositoryConfig,
    ScannerConfig,
    ScannersConfig,
    ShipgateConfig,
    ThresholdConfig,
)
from shipgate.config.validation import validate_config
from shipgate.core.logging import get_logger

LOGGER = get_logger(__name__)

PROJECT_CONFIG_NAMES = [".shipgate.yml", ".shipgate.yaml", "shipgate.yml", "shipgate.yaml"]
GLOBAL_CONFIG_NAME = "config.yml"

DEFAULT_HOME_DIR_NAME = ".shipgate"
SHIPGATE_HOME_ENV = "SHIPGATE_HOME"

# Environment variable pattern: ${VAR} or ${VAR:-default}
ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


class ConfigError(Exception):
    """Configuration loading or parsing error."""

    pass


def get_shipgate_home() -> Path:
    """Return $SHIPGATE_HOME, or ~/.shipgate when unset."""
    env_home = os.environ.get(SHIPGATE_HOME_ENV)
    if env_home:
        return Path(env_home)
    return Path.home() / DEFAULT_HOME_DIR_NAME


def load_config(
    project_root: Path,
    cli_config_path: Optional[Path] = None,
    cli_overrides: Optional[Dict[str, Any]] = None,
) -> ShipgateConfig:
    """Load configuration with proper precedence.

    Precedence (highest to lowest):
    1. CLI flags (cli_overrides)
    2. Custom config file (cli_config_path) OR project config (.shipgate.yml)
    3. Global config (~/.shipgate/config/config.yml)
    4. Built-in defaults

    Args:
        project_root: Directory searched for .shipgate.yml.
        cli_config_path: Optional path to custom config file (--config flag).
        cli_overrides: Dict of CLI flag overrides.

    Returns:
        Merged ShipgateConfig instance.

    Raises:
        ConfigError: If the given config file doesn't exist or has parse errors.
    """
    sources: List[str] = []
    merged: Dict[str, Any] = {}

    global_path = find_global_config()
    if global_path:
        try:
            global_dict = load_yaml_file(global_path)
            validate_config(global_dict, source=str(global_path))
            merged = merge_configs(merged, global_dict)
            sources.append(f"global:{global_path}")
            LOGGER.debug(f"Loaded global config from {global_path}")
        except (yaml.YAMLError, ConfigError, OSError) as e:
            LOGGER.warning(f"Failed to load global config: {e}")

    if cli_config_path:
        if not cli_config_path.exists():
            raise ConfigError(f"Config file not found: {cli_config_path}")
        merged = _apply_file(merged, cli_config_path, "custom", sources)
    else:
        project_path = find_project_config(project_root)
        if project_path:
            merged = _apply_file(merged, project_path, "project", sources)

    if cli_overrides:
        merged = merge_configs(merged, cli_overrides)
        sources.append("cli")
        LOGGER.debug("Applied CLI overrides")

    config = dict_to_config(merged)
    config._config_sources = sources

    LOGGER.debug(f"Config loaded from sources: {sources}")
    return config


def _apply_file(
    merged: Dict[str, Any], path: Path, kind: str, sources: List[str]
) -> Dict[str, Any]:
    try:
        data = load_yaml_file(path)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    validate_config(data, source=str(path))
    sources.append(f"{kind}:{path}")
    LOGGER.debug(f"Loaded {kind} config from {path}")
    return merge_configs(merged, data)


def find_project_config(project_root: Path) -> Optional[Path]:
    """Find the first of PROJECT_CONFIG_NAMES present in ``project_root``."""
    for name in PROJECT_CONFIG_NAMES:
        config_path = project_root / name
        if config_path.exists():
            return config_path
    return None


def find_global_config() -> Optional[Path]:
    config_path = get_shipgate_home() / "config" / GLOBAL_CONFIG_NAME
    if config_path.exists():
        return config_path
    return None


def load_yaml_file(path: Path) -> Dict[str, Any]:
    """Load and parse a YAML config file.

    Performs environment variable expansion on string values.

    Raises:
        yaml.YAMLError: If YAML parsing fails.
        ConfigError: If the document is not a mapping.
    """
    with open(path, "r", encoding="utf-8") as f:
        content = f.read()

    data = yaml.safe_load(content)

    if data is None:
        return {}

    if not isinstance(data, dict):
        raise ConfigError(f"Config file must be a YAML mapping, got {type(data).__name__}")

    return expand_env_vars(data)


def expand_env_vars(data: Any) -> Any:
    """Recursively expand ${VAR} and ${VAR:-default} in config values."""
    if isinstance(data, dict):
        return {k: expand_env_vars(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [expand_env_vars(item) for item in data]
    elif isinstance(data, str):
        return ENV_VAR_PATTERN.sub(_env_var_replacer, data)
    else:
        return data


def _env_var_replacer(match: re.Match[str]) -> str:
    var_name = match.group(1)
    default_value = match.group(2)

    value = os.environ.get(var_name)
    if value is not None:
        return value
    if default_value is not None:
        return default_value

    LOGGER.warning(f"Environment variable ${var_name} is not set and has no default")
    return ""


def merge_configs(base: Dict[str, Any], overlay: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two config dicts, with overlay taking precedence.

    Rules:
    - Scalar values: overlay replaces base
    - Lists: overlay replaces base (no merging)
    - Dicts: recursive merge
    """
    result = base.copy()

    for key, overlay_value in overlay.items():
        if key in result and isinstance(result[key], dict) and isinstance(overlay_value, dict):
            result[key] = merge_configs(result[key], overlay_value)
        else:
            result[key] = overlay_value

    return result


def _section(data: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _severity_list(value: Any) -> List[str]:
    if isinstance(value, str):
        return [item.strip() for item in value.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item) for item in value]
    return []


def _number(value: Any, convert: Callable[[Any], Any], key: str) -> Any:
    try:
        return convert(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be a number, got {value!r}") from None


def _optional_number(value: Any, convert: Callable[[Any], Any], key: str) -> Any:
    if value is None or value == "":
        return None
    return _number(value, convert, key)


def dict_to_config(data: Dict[str, Any]) -> ShipgateConfig:
    """Convert a merged config dict to a typed ShipgateConfig.

    Raises:
        ConfigError: If a numeric setting cannot be converted.
    """
    image_data = _section(data, "image")
    image = ImageConfig(
        name=str(image_data.get("name", "")),
        registry=str(image_data.get("registry", "")),
        tag=str(image_data.get("tag", "") or ""),
    )

    repo_data = _section(data, "repository")
    repository = RepositoryConfig(
        url=repo_data.get("url", ""),
        branch=repo_data.get("branch", "main"),
        directory=repo_data.get("directory", "source"),
    )

    threshold_data = _section(data, "thresholds")
    thresholds = ThresholdConfig()
    if "warn_on" in threshold_data:
        thresholds.warn_on = _severity_list(threshold_data["warn_on"])
    thresholds.fail_on = threshold_data.get("fail_on") or None

    scanners: Dict[str, ScannerConfig] = {}
    for name, scanner_data in _section(data, "scanners").items():
        if not isinstance(scanner_data, dict):
            continue
        scanners[name] = ScannerConfig(
            enabled=scanner_data.get("enabled", True),
            timeout=_optional_number(scanner_data.get("timeout"), float, f"scanners.{name}.timeout"),
            options={k: v for k, v in scanner_data.items() if k not in ("enabled", "timeout")},
        )

    deploy_data = _section(data, "deploy")
    deploy = DeployConfig(
        enabled=deploy_data.get("enabled", True),
        compose_file=deploy_data.get("compose_file", "docker-compose.yml"),
        project_name=deploy_data.get("project_name", ""),
        timeout=_number(deploy_data.get("timeout", 600.0), float, "deploy.timeout"),
    )

    publish_data = _section(data, "publish")
    publish = PublishConfig(
        enabled=publish_data.get("enabled", True),
        root=publish_data.get("root", "published-reports"),
    )

    extraction_data = _section(data, "extraction")
    extraction = ExtractionConfig(
        helper_image=extraction_data.get("helper_image", "busybox:1.36"),
        mount_point=extraction_data.get("mount_point", "/zap/wrk"),
        helper_ttl=_number(extraction_data.get("helper_ttl", 900), int, "extraction.helper_ttl"),
        docker_binary=extraction_data.get("docker_binary", "docker"),
    )

    pool_data = _section(data, "pools")
    sizes = dict(DEFAULT_POOLS)
    for label, size in _section(pool_data, "sizes").items():
        sizes[str(label)] = _number(size, int, f"pools.sizes.{label}")
    pools = PoolConfig(
        sizes=sizes,
        lease_timeout=_number(pool_data.get("lease_timeout", 30.0), float, "pools.lease_timeout"),
    )

    credentials_env = dict(DEFAULT_CREDENTIALS)
    credentials_env.update({str(k): str(v) for k, v in _section(data, "credentials").items()})

    return ShipgateConfig(
        image=image,
        repository=repository,
        target=str(data.get("target", "") or ""),
        thresholds=thresholds,
        scanners=ScannersConfig(scanners=scanners),
        deploy=deploy,
        publish=publish,
        extraction=extraction,
        pools=pools,
        credentials=CredentialsConfig(env=credentials_env),
    )

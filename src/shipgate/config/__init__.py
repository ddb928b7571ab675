"""Configuration module for shipgate.

Provides configuration file loading, parsing, and validation with support for:
- Project-level config (.shipgate.yml)
- Global config (~/.shipgate/config/config.yml)
- Environment variable expansion
"""

from shipgate.config.models import (
    ShipgateConfig,
    ImageConfig,
    RepositoryConfig,
    ThresholdConfig,
    ScannerConfig,
    ScannersConfig,
    DeployConfig,
    PublishConfig,
    ExtractionConfig,
    PoolConfig,
    CredentialsConfig,
)
from shipgate.config.loader import ConfigError, load_config, find_project_config, find_global_config
from shipgate.config.validation import validate_config, ConfigValidationWarning

__all__ = [
    "ShipgateConfig",
    "ImageConfig",
    "RepositoryConfig",
    "ThresholdConfig",
    "ScannerConfig",
    "ScannersConfig",
    "DeployConfig",
    "PublishConfig",
    "ExtractionConfig",
    "PoolConfig",
    "CredentialsConfig",
    "ConfigError",
    "load_config",
    "find_project_config",
    "find_global_config",
    "validate_config",
    "ConfigValidationWarning",
]

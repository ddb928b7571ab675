"""Configuration data models for shipgate.

Defines typed configuration classes that represent .shipgate.yml structure.
Scanner-specific options are passed through to the pipeline definition.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from shipgate.core.models import Severity

# Scanners known to the pipeline definition, keyed by config name
KNOWN_SCANNERS: Dict[str, str] = {
    "snyk": "sast",
    "sonar": "code-quality",
    "trivy": "image-scan",
    "zap": "dast",
}

# Logical credential name -> environment variable holding it
DEFAULT_CREDENTIALS: Dict[str, str] = {
    "snyk_token": "SNYK_TOKEN",
    "sonar_token": "SONAR_TOKEN",
    "registry_user": "REGISTRY_USER",
    "registry_password": "REGISTRY_PASSWORD",
}

DEFAULT_POOLS: Dict[str, int] = {
    "default": 1,
    "docker": 1,
}


@dataclass
class ImageConfig:
    """Image under build. An empty tag means "use the run id"."""

    name: str = ""
    registry: str = ""
    tag: str = ""


@dataclass
class RepositoryConfig:
    """Source checkout. No url means the workspace already holds the source."""

    url: str = ""
    branch: str = "main"
    directory: str = "source"


@dataclass
class ThresholdConfig:
    """Severity thresholds for scanner findings.

    ``warn_on`` levels produce advisory warnings. ``fail_on`` is an opt-in
    gate: findings at or above it halt the run. Gating is off by default.
    """

    warn_on: List[str] = field(default_factory=lambda: ["CRITICAL", "HIGH"])
    fail_on: Optional[str] = None

    def warn_levels(self) -> List[Severity]:
        return [
            level for level in (Severity.parse(value) for value in self.warn_on)
            if level != Severity.UNKNOWN
        ]

    def gate(self) -> Optional[Severity]:
        if not self.fail_on:
            return None
        level = Severity.parse(self.fail_on)
        return None if level == Severity.UNKNOWN else level


@dataclass
class ScannerConfig:
    """One scanner. ``options`` carries everything but ``enabled``/``timeout``."""

    enabled: bool = True
    timeout: Optional[float] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def option(self, key: str, default: Any = None) -> Any:
        return self.options.get(key, default)


@dataclass
class ScannersConfig:
    """Per-scanner configuration keyed by scanner name."""

    scanners: Dict[str, ScannerConfig] = field(default_factory=dict)

    def get(self, name: str) -> ScannerConfig:
        return self.scanners.get(name, ScannerConfig())

    def is_enabled(self, name: str) -> bool:
        return self.get(name).enabled


@dataclass
class DeployConfig:
    enabled: bool = True
    compose_file: str = "docker-compose.yml"
    project_name: str = ""
    timeout: float = 600.0


@dataclass
class PublishConfig:
    """Where terminal report files are published."""

    enabled: bool = True
    root: str = "published-reports"


@dataclass
class ExtractionConfig:
    """Ephemeral volume/helper settings for artifact extraction."""

    helper_image: str = "busybox:1.36"
    mount_point: str = "/zap/wrk"
    helper_ttl: int = 900
    docker_binary: str = "docker"


@dataclass
class PoolConfig:
    """Resource pools: label -> number of executors."""

    sizes: Dict[str, int] = field(default_factory=lambda: dict(DEFAULT_POOLS))
    lease_timeout: float = 30.0


@dataclass
class CredentialsConfig:
    """Logical credential names mapped to the environment variables holding them.

    Only variable names are configured; values are never read from files.
    """

    env: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_CREDENTIALS))


@dataclass
class ShipgateConfig:
    """Complete shipgate configuration.

    Example .shipgate.yml:
        image:
          name: team/app
          registry: registry.example.com
        target: http://staging.internal:8080
        thresholds:
          warn_on: [critical, high]
        scanners:
          sonar:
            enabled: false
          trivy:
            severities: [critical, high]
    """

    image: ImageConfig = field(default_factory=ImageConfig)
    repository: RepositoryConfig = field(default_factory=RepositoryConfig)
    target: str = ""
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    scanners: ScannersConfig = field(default_factory=ScannersConfig)
    deploy: DeployConfig = field(default_factory=DeployConfig)
    publish: PublishConfig = field(default_factory=PublishConfig)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    pools: PoolConfig = field(default_factory=PoolConfig)
    credentials: CredentialsConfig = field(default_factory=CredentialsConfig)

    # Metadata (not from YAML, set by loader)
    _config_sources: List[str] = field(default_factory=list, repr=False)

"""Ephemeral-resource artifact extraction."""

from shipgate.artifacts.extractor import (
    ArtifactExtractor,
    EphemeralResource,
    EphemeralResourceError,
    ExtractionResult,
)
from shipgate.artifacts.runtime import ContainerRuntime, DockerRuntime, RuntimeCommandError

__all__ = [
    "ArtifactExtractor",
    "ContainerRuntime",
    "DockerRuntime",
    "EphemeralResource",
    "EphemeralResourceError",
    "ExtractionResult",
    "RuntimeCommandError",
]

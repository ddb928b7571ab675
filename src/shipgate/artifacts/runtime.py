"""Container runtime used for ephemeral extraction resources.

ContainerRuntime is the narrow set of volume/container operations the
ArtifactExtractor needs. DockerRuntime implements it on top of the
``docker`` CLI through ToolInvoker.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, List, Optional

from shipgate.core.logging import get_logger
from shipgate.core.models import ToolInvocationResult
from shipgate.tools.invoker import ToolInvoker, ToolSpec

LOGGER = get_logger(__name__)

DEFAULT_DOCKER_TIMEOUT = 60.0


class RuntimeCommandError(Exception):
    """A container runtime operation failed."""

    def __init__(self, message: str, result: Optional[ToolInvocationResult] = None) -> None:
        super().__init__(message)
        self.result = result


class ContainerRuntime(ABC):
    """Volume and container operations used by the extractor."""

    @abstractmethod
    def create_volume(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        """Create a named volume."""

    @abstractmethod
    def remove_volume(self, name: str) -> None:
        """Delete a named volume. Must not honour run cancellation."""

    @abstractmethod
    def volume_exists(self, name: str) -> bool:
        """Whether the volume is still allocated."""

    @abstractmethod
    def start_helper(
        self,
        name: str,
        volume: str,
        mount_point: str,
        image: str,
        ttl_seconds: int,
    ) -> None:
        """Start a detached helper container holding ``volume`` mounted.

        The helper exits on its own after ``ttl_seconds``.
        """

    @abstractmethod
    def remove_container(self, name: str) -> None:
        """Force-remove a container. Must not honour run cancellation."""

    @abstractmethod
    def container_exists(self, name: str) -> bool:
        """Whether the container is still allocated."""

    @abstractmethod
    def list_files(self, container: str, directory: str) -> List[str]:
        """List regular files below ``directory``, relative to it."""

    @abstractmethod
    def copy_from(self, container: str, source: str, destination: Path) -> None:
        """Copy one file out of ``container`` to a local path."""


class DockerRuntime(ContainerRuntime):
    """ContainerRuntime backed by the docker CLI."""

    def __init__(
        self,
        invoker: ToolInvoker,
        docker_binary: str = "docker",
        timeout: float = DEFAULT_DOCKER_TIMEOUT,
    ) -> None:
        self._invoker = invoker
        self._docker = docker_binary
        self._timeout = timeout

    def create_volume(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        args = ["volume", "create"]
        for key, value in sorted((labels or {}).items()):
            args.extend(["--label", f"{key}={value}"])
        args.append(name)
        self._run("docker-volume-create", args)

    def remove_volume(self, name: str) -> None:
        self._run("docker-volume-rm", ["volume", "rm", "--force", name], cancellable=False)

    def volume_exists(self, name: str) -> bool:
        return self._inspect("docker-volume-inspect", ["volume", "inspect", name])

    def start_helper(
        self,
        name: str,
        volume: str,
        mount_point: str,
        image: str,
        ttl_seconds: int,
    ) -> None:
        self._run(
            "docker-helper-run",
            [
                "run",
                "--detach",
                "--name", name,
                "--volume", f"{volume}:{mount_point}",
                image,
                "sleep", str(ttl_seconds),
            ],
        )

    def remove_container(self, name: str) -> None:
        self._run("docker-rm", ["rm", "--force", name], cancellable=False)

    def container_exists(self, name: str) -> bool:
        return self._inspect("docker-container-inspect", ["container", "inspect", name])

    def list_files(self, container: str, directory: str) -> List[str]:
        result = self._run(
            "docker-exec-find",
            ["exec", container, "find", directory, "-type", "f"],
        )
        root = PurePosixPath(directory)
        files: List[str] = []
        for line in result.stdout.splitlines():
            line = line.strip()
            if not line:
                continue
            path = PurePosixPath(line)
            try:
                files.append(str(path.relative_to(root)))
            except ValueError:
                files.append(str(path))
        return sorted(files)

    def copy_from(self, container: str, source: str, destination: Path) -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        self._run("docker-cp", ["cp", f"{container}:{source}", str(destination)])

    def _run(
        self,
        name: str,
        args: List[str],
        cancellable: bool = True,
    ) -> ToolInvocationResult:
        spec = ToolSpec(name=name, command=[self._docker, *args], timeout=self._timeout)
        result = self._invoker.invoke(spec, cancellable=cancellable)
        if not result.succeeded:
            raise RuntimeCommandError(result.describe_failure(), result)
        return result

    def _inspect(self, name: str, args: List[str]) -> bool:
        spec = ToolSpec(name=name, command=[self._docker, *args], timeout=self._timeout)
        result = self._invoker.invoke(spec, cancellable=False)
        if result.reason in ("timeout", "not_found"):
            raise RuntimeCommandError(result.describe_failure(), result)
        return result.succeeded

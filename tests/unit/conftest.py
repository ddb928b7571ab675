"""Shared fixtures for shipgate unit tests."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

import pytest

from shipgate.artifacts.runtime import ContainerRuntime, RuntimeCommandError
from shipgate.core.models import CredentialHandle, ImageReference, PipelineContext


class FakeRuntime(ContainerRuntime):
    """In-memory container runtime.

    Volumes hold files by name; helpers see the files of the volume they
    mount. Individual operations can be made to fail.
    """

    def __init__(self) -> None:
        self.volumes: Dict[str, Dict[str, str]] = {}
        self.helpers: Dict[str, str] = {}
        self.calls: List[str] = []
        self.fail_create_volume = False
        self.fail_start_helper = False
        self.fail_list = False
        self.fail_copy: Set[str] = set()
        self.fail_remove_volume = False
        self.on_start_helper: Optional[Callable[[str], None]] = None

    def create_volume(self, name: str, labels: Optional[Dict[str, str]] = None) -> None:
        self.calls.append(f"create_volume:{name}")
        if self.fail_create_volume:
            raise RuntimeCommandError("volume create failed")
        self.volumes[name] = {}

    def remove_volume(self, name: str) -> None:
        self.calls.append(f"remove_volume:{name}")
        if self.fail_remove_volume:
            raise RuntimeCommandError("volume in use")
        if name not in self.volumes:
            raise RuntimeCommandError(f"no such volume: {name}")
        del self.volumes[name]

    def volume_exists(self, name: str) -> bool:
        return name in self.volumes

    def start_helper(
        self,
        name: str,
        volume: str,
        mount_point: str,
        image: str,
        ttl_seconds: int,
    ) -> None:
        self.calls.append(f"start_helper:{name}")
        if self.fail_start_helper:
            raise RuntimeCommandError("helper failed to start")
        self.helpers[name] = volume
        if self.on_start_helper:
            self.on_start_helper(volume)

    def remove_container(self, name: str) -> None:
        self.calls.append(f"remove_container:{name}")
        if name not in self.helpers:
            raise RuntimeCommandError(f"no such container: {name}")
        del self.helpers[name]

    def container_exists(self, name: str) -> bool:
        return name in self.helpers

    def list_files(self, container: str, directory: str) -> List[str]:
        self.calls.append(f"list_files:{container}")
        if self.fail_list:
            raise RuntimeCommandError("exec failed")
        return sorted(self.volumes[self.helpers[container]])

    def copy_from(self, container: str, source: str, destination: Path) -> None:
        name = source.rsplit("/", 1)[-1]
        self.calls.append(f"copy_from:{name}")
        if name in self.fail_copy:
            raise RuntimeCommandError(f"copy of {name} failed")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_text(self.volumes[self.helpers[container]][name], encoding="utf-8")

    def write(self, volume: str, name: str, content: str) -> None:
        self.volumes[volume][name] = content


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def context(tmp_path: Path) -> PipelineContext:
    return PipelineContext(
        run_id=42,
        image=ImageReference(name="team/app", tag="42", registry="registry.example.com"),
        workspace=tmp_path,
        credentials=CredentialHandle({"token": "SHIPGATE_TEST_TOKEN"}, environ={}),
    )


def trivy_document(severities: List[str]) -> Dict[str, object]:
    return {
        "SchemaVersion": 2,
        "ArtifactName": "team/app:42",
        "Results": [
            {
                "Target": "team/app:42 (debian 12)",
                "Vulnerabilities": [
                    {"VulnerabilityID": f"CVE-2024-{index:04d}", "Severity": severity}
                    for index, severity in enumerate(severities)
                ],
            }
        ],
    }


def zap_document(riskdescs: List[str]) -> Dict[str, object]:
    return {
        "@version": "2.14.0",
        "site": [
            {
                "@name": "http://app:8080",
                "alerts": [
                    {"pluginid": str(10000 + index), "riskdesc": riskdesc}
                    for index, riskdesc in enumerate(riskdescs)
                ],
            }
        ],
    }


@pytest.fixture
def write_json(tmp_path: Path) -> Callable[[str, object], Path]:
    def _write(name: str, document: object) -> Path:
        path = tmp_path / name
        path.write_text(json.dumps(document), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def trivy_doc() -> Callable[[List[str]], Dict[str, object]]:
    return trivy_document


@pytest.fixture
def zap_doc() -> Callable[[List[str]], Dict[str, object]]:
    return zap_document

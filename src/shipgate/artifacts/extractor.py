"""Extraction of report files from an isolated execution context.

Some tools (the DAST scanner in particular) run in their own container and
cannot write to the orchestrator's workspace. They write into an ephemeral
volume instead; a short-lived helper container keeps that volume mounted
so its files can be copied out one by one.

Protocol, in order:
1. Create a uniquely named volume scoped to the run and stage.
2. Start a helper container with the volume mounted (bounded lifetime).
   The producer, if any, runs now and writes into the volume.
3. Verify the expected files exist in the mount.
4. Copy each expected file out individually.
5. Remove the helper and the volume, on every exit path.

No EphemeralResource outlives the call that created it.
"""

from __future__ import annotations

import re
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from shipgate.artifacts.runtime import ContainerRuntime, RuntimeCommandError
from shipgate.core.logging import get_logger
from shipgate.core.models import PipelineContext, ToolInvocationResult

LOGGER = get_logger(__name__)

DEFAULT_HELPER_IMAGE = "busybox:1.36"
DEFAULT_MOUNT_POINT = "/reports"
DEFAULT_HELPER_TTL_SECONDS = 900


class EphemeralResourceError(Exception):
    """An ephemeral volume or helper could not be created or reclaimed."""

    pass


@dataclass(frozen=True)
class EphemeralResource:
    """Volume plus helper container created for a single extraction."""

    volume: str
    helper: str
    mount_point: str = DEFAULT_MOUNT_POINT


Producer = Callable[[EphemeralResource], ToolInvocationResult]


@dataclass
class ExtractionResult:
    """What an extraction found, copied and failed to copy."""

    expected: List[str] = field(default_factory=list)
    resource: Optional[EphemeralResource] = None
    found: List[str] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)
    copied: List[Path] = field(default_factory=list)
    failed_copies: Dict[str, str] = field(default_factory=dict)
    producer_result: Optional[ToolInvocationResult] = None
    diagnostic: str = ""

    @property
    def producer_failed(self) -> bool:
        return self.producer_result is not None and not self.producer_result.succeeded

    @property
    def succeeded(self) -> bool:
        return not self.missing and not self.failed_copies and not self.producer_failed

    @property
    def partial(self) -> bool:
        """Some files were copied and some copies failed."""
        return bool(self.copied) and bool(self.failed_copies)


def _slug(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "stage"


class ArtifactExtractor:
    """Moves files out of an ephemeral volume with guaranteed cleanup."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        helper_image: str = DEFAULT_HELPER_IMAGE,
        mount_point: str = DEFAULT_MOUNT_POINT,
        helper_ttl_seconds: int = DEFAULT_HELPER_TTL_SECONDS,
    ) -> None:
        self._runtime = runtime
        self._helper_image = helper_image
        self._mount_point = mount_point
        self._helper_ttl = helper_ttl_seconds

    def new_resource(self, context: PipelineContext, stage_name: str) -> EphemeralResource:
        """Generate unique names for a run/stage pair."""
        base = f"shipgate-{context.run_id}-{_slug(stage_name)}-{uuid.uuid4().hex[:8]}"
        return EphemeralResource(
            volume=base,
            helper=f"{base}-helper",
            mount_point=self._mount_point,
        )

    @contextmanager
    def acquire(self, context: PipelineContext, stage_name: str) -> Iterator[EphemeralResource]:
        """Create the volume and helper; always reclaim both on exit.

        Raises:
            EphemeralResourceError: If creation fails, or if cleanup fails
                while no other exception is propagating.
        """
        resource = self.new_resource(context, stage_name)
        volume_attempted = False
        helper_attempted = False
        in_flight: Optional[BaseException] = None

        try:
            volume_attempted = True
            try:
                self._runtime.create_volume(
                    resource.volume,
                    labels={"shipgate.run": str(context.run_id), "shipgate.stage": stage_name},
                )
            except RuntimeCommandError as e:
                raise EphemeralResourceError(f"Failed to create volume {resource.volume}: {e}") from e
            LOGGER.debug(f"Created volume {resource.volume}")

            helper_attempted = True
            try:
                self._runtime.start_helper(
                    resource.helper,
                    resource.volume,
                    resource.mount_point,
                    self._helper_image,
                    self._helper_ttl,
                )
            except RuntimeCommandError as e:
                raise EphemeralResourceError(f"Failed to start helper {resource.helper}: {e}") from e
            LOGGER.debug(f"Started helper {resource.helper} ({self._helper_image})")

            yield resource
        except BaseException as e:
            in_flight = e
            raise
        finally:
            errors = self._release(resource, volume_attempted, helper_attempted)
            if errors and in_flight is None:
                raise EphemeralResourceError("; ".join(errors))

    def extract(
        self,
        context: PipelineContext,
        stage_name: str,
        expected_files: Sequence[str],
        destination: Path,
        producer: Optional[Producer] = None,
    ) -> ExtractionResult:
        """Run the extraction protocol.

        Args:
            context: Pipeline context (run identity).
            stage_name: Stage owning the ephemeral resources.
            expected_files: File names relative to the mount point.
            destination: Local directory receiving the files. Copies left
                there by an earlier run are removed first.
            producer: Optional callable that writes into the volume.

        Returns:
            ExtractionResult. Missing files and copy failures are reported
            in the result, not raised.

        Raises:
            EphemeralResourceError: On volume/helper creation or cleanup failure.
            PipelineCancelled: If the run was cancelled mid-extraction.
        """
        result = ExtractionResult(expected=list(expected_files))
        destination = Path(destination)
        for name in result.expected:
            stale = destination / name
            if stale.is_file():
                LOGGER.debug(f"Removing stale {stale} before extraction")
                stale.unlink()

        with self.acquire(context, stage_name) as resource:
            result.resource = resource

            if producer is not None:
                result.producer_result = producer(resource)
                if result.producer_failed:
                    LOGGER.warning(
                        f"Producer failed: {result.producer_result.describe_failure()}; "
                        "extracting whatever it wrote"
                    )

            try:
                result.found = self._runtime.list_files(resource.helper, resource.mount_point)
            except RuntimeCommandError as e:
                result.missing = list(result.expected)
                result.diagnostic = f"Could not list {resource.mount_point} in {resource.helper}: {e}"
                LOGGER.error(result.diagnostic)
                return result

            result.missing = [name for name in result.expected if name not in result.found]
            if result.missing:
                found = ", ".join(result.found) or "nothing"
                result.diagnostic = (
                    f"Expected files missing from {resource.volume}: "
                    f"expected [{', '.join(result.expected)}], found [{found}]"
                )
                LOGGER.error(result.diagnostic)
                return result

            for name in result.expected:
                target = destination / name
                source = f"{resource.mount_point.rstrip('/')}/{name}"
                try:
                    self._runtime.copy_from(resource.helper, source, target)
                    result.copied.append(target)
                    LOGGER.debug(f"Extracted {name} -> {target}")
                except RuntimeCommandError as e:
                    result.failed_copies[name] = str(e)
                    LOGGER.warning(f"Failed to copy {name} from {resource.helper}: {e}")

            if result.failed_copies:
                result.diagnostic = (
                    f"Copied {len(result.copied)}/{len(result.expected)} files; failed: "
                    + ", ".join(sorted(result.failed_copies))
                )

        return result

    def _release(
        self,
        resource: EphemeralResource,
        volume_attempted: bool,
        helper_attempted: bool,
    ) -> List[str]:
        """Remove helper then volume. Returns errors for anything left behind."""
        errors: List[str] = []

        # The helper holds the volume, so it goes first
        if helper_attempted:
            error = self._remove(
                "helper",
                resource.helper,
                self._runtime.remove_container,
                self._runtime.container_exists,
            )
            if error:
                errors.append(error)

        if volume_attempted:
            error = self._remove(
                "volume",
                resource.volume,
                self._runtime.remove_volume,
                self._runtime.volume_exists,
            )
            if error:
                errors.append(error)

        return errors

    @staticmethod
    def _remove(
        kind: str,
        name: str,
        remove: Callable[[str], None],
        exists: Callable[[str], bool],
    ) -> Optional[str]:
        try:
            remove(name)
            LOGGER.debug(f"Removed {kind} {name}")
            return None
        except RuntimeCommandError as e:
            # Removal of something never created fails too; only a survivor is an error
            try:
                still_there = exists(name)
            except RuntimeCommandError:
                still_there = True
            if not still_there:
                return None
            LOGGER.error(f"Failed to remove {kind} {name}: {e}")
            return f"failed to remove {kind} {name}: {e}"

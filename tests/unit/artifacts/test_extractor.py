"""Tests for shipgate.artifacts.extractor."""

from __future__ import annotations

from itertools import product
from pathlib import Path
from typing import Any, List

import pytest

from shipgate.artifacts.extractor import ArtifactExtractor, EphemeralResourceError
from shipgate.core.cancellation import PipelineCancelled
from shipgate.core.models import PipelineContext, ToolInvocationResult

EXPECTED = ["zap-report.json", "zap-report.html"]


def assert_nothing_left(runtime: Any, extractor_calls: List[str]) -> None:
    """Every volume and helper the extractor created is gone."""
    created_volumes = [c.split(":", 1)[1] for c in extractor_calls if c.startswith("create_volume:")]
    created_helpers = [c.split(":", 1)[1] for c in extractor_calls if c.startswith("start_helper:")]
    for volume in created_volumes:
        assert not runtime.volume_exists(volume)
    for helper in created_helpers:
        assert not runtime.container_exists(helper)


def producer_writing(runtime: Any, names: List[str]):
    def produce(resource):
        for name in names:
            runtime.write(resource.volume, name, f"content of {name}")
        return ToolInvocationResult(tool="zap", command=["zap"], exit_code=0, succeeded=True)

    return produce


class TestArtifactExtractor:
    """Tests for the extraction protocol."""

    def test_copies_every_expected_file(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        extractor = ArtifactExtractor(fake_runtime)
        result = extractor.extract(
            context, "dast", EXPECTED, tmp_path / "out", producer=producer_writing(fake_runtime, EXPECTED)
        )

        assert result.succeeded
        assert [p.name for p in result.copied] == EXPECTED
        assert (tmp_path / "out" / "zap-report.json").read_text() == "content of zap-report.json"
        assert_nothing_left(fake_runtime, fake_runtime.calls)

    def test_protocol_order(self, fake_runtime: Any, context: PipelineContext, tmp_path: Path) -> None:
        extractor = ArtifactExtractor(fake_runtime)
        extractor.extract(context, "dast", ["a.json"], tmp_path, producer=producer_writing(fake_runtime, ["a.json"]))

        kinds = [call.split(":", 1)[0] for call in fake_runtime.calls]
        assert kinds == [
            "create_volume",
            "start_helper",
            "list_files",
            "copy_from",
            "remove_container",
            "remove_volume",
        ]

    def test_resource_names_are_unique_and_scoped_to_run(
        self, fake_runtime: Any, context: PipelineContext
    ) -> None:
        extractor = ArtifactExtractor(fake_runtime)
        first = extractor.new_resource(context, "dast")
        second = extractor.new_resource(context, "dast")
        assert first.volume != second.volume
        assert first.volume.startswith("shipgate-42-dast-")
        assert first.helper == f"{first.volume}-helper"

    @pytest.mark.parametrize("presence", list(product([True, False], repeat=2)))
    def test_no_resources_left_for_any_file_presence(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path, presence: tuple
    ) -> None:
        present = [name for name, here in zip(EXPECTED, presence) if here]
        extractor = ArtifactExtractor(fake_runtime)

        result = extractor.extract(
            context, "dast", EXPECTED, tmp_path, producer=producer_writing(fake_runtime, present)
        )

        assert_nothing_left(fake_runtime, fake_runtime.calls)
        assert fake_runtime.volumes == {}
        assert fake_runtime.helpers == {}
        assert result.succeeded == all(presence)
        if not all(presence):
            assert not result.copied
            assert "expected [zap-report.json, zap-report.html]" in result.diagnostic
            assert sorted(result.missing) == sorted(set(EXPECTED) - set(present))

    def test_missing_file_diagnostic_lists_found(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        extractor = ArtifactExtractor(fake_runtime)
        result = extractor.extract(
            context, "dast", EXPECTED, tmp_path,
            producer=producer_writing(fake_runtime, ["zap-report.json", "zap.yaml"]),
        )
        assert result.missing == ["zap-report.html"]
        assert "found [zap-report.json, zap.yaml]" in result.diagnostic

    def test_copies_from_earlier_run_are_removed(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        stale = tmp_path / "out" / "zap-report.json"
        stale.parent.mkdir()
        stale.write_text('{"site": []}')

        result = ArtifactExtractor(fake_runtime).extract(
            context, "dast", EXPECTED, tmp_path / "out", producer=producer_writing(fake_runtime, [])
        )

        assert result.missing == EXPECTED
        assert result.copied == []
        assert not stale.exists()

    def test_copy_failure_does_not_stop_other_copies(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_copy.add("zap-report.json")
        extractor = ArtifactExtractor(fake_runtime)

        result = extractor.extract(
            context, "dast", EXPECTED, tmp_path, producer=producer_writing(fake_runtime, EXPECTED)
        )

        assert [p.name for p in result.copied] == ["zap-report.html"]
        assert list(result.failed_copies) == ["zap-report.json"]
        assert result.partial
        assert not result.succeeded
        assert "failed: zap-report.json" in result.diagnostic
        assert_nothing_left(fake_runtime, fake_runtime.calls)

    def test_listing_failure_still_cleans_up(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_list = True
        result = ArtifactExtractor(fake_runtime).extract(context, "dast", EXPECTED, tmp_path)
        assert result.missing == EXPECTED
        assert fake_runtime.volumes == {}
        assert fake_runtime.helpers == {}

    def test_volume_creation_failure_raises(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_create_volume = True
        with pytest.raises(EphemeralResourceError, match="create volume"):
            ArtifactExtractor(fake_runtime).extract(context, "dast", EXPECTED, tmp_path)
        assert fake_runtime.volumes == {}

    def test_helper_start_failure_removes_volume(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_start_helper = True
        with pytest.raises(EphemeralResourceError, match="start helper"):
            ArtifactExtractor(fake_runtime).extract(context, "dast", EXPECTED, tmp_path)
        assert fake_runtime.volumes == {}
        assert fake_runtime.helpers == {}

    def test_cancellation_during_producer_still_cleans_up(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        def cancelled_producer(resource):
            raise PipelineCancelled("received SIGTERM")

        with pytest.raises(PipelineCancelled):
            ArtifactExtractor(fake_runtime).extract(
                context, "dast", EXPECTED, tmp_path, producer=cancelled_producer
            )
        assert fake_runtime.volumes == {}
        assert fake_runtime.helpers == {}

    def test_failed_producer_is_reported_and_extraction_continues(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        def failing_producer(resource):
            fake_runtime.write(resource.volume, "zap-report.json", "{}")
            fake_runtime.write(resource.volume, "zap-report.html", "<html/>")
            return ToolInvocationResult(
                tool="zap", command=["zap"], exit_code=3, reason="exit_code"
            )

        result = ArtifactExtractor(fake_runtime).extract(
            context, "dast", EXPECTED, tmp_path, producer=failing_producer
        )
        assert result.producer_failed
        assert len(result.copied) == 2
        assert fake_runtime.volumes == {}

    def test_cleanup_failure_raises_when_nothing_else_failed(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_remove_volume = True
        with pytest.raises(EphemeralResourceError, match="failed to remove volume"):
            ArtifactExtractor(fake_runtime).extract(
                context, "dast", ["a.json"], tmp_path,
                producer=producer_writing(fake_runtime, ["a.json"]),
            )

    def test_cleanup_failure_does_not_mask_original_error(
        self, fake_runtime: Any, context: PipelineContext, tmp_path: Path
    ) -> None:
        fake_runtime.fail_remove_volume = True

        def boom(resource):
            raise PipelineCancelled("stop")

        with pytest.raises(PipelineCancelled):
            ArtifactExtractor(fake_runtime).extract(context, "dast", EXPECTED, tmp_path, producer=boom)

    def test_acquire_releases_on_exception(
        self, fake_runtime: Any, context: PipelineContext
    ) -> None:
        extractor = ArtifactExtractor(fake_runtime)
        with pytest.raises(RuntimeError):
            with extractor.acquire(context, "dast") as resource:
                assert fake_runtime.volume_exists(resource.volume)
                assert fake_runtime.container_exists(resource.helper)
                raise RuntimeError("boom")
        assert not fake_runtime.volume_exists(resource.volume)
        assert not fake_runtime.container_exists(resource.helper)

"""Full pipeline runs against real subprocesses and an in-memory container runtime."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, List

import pytest

from shipgate.artifacts.extractor import ArtifactExtractor
from shipgate.core.models import FailurePolicy, ParseStatus, PipelineContext, RunResult, RunStatus, Severity
from shipgate.pipeline.actions import AggregateAction, ExtractAction, ParallelAction, ToolAction
from shipgate.pipeline.definition import DOCKER_POOL, TRIVY_HTML, TRIVY_JSON, ZAP_HTML, ZAP_JSON
from shipgate.pipeline.pools import PoolRegistry
from shipgate.pipeline.runner import StageRunner
from shipgate.pipeline.stage import Stage, StageServices
from shipgate.publish.notifier import CallbackNotifier
from shipgate.publish.sink import PublishSink, ReportSpec
from shipgate.reports.adapters import TrivyAdapter, ZapAdapter
from shipgate.reports.aggregator import ReportAggregator
from shipgate.tools.invoker import ToolInvoker, ToolSpec


def write_file(name: str, content: str) -> List[str]:
    return [sys.executable, "-c", f"open({name!r}, 'w').write({content!r})"]


def trivy_command(content: str, exit_code: int) -> List[str]:
    if exit_code:
        return [sys.executable, "-c", f"import sys; sys.exit({exit_code})"]
    return write_file(TRIVY_JSON, content)


def touch_marker(name: str) -> ToolAction:
    return ToolAction(ToolSpec(name, write_file(f"{name}.done", "ok"), expected_outputs=[Path(f"{name}.done")]))


def pipeline(trivy_json: str, build_exit_code: int = 0, trivy_exit_code: int = 0) -> List[Stage]:
    def zap_command(resource, context: PipelineContext) -> ToolSpec:
        return ToolSpec("zap-baseline", [sys.executable, "-c", "pass"])

    return [
        Stage("build", (
            ToolAction(ToolSpec(
                "docker-build",
                [sys.executable, "-c", f"import sys; sys.exit({build_exit_code})"],
            )),
        ), policy=FailurePolicy.FATAL, pool=DOCKER_POOL),
        Stage("image-scan", (
            ParallelAction("trivy-reports", [
                ToolAction(ToolSpec("trivy-json", trivy_command(trivy_json, trivy_exit_code),
                                    expected_outputs=[Path(TRIVY_JSON)])),
                ToolAction(ToolSpec("trivy-html", write_file(TRIVY_HTML, "<html></html>"),
                                    expected_outputs=[Path(TRIVY_HTML)])),
            ]),
            AggregateAction("trivy-summary", Path(TRIVY_JSON), TrivyAdapter()),
        ), policy=FailurePolicy.ADVISORY, pool=DOCKER_POOL),
        Stage("push", (touch_marker("push"),), policy=FailurePolicy.FATAL, pool=DOCKER_POOL),
        Stage("deploy", (touch_marker("deploy"),), policy=FailurePolicy.FATAL, pool=DOCKER_POOL),
        Stage("dast", (
            ExtractAction("zap-extract", [ZAP_JSON, ZAP_HTML], producer=zap_command),
            AggregateAction("zap-summary", Path(ZAP_JSON), ZapAdapter()),
        ), policy=FailurePolicy.ADVISORY, pool=DOCKER_POOL),
    ]


@pytest.fixture
def trivy_json(trivy_doc: Any) -> str:
    return json.dumps(trivy_doc(["CRITICAL", "CRITICAL", "CRITICAL", "LOW"]))


@pytest.fixture
def runtime_with_zap_reports(fake_runtime: Any, zap_doc: Any) -> Any:
    zap_json = json.dumps(zap_doc(["Medium (High)", "Low (Medium)"]))

    def populate(volume: str) -> None:
        fake_runtime.write(volume, ZAP_JSON, zap_json)
        fake_runtime.write(volume, ZAP_HTML, "<html>zap</html>")

    fake_runtime.on_start_helper = populate
    return fake_runtime


def run_pipeline(context: PipelineContext, runtime: Any, stages: List[Stage], tmp_path: Path):
    finished: List[RunResult] = []
    statuses: List[str] = []
    services = StageServices(
        invoker=ToolInvoker(),
        aggregator=ReportAggregator(),
        extractor=ArtifactExtractor(runtime),
    )
    sink = PublishSink(tmp_path / "published", [
        ReportSpec("Container Image Vulnerabilities", [TRIVY_JSON, TRIVY_HTML]),
        ReportSpec("Dynamic Application Scan", [ZAP_JSON, ZAP_HTML]),
    ])
    runner = StageRunner(
        services,
        pools=PoolRegistry.from_sizes({"default": 1, DOCKER_POOL: 1}),
        sink=sink,
        notifier=CallbackNotifier(
            on_status=lambda result, message: statuses.append(message),
            on_finished=finished.append,
        ),
        lease_timeout=1.0,
    )
    result = runner.run(stages, context)
    return result, statuses, finished


class TestPipelineRun:
    def test_critical_findings_complete_with_one_warning(
        self, context: PipelineContext, runtime_with_zap_reports: Any, trivy_json: str, tmp_path: Path
    ) -> None:
        result, statuses, finished = run_pipeline(context, runtime_with_zap_reports, pipeline(trivy_json), tmp_path)

        assert result.status == RunStatus.SUCCESS_WITH_WARNINGS
        assert result.stages_run == ["build", "image-scan", "push", "deploy", "dast"]
        assert [f.stage for f in result.advisory_failures] == ["image-scan"]
        assert result.advisory_failures[0].reasons == ["trivy: 3 CRITICAL vulnerabilities detected"]

        published = {path.name for path in result.published}
        assert published == {TRIVY_JSON, TRIVY_HTML, ZAP_JSON, ZAP_HTML}
        assert [report.source_tool for report in result.reports] == ["trivy", "zap"]

        assert statuses == ["Pipeline run #42 succeeded with 1 warning(s)"]
        assert finished == [result]
        assert runtime_with_zap_reports.volumes == {}
        assert runtime_with_zap_reports.helpers == {}

    def test_build_failure_halts_before_push(
        self, context: PipelineContext, runtime_with_zap_reports: Any, trivy_json: str, tmp_path: Path
    ) -> None:
        result, statuses, finished = run_pipeline(
            context, runtime_with_zap_reports, pipeline(trivy_json, build_exit_code=2), tmp_path
        )

        assert result.status == RunStatus.FAILED
        assert result.halted_at_stage == "build"
        assert "docker-build exited with code 2" in result.fatal_reason
        assert not (tmp_path / "push.done").exists()
        assert not (tmp_path / "deploy.done").exists()
        assert runtime_with_zap_reports.calls == []
        assert len(statuses) == 1
        assert len(finished) == 1

    def test_reports_from_earlier_run_are_ignored(
        self, context: PipelineContext, runtime_with_zap_reports: Any, trivy_doc: Any, tmp_path: Path
    ) -> None:
        (tmp_path / TRIVY_JSON).write_text(json.dumps(trivy_doc(["CRITICAL"] * 7)))
        stages = pipeline("", trivy_exit_code=1)

        result, _, _ = run_pipeline(context, runtime_with_zap_reports, stages, tmp_path)

        trivy = result.reports[0]
        assert trivy.source_tool == "trivy"
        assert trivy.status == ParseStatus.MISSING
        assert trivy.count(Severity.CRITICAL) == 0
        assert "trivy-json exited with code 1" in "; ".join(result.advisory_failures[0].reasons)
        published = {path.name for path in result.published}
        assert TRIVY_JSON not in published
        assert TRIVY_HTML in published

    def test_halted_run_publishes_nothing_from_earlier_runs(
        self, context: PipelineContext, runtime_with_zap_reports: Any, trivy_json: str, tmp_path: Path
    ) -> None:
        (tmp_path / TRIVY_JSON).write_text(trivy_json)
        (tmp_path / ZAP_HTML).write_text("<html>old</html>")

        result, _, _ = run_pipeline(
            context, runtime_with_zap_reports, pipeline(trivy_json, build_exit_code=2), tmp_path
        )

        assert result.halted_at_stage == "build"
        assert result.published == []
        assert (tmp_path / "published" / "42" / "run-result.json").exists()

    def test_missing_zap_report_is_advisory(
        self, context: PipelineContext, fake_runtime: Any, trivy_json: str, tmp_path: Path
    ) -> None:
        result, _, finished = run_pipeline(context, fake_runtime, pipeline(trivy_json), tmp_path)

        assert result.completed
        assert [f.stage for f in result.advisory_failures] == ["image-scan", "dast"]
        assert (tmp_path / "deploy.done").exists()
        assert fake_runtime.volumes == {}
        assert len(finished) == 1

"""Tests for shipgate.pipeline.definition."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List
from unittest.mock import MagicMock

from shipgate.artifacts.extractor import EphemeralResource
from shipgate.config.loader import dict_to_config
from shipgate.config.models import (
    DEFAULT_CREDENTIALS,
    RepositoryConfig,
    ScannerConfig,
    ScannersConfig,
    ShipgateConfig,
    ThresholdConfig,
)
from shipgate.core.models import (
    CredentialHandle,
    FailurePolicy,
    ImageReference,
    PipelineContext,
    RunStatus,
    Severity,
    ToolInvocationResult,
)
from shipgate.pipeline.actions import AggregateAction, ExtractAction, ParallelAction, ToolAction
from shipgate.pipeline.definition import (
    DEFAULT_TRIVY_HTML_TEMPLATE,
    DOCKER_POOL,
    STAGE_NAMES,
    ZAP_HTML,
    ZAP_JSON,
    build_pipeline,
    report_specs,
    source_directory,
    zap_producer,
)
from shipgate.pipeline.pools import DEFAULT_POOL, PoolRegistry
from shipgate.pipeline.runner import StageRunner
from shipgate.pipeline.stage import Stage, StageServices
from shipgate.reports.aggregator import ReportAggregator
from shipgate.tools.invoker import ToolInvoker


def stage(stages: List[Stage], name: str) -> Stage:
    return next(s for s in stages if s.name == name)


def config_with(**scanners: ScannerConfig) -> ShipgateConfig:
    config = ShipgateConfig(target="http://app:8080")
    config.scanners = ScannersConfig(scanners=dict(scanners))
    return config


class TestBuildPipeline:
    def test_stage_order(self, context: PipelineContext) -> None:
        stages = build_pipeline(ShipgateConfig(), context)
        assert tuple(s.name for s in stages) == STAGE_NAMES

    def test_policies_and_pools(self, context: PipelineContext) -> None:
        stages = build_pipeline(ShipgateConfig(target="http://app:8080"), context)
        policies = {s.name: s.policy for s in stages}
        pools = {s.name: s.pool for s in stages}

        assert policies["build"] == FailurePolicy.FATAL
        assert policies["push"] == FailurePolicy.FATAL
        assert policies["deploy"] == FailurePolicy.FATAL
        assert policies["image-scan"] == FailurePolicy.ADVISORY
        assert policies["dast"] == FailurePolicy.ADVISORY
        assert policies["sast"] == FailurePolicy.ADVISORY
        assert pools["checkout"] == DEFAULT_POOL
        assert pools["build"] == DOCKER_POOL
        assert pools["dast"] == DOCKER_POOL

    def test_disabled_scanner_stage_has_no_actions(self, context: PipelineContext) -> None:
        config = config_with(sonar=ScannerConfig(enabled=False))
        assert stage(build_pipeline(config, context), "code-quality").actions == ()

    def test_build_tags_with_context_image(self, context: PipelineContext) -> None:
        build = stage(build_pipeline(ShipgateConfig(), context), "build").actions[0]
        assert isinstance(build, ToolAction)
        assert build.spec.command == ["docker", "build", "-t", "registry.example.com/team/app:42", "."]


class TestCheckout:
    def test_no_repository_means_nothing_to_do(self, context: PipelineContext) -> None:
        assert stage(build_pipeline(ShipgateConfig(), context), "checkout").actions == ()

    def test_fresh_clone(self, context: PipelineContext) -> None:
        config = ShipgateConfig(repository=RepositoryConfig(url="https://git.example.com/app.git"))
        actions = stage(build_pipeline(config, context), "checkout").actions
        assert [a.name for a in actions] == ["git-clone"]
        assert actions[0].spec.expected_outputs == [context.workspace / "source" / ".git"]

    def test_existing_checkout_is_updated(self, context: PipelineContext) -> None:
        (context.workspace / "source" / ".git").mkdir(parents=True)
        config = ShipgateConfig(repository=RepositoryConfig(url="https://git.example.com/app.git"))
        actions = stage(build_pipeline(config, context), "checkout").actions
        assert [a.name for a in actions] == ["git-fetch", "git-checkout"]
        assert source_directory(config, context) == context.workspace / "source"


class TestImageScan:
    def test_json_and_html_run_in_parallel_then_summary(self, context: PipelineContext) -> None:
        config = ShipgateConfig(thresholds=ThresholdConfig(warn_on=["critical"], fail_on="high"))
        actions = stage(build_pipeline(config, context), "image-scan").actions

        assert isinstance(actions[0], ParallelAction)
        assert [a.name for a in actions[0].actions] == ["trivy-json", "trivy-html"]
        summary = actions[1]
        assert isinstance(summary, AggregateAction)
        assert summary.warn_on == (Severity.CRITICAL,)
        assert summary.fail_on == Severity.HIGH

    def test_severities_from_options(self, context: PipelineContext) -> None:
        config = config_with(trivy=ScannerConfig(options={"severities": "critical"}))
        parallel = stage(build_pipeline(config, context), "image-scan").actions[0]
        command = parallel.actions[0].spec.command
        assert command[command.index("--severity") + 1] == "CRITICAL"

    def test_html_template_is_absolute_by_default(self, context: PipelineContext) -> None:
        parallel = stage(build_pipeline(ShipgateConfig(), context), "image-scan").actions[0]
        command = parallel.actions[1].spec.command
        assert command[command.index("--template") + 1] == DEFAULT_TRIVY_HTML_TEMPLATE == "@/contrib/html.tpl"

    def test_html_template_from_options(self, context: PipelineContext) -> None:
        config = config_with(trivy=ScannerConfig(options={"html_template": "@/usr/local/share/trivy/html.tpl"}))
        parallel = stage(build_pipeline(config, context), "image-scan").actions[0]
        command = parallel.actions[1].spec.command
        assert command[command.index("--template") + 1] == "@/usr/local/share/trivy/html.tpl"


def registry_context(workspace: Path, environ: Dict[str, str]) -> PipelineContext:
    return PipelineContext(
        run_id=42,
        image=ImageReference(name="team/app", tag="42", registry="registry.example.com"),
        workspace=workspace,
        credentials=CredentialHandle(dict(DEFAULT_CREDENTIALS), environ=environ),
        registry="registry.example.com",
    )


class TestPush:
    def test_login_uses_stdin_secret(self, tmp_path: Path) -> None:
        context = registry_context(tmp_path, {"REGISTRY_USER": "ci", "REGISTRY_PASSWORD": "s3cret"})
        actions = stage(build_pipeline(ShipgateConfig(), context), "push").actions
        login, push = actions
        assert login.spec.stdin_secret.name == "registry_password"
        assert "--password-stdin" in login.spec.command
        assert "****" in login.describe()
        assert "s3cret" not in login.describe()
        assert push.spec.command == ["docker", "push", "registry.example.com/team/app:42"]

    def test_default_config_without_registry_variables_only_pushes(self, tmp_path: Path) -> None:
        config = dict_to_config({"image": {"name": "team/app"}})
        context = registry_context(tmp_path, {})
        actions = stage(build_pipeline(config, context), "push").actions
        assert [a.name for a in actions] == ["docker-push"]

    def test_password_without_user_skips_login(self, tmp_path: Path) -> None:
        context = registry_context(tmp_path, {"REGISTRY_PASSWORD": "s3cret"})
        actions = stage(build_pipeline(ShipgateConfig(), context), "push").actions
        assert [a.name for a in actions] == ["docker-push"]

    def test_push_stage_succeeds_with_existing_daemon_login(self, tmp_path: Path) -> None:
        config = dict_to_config({"image": {"name": "team/app"}})
        context = registry_context(tmp_path, {})
        push = stage(build_pipeline(config, context), "push")
        invoker = MagicMock(spec=ToolInvoker)
        invoker.invoke.return_value = ToolInvocationResult(
            tool="docker-push", command=["docker", "push"], exit_code=0, succeeded=True
        )
        services = StageServices(invoker=invoker, aggregator=ReportAggregator())

        result = StageRunner(services, pools=PoolRegistry.from_sizes({DOCKER_POOL: 1})).run([push], context)

        assert result.status == RunStatus.SUCCESS
        assert [call.args[0].name for call in invoker.invoke.call_args_list] == ["docker-push"]


class TestDast:
    def test_extract_then_summary(self, context: PipelineContext) -> None:
        actions = stage(build_pipeline(ShipgateConfig(target="http://app:8080"), context), "dast").actions
        assert isinstance(actions[0], ExtractAction)
        assert actions[0].expected_files == (ZAP_JSON, ZAP_HTML)
        assert isinstance(actions[1], AggregateAction)

    def test_no_target_skips(self, context: PipelineContext) -> None:
        assert stage(build_pipeline(ShipgateConfig(), context), "dast").actions == ()

    def test_producer_mounts_volume(self, context: PipelineContext) -> None:
        config = config_with(zap=ScannerConfig(options={"network": "ci"}))
        resource = EphemeralResource(volume="vol", helper="vol-helper", mount_point="/zap/wrk")

        spec = zap_producer(config)(resource, context)

        assert spec.command[:5] == ["docker", "run", "--rm", "--volume", "vol:/zap/wrk:rw"]
        assert "--network" in spec.command
        assert spec.command[-6:] == ["-t", "http://app:8080", "-J", ZAP_JSON, "-r", ZAP_HTML]
        assert spec.findings_exit_codes == frozenset({1, 2})


class TestReportSpecs:
    def test_enabled_scanners_only(self) -> None:
        config = config_with(snyk=ScannerConfig(enabled=False))
        names = [spec.name for spec in report_specs(config)]
        assert names == ["Container Image Vulnerabilities", "Dynamic Application Scan"]

    def test_slugs(self) -> None:
        slugs = [spec.slug for spec in report_specs(ShipgateConfig())]
        assert "container-image-vulnerabilities" in slugs
        assert Path(slugs[0]).name == slugs[0]

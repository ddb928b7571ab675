"""The shipgate pipeline: checkout through dynamic scan.

``build_pipeline`` turns a ShipgateConfig and the run's PipelineContext
into the ordered stage list executed by StageRunner. Scanners disabled in
config still appear as stages, with no actions.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, List

from shipgate.artifacts.extractor import EphemeralResource
from shipgate.config.models import ShipgateConfig
from shipgate.core.logging import get_logger
from shipgate.core.models import FailurePolicy, PipelineContext
from shipgate.pipeline.actions import (
    AggregateAction,
    ExtractAction,
    ParallelAction,
    ProducerFactory,
    ToolAction,
)
from shipgate.pipeline.pools import DEFAULT_POOL
from shipgate.pipeline.stage import Action, Stage
from shipgate.publish.sink import ReportSpec
from shipgate.reports.adapters import SarifAdapter, TrivyAdapter, ZapAdapter
from shipgate.tools.invoker import SecretRef, ToolSpec

LOGGER = get_logger(__name__)

DOCKER_POOL = "docker"

TRIVY_JSON = "trivy-report.json"
TRIVY_HTML = "trivy-report.html"
ZAP_JSON = "zap-report.json"
ZAP_HTML = "zap-report.html"
SNYK_SARIF = "snyk-report.json"

DEFAULT_ZAP_IMAGE = "ghcr.io/zaproxy/zaproxy:stable"
# Template location in the official trivy image; override with scanners.trivy.html_template
DEFAULT_TRIVY_HTML_TEMPLATE = "@/contrib/html.tpl"

# snyk: 1 = issues found
SNYK_FINDINGS_EXIT_CODES = frozenset({1})
# zap-baseline.py: 1 = FAIL-level alerts, 2 = WARN-level alerts
ZAP_FINDINGS_EXIT_CODES = frozenset({1, 2})

STAGE_NAMES = (
    "checkout",
    "sast",
    "code-quality",
    "build",
    "image-scan",
    "push",
    "deploy",
    "dast",
)


def source_directory(config: ShipgateConfig, context: PipelineContext) -> Path:
    """Directory holding the application source for this run."""
    if config.repository.url:
        return context.workspace / config.repository.directory
    return context.workspace


def _timeout(config: ShipgateConfig, scanner: str, default: float) -> float:
    value = config.scanners.get(scanner).timeout
    return float(value) if value else default


def _severities(values: Any) -> str:
    if isinstance(values, str):
        values = values.split(",")
    return ",".join(str(value).strip().upper() for value in values)


def checkout_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    repo = config.repository
    actions: List[Action] = []
    if repo.url:
        target = source_directory(config, context)
        if (target / ".git").is_dir():
            actions.append(ToolAction(ToolSpec(
                name="git-fetch",
                command=["git", "fetch", "--depth", "1", "origin", repo.branch],
                cwd=target,
            )))
            actions.append(ToolAction(ToolSpec(
                name="git-checkout",
                command=["git", "checkout", "--force", "FETCH_HEAD"],
                cwd=target,
            )))
        else:
            actions.append(ToolAction(ToolSpec(
                name="git-clone",
                command=["git", "clone", "--depth", "1", "--branch", repo.branch, repo.url, str(target)],
                expected_outputs=[target / ".git"],
            )))
    return Stage(
        name="checkout",
        actions=tuple(actions),
        policy=FailurePolicy.FATAL,
        pool=DEFAULT_POOL,
        description="Fetch the application source",
    )


def sast_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    if config.scanners.is_enabled("snyk"):
        snyk = config.scanners.get("snyk")
        report = context.workspace / SNYK_SARIF
        threshold = str(snyk.option("severity_threshold", "high")).lower()
        actions.append(ToolAction(ToolSpec(
            name="snyk",
            command=[
                "snyk", "code", "test",
                f"--severity-threshold={threshold}",
                f"--sarif-file-output={report}",
            ],
            expected_outputs=[report],
            timeout=_timeout(config, "snyk", 900.0),
            findings_exit_codes=SNYK_FINDINGS_EXIT_CODES,
            env={"SNYK_TOKEN": SecretRef("snyk_token")},
            cwd=source_directory(config, context),
        )))
        actions.append(AggregateAction(
            "snyk-summary",
            report,
            SarifAdapter("snyk"),
            warn_on=config.thresholds.warn_levels(),
            fail_on=config.thresholds.gate(),
        ))
    return Stage(
        name="sast",
        actions=tuple(actions),
        policy=FailurePolicy.ADVISORY,
        pool=DEFAULT_POOL,
        description="Static application security testing",
    )


def code_quality_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    if config.scanners.is_enabled("sonar"):
        sonar = config.scanners.get("sonar")
        command = [
            "sonar-scanner",
            f"-Dsonar.projectKey={sonar.option('project_key') or config.image.name or 'shipgate'}",
        ]
        host_url = sonar.option("host_url")
        if host_url:
            command.append(f"-Dsonar.host.url={host_url}")
        actions.append(ToolAction(ToolSpec(
            name="sonar-scanner",
            command=command,
            timeout=_timeout(config, "sonar", 1200.0),
            env={"SONAR_TOKEN": SecretRef("sonar_token")},
            cwd=source_directory(config, context),
        )))
    return Stage(
        name="code-quality",
        actions=tuple(actions),
        policy=FailurePolicy.ADVISORY,
        pool=DEFAULT_POOL,
        description="Code quality analysis",
    )


def build_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    return Stage(
        name="build",
        actions=(ToolAction(ToolSpec(
            name="docker-build",
            command=["docker", "build", "-t", context.image.ref, "."],
            timeout=1800.0,
            cwd=source_directory(config, context),
        )),),
        policy=FailurePolicy.FATAL,
        pool=DOCKER_POOL,
        description="Build the container image",
    )


def image_scan_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    if config.scanners.is_enabled("trivy"):
        trivy = config.scanners.get("trivy")
        severities = _severities(trivy.option("severities", ["CRITICAL", "HIGH"]))
        timeout = _timeout(config, "trivy", 900.0)
        json_report = context.workspace / TRIVY_JSON
        html_report = context.workspace / TRIVY_HTML
        base = ["trivy", "image", "--no-progress", "--severity", severities]

        actions.append(ParallelAction("trivy-reports", [
            ToolAction(ToolSpec(
                name="trivy-json",
                command=base + ["--format", "json", "--output", str(json_report), context.image.ref],
                expected_outputs=[json_report],
                timeout=timeout,
            )),
            ToolAction(ToolSpec(
                name="trivy-html",
                command=base + [
                    "--format", "template",
                    "--template", trivy.option("html_template", DEFAULT_TRIVY_HTML_TEMPLATE),
                    "--output", str(html_report),
                    context.image.ref,
                ],
                expected_outputs=[html_report],
                timeout=timeout,
            )),
        ]))
        actions.append(AggregateAction(
            "trivy-summary",
            json_report,
            TrivyAdapter(),
            warn_on=config.thresholds.warn_levels(),
            fail_on=config.thresholds.gate(),
        ))
    return Stage(
        name="image-scan",
        actions=tuple(actions),
        policy=FailurePolicy.ADVISORY,
        pool=DOCKER_POOL,
        description="Scan the image for known vulnerabilities",
    )


def push_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    credentials = context.credentials
    if credentials.has("registry_user") and credentials.has("registry_password"):
        login = ["docker", "login"]
        if context.registry:
            login.append(context.registry)
        login += ["--username", SecretRef("registry_user"), "--password-stdin"]
        actions.append(ToolAction(ToolSpec(
            name="docker-login",
            command=login,
            timeout=120.0,
            stdin_secret=SecretRef("registry_password"),
        )))
    else:
        LOGGER.debug("Registry credentials not set; pushing with the daemon's existing login")
    actions.append(ToolAction(ToolSpec(
        name="docker-push",
        command=["docker", "push", context.image.ref],
        timeout=1800.0,
    )))
    return Stage(
        name="push",
        actions=tuple(actions),
        policy=FailurePolicy.FATAL,
        pool=DOCKER_POOL,
        description="Push the image to the registry",
    )


def deploy_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    deploy = config.deploy
    if deploy.enabled:
        compose = ["docker", "compose", "-f", deploy.compose_file]
        if deploy.project_name:
            compose += ["-p", deploy.project_name]
        env = {"IMAGE": context.image.ref, "IMAGE_TAG": context.image.tag}
        cwd = source_directory(config, context)
        actions.append(ToolAction(ToolSpec(
            name="compose-down",
            command=compose + ["down"],
            timeout=deploy.timeout,
            env=env,
            cwd=cwd,
        )))
        actions.append(ToolAction(ToolSpec(
            name="compose-up",
            command=compose + ["up", "-d"],
            timeout=deploy.timeout,
            env=env,
            cwd=cwd,
        )))
    return Stage(
        name="deploy",
        actions=tuple(actions),
        policy=FailurePolicy.FATAL,
        pool=DOCKER_POOL,
        description="Redeploy the service definition",
    )


def zap_producer(config: ShipgateConfig) -> ProducerFactory:
    """Build the ZAP baseline command writing into an ephemeral volume."""
    zap = config.scanners.get("zap")
    image = zap.option("image", DEFAULT_ZAP_IMAGE)
    timeout = _timeout(config, "zap", 1800.0)

    def produce(resource: EphemeralResource, context: PipelineContext) -> ToolSpec:
        command = [
            "docker", "run", "--rm",
            "--volume", f"{resource.volume}:{resource.mount_point}:rw",
        ]
        user = zap.option("user", "root")
        if user:
            command += ["--user", str(user)]
        network = zap.option("network")
        if network:
            command += ["--network", network]
        command += [
            image,
            "zap-baseline.py",
            "-t", config.target,
            "-J", ZAP_JSON,
            "-r", ZAP_HTML,
        ]
        return ToolSpec(
            name="zap-baseline",
            command=command,
            timeout=timeout,
            findings_exit_codes=ZAP_FINDINGS_EXIT_CODES,
        )

    return produce


def dast_stage(config: ShipgateConfig, context: PipelineContext) -> Stage:
    actions: List[Action] = []
    if config.scanners.is_enabled("zap"):
        if not config.target:
            LOGGER.warning("Dynamic scan enabled but no target configured; skipping dast")
        else:
            actions.append(ExtractAction(
                "zap-extract",
                expected_files=[ZAP_JSON, ZAP_HTML],
                destination=context.workspace,
                producer=zap_producer(config),
            ))
            actions.append(AggregateAction(
                "zap-summary",
                context.workspace / ZAP_JSON,
                ZapAdapter(),
                warn_on=config.thresholds.warn_levels(),
                fail_on=config.thresholds.gate(),
            ))
    return Stage(
        name="dast",
        actions=tuple(actions),
        policy=FailurePolicy.ADVISORY,
        pool=DOCKER_POOL,
        description="Dynamic application security testing",
    )


def build_pipeline(config: ShipgateConfig, context: PipelineContext) -> List[Stage]:
    """Return the ordered stages for one run."""
    return [
        checkout_stage(config, context),
        sast_stage(config, context),
        code_quality_stage(config, context),
        build_stage(config, context),
        image_scan_stage(config, context),
        push_stage(config, context),
        deploy_stage(config, context),
        dast_stage(config, context),
    ]


def report_specs(config: ShipgateConfig) -> List[ReportSpec]:
    """Human-facing reports published at the end of a run."""
    specs: List[ReportSpec] = []
    if config.scanners.is_enabled("snyk"):
        specs.append(ReportSpec("Static Analysis", [SNYK_SARIF]))
    if config.scanners.is_enabled("trivy"):
        specs.append(ReportSpec("Container Image Vulnerabilities", [TRIVY_JSON, TRIVY_HTML]))
    if config.scanners.is_enabled("zap"):
        specs.append(ReportSpec("Dynamic Application Scan", [ZAP_JSON, ZAP_HTML]))
    return specs

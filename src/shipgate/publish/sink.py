"""Publishing of terminal report files.

Reports are copied from the run workspace into a stable per-run location:

    <root>/<run_id>/<report-slug>/<file>
    <root>/<run_id>/index.json
    <root>/<run_id>/run-result.json

Only files recorded as artifacts of the run are published; a report left
in the workspace by an earlier run counts as absent. Publishing is
best-effort: absent report files are skipped with a warning and never
fail the run.
"""

from __future__ import annotations

import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Sequence, Set

from shipgate.core.logging import get_logger
from shipgate.core.models import PipelineContext, RunResult

LOGGER = get_logger(__name__)

INDEX_FILE = "index.json"
RUN_RESULT_FILE = "run-result.json"


@dataclass(frozen=True)
class ReportSpec:
    """A human-facing report made of one or more files."""

    name: str
    files: Sequence[str]
    allow_missing: bool = True

    @property
    def slug(self) -> str:
        return re.sub(r"[^a-z0-9]+", "-", self.name.lower()).strip("-") or "report"


@dataclass
class PublishedReport:
    """Files published for one ReportSpec."""

    name: str
    directory: Path
    files: List[Path] = field(default_factory=list)
    missing: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "directory": str(self.directory),
            "files": [path.name for path in self.files],
            "missing": list(self.missing),
        }


class PublishSink:
    """Copies report files to the results location for a run."""

    def __init__(self, root: Path, reports: Sequence[ReportSpec]) -> None:
        self._root = Path(root)
        self._reports = tuple(reports)

    def run_directory(self, run_id: int) -> Path:
        return self._root / str(run_id)

    def publish(self, context: PipelineContext, result: RunResult) -> List[PublishedReport]:
        """Publish every configured report plus the run summary.

        Args:
            context: Context of the finished run (workspace, run id).
            result: Terminal result; ``published`` is filled in.

        Returns:
            One PublishedReport per ReportSpec.
        """
        run_dir = self.run_directory(context.run_id)
        run_dir.mkdir(parents=True, exist_ok=True)

        produced = {path.resolve() for path in context.artifacts}
        published: List[PublishedReport] = []
        for spec in self._reports:
            published.append(self._publish_report(spec, context.workspace, produced, run_dir))

        for report in published:
            result.published.extend(report.files)

        index = {
            "run_id": context.run_id,
            "image": context.image.ref,
            "status": result.status.value,
            "reports": [report.to_dict() for report in published],
        }
        (run_dir / INDEX_FILE).write_text(json.dumps(index, indent=2), encoding="utf-8")
        (run_dir / RUN_RESULT_FILE).write_text(
            json.dumps(result.to_dict(), indent=2), encoding="utf-8"
        )

        LOGGER.info(
            f"Published {sum(len(r.files) for r in published)} report file(s) to {run_dir}"
        )
        return published

    def _publish_report(
        self,
        spec: ReportSpec,
        workspace: Path,
        produced: Set[Path],
        run_dir: Path,
    ) -> PublishedReport:
        target_dir = run_dir / spec.slug
        report = PublishedReport(name=spec.name, directory=target_dir)

        for file_name in spec.files:
            source = Path(file_name)
            if not source.is_absolute():
                source = workspace / source

            if source.resolve() not in produced or not source.is_file():
                report.missing.append(file_name)
                if spec.allow_missing:
                    LOGGER.warning(f"{spec.name}: {file_name} not produced by this run, skipping")
                    continue
                raise FileNotFoundError(f"{spec.name}: required report file {source} not produced by this run")

            target_dir.mkdir(parents=True, exist_ok=True)
            target = target_dir / source.name
            shutil.copy2(source, target)
            report.files.append(target)

        return report

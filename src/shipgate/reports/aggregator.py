"""Normalization of scanner reports into severity counts.

Reading a report never fails the run: a missing file or unparseable
content is returned as a SeverityReport with status ``missing`` or
``malformed``, zero counts and a diagnostic. Turning counts into
human-readable warnings, or into a gate decision, are separate steps.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, List, Optional

from shipgate.core.models import ParseStatus, Severity, SeverityReport
from shipgate.reports.adapters import MalformedReportError, SchemaAdapter


class ReportAggregator:
    """Parses tool reports through per-tool adapters."""

    def aggregate(self, report_path: Path, adapter: SchemaAdapter) -> SeverityReport:
        """Count findings by severity.

        Args:
            report_path: JSON report written by the scanner.
            adapter: Walks the scanner-specific structure.

        Returns:
            SeverityReport with status ok, missing or malformed.
        """
        report_path = Path(report_path)
        report = SeverityReport(source_tool=adapter.tool_name, report_path=report_path)

        if not report_path.is_file():
            report.status = ParseStatus.MISSING
            report.diagnostic = f"Report not found: {report_path}"
            return report

        try:
            document = json.loads(report_path.read_text(encoding="utf-8"))
            severities = [Severity.parse(raw) for raw in adapter.iter_severities(document)]
        except (OSError, UnicodeDecodeError) as e:
            return self._malformed(report, f"Could not read {report_path}: {e}")
        except json.JSONDecodeError as e:
            return self._malformed(report, f"Invalid JSON in {report_path}: {e}")
        except (ValueError, RecursionError) as e:
            return self._malformed(report, f"Unreadable JSON in {report_path}: {e}")
        except MalformedReportError as e:
            return self._malformed(report, f"Unexpected {adapter.tool_name} report structure: {e}")

        for severity in severities:
            report.counts[severity] += 1
        return report

    @staticmethod
    def _malformed(report: SeverityReport, diagnostic: str) -> SeverityReport:
        report.status = ParseStatus.MALFORMED
        report.diagnostic = diagnostic
        return report


def severity_warnings(
    report: SeverityReport,
    warn_on: Iterable[Severity],
    noun: str = "findings",
) -> List[str]:
    """Human-readable warnings for the configured severity levels.

    Example: ``"trivy: 3 CRITICAL vulnerabilities detected"``.
    """
    levels = set(warn_on)
    warnings: List[str] = []
    for severity in Severity.ranked():
        count = report.count(severity)
        if severity in levels and count > 0:
            warnings.append(f"{report.source_tool}: {count} {severity.value} {noun} detected")
    return warnings


def exceeds_gate(report: SeverityReport, fail_on: Optional[Severity]) -> bool:
    """Whether any finding is at or above the gating level.

    ``None`` disables gating.
    """
    if fail_on is None or fail_on == Severity.UNKNOWN:
        return False
    return report.at_or_above(fail_on) > 0


def format_counts(report: SeverityReport) -> str:
    """Compact summary, e.g. ``CRITICAL=2 HIGH=3 MEDIUM=0 LOW=1 unknown=0``."""
    return " ".join(f"{severity.value}={report.count(severity)}" for severity in Severity)

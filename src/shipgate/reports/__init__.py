"""Scanner report parsing and severity aggregation."""

from shipgate.reports.adapters import (
    MalformedReportError,
    SarifAdapter,
    SchemaAdapter,
    TrivyAdapter,
    ZapAdapter,
    get_adapter,
)
from shipgate.reports.aggregator import (
    ReportAggregator,
    exceeds_gate,
    format_counts,
    severity_warnings,
)

__all__ = [
    "MalformedReportError",
    "ReportAggregator",
    "SarifAdapter",
    "SchemaAdapter",
    "TrivyAdapter",
    "ZapAdapter",
    "exceeds_gate",
    "format_counts",
    "get_adapter",
    "severity_warnings",
]

"""Per-tool schema adapters for scanner JSON reports.

Each scanner nests its findings differently. An adapter walks one tool's
document and yields the raw severity string of every finding; the
aggregator does the counting.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterator, List, Type


class MalformedReportError(ValueError):
    """The document parsed as JSON but does not have the tool's shape."""

    pass


def _expect_list(value: Any, where: str) -> List[Any]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedReportError(f"'{where}' must be a list, got {type(value).__name__}")
    return value


def _expect_dict(value: Any, where: str) -> Dict[str, Any]:
    if not isinstance(value, dict):
        raise MalformedReportError(f"'{where}' must be an object, got {type(value).__name__}")
    return value


class SchemaAdapter(ABC):
    """Walks one scanner's report structure."""

    @property
    @abstractmethod
    def tool_name(self) -> str:
        """Scanner name recorded on the SeverityReport."""

    @property
    def finding_noun(self) -> str:
        """Word used in warnings, e.g. 'vulnerabilities'."""
        return "findings"

    @abstractmethod
    def iter_severities(self, document: Any) -> Iterator[Any]:
        """Yield the raw severity value of every finding.

        Raises:
            MalformedReportError: If the document does not match the schema.
        """


class TrivyAdapter(SchemaAdapter):
    """Trivy JSON: vulnerabilities nested under per-artifact results.

    {"Results": [{"Target": "...", "Vulnerabilities": [{"Severity": "HIGH"}]}]}
    """

    @property
    def tool_name(self) -> str:
        return "trivy"

    @property
    def finding_noun(self) -> str:
        return "vulnerabilities"

    def iter_severities(self, document: Any) -> Iterator[Any]:
        document = _expect_dict(document, "root")
        for index, result in enumerate(_expect_list(document.get("Results"), "Results")):
            result = _expect_dict(result, f"Results[{index}]")
            vulnerabilities = _expect_list(
                result.get("Vulnerabilities"), f"Results[{index}].Vulnerabilities"
            )
            for vulnerability in vulnerabilities:
                yield _expect_dict(vulnerability, "Vulnerability").get("Severity")


# ZAP riskcode values
_ZAP_RISK_CODES = {"3": "HIGH", "2": "MEDIUM", "1": "LOW", "0": "Informational"}


class ZapAdapter(SchemaAdapter):
    """OWASP ZAP JSON: alerts nested under per-site entries.

    {"site": [{"@name": "http://app", "alerts": [{"riskdesc": "High (Medium)"}]}]}

    The risk is the part of ``riskdesc`` before the confidence in
    parentheses; ``riskcode`` is the fallback. Informational alerts land in
    the unknown bucket. Each alert counts once regardless of instances.
    """

    @property
    def tool_name(self) -> str:
        return "zap"

    @property
    def finding_noun(self) -> str:
        return "alerts"

    def iter_severities(self, document: Any) -> Iterator[Any]:
        document = _expect_dict(document, "root")
        sites = document.get("site")
        if isinstance(sites, dict):
            # Older ZAP versions emit a single site object
            sites = [sites]
        for index, site in enumerate(_expect_list(sites, "site")):
            site = _expect_dict(site, f"site[{index}]")
            for alert in _expect_list(site.get("alerts"), f"site[{index}].alerts"):
                yield self._risk(_expect_dict(alert, "alert"))

    @staticmethod
    def _risk(alert: Dict[str, Any]) -> Any:
        riskdesc = alert.get("riskdesc")
        if isinstance(riskdesc, str) and riskdesc.strip():
            return riskdesc.split("(", 1)[0].strip()
        riskcode = alert.get("riskcode")
        if riskcode is not None:
            return _ZAP_RISK_CODES.get(str(riskcode), riskcode)
        return None


_SARIF_LEVELS = {"error": "HIGH", "warning": "MEDIUM", "note": "LOW"}


class SarifAdapter(SchemaAdapter):
    """SARIF 2.1 (static analysis output): results nested under runs.

    ``properties.severity`` wins when present, otherwise the SARIF level is
    mapped (error=HIGH, warning=MEDIUM, note=LOW).
    """

    def __init__(self, tool_name: str = "sast") -> None:
        self._tool_name = tool_name

    @property
    def tool_name(self) -> str:
        return self._tool_name

    @property
    def finding_noun(self) -> str:
        return "issues"

    def iter_severities(self, document: Any) -> Iterator[Any]:
        document = _expect_dict(document, "root")
        for run_index, run in enumerate(_expect_list(document.get("runs"), "runs")):
            run = _expect_dict(run, f"runs[{run_index}]")
            for result in _expect_list(run.get("results"), f"runs[{run_index}].results"):
                result = _expect_dict(result, "result")
                properties = result.get("properties")
                if isinstance(properties, dict) and properties.get("severity"):
                    yield properties["severity"]
                    continue
                level = result.get("level", "warning")
                yield _SARIF_LEVELS.get(str(level).lower(), level)


ADAPTERS: Dict[str, Type[SchemaAdapter]] = {
    "trivy": TrivyAdapter,
    "zap": ZapAdapter,
    "sarif": SarifAdapter,
}


def get_adapter(name: str) -> SchemaAdapter:
    """Instantiate an adapter by name.

    Raises:
        KeyError: If no adapter is registered under ``name``.
    """
    try:
        adapter_class = ADAPTERS[name.lower()]
    except KeyError:
        raise KeyError(f"Unknown report adapter '{name}'. Available: {sorted(ADAPTERS)}") from None
    return adapter_class()

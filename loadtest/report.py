"""
End-of-run summary rendering.

Turns a metrics snapshot into three artefacts: a plain-text block for the
console, a small HTML page and a JSON dump of the raw values.  Rendering
is pure; :func:`write_report` is the only function that touches disk.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from jinja2 import Environment, PackageLoader, select_autoescape

from loadtest.metrics import (
    BUSINESS_LIST_LATENCY,
    CHECKLIST_SUCCESS_RATE,
    CREATE_PLAN_SUCCESS_RATE,
    ERROR_COUNTER,
    EXPERT_CONNECT_SUCCESS_RATE,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    LIST_SUCCESS_RATE,
    LOGIN_SUCCESS_RATE,
    SCORING_SUCCESS_RATE,
    TEMP_SAVE_SUCCESS_RATE,
    TOTAL_FLOW_SUCCESS_RATE,
    VUS,
    ThresholdResult,
)

logger = logging.getLogger(__name__)

SUMMARY_JSON = "summary.json"
SUMMARY_HTML = "summary.html"

_jinja = Environment(
    loader=PackageLoader("loadtest", "templates"),
    autoescape=select_autoescape(["html"]),
)


@dataclass(frozen=True)
class Report:
    text: str
    html: str
    json_blob: str


def _values(metrics: Mapping[str, Any], name: str) -> Mapping[str, Any]:
    return (metrics.get(name) or {}).get("values") or {}


def metric_rate(metrics: Mapping[str, Any], name: str) -> str:
    """Rate of *name* as a percentage string with two decimals."""
    return f"{(_values(metrics, name).get('rate') or 0) * 100:.2f}"


def p95(metrics: Mapping[str, Any], name: str) -> str:
    return f"{_values(metrics, name).get('p(95)') or 0:.2f}"


def step_rates(metrics: Mapping[str, Any], ai_enabled: bool) -> list[tuple[str, str]]:
    """Label/percentage pairs in journey order; AI steps only when enabled."""
    rows = [
        ("Login", LOGIN_SUCCESS_RATE),
        ("List plans", LIST_SUCCESS_RATE),
        ("Create plan", CREATE_PLAN_SUCCESS_RATE),
        ("Title/section save & get", TEMP_SAVE_SUCCESS_RATE),
    ]
    if ai_enabled:
        rows += [
            ("Checklist review", CHECKLIST_SUCCESS_RATE),
            ("Scoring", SCORING_SUCCESS_RATE),
        ]
    rows += [
        ("Expert connect", EXPERT_CONNECT_SUCCESS_RATE),
        ("Total flow", TOTAL_FLOW_SUCCESS_RATE),
    ]
    return [(label, metric_rate(metrics, name)) for label, name in rows]


def _summary_values(metrics: Mapping[str, Any], ai_enabled: bool) -> dict[str, Any]:
    failed_ratio = _values(metrics, HTTP_REQ_FAILED).get("rate") or 0
    return {
        "vus_max": _values(metrics, VUS).get("max") or 0,
        "total_requests": _values(metrics, HTTP_REQ_DURATION).get("count") or 0,
        "failed_ratio": failed_ratio,
        "failed_percent": f"{failed_ratio * 100:.2f}",
        "total_flow": metric_rate(metrics, TOTAL_FLOW_SUCCESS_RATE),
        "p95_all": p95(metrics, HTTP_REQ_DURATION),
        "p95_list": p95(metrics, BUSINESS_LIST_LATENCY),
        "errors": _values(metrics, ERROR_COUNTER).get("count") or 0,
        "steps": step_rates(metrics, ai_enabled),
    }


def render_text(metrics: Mapping[str, Any], ai_enabled: bool) -> str:
    summary = _summary_values(metrics, ai_enabled)
    width = max(len(label) for label, _ in summary["steps"]) + 2

    lines = [
        "=" * 40,
        "Starlight business plan flow load test",
        "=" * 40,
        "",
        f"VUs (max): {summary['vus_max']}",
        f"Total requests: {summary['total_requests']}",
        f"Failed request rate: {summary['failed_percent']}%",
        "",
        "[Step success rates]",
    ]
    lines += [f"- {label + ':':<{width}}{rate}%" for label, rate in summary["steps"]]
    lines += [
        "",
        "[Response time P95]",
        f"- {'All requests:':<{width}}{summary['p95_all']} ms",
        f"- {'List plans:':<{width}}{summary['p95_list']} ms",
        "",
        f"Errors: {summary['errors']}",
        f"(ENABLE_AI = {str(ai_enabled).lower()})",
        "=" * 40,
    ]
    return "\n".join(lines) + "\n"


def render(
    metrics: Mapping[str, Any],
    ai_enabled: bool,
    thresholds: Iterable[ThresholdResult] = (),
    generated_at: datetime | None = None,
) -> Report:
    """
    Render the end-of-run summary.

    Args:
        metrics: Snapshot from :meth:`MetricsCollector.snapshot`.
        ai_enabled: Whether AI steps ran; controls the AI lines.
        thresholds: Evaluated threshold results to include.
        generated_at: Timestamp printed in the HTML; defaults to now.

    Returns:
        A :class:`Report` with text, HTML and JSON renditions.
    """
    thresholds = list(thresholds)
    generated_at = generated_at or datetime.now(timezone.utc)

    html = _jinja.get_template("report.html").render(
        summary=_summary_values(metrics, ai_enabled),
        thresholds=thresholds,
        thresholds_ok=all(result.passed for result in thresholds),
        ai_enabled=ai_enabled,
        generated_at=generated_at.isoformat(),
    )

    blob = {
        "ai_enabled": ai_enabled,
        "generated_at": generated_at.isoformat(),
        "metrics": metrics,
        "thresholds": {
            f"{result.threshold.metric}:{result.threshold.expression}": {
                "ok": result.passed,
                "observed": result.observed,
            }
            for result in thresholds
        },
    }

    return Report(
        text=render_text(metrics, ai_enabled),
        html=html,
        json_blob=json.dumps(blob, indent=2),
    )


def write_report(report: Report, directory: Path) -> tuple[Path, Path]:
    """Write ``summary.json`` and ``summary.html`` into *directory*."""
    directory.mkdir(parents=True, exist_ok=True)
    json_path = directory / SUMMARY_JSON
    html_path = directory / SUMMARY_HTML
    json_path.write_text(report.json_blob, encoding="utf-8")
    html_path.write_text(report.html, encoding="utf-8")
    logger.info("Wrote %s and %s", json_path, html_path)
    return json_path, html_path

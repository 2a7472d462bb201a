"""
In-memory metric series and post-run threshold evaluation.

Every virtual user folds samples into one shared :class:`MetricsCollector`.
The collector keeps the flow-level series itself:

- **rate**: boolean samples; the value is the fraction that were true.
- **counter**: monotonic sum, optionally broken down by a tag.

Latency trends (``http_req_duration`` and ``business_list_latency``) come
from Locust's own ``environment.stats``, which
:meth:`MetricsCollector.snapshot` summarises alongside the series above.

Locust runs users as greenlets, but the collector still guards every
append with a lock so that it stays correct under real threads too.
"""

from __future__ import annotations

import operator
import re
import threading
from collections import Counter as TagCounter
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

# Series names recorded by the business-plan flow.
LOGIN_SUCCESS_RATE = "login_success_rate"
LIST_SUCCESS_RATE = "list_success_rate"
CREATE_PLAN_SUCCESS_RATE = "create_plan_success_rate"
TEMP_SAVE_SUCCESS_RATE = "temp_save_success_rate"
CHECKLIST_SUCCESS_RATE = "checklist_success_rate"
SCORING_SUCCESS_RATE = "scoring_success_rate"
EXPERT_CONNECT_SUCCESS_RATE = "expert_connect_success_rate"
TOTAL_FLOW_SUCCESS_RATE = "total_flow_success_rate"
BUSINESS_LIST_LATENCY = "business_list_latency"
ERROR_COUNTER = "error_counter"
HTTP_REQ_DURATION = "http_req_duration"
HTTP_REQ_FAILED = "http_req_failed"
VUS = "vus"

RATE_SERIES = (
    LOGIN_SUCCESS_RATE,
    LIST_SUCCESS_RATE,
    CREATE_PLAN_SUCCESS_RATE,
    TEMP_SAVE_SUCCESS_RATE,
    CHECKLIST_SUCCESS_RATE,
    SCORING_SUCCESS_RATE,
    EXPERT_CONNECT_SUCCESS_RATE,
    TOTAL_FLOW_SUCCESS_RATE,
    HTTP_REQ_FAILED,
)
COUNTER_SERIES = (ERROR_COUNTER,)

# Locust statistics entry ``(name, method)`` of the plan-list request.
LIST_PLANS_STATS_NAME = "ListPlans"
LIST_PLANS_STATS_KEY = (LIST_PLANS_STATS_NAME, "GET")

_EMPTY_TREND = {
    "count": 0, "avg": 0.0, "min": 0.0, "med": 0.0,
    "max": 0.0, "p(90)": 0.0, "p(95)": 0.0, "p(99)": 0.0,
}


def trend_values(entry: Any) -> dict[str, Any]:
    """
    Summarise a Locust ``StatsEntry`` as trend values.

    Args:
        entry: A ``StatsEntry`` (``stats.total`` or one request name), or
            ``None`` when the request was never made.

    Returns:
        ``count``, ``avg``, ``min``, ``med``, ``max`` and ``p(90/95/99)``
        in milliseconds; all zero without samples.
    """
    if entry is None or not entry.num_requests:
        return dict(_EMPTY_TREND)
    return {
        "count": entry.num_requests,
        "avg": entry.avg_response_time,
        "min": entry.min_response_time or 0,
        "med": entry.median_response_time,
        "max": entry.max_response_time,
        "p(90)": entry.get_response_time_percentile(0.90),
        "p(95)": entry.get_response_time_percentile(0.95),
        "p(99)": entry.get_response_time_percentile(0.99),
    }


class RateSeries:
    """Fraction of boolean samples that were true."""

    kind = "rate"

    def __init__(self) -> None:
        self.passes = 0
        self.fails = 0

    def add(self, value: bool) -> None:
        if value:
            self.passes += 1
        else:
            self.fails += 1

    @property
    def total(self) -> int:
        return self.passes + self.fails

    def values(self) -> dict[str, Any]:
        rate = self.passes / self.total if self.total else 0.0
        return {"rate": rate, "passes": self.passes, "fails": self.fails}


class CounterSeries:
    """Monotonic sum with a per-tag breakdown."""

    kind = "counter"

    def __init__(self) -> None:
        self.count = 0
        self.by_tag: TagCounter[str] = TagCounter()

    def add(self, value: int = 1, tag: str | None = None) -> None:
        self.count += value
        if tag:
            self.by_tag[tag] += value

    @property
    def total(self) -> int:
        return self.count

    def values(self) -> dict[str, Any]:
        return {"count": self.count, "tags": dict(self.by_tag)}


class MetricsCollector:
    """
    Shared accumulator for every metric series of a run.

    One instance is created per run and handed to each virtual user's flow.
    Series are registered up front so that a series with no samples still
    shows up in the final snapshot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._series: dict[str, RateSeries | CounterSeries] = {}
        for name in RATE_SERIES:
            self._series[name] = RateSeries()
        for name in COUNTER_SERIES:
            self._series[name] = CounterSeries()
        self._active_users = 0
        self._max_users = 0
        self._iterations = 0

    def _get(self, name: str, kind: type) -> Any:
        series = self._series.get(name)
        if series is None:
            series = kind()
            self._series[name] = series
        elif not isinstance(series, kind):
            raise TypeError(f"Metric '{name}' is a {series.kind}, not a {kind.kind}")
        return series

    def add_rate(self, name: str, value: bool) -> None:
        with self._lock:
            self._get(name, RateSeries).add(bool(value))

    def add_count(self, name: str, value: int = 1, *, tag: str | None = None) -> None:
        with self._lock:
            self._get(name, CounterSeries).add(value, tag)

    def user_started(self) -> None:
        with self._lock:
            self._active_users += 1
            self._max_users = max(self._max_users, self._active_users)

    def user_stopped(self) -> None:
        with self._lock:
            self._active_users = max(0, self._active_users - 1)

    def iteration_finished(self) -> int:
        """Count a finished iteration and return the running total."""
        with self._lock:
            self._iterations += 1
            return self._iterations

    def samples(self, name: str) -> int:
        """Number of samples folded into *name* so far."""
        with self._lock:
            series = self._series.get(name)
            return series.total if series is not None else 0

    def snapshot(self, stats: Any = None) -> dict[str, dict[str, Any]]:
        """
        Return plain-dict values for every series.

        The result is JSON-serialisable and is what the reporter and the
        threshold evaluator consume.

        Args:
            stats: Locust ``RequestStats`` (``environment.stats``) to read
                the latency trends from.  Without it the trends are empty.
        """
        total = stats.total if stats is not None else None
        listing = stats.entries.get(LIST_PLANS_STATS_KEY) if stats is not None else None

        with self._lock:
            result = {
                name: {"type": series.kind, "values": series.values()}
                for name, series in self._series.items()
            }
            result[VUS] = {
                "type": "gauge",
                "values": {"value": self._active_users, "max": self._max_users},
            }
            result["iterations"] = {
                "type": "counter",
                "values": {"count": self._iterations},
            }

        result[HTTP_REQ_DURATION] = {"type": "trend", "values": trend_values(total)}
        result[BUSINESS_LIST_LATENCY] = {"type": "trend", "values": trend_values(listing)}
        return result


# =====================================================================
# Thresholds
# =====================================================================

_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<=": operator.le,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
}

_EXPRESSION = re.compile(
    r"^\s*(?P<agg>rate|count|avg|min|max|med|value|p\((?P<pct>\d+(?:\.\d+)?)\))"
    r"\s*(?P<op><=|>=|==|!=|<|>)\s*(?P<limit>-?\d+(?:\.\d+)?)\s*$"
)


@dataclass(frozen=True)
class Threshold:
    """A pass/fail predicate over one aggregated metric."""

    metric: str
    expression: str
    aggregation: str
    op: str
    limit: float

    @classmethod
    def parse(cls, metric: str, expression: str) -> Threshold:
        """
        Parse an expression such as ``rate>0.95`` or ``p(95)<2000``.

        Raises:
            ValueError: If the expression is not recognised.
        """
        match = _EXPRESSION.match(str(expression))
        if not match:
            raise ValueError(f"Invalid threshold for {metric}: {expression!r}")

        aggregation = match.group("agg")
        if match.group("pct") is not None:
            aggregation = f"p({match.group('pct')})"

        return cls(
            metric=metric,
            expression=str(expression).strip(),
            aggregation=aggregation,
            op=match.group("op"),
            limit=float(match.group("limit")),
        )

    def observed(self, values: Mapping[str, Any]) -> float | None:
        """Pick the aggregated value this threshold compares, if present."""
        if self.aggregation not in values:
            return None
        return float(values[self.aggregation])


@dataclass(frozen=True)
class ThresholdResult:
    threshold: Threshold
    observed: float | None
    passed: bool
    reason: str = ""


def _has_samples(values: Mapping[str, Any]) -> bool:
    if not values:
        return False
    if "passes" in values:
        return (values.get("passes", 0) + values.get("fails", 0)) > 0
    if "count" in values:
        return values.get("count", 0) > 0
    return True


def evaluate_thresholds(
    metrics: Mapping[str, Mapping[str, Any]],
    thresholds: Iterable[Threshold],
) -> list[ThresholdResult]:
    """
    Check every threshold against a metrics snapshot.

    A series with no samples has nothing to judge and its thresholds pass
    with ``observed`` left as ``None``.  An aggregation the series does not
    report (e.g. ``p(99.9)``) fails.

    Args:
        metrics: Output of :meth:`MetricsCollector.snapshot` (or the
            ``metrics`` block of a JSON summary).
        thresholds: Threshold predicates to evaluate.

    Returns:
        One :class:`ThresholdResult` per threshold, in input order.
    """
    results = []
    for threshold in thresholds:
        entry = metrics.get(threshold.metric) or {}
        values = entry.get("values") or {}
        if not _has_samples(values):
            results.append(ThresholdResult(threshold, None, True, "no data"))
            continue

        observed = threshold.observed(values)
        if observed is None:
            results.append(
                ThresholdResult(threshold, None, False, f"{threshold.aggregation} not reported")
            )
            continue

        passed = _OPERATORS[threshold.op](observed, threshold.limit)
        results.append(ThresholdResult(threshold, observed, passed))
    return results


def thresholds_passed(results: Iterable[ThresholdResult]) -> bool:
    return all(result.passed for result in results)

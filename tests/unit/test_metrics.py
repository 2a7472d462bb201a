"""
Unit tests for metric series, the shared collector and thresholds.
"""

from __future__ import annotations

import threading

import pytest
from locust.stats import RequestStats

from loadtest.metrics import (
    BUSINESS_LIST_LATENCY,
    ERROR_COUNTER,
    HTTP_REQ_DURATION,
    HTTP_REQ_FAILED,
    LIST_PLANS_STATS_NAME,
    LOGIN_SUCCESS_RATE,
    TOTAL_FLOW_SUCCESS_RATE,
    MetricsCollector,
    Threshold,
    evaluate_thresholds,
    thresholds_passed,
    trend_values,
)


pytestmark = pytest.mark.unit


@pytest.fixture
def stats():
    """Locust request statistics with four plan-list and one login request."""
    request_stats = RequestStats()
    for response_time in (10, 20, 30, 40):
        request_stats.log_request("GET", LIST_PLANS_STATS_NAME, response_time, 0)
    request_stats.log_request("POST", "01_Login", 50, 0)
    return request_stats


def test_rate_series_counts_passes_and_fails(metrics):
    metrics.add_rate(LOGIN_SUCCESS_RATE, True)
    metrics.add_rate(LOGIN_SUCCESS_RATE, True)
    metrics.add_rate(LOGIN_SUCCESS_RATE, False)
    metrics.add_rate(LOGIN_SUCCESS_RATE, True)

    values = metrics.snapshot()[LOGIN_SUCCESS_RATE]["values"]

    assert values == {"rate": 0.75, "passes": 3, "fails": 1}


def test_counter_tracks_tags(metrics):
    metrics.add_count(ERROR_COUNTER, 1, tag="login")
    metrics.add_count(ERROR_COUNTER, 1, tag="checklist_TEAM_MEMBERS")
    metrics.add_count(ERROR_COUNTER, 1, tag="checklist_TEAM_MEMBERS")

    values = metrics.snapshot()[ERROR_COUNTER]["values"]

    assert values["count"] == 3
    assert values["tags"] == {"login": 1, "checklist_TEAM_MEMBERS": 2}


def test_snapshot_lists_series_without_samples(metrics):
    snapshot = metrics.snapshot()

    assert snapshot[TOTAL_FLOW_SUCCESS_RATE]["values"]["passes"] == 0
    assert snapshot[HTTP_REQ_FAILED]["values"]["passes"] == 0
    assert snapshot[HTTP_REQ_DURATION]["values"]["count"] == 0
    assert snapshot[BUSINESS_LIST_LATENCY]["values"]["p(95)"] == 0.0


def test_series_kind_cannot_change(metrics):
    with pytest.raises(TypeError):
        metrics.add_count(LOGIN_SUCCESS_RATE)


def test_user_gauge_tracks_maximum(metrics):
    metrics.user_started()
    metrics.user_started()
    metrics.user_stopped()
    metrics.user_started()
    metrics.user_stopped()

    values = metrics.snapshot()["vus"]["values"]

    assert values == {"value": 1, "max": 2}


class TestLatencyTrends:
    """Latency trends are read from Locust's request statistics."""

    def test_request_duration_covers_every_request(self, metrics, stats):
        values = metrics.snapshot(stats)[HTTP_REQ_DURATION]["values"]

        assert values["count"] == 5
        assert values["avg"] == 30
        assert values["min"] == 10
        assert values["max"] == 50

    def test_list_latency_covers_only_the_list_request(self, metrics, stats):
        values = metrics.snapshot(stats)[BUSINESS_LIST_LATENCY]["values"]

        assert values["count"] == 4
        assert values["avg"] == 25
        assert values["min"] == 10
        assert values["max"] == 40
        assert values["med"] == 30
        assert values["p(95)"] == 40

    def test_list_latency_empty_without_list_request(self, metrics):
        request_stats = RequestStats()
        request_stats.log_request("POST", "01_Login", 50, 0)

        snapshot = metrics.snapshot(request_stats)

        assert snapshot[BUSINESS_LIST_LATENCY]["values"]["count"] == 0
        assert snapshot[HTTP_REQ_DURATION]["values"]["count"] == 1
        assert (LIST_PLANS_STATS_NAME, "GET") not in request_stats.entries

    def test_trend_values_without_entry(self):
        assert trend_values(None)["count"] == 0
        assert trend_values(RequestStats().total)["p(99)"] == 0.0


def test_concurrent_writers_lose_no_samples():
    """Many threads appending at once must all be counted."""
    # Arrange
    collector = MetricsCollector()
    threads_count, per_thread = 8, 500

    def _worker() -> None:
        for i in range(per_thread):
            collector.add_rate(TOTAL_FLOW_SUCCESS_RATE, i % 2 == 0)
            collector.add_rate(HTTP_REQ_FAILED, False)
            collector.add_count(ERROR_COUNTER, tag="step")

    threads = [threading.Thread(target=_worker) for _ in range(threads_count)]

    # Act
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    # Assert
    snapshot = collector.snapshot()
    total = threads_count * per_thread
    rate = snapshot[TOTAL_FLOW_SUCCESS_RATE]["values"]
    assert rate["passes"] + rate["fails"] == total
    assert snapshot[HTTP_REQ_FAILED]["values"]["fails"] == total
    assert snapshot[ERROR_COUNTER]["values"]["count"] == total


class TestThresholds:
    """Parsing and evaluation of threshold expressions."""

    @pytest.mark.parametrize(
        ("expression", "aggregation", "op", "limit"),
        [
            ("rate>0.95", "rate", ">", 0.95),
            ("p(95)<2000", "p(95)", "<", 2000.0),
            ("avg <= 300", "avg", "<=", 300.0),
            ("count==0", "count", "==", 0.0),
        ],
    )
    def test_parse(self, expression, aggregation, op, limit):
        threshold = Threshold.parse("metric", expression)

        assert threshold.aggregation == aggregation
        assert threshold.op == op
        assert threshold.limit == limit

    @pytest.mark.parametrize("expression", ["", "rate", "rate>>1", "p95<2000", "median<3"])
    def test_parse_rejects_garbage(self, expression):
        with pytest.raises(ValueError):
            Threshold.parse("metric", expression)

    def test_rate_threshold_pass_and_fail(self, metrics):
        for ok in (True, True, True, False):
            metrics.add_rate(LOGIN_SUCCESS_RATE, ok)

        results = evaluate_thresholds(
            metrics.snapshot(),
            [
                Threshold.parse(LOGIN_SUCCESS_RATE, "rate>0.5"),
                Threshold.parse(LOGIN_SUCCESS_RATE, "rate>0.99"),
            ],
        )

        assert [r.passed for r in results] == [True, False]
        assert results[1].observed == 0.75
        assert not thresholds_passed(results)

    def test_percentile_threshold(self, metrics):
        request_stats = RequestStats()
        for response_time in range(1, 101):
            request_stats.log_request("GET", LIST_PLANS_STATS_NAME, response_time, 0)

        results = evaluate_thresholds(
            metrics.snapshot(request_stats),
            [
                Threshold.parse(BUSINESS_LIST_LATENCY, "p(95)<1500"),
                Threshold.parse(HTTP_REQ_DURATION, "p(95)<50"),
            ],
        )

        assert results[0].passed
        assert results[0].observed == 96
        assert not results[1].passed

    def test_series_without_samples_passes(self, metrics):
        results = evaluate_thresholds(
            metrics.snapshot(),
            [
                Threshold.parse(TOTAL_FLOW_SUCCESS_RATE, "rate>0.95"),
                Threshold.parse(BUSINESS_LIST_LATENCY, "p(95)<1500"),
            ],
        )

        assert all(r.passed for r in results)
        assert results[0].observed is None
        assert results[0].reason == "no data"

    def test_unreported_aggregation_fails(self, metrics, stats):
        results = evaluate_thresholds(
            metrics.snapshot(stats),
            [Threshold.parse(BUSINESS_LIST_LATENCY, "p(99.9)<100")],
        )

        assert not results[0].passed

    def test_unknown_metric_is_treated_as_no_data(self, metrics):
        results = evaluate_thresholds(
            metrics.snapshot(),
            [Threshold.parse("does_not_exist", "rate>0.5")],
        )

        assert results[0].passed

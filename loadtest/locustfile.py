# ruff: noqa: E402
"""
Locust entrypoint for the business-plan flow load test.

This is the file the ``locust`` CLI loads.  It resolves the run
configuration from the environment once, defines the single user class
that runs the journey, and a load shape that follows the selected
profile.  When Locust quits, thresholds are evaluated, the summary is
printed and written to disk, and the process exit code is set to ``1`` if
any threshold was breached.

Usage examples::

    # One-user smoke run against a local API:
    locust -f loadtest/locustfile.py --headless

    # Staged load run including AI checklist and scoring calls:
    TEST_MODE=load ENABLE_AI=true BASE_URL=https://api.example.com \\
        locust -f loadtest/locustfile.py --headless

Key Concepts Demonstrated:
- Locust ``LoadTestShape`` for k6-style ramping stages
- ``events.init`` / ``events.quitting`` hooks for run-wide setup and
  post-run gating via ``environment.process_exit_code``
- One metrics collector per run, injected into every user's flow
"""

from __future__ import annotations

import itertools
import logging
import sys
import threading
from pathlib import Path

from locust import HttpUser, LoadTestShape, constant, events, task
from locust.exception import StopUser

# Locust may be invoked from any directory.  Inserting the project root
# onto ``sys.path`` keeps ``from loadtest.…`` imports resolvable even
# when the package is not installed.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from loadtest.config import RunConfig, resolve, target_users
from loadtest.flow import BusinessPlanFlow
from loadtest.metrics import MetricsCollector, evaluate_thresholds, thresholds_passed
from loadtest.report import render, write_report
from loadtest.steps import StepExecutor

logger = logging.getLogger(__name__)

CONFIG: RunConfig = resolve()

__all__ = ["BusinessPlanUser", "BusinessPlanShape"]

_user_ids = itertools.count(1)


class IterationBudget:
    """Hands out at most ``limit`` iterations across all users."""

    def __init__(self, limit: int | None) -> None:
        self.limit = limit
        self.claimed = 0
        self._lock = threading.Lock()

    def claim(self) -> bool:
        with self._lock:
            if self.limit is not None and self.claimed >= self.limit:
                return False
            self.claimed += 1
            return True

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self.limit is not None and self.claimed >= self.limit


@events.init.add_listener
def _setup_run(environment, **_kwargs):
    """Attach the run-wide collector and iteration budget to the environment."""
    environment.business_plan_metrics = MetricsCollector()
    environment.business_plan_budget = IterationBudget(CONFIG.profile.iterations)
    logger.info(
        "Business plan load test: mode=%s, ENABLE_AI=%s, base_url=%s",
        CONFIG.mode,
        CONFIG.ai_enabled,
        CONFIG.base_url,
    )


class BusinessPlanUser(HttpUser):
    """
    Virtual user that repeats the full business-plan journey.

    The journey carries its own think-time between stages, so the user
    itself does not wait between iterations.
    """

    host = CONFIG.base_url
    wait_time = constant(0)

    flow: BusinessPlanFlow

    def on_start(self) -> None:
        metrics = self.environment.business_plan_metrics
        metrics.user_started()
        executor = StepExecutor(
            self.client,
            metrics,
            CONFIG.api_base_url,
            user_id=next(_user_ids),
        )
        self.flow = BusinessPlanFlow(executor, metrics, CONFIG)

    def on_stop(self) -> None:
        self.environment.business_plan_metrics.user_stopped()

    @task
    def business_plan_flow(self) -> None:
        """Run one iteration unless the run's iteration budget is spent."""
        if not self.environment.business_plan_budget.claim():
            raise StopUser()

        self.flow.run_iteration()
        self.environment.business_plan_metrics.iteration_finished()


class BusinessPlanShape(LoadTestShape):
    """
    Follows the profile's stages and stops at its ceilings.

    The test ends when the stages are exhausted, the run reaches the
    profile's maximum duration, or the iteration budget has been spent
    and every user has finished.
    """

    def tick(self):
        run_time = self.get_run_time()
        if run_time >= CONFIG.profile.max_duration:
            return None

        budget = getattr(self.runner.environment, "business_plan_budget", None)
        if budget is not None and budget.exhausted and self.runner.user_count == 0:
            return None

        users = target_users(CONFIG.profile.stages, run_time)
        if users is None:
            return None
        return users, max(users, 1)


@events.quitting.add_listener
def _report_and_gate(environment, **_kwargs):
    """Evaluate thresholds, emit the summary and set the exit code."""
    metrics = getattr(environment, "business_plan_metrics", None)
    if metrics is None:
        return

    snapshot = metrics.snapshot(environment.stats)
    results = evaluate_thresholds(snapshot, CONFIG.thresholds)
    report = render(snapshot, CONFIG.ai_enabled, results)

    print(report.text)
    write_report(report, CONFIG.report_dir)

    for result in results:
        if not result.passed:
            logger.error(
                "Threshold breached: %s %s (observed %s)",
                result.threshold.metric,
                result.threshold.expression,
                result.observed,
            )

    if not thresholds_passed(results):
        environment.process_exit_code = 1

"""
Shared pytest fixtures for the load-test suite.

Fixtures build the pieces of one virtual user in isolation: a resolved
run configuration, a fresh metrics collector, a scripted fake API standing
in for Locust's HTTP session, and a flow wired to all three.  Nothing here
opens a socket or sleeps.

Key Concepts Demonstrated:
- Factory fixtures for configs with per-test overrides
- Fake collaborators instead of a live server
- Test data generation with Faker
"""

from __future__ import annotations

# Locust gevent-monkey-patches ssl on import; it must load before requests/urllib3.
import locust  # noqa: F401  isort: skip

from collections.abc import Callable
from typing import Any

import pytest
from faker import Faker

from loadtest.config import RunConfig, resolve
from loadtest.flow import BusinessPlanFlow
from loadtest.metrics import MetricsCollector
from loadtest.steps import StepExecutor
from shared.test_helpers import FakeStarlightApi, TickingClock

# Initialize Faker for generating test data
fake = Faker()


# -----------------------------------------------------------------------------
# Configuration Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def config_factory() -> Callable[..., RunConfig]:
    """
    Factory fixture for resolved run configurations.

    Keyword arguments are passed through as environment variables, so a
    test can write ``config_factory(ENABLE_AI="true")``.
    """

    def _create_config(**env: str) -> RunConfig:
        values = {
            "LOADTEST_EMAIL": fake.email(),
            "LOADTEST_PASSWORD": fake.password(length=12),
        }
        values.update(env)
        return resolve(values)

    return _create_config


@pytest.fixture
def run_config(config_factory) -> RunConfig:
    """Smoke configuration with AI steps disabled."""
    return config_factory()


@pytest.fixture
def ai_config(config_factory) -> RunConfig:
    """Smoke configuration with AI steps enabled."""
    return config_factory(ENABLE_AI="true")


# -----------------------------------------------------------------------------
# Flow Fixtures
# -----------------------------------------------------------------------------

@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def api() -> FakeStarlightApi:
    """Healthy fake API; tests override individual endpoints."""
    return FakeStarlightApi()


@pytest.fixture
def pauses() -> list[float]:
    """Records think-time requested by the flow instead of sleeping."""
    return []


@pytest.fixture
def flow_factory(api, metrics, pauses) -> Callable[[RunConfig], BusinessPlanFlow]:
    """Build a flow for *config* bound to the fake API and shared metrics."""

    def _create_flow(config: RunConfig, **kwargs: Any) -> BusinessPlanFlow:
        executor = StepExecutor(
            api,
            metrics,
            config.api_base_url,
            user_id=1,
            clock=TickingClock(step=0.01),
        )
        return BusinessPlanFlow(executor, metrics, config, pause=pauses.append, **kwargs)

    return _create_flow

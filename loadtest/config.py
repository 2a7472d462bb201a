"""
Run configuration for the business-plan load test.

Values are read from environment variables with sensible defaults.
Nothing here raises for bad environment input: an unparsable number falls
back to its default, and a missing thresholds file falls back to the
packaged one with a warning.  An unknown ``TEST_MODE`` runs the smoke
profile, never the load profile: only ``load`` itself starts a load run.

Two load profiles are available:

- ``smoke``: one virtual user, one iteration, ten-minute ceiling.
- ``load``: ramp to 10 users, hold, spike to 30, hold, ramp down.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from loadtest.metrics import Threshold

logger = logging.getLogger(__name__)

# Packaged thresholds live next to this module.
PACKAGE_DIR = Path(__file__).resolve().parent
DEFAULT_THRESHOLDS_FILE = PACKAGE_DIR / "thresholds.yml"

DEFAULT_BASE_URL = "http://localhost:8080"
API_VERSION_PREFIX = "/v1"


@dataclass(frozen=True)
class Credentials:
    """Login credentials shared by every virtual user."""

    email: str
    password: str


@dataclass(frozen=True)
class Stage:
    """One ramping stage: reach ``target`` users over ``duration`` seconds."""

    duration: float
    target: int


@dataclass(frozen=True)
class LoadProfile:
    """
    Shape of a run.

    Attributes:
        name: Profile name (``smoke`` or ``load``).
        stages: Ramping stages; the run ends when the last stage ends.
        iterations: Total iterations for the whole run, or ``None`` for
            unbounded (stage-driven) runs.
        max_duration: Hard ceiling for the whole run, in seconds.
        max_iteration_duration: Ceiling for one iteration, in seconds.
    """

    name: str
    stages: tuple[Stage, ...]
    iterations: int | None
    max_duration: float
    max_iteration_duration: float = 600.0


SMOKE_PROFILE = LoadProfile(
    name="smoke",
    stages=(Stage(duration=0, target=1), Stage(duration=600, target=1)),
    iterations=1,
    max_duration=600,
)

LOAD_PROFILE = LoadProfile(
    name="load",
    stages=(
        Stage(duration=60, target=10),   # ramp-up
        Stage(duration=180, target=10),  # steady
        Stage(duration=60, target=30),   # spike
        Stage(duration=120, target=30),  # hold spike
        Stage(duration=60, target=0),    # ramp-down
    ),
    iterations=None,
    max_duration=480,
)

profiles = {
    "smoke": SMOKE_PROFILE,
    "load": LOAD_PROFILE,
    "default": SMOKE_PROFILE,
}


@dataclass(frozen=True)
class RunConfig:
    """Immutable settings resolved once at the start of a run."""

    mode: str
    ai_enabled: bool
    base_url: str
    credentials: Credentials
    profile: LoadProfile
    thresholds: tuple[Threshold, ...] = field(default_factory=tuple)
    request_timeout: float = 30.0
    scoring_timeout: float = 60.0
    report_dir: Path = Path(".")

    @property
    def api_base_url(self) -> str:
        return f"{self.base_url}{API_VERSION_PREFIX}"


def get_profile(mode: str | None) -> LoadProfile:
    """Return the load profile for *mode*, falling back to smoke."""
    if mode is None:
        return profiles["default"]
    return profiles.get(mode.strip().lower(), profiles["default"])


def target_users(stages: tuple[Stage, ...], run_time: float) -> int | None:
    """
    Return the user count the stages ask for at *run_time* seconds.

    Within a stage the count moves linearly from the previous stage's
    target to this stage's target.  Returns ``None`` once every stage has
    elapsed, which is how a Locust shape signals the end of the test.

    Args:
        stages: Ordered ramping stages.
        run_time: Seconds since the run started.

    Returns:
        The interpolated user count, or ``None`` after the last stage.
    """
    previous_target = 0
    elapsed = 0.0
    for stage in stages:
        if run_time < elapsed + stage.duration:
            progress = (run_time - elapsed) / stage.duration
            return round(previous_target + (stage.target - previous_target) * progress)
        elapsed += stage.duration
        previous_target = stage.target
    return None


def load_thresholds(path: Path, *, ai_enabled: bool) -> tuple[Threshold, ...]:
    """
    Read threshold expressions from a YAML file.

    The file has a ``base`` mapping applied to every run and an ``ai``
    mapping that only applies when AI steps are enabled.  Each mapping
    is ``metric name -> list of expressions``.

    Raises:
        ValueError: If the file is not a mapping or an expression is invalid.
    """
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Thresholds file must be a mapping: {path}")

    sections = ["base"]
    if ai_enabled:
        sections.append("ai")

    thresholds: list[Threshold] = []
    for section in sections:
        entries = data.get(section) or {}
        if not isinstance(entries, dict):
            raise ValueError(f"Thresholds section '{section}' must be a mapping")
        for metric_name, expressions in entries.items():
            if isinstance(expressions, str):
                expressions = [expressions]
            for expression in expressions:
                thresholds.append(Threshold.parse(metric_name, expression))
    return tuple(thresholds)


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    return raw.strip().lower() == "true"


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    try:
        value = float(env.get(name, default))
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def resolve(env: Mapping[str, str] | None = None) -> RunConfig:
    """
    Build the run configuration from environment variables.

    Args:
        env: Mapping to read from.  If None, uses ``os.environ``.

    Returns:
        A fully populated :class:`RunConfig`.
    """
    if env is None:
        env = os.environ

    mode_name = (env.get("TEST_MODE") or "smoke").strip().lower()
    profile = get_profile(mode_name)
    ai_enabled = _env_bool(env, "ENABLE_AI")

    base_url = (env.get("BASE_URL") or DEFAULT_BASE_URL).strip().rstrip("/")
    if not base_url:
        base_url = DEFAULT_BASE_URL

    credentials = Credentials(
        email=env.get("LOADTEST_EMAIL", "loadtest@starlight.example"),
        password=env.get("LOADTEST_PASSWORD", "LoadTest123!"),
    )

    thresholds_file = Path(env.get("THRESHOLDS_FILE") or DEFAULT_THRESHOLDS_FILE)
    if not thresholds_file.is_file():
        logger.warning(
            "Thresholds file %s not found, using %s", thresholds_file, DEFAULT_THRESHOLDS_FILE
        )
        thresholds_file = DEFAULT_THRESHOLDS_FILE

    return RunConfig(
        mode=profile.name,
        ai_enabled=ai_enabled,
        base_url=base_url,
        credentials=credentials,
        profile=profile,
        thresholds=load_thresholds(thresholds_file, ai_enabled=ai_enabled),
        request_timeout=_env_float(env, "HTTP_TIMEOUT_SECONDS", 30.0),
        scoring_timeout=_env_float(env, "SCORING_TIMEOUT_SECONDS", 60.0),
        report_dir=Path(env.get("REPORT_DIR") or "."),
    )

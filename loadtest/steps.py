"""
Single-request step executor.

Each step of the business-plan flow is one HTTP request plus a list of
named expectations (status code, body shape, latency).  The executor sends
the request through the Locust client with ``catch_response=True`` so the
step's verdict is also what Locust's own statistics show, then folds the
request into the run-wide ``http_req_failed`` rate and writes one log
line.  Request durations are left to Locust's own statistics.

Nothing in here raises for a bad response: transport errors, timeouts and
non-JSON bodies all come back as a failed :class:`StepOutcome`.

Key Concepts Demonstrated:
- ``catch_response=True`` for in-band response validation
- Named expectations so a failure log says *which* check broke
- Guarded parsing via :func:`loadtest.responses.safe_json`
"""

from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import requests

from loadtest.metrics import HTTP_REQ_FAILED, MetricsCollector
from loadtest.responses import Decoder, safe_json

logger = logging.getLogger(__name__)

BODY_SNIPPET_LIMIT = 300
USER_AGENT = "locust-load-test"


@dataclass(frozen=True)
class StepResponse:
    """What an expectation gets to look at."""

    status: int
    duration_ms: float
    text: str
    body: dict[str, Any]


@dataclass(frozen=True)
class Expectation:
    name: str
    check: Callable[[StepResponse], bool]
    statuses: tuple[int, ...] = ()

    def holds(self, response: StepResponse) -> bool:
        try:
            return bool(self.check(response))
        except (KeyError, TypeError, ValueError, AttributeError):
            return False


@dataclass(frozen=True)
class StepOutcome:
    """
    Result of one executed step.

    Attributes:
        success: True only if every expectation held.
        http_status: Response status, or ``0`` if no response arrived.
        duration_ms: Wall-clock time of the request.
        body_snippet: Truncated body text, kept for failed steps only.
        body: Parsed JSON body (``{}`` when not JSON).
        failed_checks: Names of the expectations that did not hold.
    """

    success: bool
    http_status: int
    duration_ms: float
    body_snippet: str | None = None
    body: dict[str, Any] = field(default_factory=dict)
    failed_checks: tuple[str, ...] = ()


def status_in(*codes: int) -> Expectation:
    label = "/".join(str(code) for code in codes)
    return Expectation(f"status {label}", lambda r: r.status in codes, statuses=codes)


def faster_than(limit_ms: float) -> Expectation:
    return Expectation(f"< {limit_ms:g}ms", lambda r: r.duration_ms < limit_ms)


def decodes(name: str, decoder: Decoder) -> Expectation:
    """Expectation that holds when *decoder* accepts the parsed body."""
    return Expectation(name, lambda r: decoder(r.body).ok)


def snippet(text: str | None, limit: int = BODY_SNIPPET_LIMIT) -> str:
    """Collapse whitespace and truncate *text* for log output."""
    return re.sub(r"\s+", " ", (text or "")[:limit])


def auth_header(token: str) -> dict[str, str]:
    """Bearer auth headers for JSON requests."""
    return {
        "Authorization": f"Bearer {token}",
        "Content-Type": "application/json",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    }


def multipart_header(token: str) -> dict[str, str]:
    """
    Bearer auth headers for multipart uploads.

    ``Content-Type`` is left out so that requests can add the multipart
    boundary itself.
    """
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
        "User-Agent": USER_AGENT,
    }


class StepExecutor:
    """
    Issues flow steps against the API for one virtual user.

    Args:
        client: The Locust ``HttpSession`` (``self.client`` of a user).
        metrics: Run-wide metrics collector.
        api_base_url: Absolute base URL including the version prefix.
        user_id: Virtual-user number used in log prefixes.
        clock: Monotonic clock in seconds.
    """

    def __init__(
        self,
        client: Any,
        metrics: MetricsCollector,
        api_base_url: str,
        *,
        user_id: int = 0,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self.client = client
        self.metrics = metrics
        self.api_base_url = api_base_url.rstrip("/")
        self.user_id = user_id
        self.iteration = 0
        self.clock = clock

    @property
    def prefix(self) -> str:
        return f"[VU {self.user_id}][ITER {self.iteration}]"

    def execute(
        self,
        step: str,
        method: str,
        path: str,
        *,
        expectations: Iterable[Expectation],
        name: str | None = None,
        json: Any = None,
        files: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> StepOutcome:
        """
        Send exactly one request and judge it against *expectations*.

        Args:
            step: Label used in logs (e.g. ``01_Login``).
            method: HTTP method.
            path: Path relative to the API base URL.
            expectations: Checks that must all hold for success.
            name: Locust statistics name; defaults to *step*.
            json: JSON body, if any.
            files: Multipart files, if any.
            headers: Request headers.
            timeout: Request timeout in seconds.

        Returns:
            The :class:`StepOutcome` for this request.
        """
        expectations = list(expectations)
        url = f"{self.api_base_url}{path}"
        kwargs: dict[str, Any] = {"headers": headers or {}, "name": name or step}
        if json is not None:
            kwargs["json"] = json
        if files is not None:
            kwargs["files"] = files
        if timeout is not None:
            kwargs["timeout"] = timeout

        started = self.clock()
        try:
            with self.client.request(method, url, catch_response=True, **kwargs) as response:
                duration_ms = (self.clock() - started) * 1000.0
                view = StepResponse(
                    status=int(response.status_code or 0),
                    duration_ms=duration_ms,
                    text=response.text or "",
                    body=safe_json(response),
                )
                failed = tuple(e.name for e in expectations if not e.holds(view))
                if failed:
                    response.failure(f"{step}: failed {', '.join(failed)}")
                else:
                    response.success()
        except requests.RequestException as exc:
            duration_ms = (self.clock() - started) * 1000.0
            view = StepResponse(status=0, duration_ms=duration_ms, text=str(exc), body={})
            failed = tuple(e.name for e in expectations if not e.holds(view)) or ("transport",)

        outcome = StepOutcome(
            success=not failed,
            http_status=view.status,
            duration_ms=view.duration_ms,
            body_snippet=snippet(view.text) if failed else None,
            body=view.body,
            failed_checks=failed,
        )
        self._record(outcome, expectations)
        self.log(step, outcome)
        return outcome

    def _record(self, outcome: StepOutcome, expectations: list[Expectation]) -> None:
        # k6 meaning: no response, or an error status the step did not accept
        # (e.g. a 404 lookup is not a failed request).
        accepted = {code for e in expectations for code in e.statuses}
        status = outcome.http_status
        self.metrics.add_rate(
            HTTP_REQ_FAILED,
            status == 0 or (status >= 400 and status not in accepted),
        )

    def log(self, step: str, outcome: StepOutcome) -> None:
        if outcome.success:
            logger.info(
                "%s[%s] OK status=%s, duration=%.0fms",
                self.prefix, step, outcome.http_status, outcome.duration_ms,
            )
        else:
            logger.error(
                "%s[%s] FAILED status=%s, duration=%.0fms, checks=%s, body=%s",
                self.prefix,
                step,
                outcome.http_status,
                outcome.duration_ms,
                ", ".join(outcome.failed_checks),
                outcome.body_snippet,
            )

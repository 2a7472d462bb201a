"""Fake Starlight API used by the load-test unit tests.

:class:`FakeStarlightApi` stands in for Locust's ``HttpSession``: it
accepts the same ``request(method, url, catch_response=True, ...)`` call,
records every request, and answers with :class:`FakeResponse` objects that
support the ``success()`` / ``failure()`` protocol.  By default it behaves
like a healthy server; individual endpoints can be overridden with a fixed
response, a callable, or an exception to raise.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

DEFAULT_PLAN_ID = 42
DEFAULT_ACCESS_TOKEN = "access-token"
DEFAULT_REFRESH_TOKEN = "refresh-token"
API_PREFIX = "/v1"


class FakeResponse:
    """Minimal stand-in for Locust's ``ResponseContextManager``."""

    def __init__(self, status_code: int = 200, body: Any = None, text: str | None = None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text
        self.verdict: str | None = None

    def json(self) -> Any:
        return json.loads(self.text)

    def success(self) -> None:
        self.verdict = "success"

    def failure(self, message: str) -> None:
        self.verdict = f"failure: {message}"

    def __enter__(self) -> FakeResponse:
        return self

    def __exit__(self, *_exc: Any) -> bool:
        return False


@dataclass
class RecordedCall:
    method: str
    path: str
    kwargs: dict[str, Any]
    response: FakeResponse | None = None

    @property
    def route(self) -> str:
        """Path without the query string."""
        return self.path.split("?", 1)[0]


def success(data: Any = None) -> dict[str, Any]:
    return {"result": "SUCCESS", "data": data}


Handler = Callable[[RecordedCall], FakeResponse]


@dataclass
class FakeStarlightApi:
    """
    Scripted business-plan API.

    Attributes:
        plan_id: Identifier returned by plan creation.
        experts: Expert directory returned by ``GET /experts``.
        requested: Expert ids already requested for the plan; ``None``
            makes the lookup answer 404.
        overrides: ``(METHOD, path)`` → response, exception or handler.
            ``path`` is matched first with, then without, the query string.
    """

    plan_id: Any = DEFAULT_PLAN_ID
    experts: list[dict[str, Any]] = field(
        default_factory=lambda: [{"id": 1}, {"id": 2}, {"id": 3}]
    )
    requested: list[Any] | None = None
    overrides: dict[tuple[str, str], Any] = field(default_factory=dict)
    calls: list[RecordedCall] = field(default_factory=list)

    def override(self, method: str, path: str, outcome: Any) -> None:
        self.overrides[(method.upper(), path)] = outcome

    # -----------------------------------------------------------------
    # HttpSession surface
    # -----------------------------------------------------------------

    def request(self, method: str, url: str, catch_response: bool = False, **kwargs: Any) -> FakeResponse:
        parts = urlsplit(url)
        path = parts.path
        if path.startswith(API_PREFIX):
            path = path[len(API_PREFIX):]
        if parts.query:
            path = f"{path}?{parts.query}"

        call = RecordedCall(method.upper(), path, kwargs)
        self.calls.append(call)

        outcome = self.overrides.get((call.method, call.path))
        if outcome is None:
            outcome = self.overrides.get((call.method, call.route))
        if outcome is None:
            outcome = self._default

        if isinstance(outcome, BaseException):
            raise outcome
        response = outcome(call) if callable(outcome) else outcome
        call.response = response
        return response

    # -----------------------------------------------------------------
    # Inspection helpers
    # -----------------------------------------------------------------

    def paths(self) -> list[str]:
        return [call.route for call in self.calls]

    def calls_to(self, method: str, route: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method.upper() and c.route == route]

    # -----------------------------------------------------------------
    # Healthy-server behaviour
    # -----------------------------------------------------------------

    def _default(self, call: RecordedCall) -> FakeResponse:
        route = call.route
        plan = f"/business-plans/{self.plan_id}"

        if call.method == "POST" and route == "/auth/sign-in":
            return FakeResponse(200, success({
                "accessToken": DEFAULT_ACCESS_TOKEN,
                "refreshToken": DEFAULT_REFRESH_TOKEN,
            }))
        if call.method == "GET" and route == "/business-plans":
            return FakeResponse(200, success([]))
        if call.method == "POST" and route == "/business-plans":
            return FakeResponse(201, success({"id": self.plan_id}))
        if call.method == "GET" and route == f"{plan}/titles":
            return FakeResponse(200, success({"title": "draft"}))
        if call.method == "PATCH" and route == plan:
            return FakeResponse(200, success(None))
        if call.method == "POST" and route == f"{plan}/subsections/check-and-update":
            return FakeResponse(200, success({"checks": [True] * 5}))
        if call.method == "POST" and route == f"{plan}/subsections":
            payload = call.kwargs.get("json") or {}
            return FakeResponse(200, success({"subSectionType": payload.get("subSectionType")}))
        if call.method == "GET" and route.startswith(f"{plan}/subsections/"):
            subsection_type = route.rsplit("/", 1)[-1]
            return FakeResponse(200, success({"content": {"subSectionType": subsection_type}}))
        if call.method == "POST" and route == f"/ai-reports/evaluation/{self.plan_id}":
            return FakeResponse(200, success({"score": 87}))
        if call.method == "GET" and route == "/experts":
            return FakeResponse(200, success({"content": self.experts}))
        if call.method == "GET" and route == "/expert-applications":
            if self.requested is None:
                return FakeResponse(404, {"result": "FAIL", "message": "not found"})
            return FakeResponse(200, success(self.requested))
        if call.method == "POST" and route.startswith("/expert-applications/") and route.endswith("/request"):
            return FakeResponse(200, success(None))
        return FakeResponse(404, {"result": "FAIL", "message": f"no route {call.method} {route}"})


class TickingClock:
    """Clock that advances by ``step`` seconds on every read."""

    def __init__(self, step: float = 0.01, start: float = 0.0):
        self.now = start
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current

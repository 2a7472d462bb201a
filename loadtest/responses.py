"""
Typed decoding of Starlight API response bodies.

The API wraps most payloads as ``{"result": "SUCCESS", "data": {...}}``
but is not entirely consistent: a created plan's identifier may appear as
``businessPlanId``, ``id`` or ``planId``, and the expert directory may be
paged (``data.content``) or a bare list.  Each decoder here turns a parsed
body into either :class:`Decoded` or :class:`DecodeError` so that the flow
never has to chain ``.get()`` calls and guess why a value is missing.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

T = TypeVar("T")

SUCCESS = "SUCCESS"

MISSING_FIELD = "missing-field"
WRONG_TYPE = "wrong-type"

PLAN_ID_FIELDS = ("businessPlanId", "id", "planId")


@dataclass(frozen=True)
class Decoded(Generic[T]):
    value: T

    @property
    def ok(self) -> bool:
        return True


@dataclass(frozen=True)
class DecodeError:
    reason: str
    field: str

    @property
    def ok(self) -> bool:
        return False

    def __str__(self) -> str:
        return f"{self.reason}: {self.field}"


Result = Union[Decoded[T], DecodeError]
Decoder = Callable[[dict[str, Any]], "Result[Any]"]


@dataclass(frozen=True)
class Tokens:
    access_token: str
    refresh_token: str


def safe_json(response: Any) -> dict[str, Any]:
    """
    Return response JSON as dict, or an empty dict if parsing fails.

    Locust responses may contain non-JSON bodies (e.g. on 5xx errors or
    gateway timeouts); this keeps a ``ValueError`` from escaping into the
    flow.
    """
    try:
        data = response.json()
    except ValueError:
        return {}

    if isinstance(data, dict):
        return data
    return {}


def _require(body: dict[str, Any], key: str, expected: type, path: str) -> Result[Any]:
    value = body.get(key)
    if value is None:
        return DecodeError(MISSING_FIELD, path)
    if not isinstance(value, expected):
        return DecodeError(WRONG_TYPE, path)
    return Decoded(value)


def _success_data(body: dict[str, Any]) -> Result[Any]:
    result = decode_result(body)
    if not result.ok:
        return result
    if "data" not in body:
        return DecodeError(MISSING_FIELD, "data")
    return Decoded(body["data"])


def decode_result(body: dict[str, Any]) -> Result[str]:
    """``result`` must be ``SUCCESS``."""
    result = _require(body, "result", str, "result")
    if not result.ok:
        return result
    if result.value != SUCCESS:
        return DecodeError(WRONG_TYPE, "result")
    return result


def decode_list(body: dict[str, Any]) -> Result[Any]:
    """``result`` is ``SUCCESS`` and a ``data`` key is present (any value)."""
    return _success_data(body)


def decode_tokens(body: dict[str, Any]) -> Result[Tokens]:
    """Sign-in response must carry both an access and a refresh token."""
    data = _success_data(body)
    if not data.ok:
        return data
    if not isinstance(data.value, dict):
        return DecodeError(WRONG_TYPE, "data")

    access = _require(data.value, "accessToken", str, "data.accessToken")
    if not access.ok:
        return access
    refresh = _require(data.value, "refreshToken", str, "data.refreshToken")
    if not refresh.ok:
        return refresh
    if not access.value:
        return DecodeError(MISSING_FIELD, "data.accessToken")
    if not refresh.value:
        return DecodeError(MISSING_FIELD, "data.refreshToken")
    return Decoded(Tokens(access_token=access.value, refresh_token=refresh.value))


def decode_plan_id(body: dict[str, Any]) -> Result[Any]:
    """
    Extract a created plan's identifier.

    Looks inside ``data`` when present (falling back to the top level) and
    returns the first non-null of ``businessPlanId``, ``id``, ``planId``.
    """
    container = body.get("data") or body
    if not isinstance(container, dict):
        return DecodeError(WRONG_TYPE, "data")

    for field_name in PLAN_ID_FIELDS:
        value = container.get(field_name)
        if value is None or value == "":
            continue
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            return DecodeError(WRONG_TYPE, field_name)
        return Decoded(value)
    return DecodeError(MISSING_FIELD, "|".join(PLAN_ID_FIELDS))


def decode_saved_subsection(subsection_type: str) -> Decoder:
    """Save response must echo ``data.subSectionType``."""

    def _decode(body: dict[str, Any]) -> Result[str]:
        data = _success_data(body)
        if not data.ok:
            return data
        if not isinstance(data.value, dict):
            return DecodeError(WRONG_TYPE, "data")
        echoed = _require(data.value, "subSectionType", str, "data.subSectionType")
        if not echoed.ok:
            return echoed
        if echoed.value != subsection_type:
            return DecodeError(WRONG_TYPE, "data.subSectionType")
        return echoed

    return _decode


def decode_fetched_subsection(subsection_type: str) -> Decoder:
    """Get response must carry ``data.content.subSectionType``."""

    def _decode(body: dict[str, Any]) -> Result[str]:
        data = _success_data(body)
        if not data.ok:
            return data
        if not isinstance(data.value, dict):
            return DecodeError(WRONG_TYPE, "data")
        content = _require(data.value, "content", dict, "data.content")
        if not content.ok:
            return content
        echoed = _require(content.value, "subSectionType", str, "data.content.subSectionType")
        if not echoed.ok:
            return echoed
        if echoed.value != subsection_type:
            return DecodeError(WRONG_TYPE, "data.content.subSectionType")
        return echoed

    return _decode


def decode_experts(body: dict[str, Any]) -> list[dict[str, Any]]:
    """
    Return the expert directory in server order.

    The listing may be paged (``data.content``) or a plain list under
    ``data``; anything else yields an empty directory.
    """
    data = body.get("data")
    if isinstance(data, dict):
        data = data.get("content")
    if not isinstance(data, list):
        return []
    return [item for item in data if isinstance(item, dict)]


def expert_id(expert: dict[str, Any]) -> Any:
    """Identifier of a directory entry (``id`` first, then ``expertId``)."""
    value = expert.get("id")
    if value is None:
        value = expert.get("expertId")
    return value


def decode_requested_expert_ids(body: dict[str, Any]) -> set[Any]:
    """
    Return the ids of experts already requested for a plan.

    Items may be bare ids or objects carrying ``expertId`` or ``id``.
    """
    items = body.get("data")
    if not isinstance(items, list):
        return set()

    requested = set()
    for item in items:
        if isinstance(item, (int, str)) and not isinstance(item, bool):
            requested.add(item)
        elif isinstance(item, dict):
            value = item.get("expertId")
            if value is None:
                value = item.get("id")
            if value is not None:
                requested.add(value)
    return requested

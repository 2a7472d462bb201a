"""
Request payloads for the business-plan flow.

Subsection contents are fixed and loaded once from
``loadtest/data/subsections.yml``; the business-plan create body is
randomised a little on every call so that the server does not see the
exact same record twice.
"""

from __future__ import annotations

import copy
import random
import time
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

DATA_FILE = Path(__file__).resolve().parent / "data" / "subsections.yml"

# Save/get order used by every iteration.
SUBSECTION_TYPES = (
    "OVERVIEW_BASIC",
    "PROBLEM_BACKGROUND",
    "PROBLEM_PURPOSE",
    "PROBLEM_MARKET",
    "FEASIBILITY_STRATEGY",
    "FEASIBILITY_MARKET",
    "GROWTH_MODEL",
    "GROWTH_FUNDING",
    "GROWTH_ENTRY",
    "TEAM_FOUNDER",
    "TEAM_MEMBERS",
)

PLAN_TITLE = "Starlight load test business plan"


@lru_cache(maxsize=1)
def _subsection_table() -> dict[str, dict[str, Any]]:
    with DATA_FILE.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}

    missing = [name for name in SUBSECTION_TYPES if name not in data]
    if missing:
        raise ValueError(f"Subsection fixtures missing: {', '.join(missing)}")

    return {name: data[name] for name in SUBSECTION_TYPES}


def subsection_payload(subsection_type: str) -> dict[str, Any]:
    """
    Return the save body for one subsection type.

    Args:
        subsection_type: One of :data:`SUBSECTION_TYPES`.

    Returns:
        A deep copy of the fixture, safe for the caller to modify.

    Raises:
        KeyError: If *subsection_type* is not a known type.
    """
    return copy.deepcopy(_subsection_table()[subsection_type])


def business_plan_payload(user_id: int, iteration: int) -> dict[str, Any]:
    """Build a create-plan body that is unique per user and iteration."""
    ts = int(time.time() * 1000)
    return {
        "title": f"BusinessPlan_{ts}_{user_id}_{iteration}",
        "businessType": "Technology start-up",
        "description": "A business offering an innovative AI-based solution",
        "targetMarket": "B2B SaaS",
        "fundingAmount": random.randint(100_000, 1_099_999),
        "businessPeriod": "3 years",
    }


def title_payload() -> dict[str, str]:
    return {"title": PLAN_TITLE}


def expert_request_file() -> dict[str, tuple[str, bytes, str]]:
    """Multipart ``files`` mapping with the dummy plan PDF."""
    return {"file": ("business-plan.pdf", b"dummy pdf content", "application/pdf")}

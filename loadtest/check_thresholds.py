"""
Validate a run's ``summary.json`` against threshold configuration.

The Locust run already fails itself when a threshold is breached, but CI
jobs often want to re-check a stored summary (or check it against a
stricter file) without re-running the load.  This script reads the
``metrics`` block of ``summary.json``, evaluates every threshold from
:file:`thresholds.yml` and prints a table.

Exit codes follow a three-state convention so that CI can distinguish
"thresholds breached" from "script crashed":

- ``0``: all thresholds passed
- ``1``: at least one threshold was breached
- ``2``: the script itself failed (missing file, bad YAML, etc.)
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import Any

from loadtest.config import DEFAULT_THRESHOLDS_FILE, load_thresholds
from loadtest.metrics import ThresholdResult, evaluate_thresholds, thresholds_passed

# Three-state exit codes so CI can tell "test failed" from "script crashed".
EXIT_PASS = 0
EXIT_THRESHOLD_BREACH = 1
EXIT_SCRIPT_ERROR = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the threshold checker."""
    parser = argparse.ArgumentParser(
        description="Check a load-test summary.json against performance thresholds."
    )
    parser.add_argument(
        "--summary",
        required=True,
        type=Path,
        help="Path to summary.json written at the end of a run",
    )
    parser.add_argument(
        "--thresholds",
        type=Path,
        default=DEFAULT_THRESHOLDS_FILE,
        help="Path to thresholds YAML file",
    )
    parser.add_argument(
        "--ai",
        action="store_true",
        default=None,
        help="Also apply AI-step thresholds (default: read from the summary)",
    )
    return parser.parse_args(argv)


def _load_summary(path: Path) -> dict[str, Any]:
    """
    Read the summary JSON and return it.

    Raises:
        ValueError: If the file has no ``metrics`` mapping.
    """
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)

    if not isinstance(data, dict) or not isinstance(data.get("metrics"), dict):
        raise ValueError("Summary file must contain a 'metrics' mapping")
    return data


def _print_summary(results: list[ThresholdResult], passed: bool) -> None:
    """Print a human-readable results table to stdout for CI logs."""
    print("Performance Threshold Check")
    print("-" * 78)
    print(f"{'Metric':<30}{'Expression':<16}{'Actual':>14}{'Status':>12}")
    print("-" * 78)
    for result in results:
        actual = "n/a" if result.observed is None else f"{result.observed:.4f}"
        status = "PASS" if result.passed else "FAIL"
        print(
            f"{result.threshold.metric:<30}{result.threshold.expression:<16}"
            f"{actual:>14}{status:>12}"
        )
    print("-" * 78)
    print(f"Overall: {'PASS' if passed else 'FAIL'}")


def main(argv: list[str] | None = None) -> int:
    """
    Entry point: load thresholds and summary, compare, and print results.

    Returns:
        ``EXIT_PASS`` (0) if all thresholds are met,
        ``EXIT_THRESHOLD_BREACH`` (1) if any are exceeded, or
        ``EXIT_SCRIPT_ERROR`` (2) on unexpected failures.
    """
    args = parse_args(argv)

    try:
        summary = _load_summary(args.summary)
        ai_enabled = args.ai if args.ai is not None else bool(summary.get("ai_enabled"))
        thresholds = load_thresholds(args.thresholds, ai_enabled=ai_enabled)

        results = evaluate_thresholds(summary["metrics"], thresholds)
        passed = thresholds_passed(results)
        _print_summary(results, passed)
        return EXIT_PASS if passed else EXIT_THRESHOLD_BREACH
    except Exception as exc:
        print(f"Threshold check failed: {exc}", file=sys.stderr)
        return EXIT_SCRIPT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())

"""Benchmark comparison between a base run and a candidate run.

Merges two :class:`~prbench.results.BenchmarkResult` documents into a
:class:`ComparisonResult`: one row per test, with formatted throughput
for both sides, the signed delta, the relative change and a badge tier.
Suites and tests present on only one side are kept; the missing side
shows ``[SKIP]``.
"""

from __future__ import annotations

import enum
import json
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from prbench.formatting import format_number
from prbench.results import BenchmarkResult, Suite, Test

SKIP_SENTINEL = "[SKIP]"
NO_DIFF = "-"


# ---------------------------------------------------------------------------
# Badge tiers
# ---------------------------------------------------------------------------


class BadgeTier(enum.Enum):
    """Visual category of a relative throughput change."""

    BEST_IMPROVEMENT = "best-improvement"
    IMPROVEMENT = "improvement"
    NEUTRAL = "neutral"
    REGRESSION = "regression"
    MAJOR_REGRESSION = "major-regression"
    SKIPPED = "skipped"

    @property
    def color(self) -> str:
        """Badge colour name understood by shields.io."""
        return _TIER_COLORS[self]


_TIER_COLORS: dict[BadgeTier, str] = {
    BadgeTier.BEST_IMPROVEMENT: "brightgreen",
    BadgeTier.IMPROVEMENT: "green",
    BadgeTier.NEUTRAL: "yellow",
    BadgeTier.REGRESSION: "orange",
    BadgeTier.MAJOR_REGRESSION: "red",
    BadgeTier.SKIPPED: "lightgrey",
}


def badge_tier(percent: float) -> BadgeTier:
    """Map a percentage change to a badge tier.

    Thresholds, covering the whole real line::

        percent >  20          best-improvement
         5 < percent <= 20     improvement
        -5 <= percent <= 5     neutral
        -20 <= percent < -5    regression
        percent < -20          major-regression
    """
    if percent > 20:
        return BadgeTier.BEST_IMPROVEMENT
    if percent > 5:
        return BadgeTier.IMPROVEMENT
    if percent >= -5:
        return BadgeTier.NEUTRAL
    if percent >= -20:
        return BadgeTier.REGRESSION
    return BadgeTier.MAJOR_REGRESSION


# ---------------------------------------------------------------------------
# Comparison result structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TestComparison:
    """One test row of the comparison."""

    __test__ = False  # not a pytest test class

    name: str
    skipped: bool
    master_rps: str
    pr_rps: str
    diff: str
    percentage: str
    badge: BadgeTier

    @property
    def comparable(self) -> bool:
        """True if both sides had a measurement to compare."""
        return self.badge is not BadgeTier.SKIPPED

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "name": self.name,
            "skipped": self.skipped,
            "master_rps": self.master_rps,
            "pr_rps": self.pr_rps,
            "diff": self.diff,
            "percentage": self.percentage,
            "badge": self.badge.value,
        }


@dataclass(frozen=True)
class SuiteComparison:
    """Comparison of all tests in one suite."""

    name: str
    tests: tuple[TestComparison, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {"name": self.name, "tests": [t.to_dict() for t in self.tests]}


@dataclass(frozen=True)
class ComparisonResult:
    """Complete comparison between a base and a candidate run.

    ``master_json`` and ``pr_json`` are the raw documents serialized
    verbatim for the report's detail sections.
    """

    name: str
    suites: tuple[SuiteComparison, ...] = ()
    master_json: str = ""
    pr_json: str = ""

    def count_tiers(self) -> dict[BadgeTier, int]:
        """Number of test rows per badge tier (tiers with no rows omitted)."""
        counts: dict[BadgeTier, int] = {}
        for suite in self.suites:
            for test in suite.tests:
                counts[test.badge] = counts.get(test.badge, 0) + 1
        return counts

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {
            "name": self.name,
            "suites": [s.to_dict() for s in self.suites],
            "master_json": self.master_json,
            "pr_json": self.pr_json,
        }


# ---------------------------------------------------------------------------
# Comparison logic
# ---------------------------------------------------------------------------


def _unique_names(items: Iterable[Suite | Test]) -> list[str]:
    """Names in first-seen order with duplicates dropped."""
    return list(dict.fromkeys(item.name for item in items))


def compare_test(name: str, base: Test | None, candidate: Test | None) -> TestComparison:
    """Compare one test between the two runs.

    Either side may be None when the test exists only in the other run.
    """
    skipped = base is not None and candidate is not None and base.skipped and candidate.skipped

    master_rps = base.rps if base is not None else None
    pr_rps = candidate.rps if candidate is not None else None

    master_text = format_number(master_rps) if master_rps is not None else SKIP_SENTINEL
    pr_text = format_number(pr_rps) if pr_rps is not None else SKIP_SENTINEL

    # A zero base has no meaningful relative change.
    if master_rps is None or pr_rps is None or master_rps == 0:
        return TestComparison(
            name=name,
            skipped=skipped,
            master_rps=master_text,
            pr_rps=pr_text,
            diff=NO_DIFF,
            percentage="",
            badge=BadgeTier.SKIPPED,
        )

    percent = (pr_rps - master_rps) * 100.0 / master_rps
    return TestComparison(
        name=name,
        skipped=skipped,
        master_rps=master_text,
        pr_rps=pr_text,
        diff=format_number(pr_rps - master_rps, add_sign=True),
        percentage=format_number(percent, add_sign=True),
        badge=badge_tier(percent),
    )


def compare_suite(name: str, base: Suite | None, candidate: Suite | None) -> SuiteComparison:
    """Compare one suite; either side may be None."""
    base_tests = base.tests if base is not None else ()
    candidate_tests = candidate.tests if candidate is not None else ()

    rows = []
    for test_name in _unique_names([*base_tests, *candidate_tests]):
        rows.append(
            compare_test(
                test_name,
                base.find_test(test_name) if base is not None else None,
                candidate.find_test(test_name) if candidate is not None else None,
            )
        )
    return SuiteComparison(name=name, tests=tuple(rows))


def compare_results(base: BenchmarkResult, candidate: BenchmarkResult) -> ComparisonResult:
    """Compare a base run against a candidate run.

    Suites and tests are listed in order of first appearance, scanning
    the base run before the candidate run. Neither input is modified.

    Args:
        base: Result of the base (master) branch.
        candidate: Result of the pull-request branch.

    Returns:
        ComparisonResult named after the base run.
    """
    suites = []
    for suite_name in _unique_names([*base.suites, *candidate.suites]):
        suites.append(
            compare_suite(
                suite_name,
                base.find_suite(suite_name),
                candidate.find_suite(suite_name),
            )
        )

    return ComparisonResult(
        name=base.name,
        suites=tuple(suites),
        master_json=json.dumps(base.raw, indent=2),
        pr_json=json.dumps(candidate.raw, indent=2),
    )

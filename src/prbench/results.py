"""Benchmark result documents and their validation.

A benchmark suite emits one JSON document per run::

    {
      "name": "Simple example",
      "suites": [
        {
          "name": "String concatenate",
          "tests": [
            {"name": "Concat with '+'", "stat": {"rps": 30556.69, "duration": 5.0, ...}},
            {"name": "Concat with array & join", "skipped": true}
          ]
        }
      ],
      "timestamp": 1491573679617,
      "elapsedMs": 20902
    }

:func:`parse_result` checks the document against this shape and builds
an immutable :class:`BenchmarkResult`. Anything that does not fit raises
:class:`~prbench.errors.SuiteShapeError`; nothing is coerced.
"""

from __future__ import annotations

import copy
import json
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from prbench.errors import SuiteLoadError, SuiteShapeError

_STAT_FIELDS = ("rps", "duration", "cycle", "count", "avg", "percent")


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TestStat:
    """Measurements for one benchmark test."""

    rps: float
    duration: float | None = None
    cycle: int | None = None
    count: int | None = None
    avg: float | None = None
    percent: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {"rps": self.rps}
        for name in _STAT_FIELDS[1:]:
            value = getattr(self, name)
            if value is not None:
                d[name] = value
        d.update(self.extra)
        return d


@dataclass(frozen=True)
class Test:
    """One benchmark test inside a suite."""

    __test__ = False  # not a pytest test class

    name: str
    skipped: bool = False
    stat: TestStat | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @property
    def rps(self) -> float | None:
        """Runs per second, or None when the test has no measurements."""
        return self.stat.rps if self.stat is not None else None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {"name": self.name}
        if self.skipped:
            d["skipped"] = True
        if self.stat is not None:
            d["stat"] = self.stat.to_dict()
        d.update(self.extra)
        return d


@dataclass(frozen=True)
class Suite:
    """A named group of benchmark tests."""

    name: str
    tests: tuple[Test, ...] = ()

    def find_test(self, name: str) -> Test | None:
        """Return the first test called *name*, or None."""
        for test in self.tests:
            if test.name == name:
                return test
        return None

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        return {"name": self.name, "tests": [t.to_dict() for t in self.tests]}


@dataclass(frozen=True)
class BenchmarkResult:
    """The complete output of one benchmark run.

    ``metadata`` holds every top-level key other than ``name`` and
    ``suites`` (timestamp, elapsed time, ...). ``raw`` is a private copy
    of the document as loaded and is kept for audit output.
    """

    name: str
    suites: tuple[Suite, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def find_suite(self, name: str) -> Suite | None:
        """Return the suite called *name*, or None."""
        for suite in self.suites:
            if suite.name == name:
                return suite
        return None

    @property
    def test_count(self) -> int:
        """Total number of tests across all suites."""
        return sum(len(s.tests) for s in self.suites)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dict."""
        d: dict[str, Any] = {
            "name": self.name,
            "suites": [s.to_dict() for s in self.suites],
        }
        d.update(self.metadata)
        return d


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _require_name(data: dict[str, Any], where: str) -> str:
    name = data.get("name")
    if not isinstance(name, str) or not name:
        raise SuiteShapeError(f"{where}: 'name' must be a non-empty string, got {name!r}")
    return name


def _parse_stat(data: Any, where: str) -> TestStat:
    if not isinstance(data, dict):
        raise SuiteShapeError(f"{where}: 'stat' must be an object, got {type(data).__name__}")
    rps = data.get("rps")
    if not _is_number(rps) or math.isnan(rps):
        raise SuiteShapeError(f"{where}: 'stat.rps' must be a number, got {rps!r}")
    if rps < 0:
        raise SuiteShapeError(f"{where}: 'stat.rps' must be >= 0, got {rps!r}")

    known: dict[str, Any] = {}
    for name in _STAT_FIELDS[1:]:
        value = data.get(name)
        if value is not None and not _is_number(value):
            raise SuiteShapeError(f"{where}: 'stat.{name}' must be a number, got {value!r}")
        known[name] = value
    extra = {k: v for k, v in data.items() if k not in _STAT_FIELDS}
    return TestStat(rps=float(rps), extra=extra, **known)


def _parse_test(data: Any, where: str) -> Test:
    if not isinstance(data, dict):
        raise SuiteShapeError(f"{where}: test must be an object, got {type(data).__name__}")
    name = _require_name(data, where)
    where = f"{where} ({name!r})"

    skipped = data.get("skipped", False)
    if not isinstance(skipped, bool):
        raise SuiteShapeError(f"{where}: 'skipped' must be a boolean, got {skipped!r}")

    stat_data = data.get("stat")
    if skipped and stat_data is not None:
        raise SuiteShapeError(f"{where}: skipped test must not have a 'stat'")
    if not skipped and stat_data is None:
        raise SuiteShapeError(f"{where}: test is not skipped but has no 'stat'")
    stat = _parse_stat(stat_data, where) if stat_data is not None else None

    extra = {k: v for k, v in data.items() if k not in ("name", "skipped", "stat")}
    return Test(name=name, skipped=skipped, stat=stat, extra=extra)


def _parse_suite(data: Any, where: str) -> Suite:
    if not isinstance(data, dict):
        raise SuiteShapeError(f"{where}: suite must be an object, got {type(data).__name__}")
    name = _require_name(data, where)
    tests_data = data.get("tests", [])
    if not isinstance(tests_data, list):
        raise SuiteShapeError(f"{where} ({name!r}): 'tests' must be a list")
    tests = tuple(
        _parse_test(t, f"suite {name!r} test #{i}") for i, t in enumerate(tests_data)
    )
    return Suite(name=name, tests=tests)


def parse_result(document: Any) -> BenchmarkResult:
    """Validate a decoded result document and build a BenchmarkResult.

    The input is deep-copied before anything is kept, so later changes
    to *document* do not leak into the result.

    Raises:
        SuiteShapeError: If the document does not have the expected shape.
    """
    if not isinstance(document, dict):
        raise SuiteShapeError(
            f"Result document must be a JSON object, got {type(document).__name__}"
        )
    raw = copy.deepcopy(document)
    name = _require_name(raw, "result")

    suites_data = raw.get("suites")
    if not isinstance(suites_data, list):
        raise SuiteShapeError(f"result {name!r}: 'suites' must be a list")

    suites: list[Suite] = []
    seen: set[str] = set()
    for i, suite_data in enumerate(suites_data):
        suite = _parse_suite(suite_data, f"suite #{i}")
        if suite.name in seen:
            raise SuiteShapeError(f"result {name!r}: duplicate suite name {suite.name!r}")
        seen.add(suite.name)
        suites.append(suite)

    metadata = {k: v for k, v in raw.items() if k not in ("name", "suites")}
    return BenchmarkResult(name=name, suites=tuple(suites), metadata=metadata, raw=raw)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_result_text(text: str, source: str = "<string>") -> BenchmarkResult:
    """Decode a JSON result document and validate it.

    Raises:
        SuiteLoadError: If *text* is not valid JSON.
        SuiteShapeError: If the document does not have the expected shape.
    """
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise SuiteLoadError(f"Invalid JSON in {source}: {exc}") from exc
    return parse_result(document)


def load_result(path: Path) -> BenchmarkResult:
    """Load and validate a result document from a JSON file.

    Raises:
        SuiteLoadError: If the file is missing, unreadable or not valid JSON.
        SuiteShapeError: If the document does not have the expected shape.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SuiteLoadError(f"Result file not found: {path}") from None
    except OSError as exc:
        raise SuiteLoadError(f"Cannot read result file {path}: {exc}") from exc
    return parse_result_text(text, source=str(path))

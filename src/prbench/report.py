"""Markdown report for a benchmark comparison.

The output is meant to be posted as a GitHub pull-request comment: a
heading with the benchmark name, one table per suite with a shields.io
badge per test, and two collapsible sections holding the raw result
documents.
"""

from __future__ import annotations

import html

from prbench.compare import BadgeTier, ComparisonResult, SuiteComparison

BADGE_BASE_URL = "https://img.shields.io/badge"

_TABLE_HEADER = (
    "| Test | Master (runs/sec) | PR (runs/sec) | Diff (runs/sec) |\n"
    "| ------- | ----- | ------- | ------- |"
)


def badge_url(tier: BadgeTier, percentage: str) -> str:
    """Build the shields.io badge URL for a test row.

    Dashes are doubled because shields.io uses a single dash as field
    separator; ``%25`` is an escaped percent sign.
    """
    if tier is BadgeTier.SKIPPED:
        return f"{BADGE_BASE_URL}/performance-skipped-{tier.color}.svg"
    label = percentage.replace("-", "--")
    return f"{BADGE_BASE_URL}/performance-{label}%25-{tier.color}.svg"


def _cell(text: str) -> str:
    """Escape text for a markdown table cell."""
    return html.escape(text, quote=False).replace("|", "\\|")


def _render_suite(suite: SuiteComparison) -> list[str]:
    lines = [f"### Suite: {html.escape(suite.name or '', quote=False)}", "", _TABLE_HEADER]
    for test in suite.tests:
        url = badge_url(test.badge, test.percentage)
        lines.append(
            f"|**{_cell(test.name or '')}**| `{test.master_rps}` | `{test.pr_rps}` | "
            f"![Performance: {test.percentage}%]({url}) `{test.diff}` |"
        )
    lines.append("")
    return lines


def _render_details(summary: str, document: str) -> list[str]:
    if not document:
        return []
    return [
        "<details>",
        f"  <summary>{summary}</summary>",
        "  <pre>",
        html.escape(document, quote=False),
        "  </pre>",
        "</details>",
        "",
    ]


def render_report(comparison: ComparisonResult) -> str:
    """Render a comparison as a markdown document.

    Missing names render as empty strings; this function does not raise
    on a well-formed :class:`ComparisonResult`.
    """
    title = html.escape(comparison.name or "", quote=False)
    lines: list[str] = ["# Benchmark results", "", f"## {title}", ""]

    for suite in comparison.suites:
        lines.extend(_render_suite(suite))

    lines.extend(_render_details("Master detailed results", comparison.master_json))
    lines.extend(_render_details("PR detailed results", comparison.pr_json))

    return "\n".join(lines).rstrip("\n") + "\n"

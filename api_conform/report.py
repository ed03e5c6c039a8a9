"""Finding aggregation: dedupe, ordering, verdict."""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from api_conform.models import SEVERITIES, SEVERITY_RANK, Finding, Report, Verdict
from api_conform.rules import CATEGORY_RANKS

_UNKNOWN_CATEGORY_RANK = max(CATEGORY_RANKS.values()) + 1


def aggregate(findings: Iterable[Finding], *, rule_categories: Mapping[str, str]) -> Report:
    """Deduplicate, rank, and summarize findings into a report."""
    unique: dict[tuple[object, ...], Finding] = {}
    for finding in findings:
        existing = unique.get(finding.identity)
        # Keep the most severe copy when the same observation is reported twice.
        if existing is None or SEVERITY_RANK[finding.severity] < SEVERITY_RANK[existing.severity]:
            unique[finding.identity] = finding

    ordered = sorted(unique.values(), key=lambda finding: _sort_key(finding, rule_categories))
    counts = {severity: 0 for severity in SEVERITIES}
    for finding in ordered:
        counts[finding.severity] += 1
    counts["total"] = len(ordered)
    return Report(verdict=verdict_for(counts), findings=tuple(ordered), counts=tuple(counts.items()))


def verdict_for(counts: Mapping[str, int]) -> Verdict:
    if counts.get("error", 0):
        return "fail"
    if counts.get("warning", 0):
        return "needs_attention"
    return "pass"


def _sort_key(finding: Finding, rule_categories: Mapping[str, str]) -> tuple[object, ...]:
    category = rule_categories.get(finding.rule_id)
    rank = CATEGORY_RANKS.get(category, _UNKNOWN_CATEGORY_RANK) if category else _UNKNOWN_CATEGORY_RANK
    file, line = finding.location.sort_key() if finding.location is not None else ("", 0)
    return (SEVERITY_RANK[finding.severity], rank, file, line, finding.rule_id, finding.message)


__all__ = ["aggregate", "verdict_for"]

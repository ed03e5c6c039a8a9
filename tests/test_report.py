from __future__ import annotations

from api_conform.models import Finding, SourceLocation
from api_conform.report import aggregate, verdict_for
from api_conform.rules import rule_categories


def _finding(rule_id: str, severity: str, message: str, file: str = "app.py", line: int | None = 1) -> Finding:
    return Finding(rule_id=rule_id, severity=severity, message=message, location=SourceLocation(file, line))  # type: ignore[arg-type]


def test_aggregate_orders_by_severity_category_then_location() -> None:
    findings = [
        _finding("naming", "info", "style note"),
        _finding("parameter_drift", "warning", "drift", file="b.py", line=3),
        _finding("security", "warning", "no marker", file="z.py"),
        _finding("contract_coverage", "error", "missing", file="openapi.yaml", line=10),
        _finding("security", "error", "unprotected", file="z.py", line=20),
        _finding("parameter_drift", "warning", "drift", file="a.py", line=9),
    ]

    report = aggregate(findings, rule_categories=rule_categories())

    assert [(f.rule_id, f.severity, f.location.file) for f in report.findings if f.location] == [
        ("security", "error", "z.py"),
        ("contract_coverage", "error", "openapi.yaml"),
        ("security", "warning", "z.py"),
        ("parameter_drift", "warning", "a.py"),
        ("parameter_drift", "warning", "b.py"),
        ("naming", "info", "app.py"),
    ]
    assert report.summary_counts == {"error": 2, "warning": 3, "info": 1, "total": 6}
    assert report.verdict == "fail"


def test_aggregate_deduplicates_keeping_most_severe_copy() -> None:
    report = aggregate(
        [
            _finding("error_shape", "info", "same"),
            _finding("error_shape", "warning", "same"),
            _finding("error_shape", "info", "same"),
        ],
        rule_categories=rule_categories(),
    )

    (only,) = report.findings
    assert only.severity == "warning"
    assert report.summary_counts["total"] == 1
    assert report.verdict == "needs_attention"


def test_aggregate_is_order_independent() -> None:
    findings = [
        _finding("naming", "info", "b"),
        _finding("naming", "info", "a"),
        _finding("rule_fault", "error", "boom", file="", line=None),
        _finding("duplicate_route", "warning", "twice"),
    ]
    forward = aggregate(findings, rule_categories=rule_categories())
    backward = aggregate(list(reversed(findings)), rule_categories=rule_categories())

    assert forward == backward
    assert [f.message for f in forward.findings] == ["boom", "twice", "a", "b"]


def test_unknown_rule_ids_sort_after_engine_findings() -> None:
    report = aggregate(
        [_finding("custom_rule", "warning", "x"), _finding("extraction_warning", "warning", "y")],
        rule_categories=rule_categories(),
    )
    assert [f.rule_id for f in report.findings] == ["extraction_warning", "custom_rule"]


def test_verdict_for_counts() -> None:
    assert verdict_for({"error": 0, "warning": 0, "info": 4}) == "pass"
    assert verdict_for({"warning": 1}) == "needs_attention"
    assert verdict_for({"error": 1, "warning": 3}) == "fail"
    assert aggregate([], rule_categories={}).verdict == "pass"


def test_report_is_an_immutable_hashable_value() -> None:
    findings = [_finding("security", "error", "unprotected"), _finding("naming", "info", "style note")]

    first = aggregate(findings, rule_categories=rule_categories())
    second = aggregate(list(reversed(findings)), rule_categories=rule_categories())

    assert hash(first) == hash(second)
    assert {first, second} == {first}
    counts = first.summary_counts
    counts["error"] = 99
    assert first.summary_counts["error"] == 1

"""Output rendering tests."""

from __future__ import annotations

import json

import click

from api_conform import __version__
from api_conform.models import ActualModel, Finding, Parameter, Report, SecurityRequirement, SourceLocation
from api_conform.output import render_human, render_json, render_routes_human, render_routes_json
from api_conform.report import aggregate
from api_conform.rules import rule_categories
from tests.helpers_tree import endpoint


def _report() -> Report:
    findings = [
        Finding(
            rule_id="security",
            severity="error",
            message="DELETE /users/{id} changes state without any authentication requirement.",
            location=SourceLocation("app/users.py", 12),
            suggested_fix="Protect the handler.",
        ),
        Finding(rule_id="naming", severity="info", message="Path /x segment 'A' is not kebab-case."),
        Finding(rule_id="http_semantics", severity="warning", message="POST /users does not declare a 201."),
    ]
    return aggregate(findings, rule_categories=rule_categories())


def test_render_human_shows_verdict_counts_and_fix() -> None:
    output = click.unstyle(render_human(_report()))

    assert output.splitlines()[0] == "Verdict: FAIL"
    assert "1 errors, 1 warnings, 1 info" in output
    assert "Findings:" in output
    assert "1. ERROR [security] DELETE /users/{id}" in output
    assert "   at: app/users.py:12" in output
    assert "   fix: Protect the handler." in output


def test_render_human_limit_hides_remaining_findings() -> None:
    output = click.unstyle(render_human(_report(), limit=1))

    assert "2. " not in output
    assert "... 2 more findings (use --format json for the full list)" in output


def test_render_human_pass_without_findings() -> None:
    output = click.unstyle(render_human(aggregate([], rule_categories=rule_categories())))
    assert output == "Verdict: PASS\n0 errors, 0 warnings, 0 info"


def test_render_json_has_stable_schema_keys() -> None:
    payload = json.loads(
        render_json(_report(), spec_source="openapi.yaml", source_root="src", rules_run=["security", "naming"])
    )

    assert set(payload) == {"verdict", "findings", "summaryCounts", "meta"}
    assert payload["verdict"] == "fail"
    assert payload["summaryCounts"] == {"error": 1, "warning": 1, "info": 1, "total": 3}
    assert payload["meta"] == {
        "spec": "openapi.yaml",
        "source": "src",
        "version": __version__,
        "rules": ["security", "naming"],
    }
    first = payload["findings"][0]
    assert set(first) == {"ruleId", "severity", "message", "location", "suggestedFix"}
    assert first["location"] == {"file": "app/users.py", "line": 12}
    assert payload["findings"][2]["location"] is None


def test_render_json_is_byte_identical_for_identical_reports() -> None:
    assert render_json(_report(), spec_source="a", source_root="b") == render_json(
        _report(), spec_source="a", source_root="b"
    )


def test_render_routes_outputs() -> None:
    model = ActualModel(
        root="src",
        endpoints=(
            endpoint(
                "GET",
                "/users/{id}",
                file="app/users.py",
                line=20,
                parameters=(Parameter("id", "path", required=True),),
                security=(SecurityRequirement("get_current_user"),),
                origin="python",
            ),
        ),
        findings=(Finding(rule_id="extraction_warning", severity="warning", message="Skipped bad.py: nope"),),
        files_scanned=2,
    )

    payload = json.loads(render_routes_json(model))
    (route,) = payload["routes"]
    assert route["path"] == "/users/{id}"
    assert route["parameters"] == [{"name": "id", "in": "path", "required": True}]
    assert route["security"] == ["get_current_user"]
    assert payload["meta"]["filesScanned"] == 2

    human = click.unstyle(render_routes_human(model))
    assert human.splitlines()[0] == "1 routes in 2 files:"
    assert "GET     /users/{id}  (app/users.py:20, confidence 1.0) [secured]" in human
    assert "! Skipped bad.py: nope" in human

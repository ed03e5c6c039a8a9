from __future__ import annotations

import pytest

from api_conform.matcher import match_endpoints
from api_conform.models import (
    Parameter,
    ResponseSpec,
    SchemaRef,
    SecurityRequirement,
)
from api_conform.rules import build_rules, list_rule_info, rule_categories, validate_rule_ids
from api_conform.rules.base import RuleContext
from api_conform.rules.contract_coverage import ContractCoverageRule
from api_conform.rules.error_shape import ErrorShapeRule
from api_conform.rules.http_semantics import HttpSemanticsRule, is_conflict_prone
from api_conform.rules.naming import NamingRule
from api_conform.rules.parameter_drift import ParameterDriftRule
from api_conform.rules.security import SecurityRule
from tests.helpers_tree import actual_model, endpoint, spec_model

BEARER = (SecurityRequirement("bearerAuth"),)
ERROR_BODY = SchemaRef(ref="Error", type="object", properties=("code", "message"))


def _context(declared=(), actual=()) -> RuleContext:
    spec = spec_model(*declared)
    source = actual_model(*actual)
    return RuleContext(
        spec=spec,
        actual=source,
        matches=match_endpoints(spec.endpoints, source.endpoints).results,
    )


def test_security_flags_unprotected_undocumented_write() -> None:
    context = _context(actual=[endpoint("DELETE", "/api/users/{id}", file="app.py", line=6)])

    (finding,) = SecurityRule().evaluate(context)

    assert finding.severity == "error"
    assert finding.message == "DELETE /api/users/{id} changes state without any authentication requirement."
    assert str(finding.location) == "app.py:6"


def test_security_accepts_marker_or_declared_scheme_and_ignores_reads() -> None:
    guarded = endpoint("POST", "/users", security=(SecurityRequirement("requireAuth"),))
    read_only = endpoint("GET", "/users")
    assert SecurityRule().evaluate(_context(actual=[guarded, read_only])) == []


def test_security_requires_marker_for_every_duplicate_when_contract_is_open() -> None:
    declared = endpoint("PUT", "/items/{id}", file="openapi.yaml")
    guarded = endpoint("PUT", "/items/{id}", file="a.py", security=(SecurityRequirement("login_required"),))
    open_copy = endpoint("PUT", "/items/{id}", file="b.py")

    findings = SecurityRule().evaluate(_context([declared], [guarded, open_copy]))

    assert [(f.severity, f.location.file) for f in findings if f.location] == [("error", "b.py")]


def test_security_warns_when_declared_scheme_has_no_marker() -> None:
    declared = endpoint("DELETE", "/users/{id}", file="openapi.yaml", security=BEARER)
    actual = endpoint("DELETE", "/users/{id}", file="app.py")

    (finding,) = SecurityRule().evaluate(_context([declared], [actual]))

    assert finding.severity == "warning"
    assert "declares security (bearerAuth)" in finding.message
    assert finding.location is not None and finding.location.file == "app.py"


def test_contract_coverage_reports_missing_and_undocumented() -> None:
    declared = endpoint("GET", "/reports", file="openapi.yaml", line=4)
    guessed = endpoint("GET", "/exports", file="Export.java", line=9, confidence=0.6)

    findings = ContractCoverageRule().evaluate(_context([declared], [guessed]))

    assert [(f.severity, f.message) for f in findings] == [
        ("warning", "GET /exports is implemented but undocumented (confidence 0.6)."),
        ("error", "GET /reports is declared but not implemented."),
    ]


def test_parameter_drift_emits_one_warning_per_difference() -> None:
    declared = endpoint("GET", "/orders/{orderId}", file="openapi.yaml")
    actual = endpoint(
        "GET",
        "/orders/{id}",
        file="orders.py",
        line=12,
        responses=(ResponseSpec("418"),),
        parameters=(Parameter("expand", "query"),),
    )

    findings = ParameterDriftRule().evaluate(_context([declared], [actual]))

    assert len(findings) == 3
    assert all(f.severity == "warning" and str(f.location) == "orders.py:12" for f in findings)
    assert findings[0].message == (
        "GET /orders/{orderId}: path parameter 1 is '{orderId}' in the contract but '{id}' in source."
    )


def test_http_semantics_checks_create_delete_and_conflict_codes() -> None:
    declared = [
        endpoint("POST", "/jobs", responses=(ResponseSpec("202"),)),
        endpoint("POST", "/users", responses=(ResponseSpec("200"),)),
        endpoint("DELETE", "/users/{id}", responses=(ResponseSpec("200"),)),
        endpoint("POST", "/teams", responses=(ResponseSpec("201"),)),
        endpoint("POST", "/tags", responses=(ResponseSpec("201"), ResponseSpec("409"))),
    ]
    implemented = [endpoint(e.method, e.path_template, file="app.py") for e in declared]

    messages = sorted(f.message for f in HttpSemanticsRule().evaluate(_context(declared, implemented)))

    assert messages == [
        "DELETE /users/{id} does not declare a 204 No Content response.",
        "POST /teams can conflict with existing state but does not declare 409 Conflict.",
        "POST /users does not declare a 201 Created response.",
    ]


def test_http_semantics_skips_unimplemented_and_undocumented_operations() -> None:
    missing = endpoint("POST", "/widgets", responses=(ResponseSpec("200"),), file="openapi.yaml")
    undocumented = endpoint("DELETE", "/gadgets/{id}", file="app.py")

    assert HttpSemanticsRule().evaluate(_context([missing], [undocumented])) == []

    coverage = ContractCoverageRule().evaluate(_context([missing]))
    assert [f.message for f in coverage] == ["POST /widgets is declared but not implemented."]


def test_conflict_prone_updates_use_preconditions_or_version_fields() -> None:
    precondition = endpoint("PUT", "/docs/{id}", parameters=(Parameter("If-Match", "header"),))
    versioned = endpoint(
        "PATCH",
        "/docs/{id}",
        parameters=(Parameter("body", "body", type=SchemaRef(properties=("title", "version"))),),
    )
    plain = endpoint("PUT", "/docs/{id}", parameters=(Parameter("body", "body"),))

    assert is_conflict_prone(precondition)
    assert is_conflict_prone(versioned)
    assert not is_conflict_prone(plain)
    assert not is_conflict_prone(endpoint("GET", "/docs"))


def test_error_shape_flags_minority_shapes() -> None:
    other = SchemaRef(type="object", properties=("error",))
    declared = [
        endpoint("GET", "/a", line=1, responses=(ResponseSpec("404", schema=ERROR_BODY),)),
        endpoint("GET", "/b", line=2, responses=(ResponseSpec("400", schema=ERROR_BODY),)),
        endpoint(
            "GET",
            "/c",
            line=3,
            responses=(ResponseSpec("200", schema=other), ResponseSpec("500", schema=other)),
        ),
    ]

    (finding,) = ErrorShapeRule().evaluate(_context(declared))

    assert finding.message == "GET /c error responses 500 do not use the common error shape {code,message}."


def test_error_shape_is_silent_with_one_shape() -> None:
    declared = [endpoint("GET", "/a", responses=(ResponseSpec("404", schema=ERROR_BODY),))]
    assert ErrorShapeRule().evaluate(_context(declared)) == []


def test_naming_flags_case_plurality_and_minority_version_prefix() -> None:
    declared = [
        endpoint("GET", "/v1/users/{id}"),
        endpoint("GET", "/v1/orders"),
        endpoint("GET", "/v1/user_profile/{id}"),
    ]
    actual = [endpoint("GET", "/orders/{orderId}")]

    messages = sorted(f.message for f in NamingRule().evaluate(_context(declared, actual)))

    assert messages == [
        "Path /orders/{orderId} lacks a version prefix unlike most other paths.",
        "Path /v1/user_profile/{id} collection segment 'user_profile' is not plural.",
        "Path /v1/user_profile/{id} segment 'user_profile' is not kebab-case.",
    ]


def test_naming_tie_flags_unversioned_paths() -> None:
    declared = [endpoint("GET", "/v2/items"), endpoint("GET", "/api/items")]

    (finding,) = NamingRule().evaluate(_context(declared))

    assert finding.message == "Path /api/items lacks a version prefix unlike most other paths."
    assert finding.severity == "info"


def test_build_rules_respects_enable_and_disable() -> None:
    assert [rule.rule_id for rule in build_rules()] == [
        "security",
        "contract_coverage",
        "parameter_drift",
        "http_semantics",
        "error_shape",
        "naming",
    ]
    assert [rule.rule_id for rule in build_rules(enabled_rule_ids=["naming", "security"])] == [
        "naming",
        "security",
    ]
    assert [
        rule.rule_id
        for rule in build_rules(enabled_rule_ids=["naming", "security"], disabled_rule_ids=["naming"])
    ] == ["security"]


def test_unknown_rule_ids_are_rejected() -> None:
    with pytest.raises(ValueError, match="Unknown rule ids: bogus"):
        validate_rule_ids(["security", "bogus"])
    with pytest.raises(ValueError, match="bogus"):
        build_rules(disabled_rule_ids=["bogus"])


def test_list_rule_info_reports_categories_and_state() -> None:
    info = {item.rule_id: item for item in list_rule_info(disabled_rule_ids=["naming"])}

    assert info["security"].category == "security"
    assert info["security"].default_enabled is True
    assert info["naming"].default_enabled is False
    assert info["parameter_drift"].description.startswith("Reports each difference")
    assert rule_categories()["rule_fault"] == "engine"

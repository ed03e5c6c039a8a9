"""Pair declared endpoints with actual endpoints."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass

from api_conform.models import (
    Difference,
    Endpoint,
    ExactMatch,
    Finding,
    MatchResult,
    MismatchedMatch,
    MissingDeclared,
    UndocumentedActual,
)
from api_conform.paths import match_key, placeholder_names

_DRIFT_LOCATIONS = ("query", "header")


@dataclass(frozen=True, slots=True)
class MatchOutcome:
    results: tuple[MatchResult, ...]
    findings: tuple[Finding, ...]


def match_endpoints(declared: Sequence[Endpoint], actual: Sequence[Endpoint]) -> MatchOutcome:
    """Partition both endpoint sets into match results.

    Every declared and every actual endpoint lands in exactly one result.
    Actual endpoints sharing a key with a better-ranked one are carried in
    that result's ``duplicates``; undocumented duplicates each get their own
    ``UndocumentedActual``. Either way a ``duplicate_route`` warning is emitted
    once per key.
    """
    declared_by_key: dict[tuple[str, str], list[Endpoint]] = defaultdict(list)
    actual_by_key: dict[tuple[str, str], list[Endpoint]] = defaultdict(list)
    for endpoint in declared:
        declared_by_key[match_key(endpoint.method, endpoint.path_template)].append(endpoint)
    for endpoint in actual:
        actual_by_key[match_key(endpoint.method, endpoint.path_template)].append(endpoint)

    results: list[MatchResult] = []
    findings: list[Finding] = []
    for key in sorted(set(declared_by_key) | set(actual_by_key)):
        declared_group = sorted(declared_by_key.get(key, []), key=lambda endpoint: endpoint.sort_key())
        actual_group = sorted(actual_by_key.get(key, []), key=_actual_rank)

        if len(actual_group) > 1:
            findings.append(_duplicate_finding(actual_group))

        if not declared_group:
            results.extend(UndocumentedActual(actual=endpoint) for endpoint in actual_group)
            continue
        if not actual_group:
            results.extend(MissingDeclared(declared=endpoint) for endpoint in declared_group)
            continue

        primary_declared, *extra_declared = declared_group
        primary_actual, *duplicates = actual_group
        differences = compare_endpoints(primary_declared, primary_actual)
        if differences:
            results.append(
                MismatchedMatch(
                    declared=primary_declared,
                    actual=primary_actual,
                    differences=differences,
                    duplicates=tuple(duplicates),
                )
            )
        else:
            results.append(
                ExactMatch(declared=primary_declared, actual=primary_actual, duplicates=tuple(duplicates))
            )
        # Declared duplicates were already reported by the loader.
        results.extend(MissingDeclared(declared=endpoint) for endpoint in extra_declared)

    return MatchOutcome(results=tuple(results), findings=tuple(findings))


def compare_endpoints(declared: Endpoint, actual: Endpoint) -> tuple[Difference, ...]:
    """Return the differences between two endpoints that share a match key."""
    differences: list[Difference] = []

    declared_names = placeholder_names(declared.path_template)
    actual_names = placeholder_names(actual.path_template)
    for position, (declared_name, actual_name) in enumerate(zip(declared_names, actual_names), start=1):
        if declared_name != actual_name:
            differences.append(
                Difference(
                    kind="path_parameter_name",
                    detail=(
                        f"path parameter {position} is '{{{declared_name}}}' in the contract "
                        f"but '{{{actual_name}}}' in source"
                    ),
                    declared_value=declared_name,
                    actual_value=actual_name,
                )
            )

    declared_statuses = declared.status_codes()
    for status in sorted(actual.status_codes()):
        if not _status_declared(status, declared_statuses):
            differences.append(
                Difference(
                    kind="undeclared_status_code",
                    detail=f"status {status} is returned in source but not declared",
                    actual_value=status,
                )
            )

    for location in _DRIFT_LOCATIONS:
        known = {_param_key(location, param.name) for param in declared.parameters_in(location)}
        for param in actual.parameters_in(location):
            if _param_key(location, param.name) in known:
                continue
            differences.append(
                Difference(
                    kind="undeclared_parameter",
                    detail=f"{location} parameter '{param.name}' is read in source but not declared",
                    actual_value=param.name,
                )
            )

    return tuple(differences)


def _actual_rank(endpoint: Endpoint) -> tuple[float, str, int]:
    location = endpoint.location.sort_key() if endpoint.location is not None else ("", 0)
    return (-endpoint.confidence, location[0], location[1])


def _status_declared(status: str, declared: set[str]) -> bool:
    if status in declared:
        return True
    return f"{status[:1]}XX" in declared


def _param_key(location: str, name: str) -> str:
    return name.lower() if location == "header" else name


def _duplicate_finding(group: list[Endpoint]) -> Finding:
    primary = group[0]
    sites = ", ".join(str(endpoint.location) for endpoint in group if endpoint.location is not None)
    return Finding(
        rule_id="duplicate_route",
        severity="warning",
        message=f"{primary.label} is implemented {len(group)} times ({sites})",
        location=primary.location,
        suggested_fix="Remove or merge the duplicate route handlers.",
    )


__all__ = ["MatchOutcome", "compare_endpoints", "match_endpoints"]

"""HTTP status-code conventions for declared operations."""

from __future__ import annotations

from api_conform.models import Endpoint, ExactMatch, Finding, MismatchedMatch
from api_conform.rules.base import RuleContext

PRECONDITION_HEADERS = {"if-match", "if-unmodified-since"}
VERSION_PROPERTIES = {"version", "etag", "revision"}


class HttpSemanticsRule:
    """Checks create, delete, and conflict status codes of implemented operations."""

    rule_id = "http_semantics"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        for result in context.matches:
            if not isinstance(result, (ExactMatch, MismatchedMatch)):
                continue
            endpoint = result.declared
            statuses = endpoint.status_codes()
            if endpoint.method == "POST" and "201" not in statuses and "202" not in statuses:
                findings.append(
                    self._finding(
                        endpoint,
                        f"{endpoint.label} does not declare a 201 Created response.",
                        "Declare 201 for resource creation, or 202 when processing is deferred.",
                    )
                )
            if endpoint.method == "DELETE" and "204" not in statuses:
                findings.append(
                    self._finding(
                        endpoint,
                        f"{endpoint.label} does not declare a 204 No Content response.",
                        "Declare 204 for successful deletes that return no body.",
                    )
                )
            if is_conflict_prone(endpoint) and "409" not in statuses:
                findings.append(
                    self._finding(
                        endpoint,
                        f"{endpoint.label} can conflict with existing state but does not declare 409 Conflict.",
                        "Declare a 409 response for duplicate or stale writes.",
                    )
                )
        return findings

    def _finding(self, endpoint: Endpoint, message: str, fix: str) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity="warning",
            message=message,
            location=endpoint.location,
            suggested_fix=fix,
        )


def is_conflict_prone(endpoint: Endpoint) -> bool:
    if endpoint.method == "POST":
        return "201" in endpoint.status_codes()
    if endpoint.method not in {"PUT", "PATCH"}:
        return False
    if any(param.name.lower() in PRECONDITION_HEADERS for param in endpoint.parameters_in("header")):
        return True
    for param in endpoint.parameters_in("body"):
        if VERSION_PROPERTIES.intersection(name.lower() for name in param.type.properties):
            return True
    return False

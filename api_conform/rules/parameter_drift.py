"""Parameter and status-code drift between paired endpoints."""

from __future__ import annotations

from api_conform.models import Finding, MismatchedMatch
from api_conform.rules.base import RuleContext

_FIXES = {
    "path_parameter_name": "Rename the path parameter in source or in the contract so both agree.",
    "undeclared_status_code": "Declare the response status in the contract.",
    "undeclared_parameter": "Declare the parameter in the contract or stop reading it.",
}


class ParameterDriftRule:
    """Reports each difference found between a declared endpoint and its implementation."""

    rule_id = "parameter_drift"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        for result in context.matches:
            if not isinstance(result, MismatchedMatch):
                continue
            for difference in result.differences:
                findings.append(
                    Finding(
                        rule_id=self.rule_id,
                        severity="warning",
                        message=f"{result.declared.label}: {difference.detail}.",
                        location=result.actual.location,
                        suggested_fix=_FIXES[difference.kind],
                    )
                )
        return findings

"""Declared-versus-implemented coverage rule."""

from __future__ import annotations

from api_conform.models import Finding, MissingDeclared, UndocumentedActual
from api_conform.rules.base import RuleContext


class ContractCoverageRule:
    """Flags declared endpoints with no implementation and implemented endpoints with no contract."""

    rule_id = "contract_coverage"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        for result in context.matches:
            if isinstance(result, MissingDeclared):
                declared = result.declared
                findings.append(
                    Finding(
                        rule_id=self.rule_id,
                        severity="error",
                        message=f"{declared.label} is declared but not implemented.",
                        location=declared.location,
                        suggested_fix="Implement the endpoint or remove it from the contract.",
                    )
                )
            elif isinstance(result, UndocumentedActual):
                actual = result.actual
                message = f"{actual.label} is implemented but undocumented."
                if actual.confidence < 1.0:
                    message = f"{message[:-1]} (confidence {actual.confidence:.1f})."
                findings.append(
                    Finding(
                        rule_id=self.rule_id,
                        severity="warning",
                        message=message,
                        location=actual.location,
                        suggested_fix="Document the endpoint in the contract or remove the handler.",
                    )
                )
        return findings

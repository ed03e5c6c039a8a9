"""Authentication coverage for implemented endpoints."""

from __future__ import annotations

from api_conform.models import (
    MUTATING_METHODS,
    Endpoint,
    ExactMatch,
    Finding,
    MismatchedMatch,
    UndocumentedActual,
)
from api_conform.rules.base import RuleContext


class SecurityRule:
    """Flags unprotected state-changing endpoints and declared security that source never enforces."""

    rule_id = "security"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        findings: list[Finding] = []
        for result in context.matches:
            if isinstance(result, UndocumentedActual):
                if _unprotected_write(result.actual):
                    findings.append(self._unprotected(result.actual))
            elif isinstance(result, (ExactMatch, MismatchedMatch)):
                declared = result.declared
                actuals = result.actuals()
                if not declared.security:
                    findings.extend(self._unprotected(actual) for actual in actuals if _unprotected_write(actual))
                elif not any(actual.security for actual in actuals):
                    schemes = ", ".join(sorted({requirement.scheme for requirement in declared.security}))
                    findings.append(
                        Finding(
                            rule_id=self.rule_id,
                            severity="warning",
                            message=(
                                f"{declared.label} declares security ({schemes}) "
                                "but no security marker was found in source."
                            ),
                            location=result.actual.location,
                            suggested_fix="Add the authentication guard to the handler or its router.",
                        )
                    )
        return findings

    def _unprotected(self, actual: Endpoint) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity="error",
            message=f"{actual.label} changes state without any authentication requirement.",
            location=actual.location,
            suggested_fix="Protect the handler with an authentication marker and declare security in the contract.",
        )


def _unprotected_write(actual: Endpoint) -> bool:
    return actual.method in MUTATING_METHODS and not actual.security

"""Consistency of declared error response bodies."""

from __future__ import annotations

from collections import Counter

from api_conform.models import Endpoint, Finding
from api_conform.rules.base import RuleContext


class ErrorShapeRule:
    """Flags endpoints whose error responses deviate from the dominant error shape."""

    rule_id = "error_shape"

    def evaluate(self, context: RuleContext) -> list[Finding]:
        shapes = Counter(shape for endpoint in context.spec.endpoints for _, shape in _error_shapes(endpoint))
        if len(shapes) < 2:
            return []
        dominant = min(shapes, key=lambda shape: (-shapes[shape], shape))

        findings: list[Finding] = []
        for endpoint in context.spec.endpoints:
            deviating = sorted(status for status, shape in _error_shapes(endpoint) if shape != dominant)
            if not deviating:
                continue
            findings.append(
                Finding(
                    rule_id=self.rule_id,
                    severity="warning",
                    message=(
                        f"{endpoint.label} error responses {', '.join(deviating)} "
                        f"do not use the common error shape {dominant}."
                    ),
                    location=endpoint.location,
                    suggested_fix="Use one shared error schema for all error responses.",
                )
            )
        return findings


def _error_shapes(endpoint: Endpoint) -> list[tuple[str, str]]:
    found: list[tuple[str, str]] = []
    for response in endpoint.responses:
        if not response.is_error() or response.schema is None:
            continue
        shape = response.schema.shape()
        if shape is not None:
            found.append((response.status, shape))
    return found

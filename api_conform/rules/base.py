"""Base rule protocol and the context rules evaluate against."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from api_conform.models import ActualModel, Finding, MatchResult, SpecModel


@dataclass(frozen=True, slots=True)
class RuleContext:
    """Read-only inputs shared by every rule in a run."""

    spec: SpecModel
    actual: ActualModel
    matches: tuple[MatchResult, ...]


class Rule(Protocol):
    """Protocol for conformance rules."""

    rule_id: str

    def evaluate(self, context: RuleContext) -> list[Finding]:
        """Evaluate the match results and return findings."""

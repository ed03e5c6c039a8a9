"""Core data model shared by the loader, extractors, matcher, and rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

Severity = Literal["info", "warning", "error"]
Verdict = Literal["pass", "needs_attention", "fail"]
ParameterLocation = Literal["path", "query", "header", "body"]
DifferenceKind = Literal["path_parameter_name", "undeclared_status_code", "undeclared_parameter"]

HTTP_METHODS = ("GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS", "TRACE")
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})
SEVERITIES: tuple[Severity, ...] = ("error", "warning", "info")
SEVERITY_RANK: dict[str, int] = {"error": 0, "warning": 1, "info": 2}


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """A file and optional 1-based line."""

    file: str
    line: int | None = None

    def sort_key(self) -> tuple[str, int]:
        return (self.file, self.line if self.line is not None else 0)

    def to_dict(self) -> dict[str, object]:
        return {"file": self.file, "line": self.line}

    def __str__(self) -> str:
        if self.line is None:
            return self.file
        return f"{self.file}:{self.line}"


@dataclass(frozen=True, slots=True)
class SchemaRef:
    """Resolved schema summary: reference name, type, and top-level properties."""

    ref: str | None = None
    type: str | None = None
    properties: tuple[str, ...] = ()

    def shape(self) -> str | None:
        """Return a comparable shape key, or None when nothing is known."""
        if self.properties:
            return "{" + ",".join(self.properties) + "}"
        if self.ref:
            return f"ref:{self.ref}"
        if self.type:
            return self.type
        return None


@dataclass(frozen=True, slots=True)
class Parameter:
    name: str
    location: ParameterLocation
    required: bool = False
    type: SchemaRef = field(default_factory=SchemaRef)


@dataclass(frozen=True, slots=True)
class ResponseSpec:
    status: str
    description: str = ""
    schema: SchemaRef | None = None

    def is_error(self) -> bool:
        return self.status == "default" or self.status[:1] in {"4", "5"}


@dataclass(frozen=True, slots=True)
class SecurityRequirement:
    scheme: str
    scopes: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A declared or actual HTTP endpoint in canonical form."""

    method: str
    path_template: str
    parameters: tuple[Parameter, ...] = ()
    responses: tuple[ResponseSpec, ...] = ()
    security: tuple[SecurityRequirement, ...] = ()
    location: SourceLocation | None = None
    confidence: float = 1.0
    origin: str = "spec"
    operation_id: str | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be within [0, 1], got {self.confidence}")

    @property
    def label(self) -> str:
        return f"{self.method} {self.path_template}"

    def status_codes(self) -> set[str]:
        return {response.status for response in self.responses}

    def parameters_in(self, location: ParameterLocation) -> list[Parameter]:
        return [param for param in self.parameters if param.location == location]

    def sort_key(self) -> tuple[str, str, str, int]:
        location = self.location.sort_key() if self.location is not None else ("", 0)
        return (self.path_template, self.method, location[0], location[1])


@dataclass(frozen=True, slots=True)
class Finding:
    """One reportable observation. Identity is (rule_id, location, message)."""

    rule_id: str
    severity: Severity
    message: str
    location: SourceLocation | None = None
    suggested_fix: str | None = None

    @property
    def identity(self) -> tuple[str, SourceLocation | None, str]:
        return (self.rule_id, self.location, self.message)

    def with_severity(self, severity: Severity) -> Finding:
        return Finding(
            rule_id=self.rule_id,
            severity=severity,
            message=self.message,
            location=self.location,
            suggested_fix=self.suggested_fix,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "ruleId": self.rule_id,
            "severity": self.severity,
            "message": self.message,
            "location": self.location.to_dict() if self.location is not None else None,
            "suggestedFix": self.suggested_fix,
        }


@dataclass(frozen=True, slots=True)
class SpecModel:
    """Normalized declared contract."""

    title: str
    version: str
    endpoints: tuple[Endpoint, ...]
    schemas: tuple[str, ...] = ()
    base_path: str = ""
    source_name: str = "spec"
    findings: tuple[Finding, ...] = ()


@dataclass(frozen=True, slots=True)
class ActualModel:
    """Endpoints recovered from a source tree."""

    root: str
    endpoints: tuple[Endpoint, ...]
    findings: tuple[Finding, ...] = ()
    files_scanned: int = 0


@dataclass(frozen=True, slots=True)
class Difference:
    kind: DifferenceKind
    detail: str
    declared_value: str | None = None
    actual_value: str | None = None


@dataclass(frozen=True, slots=True)
class ExactMatch:
    declared: Endpoint
    actual: Endpoint
    duplicates: tuple[Endpoint, ...] = ()

    def actuals(self) -> tuple[Endpoint, ...]:
        return (self.actual, *self.duplicates)


@dataclass(frozen=True, slots=True)
class MismatchedMatch:
    declared: Endpoint
    actual: Endpoint
    differences: tuple[Difference, ...]
    duplicates: tuple[Endpoint, ...] = ()

    def actuals(self) -> tuple[Endpoint, ...]:
        return (self.actual, *self.duplicates)


@dataclass(frozen=True, slots=True)
class UndocumentedActual:
    actual: Endpoint

    def actuals(self) -> tuple[Endpoint, ...]:
        return (self.actual,)


@dataclass(frozen=True, slots=True)
class MissingDeclared:
    declared: Endpoint

    def actuals(self) -> tuple[Endpoint, ...]:
        return ()


MatchResult = Union[ExactMatch, MismatchedMatch, UndocumentedActual, MissingDeclared]
PairedMatch = Union[ExactMatch, MismatchedMatch]


@dataclass(frozen=True, slots=True)
class Report:
    """Aggregated, ordered result of one run."""

    verdict: Verdict
    findings: tuple[Finding, ...]
    counts: tuple[tuple[str, int], ...]

    @property
    def summary_counts(self) -> dict[str, int]:
        return dict(self.counts)

    def to_dict(self) -> dict[str, object]:
        return {
            "verdict": self.verdict,
            "findings": [finding.to_dict() for finding in self.findings],
            "summaryCounts": self.summary_counts,
        }

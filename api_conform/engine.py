"""Conformance pipeline: load, extract, match, evaluate, aggregate."""

from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from api_conform.concurrency import DEFAULT_MAX_WORKERS, RunCancelled, checkpoint, run_bounded
from api_conform.extractors import RouteExtractor, build_extractors, extract_actual_model
from api_conform.logging import get_logger
from api_conform.matcher import match_endpoints
from api_conform.models import SEVERITIES, ActualModel, Finding, Report, Severity, SpecModel
from api_conform.paths import matches_any_glob, split_ignore_globs
from api_conform.report import aggregate
from api_conform.rules import Rule, RuleContext, build_rules, rule_categories
from api_conform.spec_loader import ParseError, load_spec_file

logger = get_logger(__name__)

RunStatus = Literal["completed", "parse_error", "cancelled"]


@dataclass(frozen=True, slots=True)
class ConformanceRequest:
    """Everything one run needs: inputs plus rule and extraction configuration."""

    spec_path: Path
    source_root: Path
    spec_media_type: str | None = None
    enabled_rules: list[str] | None = None
    disabled_rules: list[str] = field(default_factory=list)
    severity_overrides: dict[str, Severity] = field(default_factory=dict)
    path_ignore: list[str] = field(default_factory=list)
    strategies: list[str] | None = None
    security_markers: list[str] = field(default_factory=list)
    max_workers: int = DEFAULT_MAX_WORKERS
    apply_base_path: bool = True


@dataclass(frozen=True, slots=True)
class RunOutcome:
    status: RunStatus
    report: Report | None = None
    error: str | None = None
    rule_ids: tuple[str, ...] = ()


async def run_conformance(
    request: ConformanceRequest,
    *,
    rules: Sequence[Rule] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> RunOutcome:
    """Run the full pipeline and classify the outcome.

    A malformed contract yields ``parse_error`` with no report. Cancellation,
    either through ``cancel_event`` or by cancelling the awaiting task, yields
    ``cancelled`` with no report. Invalid configuration raises ``ValueError``.
    """
    active_rules = list(rules) if rules is not None else build_rules(
        enabled_rule_ids=request.enabled_rules,
        disabled_rule_ids=request.disabled_rules,
    )
    overrides = _effective_overrides(request)
    strategies = build_extractors(request.strategies)
    rule_ids = tuple(rule.rule_id for rule in active_rules)

    try:
        report = await _run_pipeline(request, active_rules, overrides, strategies, cancel_event)
    except ParseError as exc:
        logger.debug("Specification rejected: %s", exc)
        return RunOutcome(status="parse_error", error=str(exc), rule_ids=rule_ids)
    except RunCancelled:
        logger.debug("Run cancelled by request")
        return RunOutcome(status="cancelled", error="Run cancelled.", rule_ids=rule_ids)
    except asyncio.CancelledError:
        task = asyncio.current_task()
        if task is not None:
            task.uncancel()
        logger.debug("Run task cancelled")
        return RunOutcome(status="cancelled", error="Run cancelled.", rule_ids=rule_ids)
    return RunOutcome(status="completed", report=report, rule_ids=rule_ids)


def check_conformance(
    request: ConformanceRequest,
    *,
    rules: Sequence[Rule] | None = None,
) -> RunOutcome:
    """Synchronous wrapper around ``run_conformance``."""
    return asyncio.run(run_conformance(request, rules=rules))


async def load_inputs(
    request: ConformanceRequest,
    strategies: Sequence[RouteExtractor] | None = None,
    cancel_event: asyncio.Event | None = None,
) -> tuple[SpecModel, ActualModel]:
    """Load the contract and extract the source tree concurrently."""
    _, file_globs = split_ignore_globs(request.path_ignore)
    spec_task = asyncio.create_task(
        asyncio.to_thread(
            load_spec_file,
            request.spec_path,
            request.spec_media_type,
            apply_base_path=request.apply_base_path,
        )
    )
    actual_task = asyncio.create_task(
        extract_actual_model(
            request.source_root,
            strategies=strategies if strategies is not None else build_extractors(request.strategies),
            path_ignore=file_globs,
            security_markers=request.security_markers,
            max_workers=request.max_workers,
            cancel_event=cancel_event,
        )
    )
    tasks = (spec_task, actual_task)
    try:
        spec, actual = await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return (spec, actual)


async def _run_pipeline(
    request: ConformanceRequest,
    rules: list[Rule],
    overrides: dict[str, Severity],
    strategies: Sequence[RouteExtractor],
    cancel_event: asyncio.Event | None,
) -> Report:
    checkpoint(cancel_event)
    spec, actual = await load_inputs(request, strategies, cancel_event)
    checkpoint(cancel_event)

    route_globs, _ = split_ignore_globs(request.path_ignore)
    if route_globs:
        spec = dataclasses.replace(
            spec,
            endpoints=tuple(e for e in spec.endpoints if not matches_any_glob(e.path_template, route_globs)),
        )
        actual = dataclasses.replace(
            actual,
            endpoints=tuple(e for e in actual.endpoints if not matches_any_glob(e.path_template, route_globs)),
        )
    logger.debug(
        "Loaded %d declared and %d actual endpoints", len(spec.endpoints), len(actual.endpoints)
    )

    matched = match_endpoints(spec.endpoints, actual.endpoints)
    checkpoint(cancel_event)
    context = RuleContext(spec=spec, actual=actual, matches=matched.results)
    rule_findings = await run_bounded(
        rules,
        lambda rule: evaluate_isolated(rule, context),
        max_workers=request.max_workers,
        cancel_event=cancel_event,
    )

    findings: list[Finding] = [*spec.findings, *actual.findings, *matched.findings]
    for batch in rule_findings:
        findings.extend(batch)
    findings = [_apply_override(finding, overrides) for finding in findings]
    return aggregate(findings, rule_categories=rule_categories())


def evaluate_isolated(rule: Rule, context: RuleContext) -> list[Finding]:
    """Evaluate one rule; an exception becomes a single ``rule_fault`` finding."""
    try:
        return list(rule.evaluate(context))
    except Exception:
        logger.debug("Rule %s raised", rule.rule_id, exc_info=True)
        return [
            Finding(
                rule_id="rule_fault",
                severity="error",
                message=f"Rule '{rule.rule_id}' failed during evaluation.",
                suggested_fix="Disable the rule or report the failure to the maintainers.",
            )
        ]


def _effective_overrides(request: ConformanceRequest) -> dict[str, Severity]:
    known = rule_categories()
    unknown = sorted(rule_id for rule_id in request.severity_overrides if rule_id not in known)
    if unknown:
        raise ValueError(f"Unknown rule ids in severity overrides: {', '.join(unknown)}")
    invalid = sorted(rule_id for rule_id, severity in request.severity_overrides.items() if severity not in SEVERITIES)
    if invalid:
        raise ValueError(f"Severity overrides must be one of error, warning, info: {', '.join(invalid)}")
    disabled = set(request.disabled_rules)
    effective: dict[str, Severity] = {}
    for rule_id, severity in request.severity_overrides.items():
        if rule_id in disabled:
            logger.debug("Ignoring severity override for disabled rule %s", rule_id)
            continue
        effective[rule_id] = severity
    return effective


def _apply_override(finding: Finding, overrides: dict[str, Severity]) -> Finding:
    severity = overrides.get(finding.rule_id)
    if severity is None or severity == finding.severity:
        return finding
    return finding.with_severity(severity)


__all__ = [
    "ConformanceRequest",
    "RunOutcome",
    "RunStatus",
    "check_conformance",
    "evaluate_isolated",
    "load_inputs",
    "run_conformance",
]

"""Output rendering."""

from __future__ import annotations

import json
from typing import Any

import click

from api_conform import __version__
from api_conform.models import ActualModel, Endpoint, Finding, Report

_SEVERITY_COLORS = {"error": "red", "warning": "yellow", "info": "cyan"}
_VERDICT_STYLES = {
    "pass": ("PASS", "green"),
    "needs_attention": ("NEEDS ATTENTION", "yellow"),
    "fail": ("FAIL", "red"),
}


def render_human(report: Report, *, limit: int | None = None) -> str:
    """Render a compact colorized summary."""
    label, color = _VERDICT_STYLES[report.verdict]
    counts = report.summary_counts
    lines: list[str] = [
        click.style(f"Verdict: {label}", fg=color, bold=True),
        (
            f"{counts.get('error', 0)} errors, {counts.get('warning', 0)} warnings, "
            f"{counts.get('info', 0)} info"
        ),
    ]

    shown = report.findings if limit is None else report.findings[:limit]
    if shown:
        lines.append(click.style("Findings:", bold=True))
        for index, finding in enumerate(shown, start=1):
            lines.extend(_human_finding(index, finding))
    hidden = len(report.findings) - len(shown)
    if hidden > 0:
        lines.append(f"... {hidden} more findings (use --format json for the full list)")
    return "\n".join(lines)


def render_json(
    report: Report,
    *,
    spec_source: str | None = None,
    source_root: str | None = None,
    rules_run: list[str] | None = None,
) -> str:
    """Render stable JSON output for CI and automation."""
    payload = build_json_payload(
        report,
        spec_source=spec_source,
        source_root=source_root,
        rules_run=rules_run,
    )
    return json.dumps(payload, sort_keys=True)


def build_json_payload(
    report: Report,
    *,
    spec_source: str | None = None,
    source_root: str | None = None,
    rules_run: list[str] | None = None,
) -> dict[str, Any]:
    """Build the report payload; identical inputs always produce identical payloads."""
    payload: dict[str, Any] = report.to_dict()
    meta: dict[str, Any] = {
        "spec": spec_source,
        "source": source_root,
        "version": __version__,
    }
    if rules_run is not None:
        meta["rules"] = list(rules_run)
    payload["meta"] = meta
    return payload


def render_routes_json(model: ActualModel) -> str:
    payload = {
        "routes": [_serialize_endpoint(endpoint) for endpoint in model.endpoints],
        "findings": [finding.to_dict() for finding in model.findings],
        "meta": {"filesScanned": model.files_scanned, "source": model.root, "version": __version__},
    }
    return json.dumps(payload, sort_keys=True)


def render_routes_human(model: ActualModel) -> str:
    lines = [click.style(f"{len(model.endpoints)} routes in {model.files_scanned} files:", bold=True)]
    for endpoint in model.endpoints:
        secured = " [secured]" if endpoint.security else ""
        lines.append(
            f"- {endpoint.method:<7} {endpoint.path_template}  "
            f"({endpoint.location}, confidence {endpoint.confidence:.1f}){secured}"
        )
    for finding in model.findings:
        lines.append(click.style(f"! {finding.message}", fg=_SEVERITY_COLORS[finding.severity]))
    return "\n".join(lines)


def _human_finding(index: int, finding: Finding) -> list[str]:
    severity = click.style(finding.severity.upper(), fg=_SEVERITY_COLORS[finding.severity])
    lines = [f"{index}. {severity} [{finding.rule_id}] {finding.message}"]
    if finding.location is not None:
        lines.append(f"   at: {finding.location}")
    if finding.suggested_fix:
        lines.append(f"   fix: {finding.suggested_fix}")
    return lines


def _serialize_endpoint(endpoint: Endpoint) -> dict[str, Any]:
    return {
        "method": endpoint.method,
        "path": endpoint.path_template,
        "confidence": endpoint.confidence,
        "origin": endpoint.origin,
        "operationId": endpoint.operation_id,
        "location": endpoint.location.to_dict() if endpoint.location is not None else None,
        "parameters": [
            {"name": param.name, "in": param.location, "required": param.required}
            for param in endpoint.parameters
        ],
        "responses": [response.status for response in endpoint.responses],
        "security": [requirement.scheme for requirement in endpoint.security],
    }

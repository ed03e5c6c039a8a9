"""CLI entrypoint for api-conform."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Annotated

import typer

from api_conform import __version__
from api_conform.config import AppConfig, default_config_template, load_app_config, parse_severity
from api_conform.engine import ConformanceRequest, RunOutcome, check_conformance
from api_conform.extractors import build_extractors, extract_actual_model
from api_conform.logging import configure_logging
from api_conform.models import Severity
from api_conform.output import render_human, render_json, render_routes_human, render_routes_json
from api_conform.paths import split_ignore_globs
from api_conform.rules import build_rules, list_rule_info
from api_conform.rules.base import Rule

EXIT_PASS = 0
EXIT_NEEDS_ATTENTION = 1
EXIT_FAIL = 3
EXIT_PARSE_ERROR = 4
EXIT_CANCELLED = 5

VERDICT_EXIT_CODES = {
    "pass": EXIT_PASS,
    "needs_attention": EXIT_NEEDS_ATTENTION,
    "fail": EXIT_FAIL,
}

app = typer.Typer(
    name="api-conform",
    no_args_is_help=True,
    help="Check an implemented API against its OpenAPI contract.",
)


def version_callback(value: bool) -> None:
    """Print version and exit when --version is provided."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option("--version", help="Show version and exit.", callback=version_callback),
    ] = False,
) -> None:
    """Root command callback."""
    _ = version


@app.command("check")
def check_command(
    spec: Annotated[Path | None, typer.Option(help="Path to the OpenAPI / Swagger document.")] = None,
    source: Annotated[Path | None, typer.Option(help="Root of the source tree to scan.")] = None,
    spec_format: Annotated[
        str | None,
        typer.Option("--spec-format", help="Media type of the spec (guessed from the suffix)."),
    ] = None,
    project: Annotated[Path, typer.Option(help="Project directory for config discovery.")] = Path("."),
    format: Annotated[
        str | None, typer.Option(help="Output format: human|json.", show_default="human")
    ] = None,
    enable_rule: Annotated[
        list[str] | None, typer.Option("--enable-rule", help="Run only these rules.")
    ] = None,
    disable_rule: Annotated[
        list[str] | None, typer.Option("--disable-rule", help="Skip this rule.")
    ] = None,
    severity: Annotated[
        list[str] | None,
        typer.Option("--severity", help="Override a rule's severity, e.g. naming=warning."),
    ] = None,
    ignore: Annotated[
        list[str] | None,
        typer.Option("--ignore", help="Ignore glob: '/...' matches routes, anything else source files."),
    ] = None,
    workers: Annotated[int | None, typer.Option(help="Maximum concurrent workers.")] = None,
    limit: Annotated[
        int | None, typer.Option(help="Show at most this many findings in human output.")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log diagnostics to stderr.")] = False,
) -> None:
    """Compare the contract with the implemented routes and report findings."""
    configure_logging(verbose=verbose)
    app_config = _load_config_or_raise(project, config_file)
    output_format = _format_or_raise(format or app_config.format)

    spec_path = _resolve_input(spec, app_config.spec, project, "--spec")
    source_root = _resolve_input(source, app_config.source, project, "--source")
    if not source_root.is_dir():
        raise typer.BadParameter(f"Source root is not a directory: {source_root}", param_hint="--source")

    overrides = dict(app_config.severity_overrides)
    overrides.update(_parse_severity_options(severity or []))
    max_workers = workers if workers is not None else app_config.extraction.max_workers
    if max_workers < 1:
        raise typer.BadParameter("--workers must be >= 1", param_hint="--workers")

    request = ConformanceRequest(
        spec_path=spec_path,
        source_root=source_root,
        spec_media_type=spec_format or app_config.spec_format,
        enabled_rules=enable_rule if enable_rule else app_config.rule_enable,
        disabled_rules=[*app_config.rule_disable, *(disable_rule or [])],
        severity_overrides=overrides,
        path_ignore=[*app_config.path_ignore, *(ignore or [])],
        strategies=app_config.extraction.strategies,
        security_markers=app_config.extraction.security_markers,
        max_workers=max_workers,
        apply_base_path=app_config.apply_base_path,
    )
    outcome = _run_or_raise(request)

    if outcome.status == "parse_error":
        typer.echo(f"Specification error: {outcome.error}", err=True)
        raise typer.Exit(code=EXIT_PARSE_ERROR)
    if outcome.status == "cancelled" or outcome.report is None:
        typer.echo("Run cancelled.", err=True)
        raise typer.Exit(code=EXIT_CANCELLED)

    report = outcome.report
    if output_format == "json":
        typer.echo(
            render_json(
                report,
                spec_source=spec_path.as_posix(),
                source_root=source_root.as_posix(),
                rules_run=list(outcome.rule_ids),
            )
        )
    else:
        typer.echo(render_human(report, limit=limit))

    exit_code = VERDICT_EXIT_CODES[report.verdict]
    if exit_code != EXIT_PASS:
        raise typer.Exit(code=exit_code)


@app.command("routes")
def routes_command(
    source: Annotated[Path | None, typer.Option(help="Root of the source tree to scan.")] = None,
    project: Annotated[Path, typer.Option(help="Project directory for config discovery.")] = Path("."),
    format: Annotated[
        str | None, typer.Option(help="Output format: human|json.", show_default="human")
    ] = None,
    ignore: Annotated[
        list[str] | None, typer.Option("--ignore", help="Source file glob to skip.")
    ] = None,
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log diagnostics to stderr.")] = False,
) -> None:
    """List the routes recognized in a source tree."""
    configure_logging(verbose=verbose)
    app_config = _load_config_or_raise(project, config_file)
    output_format = _format_or_raise(format or app_config.format)
    source_root = _resolve_input(source, app_config.source, project, "--source")
    if not source_root.is_dir():
        raise typer.BadParameter(f"Source root is not a directory: {source_root}", param_hint="--source")

    _, file_globs = split_ignore_globs([*app_config.path_ignore, *(ignore or [])])
    try:
        model = asyncio.run(
            extract_actual_model(
                source_root,
                strategies=build_extractors(app_config.extraction.strategies),
                path_ignore=file_globs,
                security_markers=app_config.extraction.security_markers,
                max_workers=app_config.extraction.max_workers,
            )
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    if output_format == "json":
        typer.echo(render_routes_json(model))
    else:
        typer.echo(render_routes_human(model))


@app.command("rules")
def rules_command(
    project: Annotated[Path, typer.Option(help="Project directory for config discovery.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """List available rules and whether the current config enables them."""
    output_format = _format_or_raise(format)
    app_config = _load_config_or_raise(project, config_file)
    active_ids = {rule.rule_id for rule in _build_configured_rules_or_raise(app_config)}
    rule_info = list_rule_info()

    if output_format == "json":
        payload = {
            "rules": [
                {
                    "rule_id": item.rule_id,
                    "name": item.name,
                    "description": item.description,
                    "category": item.category,
                    "default_enabled": item.default_enabled,
                    "enabled": item.rule_id in active_ids,
                    "severity_override": app_config.severity_overrides.get(item.rule_id),
                }
                for item in rule_info
            ],
            "meta": {"config_source": app_config.config_source},
        }
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = ["Available rules:"]
    for item in rule_info:
        status = "enabled" if item.rule_id in active_ids else "disabled"
        lines.append(f"- {item.rule_id} [{item.category}, {status}] - {item.description}")
    typer.echo("\n".join(lines))


@app.command("config")
def config_command(
    project: Annotated[Path, typer.Option(help="Project directory for config discovery.")] = Path("."),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
    config_file: Annotated[
        Path | None,
        typer.Option("--config", help="Path to config TOML file."),
    ] = None,
) -> None:
    """Show resolved configuration."""
    output_format = _format_or_raise(format)
    app_config = _load_config_or_raise(project, config_file)
    active_rules = _build_configured_rules_or_raise(app_config)
    payload = app_config.to_dict()
    payload["active_rule_ids"] = [rule.rule_id for rule in active_rules]

    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return

    lines = [
        "Resolved configuration:",
        f"- config_source: {payload['config_source'] or 'defaults'}",
        f"- format: {payload['format']}",
        f"- spec: {payload['spec']}",
        f"- source: {payload['source']}",
        f"- path_ignore: {payload['path_ignore']}",
        f"- rules.enable: {payload['rules']['enable']}",
        f"- rules.disable: {payload['rules']['disable']}",
        f"- rules.severity: {payload['rules']['severity']}",
        f"- extraction: {payload['extraction']}",
        f"- active_rule_ids: {payload['active_rule_ids']}",
    ]
    typer.echo("\n".join(lines))


@app.command("config-init")
def config_init_command(
    out: Annotated[Path, typer.Option(help="Output path for starter config TOML.")] = Path(
        ".api-conform.toml"
    ),
    force: Annotated[
        bool,
        typer.Option("--force", help="Overwrite if file already exists."),
    ] = False,
) -> None:
    """Create a starter project config file."""
    out_path = out.resolve()
    if out_path.exists() and not force:
        raise typer.BadParameter(
            f"Refusing to overwrite existing file: {out_path}. Use --force to overwrite."
        )
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(default_config_template(), encoding="utf-8")
    typer.echo(f"Wrote starter config: {out_path}")


@app.command("config-validate")
def config_validate_command(
    project: Annotated[Path, typer.Option(help="Project directory for config discovery.")] = Path("."),
    config_file: Annotated[
        Path,
        typer.Option("--config", help="Path to config TOML file to validate."),
    ] = Path(".api-conform.toml"),
    format: Annotated[str, typer.Option(help="Output format: human|json.")] = "human",
) -> None:
    """Validate a config file and report active rules."""
    output_format = _format_or_raise(format)
    app_config = _load_config_or_raise(project, config_file)
    active_rules = _build_configured_rules_or_raise(app_config)
    payload = {
        "ok": True,
        "source": app_config.config_source,
        "active_rule_ids": [rule.rule_id for rule in active_rules],
    }
    if output_format == "json":
        typer.echo(json.dumps(payload, sort_keys=True))
        return
    typer.echo(
        "\n".join(
            [
                "Config is valid.",
                f"- source: {payload['source']}",
                f"- active_rule_ids: {payload['active_rule_ids']}",
            ]
        )
    )


def main() -> None:
    """Console script entrypoint."""
    app()


def _run_or_raise(request: ConformanceRequest) -> RunOutcome:
    try:
        return check_conformance(request)
    except KeyboardInterrupt:
        return RunOutcome(status="cancelled", error="Interrupted.")
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _resolve_input(option: Path | None, configured: str | None, project: Path, hint: str) -> Path:
    if option is not None:
        return option
    if configured is not None:
        path = Path(configured)
        return path if path.is_absolute() else project / path
    raise typer.BadParameter(f"{hint} is required (or set it in the config file).", param_hint=hint)


def _parse_severity_options(values: list[str]) -> dict[str, Severity]:
    parsed: dict[str, Severity] = {}
    for raw in values:
        rule_id, sep, level = raw.partition("=")
        if not sep or not rule_id.strip():
            raise typer.BadParameter("Use RULE_ID=LEVEL, e.g. naming=warning.", param_hint="--severity")
        try:
            parsed[rule_id.strip()] = parse_severity(level.strip(), f"--severity {rule_id.strip()}")
        except ValueError as exc:
            raise typer.BadParameter(str(exc), param_hint="--severity") from exc
    return parsed


def _format_or_raise(value: str) -> str:
    output_format = value.lower()
    if output_format not in {"human", "json"}:
        raise typer.BadParameter("format must be one of: human, json", param_hint="--format")
    return output_format


def _load_config_or_raise(project: Path, config_file: Path | None = None) -> AppConfig:
    try:
        return load_app_config(project, config_path=config_file)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config") from exc


def _build_configured_rules_or_raise(app_config: AppConfig) -> list[Rule]:
    try:
        return build_rules(
            enabled_rule_ids=app_config.rule_enable,
            disabled_rule_ids=app_config.rule_disable,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="config.rules") from exc

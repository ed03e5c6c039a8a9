"""Configuration loading for api-conform."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from api_conform.concurrency import DEFAULT_MAX_WORKERS
from api_conform.extractors import BUILTIN_EXTRACTORS
from api_conform.models import SEVERITIES, Severity
from api_conform.rules import rule_categories, validate_rule_ids

CONFIG_FILENAMES = (".api-conform.toml", "api-conform.toml")
PYPROJECT_FILENAME = "pyproject.toml"
PYPROJECT_TOOL_KEYS = ("api_conform", "api-conform")


@dataclass(slots=True)
class ExtractionConfig:
    """Source scanning controls."""

    max_workers: int = DEFAULT_MAX_WORKERS
    security_markers: list[str] = field(default_factory=list)
    strategies: list[str] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_workers": self.max_workers,
            "security_markers": list(self.security_markers),
            "strategies": list(self.strategies) if self.strategies is not None else None,
        }


@dataclass(slots=True)
class AppConfig:
    """Runtime configuration values resolved from project files."""

    format: str = "human"
    spec: str | None = None
    source: str | None = None
    spec_format: str | None = None
    rule_enable: list[str] | None = None
    rule_disable: list[str] = field(default_factory=list)
    severity_overrides: dict[str, Severity] = field(default_factory=dict)
    path_ignore: list[str] = field(default_factory=list)
    extraction: ExtractionConfig = field(default_factory=ExtractionConfig)
    apply_base_path: bool = True
    config_source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "format": self.format,
            "spec": self.spec,
            "source": self.source,
            "spec_format": self.spec_format,
            "rules": {
                "enable": list(self.rule_enable) if self.rule_enable is not None else None,
                "disable": list(self.rule_disable),
                "severity": dict(self.severity_overrides),
            },
            "path_ignore": list(self.path_ignore),
            "extraction": self.extraction.to_dict(),
            "spec_options": {"apply_base_path": self.apply_base_path},
            "config_source": self.config_source,
        }


def load_app_config(repo: Path, config_path: Path | None = None) -> AppConfig:
    """Load config from explicit path or repository-local files with precedence."""
    repo = repo.resolve()
    if config_path is not None:
        resolved = config_path if config_path.is_absolute() else (repo / config_path)
        if not resolved.exists():
            raise ValueError(f"Config file does not exist: {resolved}")
        mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
        return _from_mapping(mapping, source=str(resolved))

    for filename in CONFIG_FILENAMES:
        resolved = repo / filename
        if resolved.exists():
            mapping = _extract_config_mapping(_load_toml(resolved), source_path=resolved)
            return _from_mapping(mapping, source=str(resolved))

    pyproject_path = repo / PYPROJECT_FILENAME
    if pyproject_path.exists():
        mapping = _extract_config_mapping(_load_toml(pyproject_path), source_path=pyproject_path)
        if mapping:
            return _from_mapping(mapping, source=str(pyproject_path))

    return AppConfig()


def default_config_template() -> str:
    """Return a starter config template."""
    return "\n".join(
        [
            'format = "json"',
            'spec = "openapi.yaml"',
            'source = "src"',
            '# spec_format = "application/yaml"',
            'path_ignore = ["/internal/*", "tests/**"]',
            "",
            "[rules]",
            "enable = [",
            '  "security",',
            '  "contract_coverage",',
            '  "parameter_drift",',
            '  "http_semantics",',
            '  "error_shape",',
            '  "naming",',
            "]",
            'disable = ["naming"]',
            "",
            "[rules.severity]",
            '# http_semantics = "info"',
            'error_shape = "info"',
            "",
            "[extraction]",
            f"max_workers = {DEFAULT_MAX_WORKERS}",
            'security_markers = ["require_api_key"]',
            '# strategies = ["python", "spring", "express"]',
            "",
            "[spec_options]",
            "apply_base_path = true",
            "",
        ]
    )


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open("rb") as file_obj:
            loaded = tomllib.load(file_obj)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"Invalid TOML in {path}: {exc}") from exc
    if not isinstance(loaded, dict):
        return {}
    return loaded


def _extract_config_mapping(loaded: dict[str, Any], *, source_path: Path) -> dict[str, Any]:
    tool_section = _find_pyproject_tool_section(loaded)
    if source_path.name == PYPROJECT_FILENAME:
        return tool_section if tool_section is not None else {}
    return tool_section if tool_section is not None else loaded


def _find_pyproject_tool_section(loaded: dict[str, Any]) -> dict[str, Any] | None:
    tool = loaded.get("tool")
    if not isinstance(tool, dict):
        return None
    for key in PYPROJECT_TOOL_KEYS:
        section = tool.get(key)
        if isinstance(section, dict):
            return section
    return None


def _from_mapping(mapping: dict[str, Any], *, source: str) -> AppConfig:
    rules_mapping = _as_table(mapping.get("rules"), "rules")
    extraction_mapping = _as_table(mapping.get("extraction"), "extraction")
    spec_options = _as_table(mapping.get("spec_options"), "spec_options")

    rule_enable = _as_str_list_or_none(rules_mapping.get("enable"), "rules.enable")
    rule_disable = _as_str_list(rules_mapping.get("disable"), "rules.disable")
    validate_rule_ids([*(rule_enable or []), *rule_disable])

    return AppConfig(
        format=_as_choice(mapping.get("format", "human"), {"human", "json"}, "format"),
        spec=_as_optional_str(mapping.get("spec"), "spec"),
        source=_as_optional_str(mapping.get("source"), "source"),
        spec_format=_as_optional_str(mapping.get("spec_format"), "spec_format"),
        rule_enable=rule_enable,
        rule_disable=rule_disable,
        severity_overrides=_parse_severity_overrides(rules_mapping.get("severity")),
        path_ignore=_as_str_list(mapping.get("path_ignore"), "path_ignore"),
        extraction=_parse_extraction_config(extraction_mapping),
        apply_base_path=_as_bool(spec_options.get("apply_base_path", True), "spec_options.apply_base_path"),
        config_source=source,
    )


def _parse_severity_overrides(value: Any) -> dict[str, Severity]:
    table = _as_table(value, "rules.severity")
    known = rule_categories()
    unknown = sorted(rule_id for rule_id in table if rule_id not in known)
    if unknown:
        raise ValueError(f"Unknown rule ids: {', '.join(unknown)}")
    parsed: dict[str, Severity] = {}
    for rule_id, raw in table.items():
        parsed[rule_id] = _as_severity(raw, f"rules.severity.{rule_id}")
    return parsed


def _parse_extraction_config(value: dict[str, Any]) -> ExtractionConfig:
    max_workers = _as_int(value.get("max_workers", DEFAULT_MAX_WORKERS), "extraction.max_workers")
    if max_workers < 1:
        raise ValueError("extraction.max_workers must be >= 1")
    strategies = _as_str_list_or_none(value.get("strategies"), "extraction.strategies")
    if strategies is not None:
        unknown = sorted(set(strategies) - set(BUILTIN_EXTRACTORS))
        if unknown:
            raise ValueError(f"Unknown extraction strategies: {', '.join(unknown)}")
    return ExtractionConfig(
        max_workers=max_workers,
        security_markers=_as_str_list(value.get("security_markers"), "extraction.security_markers"),
        strategies=strategies,
    )


def parse_severity(raw: str, field_name: str) -> Severity:
    """Validate a severity name supplied on the command line or in config."""
    return _as_severity(raw, field_name)


def _as_severity(raw: Any, field_name: str) -> Severity:
    value = _as_choice(raw, set(SEVERITIES), field_name)
    if value == "error":
        return "error"
    if value == "warning":
        return "warning"
    return "info"


def _as_table(value: Any, field_name: str) -> dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValueError(f"{field_name} must be a table/object")
    return value


def _as_str_list(value: Any, field_name: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{field_name} must be a list of strings")
    items: list[str] = []
    for item in value:
        if not isinstance(item, str):
            raise ValueError(f"{field_name} must be a list of strings")
        items.append(item)
    return items


def _as_str_list_or_none(value: Any, field_name: str) -> list[str] | None:
    if value is None:
        return None
    return _as_str_list(value, field_name)


def _as_optional_str(value: Any, field_name: str) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError(f"{field_name} must be a string")
    return value


def _as_choice(raw: Any, allowed: set[str], field_name: str) -> str:
    value = str(raw).lower()
    if value not in allowed:
        choices = ", ".join(sorted(allowed))
        raise ValueError(f"{field_name} must be one of: {choices}")
    return value


def _as_int(raw: Any, field_name: str) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        raise ValueError(f"{field_name} must be an integer")
    return raw


def _as_bool(raw: Any, field_name: str) -> bool:
    if not isinstance(raw, bool):
        raise ValueError(f"{field_name} must be a boolean")
    return raw

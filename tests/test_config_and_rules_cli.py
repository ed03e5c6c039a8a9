"""Config loading and the rules/config CLI commands."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from api_conform.cli import app
from api_conform.config import default_config_template, load_app_config

runner = CliRunner()


def test_load_app_config_prefers_dot_file_over_pyproject(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "pyproject.toml").write_text(
        "\n".join(
            [
                "[tool.api_conform]",
                'format = "human"',
                'spec = "docs/openapi.json"',
            ]
        ),
        encoding="utf-8",
    )
    (repo / ".api-conform.toml").write_text(
        "\n".join(
            [
                'format = "json"',
                'spec = "openapi.yaml"',
                'source = "src"',
                'path_ignore = ["/internal/*"]',
                "",
                "[rules]",
                'enable = ["security", "naming"]',
                'disable = ["naming"]',
                "",
                "[rules.severity]",
                'security = "warning"',
                "",
                "[extraction]",
                "max_workers = 2",
                'security_markers = ["require_api_key"]',
                'strategies = ["python"]',
            ]
        ),
        encoding="utf-8",
    )

    config = load_app_config(repo)
    assert config.format == "json"
    assert config.spec == "openapi.yaml"
    assert config.source == "src"
    assert config.path_ignore == ["/internal/*"]
    assert config.rule_enable == ["security", "naming"]
    assert config.rule_disable == ["naming"]
    assert config.severity_overrides == {"security": "warning"}
    assert config.extraction.max_workers == 2
    assert config.extraction.security_markers == ["require_api_key"]
    assert config.extraction.strategies == ["python"]
    assert config.config_source == str(repo.resolve() / ".api-conform.toml")


def test_load_app_config_reads_pyproject_hyphenated_key(tmp_path: Path) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "pyproject.toml").write_text(
        "\n".join(
            [
                "[project]",
                'name = "demo"',
                "",
                "[tool.api-conform]",
                'spec = "openapi.yaml"',
                "",
                "[tool.api-conform.spec_options]",
                "apply_base_path = false",
            ]
        ),
        encoding="utf-8",
    )

    config = load_app_config(repo)
    assert config.spec == "openapi.yaml"
    assert config.apply_base_path is False
    assert config.config_source == str(repo.resolve() / "pyproject.toml")


def test_load_app_config_defaults_without_files(tmp_path: Path) -> None:
    config = load_app_config(tmp_path)
    assert config.format == "human"
    assert config.rule_enable is None
    assert config.config_source is None


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ('format = "xml"', "format must be one of"),
        ('[rules]\nenable = ["bogus"]', "Unknown rule ids: bogus"),
        ('[rules.severity]\nsecurity = "fatal"', "rules.severity.security must be one of"),
        ('[rules.severity]\nmystery = "info"', "Unknown rule ids: mystery"),
        ("[extraction]\nmax_workers = 0", "max_workers must be >= 1"),
        ('[extraction]\nstrategies = ["rails"]', "Unknown extraction strategies: rails"),
        ("path_ignore = 3", "path_ignore must be a list of strings"),
        ("format = [", "Invalid TOML"),
    ],
)
def test_load_app_config_rejects_invalid_values(tmp_path: Path, body: str, message: str) -> None:
    (tmp_path / ".api-conform.toml").write_text(body, encoding="utf-8")
    with pytest.raises(ValueError, match=message):
        load_app_config(tmp_path)


def test_severity_override_for_engine_finding_is_accepted(tmp_path: Path) -> None:
    (tmp_path / "api-conform.toml").write_text('[rules.severity]\nspec_extension = "warning"\n', encoding="utf-8")
    assert load_app_config(tmp_path).severity_overrides == {"spec_extension": "warning"}


def test_explicit_missing_config_path_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="does not exist"):
        load_app_config(tmp_path, Path("nope.toml"))


def test_rules_command_json_reports_enabled_state(tmp_path: Path) -> None:
    (tmp_path / ".api-conform.toml").write_text(
        '[rules]\ndisable = ["naming"]\n\n[rules.severity]\nerror_shape = "info"\n',
        encoding="utf-8",
    )

    result = runner.invoke(app, ["rules", "--project", str(tmp_path), "--format", "json"])
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    rules = {item["rule_id"]: item for item in payload["rules"]}
    assert rules["naming"]["enabled"] is False
    assert rules["security"]["enabled"] is True
    assert rules["security"]["category"] == "security"
    assert rules["error_shape"]["severity_override"] == "info"
    assert payload["meta"]["config_source"] == str((tmp_path / ".api-conform.toml").resolve())


def test_rules_command_human_lists_every_rule(tmp_path: Path) -> None:
    result = runner.invoke(app, ["rules", "--project", str(tmp_path)])
    assert result.exit_code == 0
    assert result.stdout.startswith("Available rules:")
    for rule_id in ("security", "contract_coverage", "parameter_drift", "http_semantics", "error_shape", "naming"):
        assert f"- {rule_id} [" in result.stdout


def test_config_command_json_includes_active_rules(tmp_path: Path) -> None:
    (tmp_path / ".api-conform.toml").write_text('[rules]\nenable = ["security"]\n', encoding="utf-8")

    result = runner.invoke(app, ["config", "--project", str(tmp_path), "--format", "json"])
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    assert payload["active_rule_ids"] == ["security"]
    assert payload["rules"]["enable"] == ["security"]
    assert payload["extraction"]["max_workers"] == 8


def test_config_init_writes_template_and_refuses_overwrite(tmp_path: Path) -> None:
    out = tmp_path / ".api-conform.toml"

    first = runner.invoke(app, ["config-init", "--out", str(out)])
    assert first.exit_code == 0
    assert out.read_text(encoding="utf-8") == default_config_template()

    second = runner.invoke(app, ["config-init", "--out", str(out)])
    assert second.exit_code == 2

    forced = runner.invoke(app, ["config-init", "--out", str(out), "--force"])
    assert forced.exit_code == 0


def test_default_template_is_a_valid_config(tmp_path: Path) -> None:
    (tmp_path / ".api-conform.toml").write_text(default_config_template(), encoding="utf-8")

    result = runner.invoke(app, ["config-validate", "--project", str(tmp_path), "--format", "json"])
    assert result.exit_code == 0

    payload = json.loads(result.stdout)
    assert payload["ok"] is True
    assert "naming" not in payload["active_rule_ids"]
    assert payload["active_rule_ids"][0] == "security"


def test_config_validate_rejects_bad_config(tmp_path: Path) -> None:
    (tmp_path / ".api-conform.toml").write_text('[rules]\ndisable = ["nope"]\n', encoding="utf-8")

    result = runner.invoke(app, ["config-validate", "--project", str(tmp_path)])
    assert result.exit_code == 2

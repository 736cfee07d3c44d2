"""Tests for the home-aware configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from athena import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "runtime:\n  name: Athena\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "athena.yml").write_text(content, encoding="utf-8")
    return config_dir


def _write_override(home: Path, content: str, name: str = "20-overrides.yml") -> None:
    overrides_dir = home / "config"
    overrides_dir.mkdir(parents=True, exist_ok=True)
    (overrides_dir / name).write_text(content, encoding="utf-8")


def test_resolve_home_dir_uses_env_expansion(tmp_path: Path):
    env = {"ATHENA_HOME": str(tmp_path / "home")}
    assert configuration.resolve_home_dir(env=env) == tmp_path / "home"


def test_load_runtime_configuration_merges_repo_and_home(tmp_path: Path):
    repo_dir = _prepare_repo_defaults(
        tmp_path,
        content="runtime:\n  name: Athena\nplugins:\n  clock:\n    tick_every_seconds: 600\n",
    )
    home = tmp_path / "home"
    _write_override(home, "runtime:\n  name: Pallas\nplugins:\n  clock:\n    tick_every_seconds: 30\n")

    bundle = configuration.load_runtime_configuration(home, defaults_dir=repo_dir)

    assert bundle.status == "ready"
    assert bundle.merged["runtime"]["name"] == "Pallas"
    assert bundle.merged["runtime"]["max_prompts"] == 50
    assert bundle.merged["plugins"]["clock"]["tick_every_seconds"] == 30
    assert len(bundle.files_loaded) == 2


def test_load_runtime_configuration_reports_missing_home(tmp_path: Path):
    repo_dir = _prepare_repo_defaults(tmp_path)

    bundle = configuration.load_runtime_configuration(tmp_path / "missing", defaults_dir=repo_dir)

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path):
    repo_dir = _prepare_repo_defaults(tmp_path)
    home = tmp_path / "home"
    _write_override(home, "runtime: [\n", name="broken.yml")

    bundle = configuration.load_runtime_configuration(home, defaults_dir=repo_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_runtime_config_pushes_defaults_into_cerebrum_and_drops_disabled(tmp_path: Path):
    repo_dir = _prepare_repo_defaults(
        tmp_path,
        content=(
            "runtime:\n  name: Pallas\n  max_prompts: 12\n"
            "plugins:\n  athena: {}\n  cli-ui: {}\n  cerebrum:\n    spill_dir: spill\n"
        ),
    )
    home = tmp_path / "home"
    _write_override(home, "plugins:\n  cli-ui: false\n  clock:\n")

    bundle = configuration.load_runtime_configuration(home, defaults_dir=repo_dir)
    runtime = bundle.runtime_config()

    assert list(runtime["plugins"]) == ["athena", "cerebrum", "clock"]
    assert runtime["plugins"]["clock"] == {}
    cerebrum = runtime["plugins"]["cerebrum"]
    assert cerebrum["name"] == "Pallas"
    assert cerebrum["max_prompts"] == 12
    assert cerebrum["spill_dir"] == str(home / "spill")


def test_state_path_and_log_level_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path, content="state:\n  path: data/state.json\n")
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.delenv("ATHENA_LOG_LEVEL", raising=False)

    bundle = configuration.load_runtime_configuration(home, defaults_dir=repo_dir)
    assert bundle.state_path == home / "data" / "state.json"
    assert bundle.log_level == "INFO"

    monkeypatch.setenv("ATHENA_LOG_LEVEL", "DEBUG")
    assert bundle.log_level == "DEBUG"


def test_shipped_defaults_are_valid(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()

    bundle = configuration.load_runtime_configuration(home)

    assert bundle.status == "ready"
    assert "cerebrum" in bundle.runtime_config()["plugins"]

from pathlib import Path

from athena.configuration import load_runtime_configuration


def _write_override(home: Path, content: str) -> None:
    cfg_dir = home / "config"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    (cfg_dir / "local.yml").write_text(content)


def test_invalid_types_raise_diagnostics(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(
        home,
        """
        runtime:
          max_prompts: "many"
        """,
    )

    bundle = load_runtime_configuration(home)

    assert bundle.status == "invalid"
    assert any("max_prompts" in diag.message for diag in bundle.diagnostics)
    assert bundle.merged["runtime"]["max_prompts"] == 50


def test_booleans_are_not_integers(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(
        home,
        """
        runtime:
          max_prompts: true
        """,
    )

    bundle = load_runtime_configuration(home)

    assert bundle.status == "invalid"


def test_unknown_keys_warn(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(
        home,
        """
        mystery:
          value: 1
        """,
    )

    bundle = load_runtime_configuration(home)

    assert bundle.status == "ready"
    assert any("Unknown configuration key" in diag.message for diag in bundle.diagnostics)


def test_plugin_blocks_must_be_mappings(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(
        home,
        """
        plugins:
          clock: 5
        """,
    )

    bundle = load_runtime_configuration(home)

    assert bundle.status == "invalid"
    assert any("config.plugins.clock" in diag.message for diag in bundle.diagnostics)


def test_range_and_choice_checks(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(
        home,
        """
        runtime:
          max_prompts: 1
        logging:
          level: chatty
        """,
    )

    bundle = load_runtime_configuration(home)

    messages = [diag.message for diag in bundle.diagnostics]
    assert any("max_prompts' must be at least 2" in message for message in messages)
    assert any("level' must be one of" in message for message in messages)
    assert bundle.merged["logging"]["level"] == "INFO"
    assert bundle.merged["runtime"]["max_prompts"] == 50


def test_lowercase_log_level_is_accepted(tmp_path: Path):
    home = tmp_path / "home"
    home.mkdir()
    _write_override(home, "logging:\n  level: debug\n")

    bundle = load_runtime_configuration(home)

    assert bundle.status == "ready"

"""Home-directory-aware configuration loading for Athena.

Defaults ship in ``config/*.yml`` next to the package. Operators override any
key from ``<ATHENA_HOME>/config/*.yml``; files are merged in name order and
mappings merge recursively. A plugin block set to ``false`` disables a plugin
the defaults enable.
"""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
HOME_ENV = "ATHENA_HOME"
LOG_LEVEL_ENV = "ATHENA_LOG_LEVEL"
DEFAULT_HOME = "~/.athena"
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]

SchemaSpec = Dict[str, Any]

# Keys per entry: type, default, schema (nested mapping), choices, min.
CONFIG_SCHEMA: SchemaSpec = {
    "runtime": {
        "type": dict,
        "default": {},
        "schema": {
            "name": {"type": str, "default": "Athena"},
            "max_prompts": {"type": int, "default": 50, "min": 2},
        },
    },
    "logging": {
        "type": dict,
        "default": {},
        "schema": {
            "level": {"type": str, "default": "INFO", "choices": LOG_LEVELS},
            "structured": {"type": bool, "default": True},
        },
    },
    "state": {
        "type": dict,
        "default": {},
        "schema": {
            "path": {"type": str, "default": "state/plugins.json"},
        },
    },
    # Free-form: each plugin validates its own block.
    "plugins": {"type": dict, "default": {}},
}


@dataclass
class Diagnostic:
    """A problem (or note) found while loading configuration."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """Merged configuration plus everything learned while producing it."""

    home_dir: Path
    status: ConfigurationStatus
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    home_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    @property
    def log_level(self) -> str:
        return os.environ.get(LOG_LEVEL_ENV) or str(self.merged.get("logging", {}).get("level", "INFO"))

    @property
    def state_path(self) -> Path:
        raw = Path(self.merged.get("state", {}).get("path", "state/plugins.json")).expanduser()
        return raw if raw.is_absolute() else self.home_dir / raw

    def runtime_config(self) -> Dict[str, Any]:
        """Registry config: enabled plugin blocks, with runtime-wide values pushed into cerebrum."""

        runtime = self.merged.get("runtime", {})
        plugins: Dict[str, Any] = {}
        for name, block in (self.merged.get("plugins") or {}).items():
            if block is False:
                continue
            block = dict(block or {})
            if name == "cerebrum":
                block.setdefault("name", runtime.get("name", "Athena"))
                block.setdefault("max_prompts", runtime.get("max_prompts", 50))
                block["spill_dir"] = str(self._under_home(block.get("spill_dir", "spill")))
            plugins[name] = block
        return {"plugins": plugins}

    def _under_home(self, raw: Any) -> Path:
        path = Path(str(raw)).expanduser()
        return path if path.is_absolute() else self.home_dir / path


def resolve_home_dir(
    env: Optional[Mapping[str, str]] = None,
    default: str = DEFAULT_HOME,
) -> Path:
    """Resolve the Athena home directory from ``ATHENA_HOME``."""

    source = env if env is not None else os.environ
    return Path(source.get(HOME_ENV, default)).expanduser()


def load_runtime_configuration(
    home_dir: Optional[Path] = None,
    defaults_dir: Path = DEFAULT_CONFIG_DIR,
) -> ConfigurationBundle:
    """Merge repo defaults with home overrides and validate the result."""

    home = home_dir or resolve_home_dir()
    diagnostics: List[Diagnostic] = []

    repo_defaults, files_loaded = _load_layer(defaults_dir, "repo defaults", diagnostics)

    status: ConfigurationStatus = "ready"
    home_overrides: Dict[str, Any] = {}
    if not home.exists():
        _report(diagnostics, "error", f"Home directory '{home}' does not exist.")
        status = "missing"
    elif not home.is_dir():
        _report(diagnostics, "error", f"Home path '{home}' is not a directory.")
        status = "invalid"
    else:
        home_overrides, override_files = _load_layer(home / "config", "home overrides", diagnostics)
        files_loaded = files_loaded + override_files

    merged = deepcopy(repo_defaults)
    _deep_merge_dicts(merged, home_overrides)
    _validate_schema(merged, diagnostics)

    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        home_dir=home,
        status=status,
        merged=merged,
        repo_defaults=repo_defaults,
        home_overrides=home_overrides,
        files_loaded=files_loaded,
        diagnostics=diagnostics,
    )


def _report(
    diagnostics: List[Diagnostic],
    level: DiagnosticLevel,
    message: str,
    source: Optional[Path] = None,
) -> None:
    diagnostics.append(Diagnostic(level=level, message=message, source=source))


def _load_layer(
    directory: Path,
    label: str,
    diagnostics: List[Diagnostic],
) -> Tuple[Dict[str, Any], List[Path]]:
    """Merge every ``*.yml``/``*.yaml`` file in ``directory``, in name order."""

    data: Dict[str, Any] = {}
    loaded: List[Path] = []

    if not directory.exists():
        _report(diagnostics, "warning", f"No configuration directory at '{directory}' ({label}).", directory)
        return data, loaded
    if not directory.is_dir():
        _report(diagnostics, "error", f"Configuration path '{directory}' ({label}) is not a directory.", directory)
        return data, loaded

    for path in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        try:
            content = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            _report(diagnostics, "error", f"Failed to parse '{path}': {exc}", path)
            continue
        if content is not None and not isinstance(content, MutableMapping):
            _report(diagnostics, "warning", f"Ignoring '{path}': top level is not a mapping.", path)
            continue
        _deep_merge_dicts(data, dict(content or {}))
        loaded.append(path)

    if not loaded:
        _report(diagnostics, "info", f"No YAML files under '{directory}' ({label}).", directory)
    return data, loaded


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        current = dest.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(current, value)
        else:
            dest[key] = deepcopy(value)


def _validate_schema(config: Dict[str, Any], diagnostics: List[Diagnostic]) -> None:
    _validate_section(config, CONFIG_SCHEMA, "config", diagnostics)
    for name, block in (config.get("plugins") or {}).items():
        if block is None or block is False or isinstance(block, dict):
            continue
        _report(diagnostics, "error", f"'config.plugins.{name}' must be a mapping, empty, or false.")


def _validate_section(
    target: Dict[str, Any],
    schema: SchemaSpec,
    path: str,
    diagnostics: List[Diagnostic],
) -> None:
    for key in target:
        if key not in schema:
            _report(diagnostics, "warning", f"Unknown configuration key '{path}.{key}'.")

    for key, spec in schema.items():
        child = f"{path}.{key}"
        if key not in target:
            if "default" in spec:
                target[key] = deepcopy(spec["default"])
            continue
        value = target[key]
        expected = spec.get("type")

        if expected is dict:
            if value is None:
                target[key] = {}
            elif not isinstance(value, dict):
                _report(diagnostics, "error", f"'{child}' must be a mapping.")
                target[key] = {}
            elif "schema" in spec:
                _validate_section(value, spec["schema"], child, diagnostics)
            continue

        problem = _check_value(value, spec)
        if problem:
            _report(diagnostics, "error", f"'{child}' {problem}.")
            target[key] = deepcopy(spec.get("default"))


def _check_value(value: Any, spec: SchemaSpec) -> Optional[str]:
    expected = spec.get("type")
    # bool is an int subclass; a YAML `true` is never a count.
    if expected and (not isinstance(value, expected) or (expected is int and isinstance(value, bool))):
        return f"must be of type {expected.__name__}"
    choices = spec.get("choices")
    if choices and str(value).upper() not in choices:
        return f"must be one of {', '.join(choices)}"
    minimum = spec.get("min")
    if minimum is not None and value < minimum:
        return f"must be at least {minimum}"
    return None


__all__ = [
    "CONFIG_SCHEMA",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "load_runtime_configuration",
    "resolve_home_dir",
]

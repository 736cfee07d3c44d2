"""
Process bootstrap for the Athena runtime.

Loads configuration and persisted plugin state, brings every configured plugin
up, then idles until SIGINT/SIGTERM before unloading in reverse order and
writing state back to disk.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
import signal
import sys
from typing import Dict, List, Optional

from .configuration import (
    ConfigurationBundle,
    Diagnostic,
    load_runtime_configuration,
)
from .core import Athena, AthenaError
from .logging_utils import setup_logging
from .state import StateStore

logger = logging.getLogger("athena")


def _log_path_within_home(log_path: Path, home_dir: Path) -> bool:
    try:
        log_path.relative_to(home_dir)
        return True
    except ValueError:
        return False


def emit_configuration_report(config: ConfigurationBundle) -> None:
    """Print diagnostics so operators can correct issues quickly."""

    if not config.diagnostics:
        print(f"[config] Loaded {len(config.files_loaded)} file(s) from repo and home config directories.")
        return

    print("[config] Diagnostics:")
    for diag in config.diagnostics:
        prefix = diag.source or config.home_dir
        print(f"  - ({diag.level.upper()}) {diag.message} [{prefix}]")


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: asyncio.Event) -> List[int]:
    installed: List[int] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            # Not supported on this platform or outside the main thread.
            continue
        installed.append(sig)
    return installed


async def run(config_bundle: ConfigurationBundle, stop: Optional[asyncio.Event] = None) -> Dict[str, str]:
    """Run the registry until ``stop`` is set; returns the per-plugin load results."""

    store = StateStore(config_bundle.state_path)
    athena = Athena(config_bundle.runtime_config(), store.load())
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    installed = _install_signal_handlers(loop, stop)
    try:
        results = await athena.load_plugins()
        failed = [name for name, status in results.items() if status != "loaded"]
        if failed:
            logger.warning("Running without plugin(s): %s", ", ".join(failed))
        await stop.wait()
        logger.info("Shutdown requested.")
    finally:
        await athena.unload_plugins()
        store.save(athena.states)
        for sig in installed:
            loop.remove_signal_handler(sig)
    return results


def main() -> None:
    """Entry point for `python -m athena`."""

    config_bundle = load_runtime_configuration()
    emit_configuration_report(config_bundle)

    plugins = config_bundle.merged.get("plugins") or {}
    log_settings = config_bundle.merged.get("logging") or {}
    log_path = setup_logging(
        config_bundle.home_dir,
        config_bundle.log_level.upper(),
        structured=bool(log_settings.get("structured", True)),
        # Keep the terminal for the conversation when the CLI front end is on.
        console=plugins.get("cli-ui") in (None, False),
    )
    config_bundle.log_path = log_path
    if not _log_path_within_home(log_path, config_bundle.home_dir):
        config_bundle.diagnostics.append(
            Diagnostic(
                level="warning",
                message=f"Home log directory is not writable; logging to fallback path '{log_path}'.",
                source=log_path,
            )
        )
    logger.info("Logging initialized at %s", log_path)

    try:
        asyncio.run(run(config_bundle))
    except AthenaError as exc:
        print(f"[athena] {exc}", file=sys.stderr)
        sys.exit(1)
    print("[Goodbye]")


__all__ = ["emit_configuration_report", "main", "run"]

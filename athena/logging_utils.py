"""Logging setup for the Athena runtime.

Everything under the ``athena`` logger goes to a rotating text log in the home
directory, optionally mirrored as JSON lines and to stderr.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import List, Optional, Sequence, Union

ROOT_LOGGER = "athena"
LOG_SUBPATH = Path("logs") / "athena.log"
STRUCTURED_LOG_SUBPATH = Path("logs") / "athena.jsonl"
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
MAX_BYTES = 5 * 1024 * 1024  # 5 MB per log segment
BACKUP_COUNT = 3
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".athena_runtime"
NOISY_LOGGERS = ("openai", "httpx", "httpcore", "uvicorn", "uvicorn.access", "llama_cpp")


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Records logged with ``extra={"plugin": name}`` carry a ``plugin`` field so
    a single plugin's lifecycle can be filtered out of the stream.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        plugin = getattr(record, "plugin", None)
        if plugin:
            entry["plugin"] = plugin
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(
    home_dir: Path,
    level: Union[str, int] = logging.INFO,
    structured: bool = True,
    console: bool = True,
) -> Path:
    """Install Athena's handlers, replacing any installed earlier.

    Args:
        home_dir: Athena home directory; logs go under ``logs/``.
        level: Logging level (string name or int constant).
        structured: Whether to also write JSON lines next to the text log.
        console: Whether to mirror records to stderr. The terminal UI turns
            this off so log lines do not interleave with the conversation.

    Returns:
        Path to the primary (text) log file.
    """
    text_path = _resolve_path(home_dir, LOG_SUBPATH)
    text_formatter = logging.Formatter(TEXT_FORMAT)

    handlers: List[logging.Handler] = [_rotating(text_path, text_formatter)]
    if console:
        stream = logging.StreamHandler(sys.stderr)
        stream.setFormatter(text_formatter)
        handlers.append(stream)
    if structured:
        handlers.append(_rotating(_resolve_path(home_dir, STRUCTURED_LOG_SUBPATH), JSONFormatter()))

    logger = logging.getLogger(ROOT_LOGGER)
    _reset_handlers(logger)
    logger.setLevel(_resolve_level(level))
    for handler in handlers:
        logger.addHandler(handler)
    logger.propagate = False

    _silence_third_party()
    return text_path


def _rotating(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(
        path,
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, str):
        return getattr(logging, level.upper(), logging.INFO)
    return int(level)


def _resolve_path(home_dir: Path, subpath: Path) -> Path:
    primary = home_dir / subpath
    try:
        primary.parent.mkdir(parents=True, exist_ok=True)
        return primary
    except PermissionError:
        fallback = FALLBACK_ROOT / subpath
        fallback.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Cannot write logs under '{home_dir}'; using '{fallback.parent}' instead.",
            file=sys.stderr,
        )
        return fallback


def _reset_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _silence_third_party(names: Optional[Sequence[str]] = None) -> None:
    # HTTP clients and llama.cpp log every request at INFO.
    for name in names or NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


__all__ = [
    "FALLBACK_ROOT",
    "JSONFormatter",
    "LOG_SUBPATH",
    "STRUCTURED_LOG_SUBPATH",
    "setup_logging",
]

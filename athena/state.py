"""JSON file holding the per-plugin state map between runs."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
import tempfile
from typing import Any, Dict, Mapping

logger = logging.getLogger("athena.state")


class StateStore:
    """Reads and atomically rewrites ``{plugin_name: blob}``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def load(self) -> Dict[str, Any]:
        if not self.path.exists():
            logger.info("No state file at %s; starting fresh.", self.path)
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Ignoring unreadable state file %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Ignoring state file %s because it does not hold a mapping.", self.path)
            return {}
        logger.info("Loaded state for %d plugin(s) from %s", len(data), self.path)
        return data

    def save(self, states: Mapping[str, Any]) -> Path:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(dict(states), indent=2, ensure_ascii=False, default=str)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
        logger.info("Saved state for %d plugin(s) to %s", len(states), self.path)
        return self.path


__all__ = ["StateStore"]

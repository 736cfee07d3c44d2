"""Keep oversized string payloads out of the model's context."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any
import uuid

logger = logging.getLogger("athena.cognition.spill")


@dataclass
class PayloadSpill:
    """Writes strings longer than ``max_strlen`` to files under ``directory``.

    The string is replaced by a short note telling the model where the full
    content went, so it can read slices with other tools.
    """

    directory: Path
    max_strlen: int = 65536

    def sanitize(self, value: Any) -> Any:
        if value is None:
            return value
        if isinstance(value, str):
            if len(value) > self.max_strlen:
                return self._spill(value)
            return value
        if isinstance(value, (list, tuple)):
            return [self.sanitize(item) for item in value]
        if isinstance(value, dict):
            return {key: self.sanitize(item) for key, item in value.items()}
        return value

    def _spill(self, text: str) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        target = self.directory / f"event-{uuid.uuid4().hex[:12]}.txt"
        target.write_text(text, encoding="utf-8")
        logger.info("Spilled %d character payload to %s", len(text), target)
        return (
            f"The result is too long ({len(text)} characters) and cannot be shown "
            f'directly. It has been written to "{target}". Use other tools to read '
            "the file and reveal part of the content."
        )


__all__ = ["PayloadSpill"]

"""API key handling for the web bridge."""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import logging
from pathlib import Path
import secrets
from typing import Optional

logger = logging.getLogger("athena.plugins.webapp_ui.auth")


@dataclass
class APIKeyManager:
    """Resolves the expected API key and validates presented ones.

    A key given in configuration wins. Otherwise, when a ``key_file`` is set,
    the key is read from it, or generated and written there on first use.
    With neither, authentication is disabled.
    """

    configured_key: Optional[str] = None
    key_file: Optional[Path] = None
    _cached_key: Optional[str] = None

    @property
    def enabled(self) -> bool:
        return bool(self.configured_key or self.key_file)

    def get_or_generate_key(self) -> str:
        if self._cached_key:
            return self._cached_key
        if self.configured_key:
            self._cached_key = self.configured_key
            return self._cached_key
        if self.key_file is None:
            raise RuntimeError("API key authentication is disabled.")

        if self.key_file.exists():
            try:
                key = self.key_file.read_text(encoding="utf-8").strip()
            except OSError as exc:
                logger.warning("Unable to read API key file %s: %s", self.key_file, exc)
                key = ""
            if key:
                self._cached_key = key
                return key

        key = secrets.token_hex(32)
        self._save_key(key)
        self._cached_key = key
        return key

    def validate_key(self, provided_key: str) -> bool:
        if not self.enabled:
            return True
        if not provided_key:
            return False
        return secrets.compare_digest(provided_key, self.get_or_generate_key())

    def _save_key(self, key: str) -> None:
        try:
            self.key_file.parent.mkdir(parents=True, exist_ok=True)
            self.key_file.write_text(key, encoding="utf-8")
            self.key_file.chmod(0o600)
        except OSError as exc:
            logger.warning("API key kept in memory only; could not write %s: %s", self.key_file, exc)
            return
        logger.info("Generated API key %s… at %s", hash_key(key), self.key_file)


def hash_key(key: str) -> str:
    """One-way fingerprint of a key, safe to log."""
    return hashlib.sha256(key.encode()).hexdigest()[:16]


__all__ = ["APIKeyManager", "hash_key"]

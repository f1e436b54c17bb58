"""
Round-robin pool of GitHub credentials.

Spreads rate-limit consumption across several tokens. The cursor lives in
memory only and resets on restart.
"""

from __future__ import annotations

import threading
from typing import Iterable

from loguru import logger

from .utils import ConfigError


class TokenRotator:
    """Hands out tokens from a fixed pool in round-robin order."""

    def __init__(self, tokens: Iterable[str]):
        self._tokens = [t for t in tokens if t]
        if not self._tokens:
            raise ConfigError("Token pool is empty: set GITHUB_TOKENS")
        self._cursor = 0
        self._lock = threading.Lock()
        logger.info(f"Token pool initialized with {len(self._tokens)} token(s)")

    @classmethod
    def from_env(cls, value: str | None) -> "TokenRotator":
        """Build a rotator from a comma-separated string."""
        return cls(part.strip() for part in (value or "").split(","))

    def next(self) -> str:
        with self._lock:
            token = self._tokens[self._cursor]
            self._cursor = (self._cursor + 1) % len(self._tokens)
        return token

    def __len__(self) -> int:
        return len(self._tokens)

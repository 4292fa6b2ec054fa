"""Durable storage for cached IdP tokens."""

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict

from ..auth.models import TokenCacheEntry


logger = logging.getLogger(__name__)


class TokenStore(ABC):
    """Abstract durable store behind the token cache."""

    @abstractmethod
    def load(self) -> Dict[str, TokenCacheEntry]:
        """Read every stored entry, keyed by account."""

    @abstractmethod
    def save(self, entries: Dict[str, TokenCacheEntry]) -> None:
        """Replace the stored entries with *entries*."""


class MemoryTokenStore(TokenStore):
    """Keeps entries in memory only (tests, or runs that must not touch disk)."""

    def __init__(self, entries: Dict[str, TokenCacheEntry] = None):
        self.entries: Dict[str, TokenCacheEntry] = dict(entries or {})
        self.save_count = 0

    def load(self) -> Dict[str, TokenCacheEntry]:
        return dict(self.entries)

    def save(self, entries: Dict[str, TokenCacheEntry]) -> None:
        self.entries = dict(entries)
        self.save_count += 1


class JsonFileTokenStore(TokenStore):
    """Stores entries in a JSON file readable only by the current user."""

    FILE_VERSION = 1

    def __init__(self, path: Path):
        """Initialize store.

        Args:
            path: JSON file holding the cache (created on first save)
        """
        self.path = Path(path)

    def load(self) -> Dict[str, TokenCacheEntry]:
        if not self.path.exists():
            logger.info(f"No token cache found at {self.path}, starting empty")
            return {}

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable token cache {self.path}: {e}")
            return {}

        entries: Dict[str, TokenCacheEntry] = {}
        for account, raw in data.get("accounts", {}).items():
            try:
                entries[account] = TokenCacheEntry.from_dict(raw)
            except (KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed token cache entry for {account}: {e}")
        logger.info(f"Loaded {len(entries)} cached token(s) from {self.path}")
        return entries

    def save(self, entries: Dict[str, TokenCacheEntry]) -> None:
        payload = {
            "version": self.FILE_VERSION,
            "accounts": {account: entry.to_dict() for account, entry in entries.items()},
        }
        self.path.parent.mkdir(parents=True, exist_ok=True)

        # Write to a temp file next to the target, then swap it in
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".tokens-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
        except OSError:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
        logger.debug(f"Saved {len(entries)} cached token(s) to {self.path}")

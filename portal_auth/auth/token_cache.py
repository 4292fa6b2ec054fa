"""In-memory view of the IdP token cache, flushed to a durable store."""

import logging
import threading
from typing import Dict, List, Optional

from ..storage.token_store import TokenStore
from .models import TokenCacheEntry


logger = logging.getLogger(__name__)


class TokenCache:
    """Previously issued identity tokens keyed by account.

    The store is read once at construction and written on every
    put/invalidate/clear. A store that cannot be written is logged and
    skipped; the in-memory entries stay authoritative for this process.
    Reads and writes are serialised by a lock so several orchestrators in
    one process can share a cache; concurrent puts are last-writer-wins.
    Sharing one store file between processes is not supported.
    """

    def __init__(self, store: TokenStore):
        self.store = store
        self._lock = threading.Lock()
        self._entries: Dict[str, TokenCacheEntry] = store.load()

    @staticmethod
    def _key(account: str) -> str:
        return account.strip().lower()

    def get(self, account: str) -> Optional[TokenCacheEntry]:
        with self._lock:
            return self._entries.get(self._key(account))

    def put(self, account: str, entry: TokenCacheEntry) -> None:
        with self._lock:
            entries = dict(self._entries)
            entries[self._key(account)] = entry
            self._flush(entries)
            self._entries = entries
        logger.info(f"Cached IdP token for {account}")

    def invalidate(self, account: str) -> bool:
        """Drop the entry for *account*.

        Returns:
            bool: True if an entry was removed
        """
        with self._lock:
            removed = self._entries.pop(self._key(account), None)
            if removed is not None:
                self._flush(dict(self._entries))
        if removed is not None:
            logger.info(f"Invalidated cached IdP token for {account}")
        return removed is not None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._flush({})
        logger.info("Cleared IdP token cache")

    def accounts(self) -> List[str]:
        with self._lock:
            return sorted(self._entries)

    def _flush(self, entries: Dict[str, TokenCacheEntry]) -> None:
        try:
            self.store.save(entries)
        except OSError as e:
            logger.warning(f"Could not write the token cache, keeping it in memory only: {e}")

"""
Reconciliation Cache - persisted fingerprints of synchronized modules.

Maps a module key ("block:Hero") to the fingerprint of the configuration
last pushed to DatoCMS and the remote item type id it produced. The file is
a JSON list of [key, {"hash": ..., "id": ...}] pairs.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import asdict, dataclass
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheEntry:
    hash: str
    id: str


class ReconciliationCache:
    """
    Process-local cache backed by a JSON file.

    Writes are serialized with a lock and persisted immediately, so a run
    interrupted half-way keeps what it already synchronized. With
    skip_reads the cache behaves as empty and never writes.
    """

    def __init__(self, path: str, skip_reads: bool = False):
        self.path = path
        self.skip_reads = skip_reads
        self._items: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def load(self) -> "ReconciliationCache":
        """Read the cache file; a missing or unreadable file means an empty cache."""
        if self.skip_reads:
            logger.info("Cache disabled for this run")
            return self

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.debug(f"No cache file at {self.path}, starting empty")
            data = []
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable cache file {self.path}: {e}")
            data = []

        pairs = data.items() if isinstance(data, dict) else data
        items = {}
        for pair in pairs:
            try:
                key, value = pair
                items[key] = CacheEntry(hash=value['hash'], id=value['id'])
            except (TypeError, ValueError, KeyError):
                logger.warning(f"Skipping malformed cache entry: {pair!r}")

        with self._lock:
            self._items = items
        logger.debug(f"Loaded {len(items)} cache entries from {self.path}")
        return self

    def get(self, key: str) -> Optional[CacheEntry]:
        if self.skip_reads:
            return None
        with self._lock:
            return self._items.get(key)

    def set(self, key: str, entry: CacheEntry) -> None:
        if self.skip_reads:
            return
        with self._lock:
            self._items[key] = entry
            self._persist()

    def delete(self, key: str) -> bool:
        if self.skip_reads:
            return False
        with self._lock:
            existed = self._items.pop(key, None) is not None
            if existed:
                self._persist()
            return existed

    def keys(self) -> List[str]:
        if self.skip_reads:
            return []
        with self._lock:
            return list(self._items)

    def items(self) -> List[Tuple[str, CacheEntry]]:
        if self.skip_reads:
            return []
        with self._lock:
            return list(self._items.items())

    def find_by_id(self, remote_id: str, among: Optional[Iterable[str]] = None) -> Optional[str]:
        """Key of the entry pointing at remote_id, optionally limited to the given keys."""
        allowed = set(among) if among is not None else None
        for key, entry in self.items():
            if entry.id == remote_id and (allowed is None or key in allowed):
                return key
        return None

    def __len__(self) -> int:
        return len(self.keys())

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    def _persist(self) -> None:
        """Write the cache atomically. Caller holds the lock."""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        payload = [[key, asdict(entry)] for key, entry in self._items.items()]
        fd, tmp_path = tempfile.mkstemp(prefix='.cache-', suffix='.json', dir=directory)
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(payload, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

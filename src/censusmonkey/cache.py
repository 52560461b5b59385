import json
import logging
import os
import pickle
import tempfile
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any


@dataclass
class CacheEntry:
    cache_key: str
    source: str
    year: int | None
    geography: str | None
    url: str
    cached_at: float
    last_accessed: float
    ttl: int
    size_bytes: int
    query_params: dict[str, Any] | None

    def is_expired(self) -> bool:
        return time.time() - self.cached_at > self.ttl

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CacheEntry":
        return cls(**data)


class FileCache:
    """File-based cache of API responses with TTL and LRU eviction.

    Each entry is a pickle next to a shared ``metadata.json`` index; the index
    is rewritten atomically so a crash never leaves it half-written.
    """

    def __init__(
        self, cache_dir: str, ttl: int, max_size_mb: float | None = None
    ) -> None:
        self.cache_dir = Path(cache_dir).expanduser()
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.ttl = ttl
        self.max_size_mb = max_size_mb
        self.metadata_file = self.cache_dir / "metadata.json"
        self.metadata: dict[str, CacheEntry] = {}
        self._logger = logging.getLogger(__name__)
        self._load_metadata()
        self._total_size_bytes: int = sum(
            e.size_bytes for e in self.metadata.values()
        )

    def _data_file(self, cache_key: str) -> Path:
        return self.cache_dir / f"{cache_key}.data"

    def _load_metadata(self) -> None:
        """Load metadata from disk"""
        if not self.metadata_file.exists():
            self._save_metadata()
            return

        try:
            with open(self.metadata_file, "r") as f:
                data = json.load(f)
            self.metadata = {k: CacheEntry.from_dict(v) for k, v in data.items()}
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            self._logger.warning(f"Discarding unreadable cache index: {e}")
            self.metadata = {}

    def _save_metadata(self) -> None:
        """Atomically save metadata to disk"""
        data = {k: v.to_dict() for k, v in self.metadata.items()}

        fd, temp_path = tempfile.mkstemp(
            dir=self.cache_dir, prefix=".metadata-", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(temp_path, self.metadata_file)
        except Exception:
            Path(temp_path).unlink(missing_ok=True)
            raise

    def get(self, cache_key: str) -> Any | None:
        """Return the cached value, or None when missing, expired or corrupt"""
        entry = self.metadata.get(cache_key)
        if not entry:
            return None

        if entry.is_expired():
            self._logger.debug(f"Cache entry {cache_key[:12]} expired")
            self.delete(cache_key)
            return None

        data_file = self._data_file(cache_key)
        if not data_file.exists():
            self.delete(cache_key)
            return None

        try:
            with open(data_file, "rb") as f:
                data = pickle.load(f)
        except (pickle.UnpicklingError, EOFError) as e:
            self._logger.warning(f"Corrupted cache file {cache_key}: {e}")
            self.delete(cache_key)
            return None

        entry.last_accessed = time.time()
        self._save_metadata()

        return data

    def set(self, cache_key: str, data: Any, entry: CacheEntry) -> None:
        """Store a value, evicting least recently used entries when over budget"""
        try:
            payload = pickle.dumps(data)
        except (pickle.PicklingError, TypeError, AttributeError) as e:
            self._logger.warning(f"Data not cacheable: {e}")
            return

        old_size = 0
        if cache_key in self.metadata:
            old_size = self.metadata[cache_key].size_bytes

        data_file = self._data_file(cache_key)
        with open(data_file, "wb") as f:
            f.write(payload)

        entry.size_bytes = data_file.stat().st_size
        self.metadata[cache_key] = entry
        self._total_size_bytes = self._total_size_bytes - old_size + entry.size_bytes

        if self.max_size_mb:
            self._enforce_size_limit(keep=cache_key)

        self._save_metadata()

    def delete(self, cache_key: str) -> None:
        """Delete cache entry"""
        if cache_key in self.metadata:
            self._total_size_bytes -= self.metadata[cache_key].size_bytes

        self._data_file(cache_key).unlink(missing_ok=True)
        self.metadata.pop(cache_key, None)
        self._save_metadata()

    def clear(self, source: str | None = None) -> int:
        """Clear all entries, or only those fetched from ``source``.

        Returns:
            Number of entries removed
        """
        keys = [
            cache_key
            for cache_key, entry in self.metadata.items()
            if source is None or entry.source == source
        ]
        for cache_key in keys:
            self.delete(cache_key)
        return len(keys)

    def info(self, source: str | None = None) -> dict[str, Any]:
        """Get cache statistics"""
        if source is not None:
            entries = [e for e in self.metadata.values() if e.source == source]
            return {
                "source": source,
                "entries": len(entries),
                "total_size_mb": sum(e.size_bytes for e in entries) / 1024 / 1024,
                "expired": sum(1 for e in entries if e.is_expired()),
                "years": sorted({e.year for e in entries if e.year is not None}),
            }

        expired = sum(1 for e in self.metadata.values() if e.is_expired())
        sources = sorted({e.source for e in self.metadata.values()})

        return {
            "entries": len(self.metadata),
            "total_size_mb": self._total_size_bytes / 1024 / 1024,
            "expired": expired,
            "sources": sources,
            "cache_dir": str(self.cache_dir),
        }

    def _enforce_size_limit(self, keep: str | None = None) -> None:
        """Drop least recently used entries until the cache fits max_size_mb"""
        if not self.max_size_mb:
            return

        max_bytes = self.max_size_mb * 1024 * 1024
        if self._total_size_bytes <= max_bytes:
            return

        sorted_entries = sorted(self.metadata.items(), key=lambda x: x[1].last_accessed)
        for cache_key, _ in sorted_entries:
            if cache_key == keep:
                continue
            self._logger.debug(f"Evicting cache entry {cache_key[:12]}")
            self.delete(cache_key)
            if self._total_size_bytes <= max_bytes:
                break

"""Barcode -> verification payload cache with insertion timestamps."""
import json
import logging
import os
import threading
import tempfile
import time
from collections import OrderedDict
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

CACHE_KEY = "certification_cache"
DEFAULT_MAX_ENTRIES = 5000


@dataclass(frozen=True)
class CacheEntry:
    data: Dict[str, Any]
    timestamp: float  # epoch seconds at insertion


def is_cache_expired(timestamp: float, ttl_seconds: float, now: Optional[float] = None) -> bool:
    now = time.time() if now is None else now
    return now - timestamp >= ttl_seconds


class CertificationCache:
    def get(self, barcode: str) -> Optional[CacheEntry]:
        raise NotImplementedError

    def put(self, barcode: str, data: Dict[str, Any], timestamp: Optional[float] = None) -> None:
        raise NotImplementedError

    def delete(self, barcode: str) -> None:
        raise NotImplementedError

    def clear(self) -> None:
        raise NotImplementedError


class MemoryCertificationCache(CertificationCache):
    """Process-scoped cache. Holds at most max_size barcodes; the oldest write is evicted first."""

    def __init__(self, max_size: int = DEFAULT_MAX_ENTRIES):
        self.max_size = max_size
        self._lock = threading.Lock()
        self._entries: "OrderedDict[str, CacheEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, barcode: str) -> Optional[CacheEntry]:
        with self._lock:
            return self._entries.get(barcode)

    def put(self, barcode: str, data: Dict[str, Any], timestamp: Optional[float] = None) -> None:
        with self._lock:
            self._entries.pop(barcode, None)
            self._entries[barcode] = CacheEntry(data=data, timestamp=time.time() if timestamp is None else timestamp)
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted certification cache entry for {evicted}")

    def delete(self, barcode: str) -> None:
        with self._lock:
            self._entries.pop(barcode, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class FileCertificationCache(CertificationCache):
    """JSON document on disk: {"certification_cache": {barcode: {"data": ..., "timestamp": ...}}}.

    A missing or unreadable file behaves as an empty cache. Each write goes
    through its own temporary file and an atomic rename, so concurrent
    processes never interleave partial documents.
    """

    def __init__(self, path: str | Path, max_size: int = DEFAULT_MAX_ENTRIES):
        self.path = Path(path)
        self.max_size = max_size
        self._lock = threading.Lock()

    def _load(self) -> Dict[str, Any]:
        try:
            with self.path.open("r", encoding="utf-8") as f:
                document = json.load(f)
            entries = document.get(CACHE_KEY, {})
            return entries if isinstance(entries, dict) else {}
        except FileNotFoundError:
            return {}
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable certification cache {self.path}: {e}")
            return {}

    def _save(self, entries: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            "w", encoding="utf-8", dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp", delete=False
        ) as f:
            json.dump({CACHE_KEY: entries}, f)
        try:
            os.replace(f.name, self.path)
        except OSError:
            os.unlink(f.name)
            raise

    def get(self, barcode: str) -> Optional[CacheEntry]:
        with self._lock:
            raw = self._load().get(barcode)
        if not isinstance(raw, dict) or "data" not in raw or "timestamp" not in raw:
            return None
        return CacheEntry(data=raw["data"], timestamp=float(raw["timestamp"]))

    def put(self, barcode: str, data: Dict[str, Any], timestamp: Optional[float] = None) -> None:
        with self._lock:
            entries = self._load()
            entries[barcode] = {"data": data, "timestamp": time.time() if timestamp is None else timestamp}
            if len(entries) > self.max_size:
                newest = sorted(entries.items(), key=lambda item: _timestamp_of(item[1]), reverse=True)
                entries = dict(newest[:self.max_size])
            self._save(entries)

    def delete(self, barcode: str) -> None:
        with self._lock:
            entries = self._load()
            if entries.pop(barcode, None) is not None:
                self._save(entries)

    def clear(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass


def _timestamp_of(raw: Any) -> float:
    try:
        return float(raw["timestamp"])
    except (TypeError, KeyError, ValueError):
        return 0.0

"""Key-value storage backends shared by the experiment, limiter and cache layers."""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
import time
from collections.abc import Callable
from contextlib import suppress
from pathlib import Path
from typing import Any, Optional, Protocol, runtime_checkable

from feedcore.logging_config import get_logger

logger = get_logger(__name__)


class StorageError(RuntimeError):
    """Raised when a storage backend cannot read or write a value."""


@runtime_checkable
class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None: ...

    def delete(self, key: str) -> bool: ...

    def keys(self, prefix: str = "") -> list[str]: ...


class MemoryStore:
    """Process-local store; values are kept as-is, expiry is checked on read."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._data: dict[str, tuple[Any, Optional[float]]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            existing = self._data.get(key)
            if existing is None:
                return None
            value, expire_at = existing
            if expire_at is not None and expire_at <= self._clock():
                del self._data[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        expire_at = (self._clock() + ttl) if ttl else None
        with self._lock:
            self._data[key] = (value, expire_at)

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._data.pop(key, None) is not None

    def keys(self, prefix: str = "") -> list[str]:
        now = self._clock()
        with self._lock:
            return [
                k
                for k, (_, expire_at) in self._data.items()
                if k.startswith(prefix) and (expire_at is None or expire_at > now)
            ]

    def __len__(self) -> int:
        return len(self.keys())


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON atomically using a temp file + rename."""
    tmp_fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
    try:
        with os.fdopen(tmp_fd, "w") as f:
            json.dump(data, f)
        os.replace(tmp_path, path)
    except Exception:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


class JsonFileStore:
    """Durable store: one JSON document per key, survives process restarts.

    Each file holds ``{"key", "value", "expires_at"}`` so keys can be listed
    back from disk. Values must be JSON-serializable.
    """

    def __init__(
        self,
        directory: Path | str,
        clock: Callable[[], float] = time.time,
        max_files: int = 0,
    ) -> None:
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        self._max_files = max_files

    def _path(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.directory / f"{digest}.json"

    def _read(self, path: Path) -> Optional[dict[str, Any]]:
        try:
            doc = json.loads(path.read_text())
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read {path.name}: {e}") from e
        if not isinstance(doc, dict) or "key" not in doc:
            raise StorageError(f"Malformed document {path.name}")
        return doc

    def get(self, key: str) -> Optional[Any]:
        path = self._path(key)
        doc = self._read(path)
        if doc is None:
            return None
        expires_at = doc.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            with suppress(OSError):
                path.unlink()
            return None
        return doc.get("value")

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        doc = {
            "key": key,
            "value": value,
            "expires_at": (self._clock() + ttl) if ttl else None,
        }
        try:
            atomic_write_json(self._path(key), doc)
        except (OSError, TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {key}: {e}") from e
        if self._max_files:
            self.evict_oldest(self._max_files)

    def delete(self, key: str) -> bool:
        try:
            self._path(key).unlink()
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {key}: {e}") from e

    def keys(self, prefix: str = "") -> list[str]:
        found: list[str] = []
        for path in self.directory.glob("*.json"):
            try:
                doc = self._read(path)
            except StorageError:
                # Corrupt files are unreachable by key; drop them
                logger.warning(f"Removing unreadable cache file {path.name}")
                with suppress(OSError):
                    path.unlink()
                continue
            if doc is None:
                continue
            key = str(doc["key"])
            expires_at = doc.get("expires_at")
            if expires_at is not None and expires_at <= self._clock():
                continue
            if key.startswith(prefix):
                found.append(key)
        return found

    def evict_oldest(self, max_files: int) -> None:
        """Remove oldest documents if over max_files (LRU by mtime)."""
        if max_files <= 0:
            return
        files = list(self.directory.glob("*.json"))
        if len(files) <= max_files:
            return
        files.sort(key=lambda p: p.stat().st_mtime)
        for f in files[: len(files) - max_files]:
            with suppress(OSError):
                f.unlink()

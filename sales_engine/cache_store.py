"""
Key/value stores for the persisted sales cache blob.

The engine writes one string blob under one key. There is no locking: two
writers race and the last write wins, which is acceptable because every
read cycle recomputes today from the source anyway.

Usage:
    store = JsonFileCacheStore(config.cache.directory)
    store.set("sales_data_cache_v1", cache.to_json())
    text = store.get("sales_data_cache_v1")
"""
import os
import re
import tempfile
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from sales_engine.config import config
from sales_engine.exceptions import CacheQuotaExceededError, CacheStoreError
from sales_engine.observability import get_logger

logger = get_logger(__name__)

_SAFE_KEY = re.compile(r"[^A-Za-z0-9_.-]")


class CacheStore(Protocol):
    """Synchronous string store with a size quota."""

    def get(self, key: str) -> Optional[str]:
        ...

    def set(self, key: str, value: str) -> None:
        """Persist a value. Raises CacheStoreError (or CacheQuotaExceededError)."""
        ...

    def clear(self, key: str) -> None:
        ...


def _check_quota(value: str, max_bytes: Optional[int]) -> None:
    if max_bytes is None:
        return
    size = len(value.encode("utf-8"))
    if size > max_bytes:
        raise CacheQuotaExceededError(size, max_bytes)


class InMemoryCacheStore:
    """Process-local store; used in tests and when no cache directory is set."""

    def __init__(self, max_bytes: Optional[int] = None):
        self.max_bytes = max_bytes
        self._values: Dict[str, str] = {}
        self.writes = 0

    def get(self, key: str) -> Optional[str]:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        _check_quota(value, self.max_bytes)
        self._values[key] = value
        self.writes += 1

    def clear(self, key: str) -> None:
        self._values.pop(key, None)


class JsonFileCacheStore:
    """
    One JSON file per key inside a directory.

    Writes go to a temporary file that is renamed over the target, so a
    crash mid-write never leaves a truncated blob behind.
    """

    def __init__(self, directory: Union[str, Path] = None, max_bytes: Optional[int] = None):
        self.directory = Path(directory or config.cache.directory)
        self.max_bytes = max_bytes if max_bytes is not None else config.cache.max_bytes

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_SAFE_KEY.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Failed to read cache file {path}: {e}")
            return None

    def set(self, key: str, value: str) -> None:
        _check_quota(value, self.max_bytes)
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    handle.write(value)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except OSError as e:
            raise CacheStoreError(f"Failed to write cache file {path}: {e}") from e

    def clear(self, key: str) -> None:
        try:
            self.path_for(key).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheStoreError(f"Failed to clear cache key {key}: {e}") from e


def create_cache_store(directory: Union[str, Path, None] = None) -> CacheStore:
    """File-backed store under the configured directory."""
    return JsonFileCacheStore(directory or config.cache.directory)

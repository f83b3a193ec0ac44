"""
A simple, file-based JSON cache with a time-to-live (TTL) for remote metadata.
"""

import hashlib
import json
import logging
import os
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)


class CacheManager:
    """
    Manages a JSON-based file cache with a TTL.

    Entries are keyed by an arbitrary string (usually a URL) and expire
    ``max_age_seconds`` after they were written.
    """

    def __init__(
        self,
        cache_dir_path: Path,
        max_age_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initializes the cache manager.

        Args:
            cache_dir_path: The directory under which a ``cache`` folder is used.
            max_age_seconds: The maximum age of a cache entry before it expires.
            clock: Source of the current UNIX time.
        """
        self.cache_dir = cache_dir_path / "cache"
        self.max_age_seconds = max_age_seconds
        self._clock = clock

    def _get_cache_path(self, key: str) -> Path:
        """Generates a safe filename for a given cache key."""
        hashed_key = hashlib.sha1(key.encode("utf-8")).hexdigest()  # noqa: S324
        return self.cache_dir / f"{hashed_key}.json"

    def get(self, key: str) -> Any | None:
        """
        Retrieves a value from the cache. Returns None if the key is not found or
        expired.
        """
        cache_path = self._get_cache_path(key)
        if not cache_path.is_file():
            return None

        try:
            with open(cache_path, encoding="utf-8") as f:
                data = json.load(f)
            if self._clock() - float(data.get("timestamp", 0)) > self.max_age_seconds:
                cache_path.unlink(missing_ok=True)
                return None
            return data.get("value")
        except (AttributeError, OSError, TypeError, ValueError) as e:
            log.debug(f"Cache read failed for key '{key}': {e}")
            return None

    def set(self, key: str, value: Any) -> bool:
        """Saves a value to the cache. Returns False when it could not be written."""
        cache_path = self._get_cache_path(key)
        tmp_path = cache_path.with_suffix(".tmp")
        try:
            payload = json.dumps({"key": key, "timestamp": self._clock(), "value": value})
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(payload)
            os.replace(tmp_path, cache_path)
            return True
        except (TypeError, OSError) as e:
            log.warning(f"Cache write failed for key '{key}': {e}")
            tmp_path.unlink(missing_ok=True)
            return False


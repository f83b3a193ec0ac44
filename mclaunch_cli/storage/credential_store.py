"""
Persists the session credential as a small JSON file in the config directory.
"""

import asyncio
import json
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from filelock import FileLock, Timeout
from pydantic import ValidationError

from mclaunch_cli.exceptions import ConfigurationError
from mclaunch_cli.models.credential import Credential

log = logging.getLogger(__name__)


class CredentialStore:
    """
    Owns ``credentials.json``.

    The file either holds one complete credential or does not exist. Writes go
    through a temporary file and ``os.replace`` so a reader never sees a torn
    file. Callers that read, decide and write back hold ``exclusive()`` for the
    whole sequence; it takes an OS lock on ``credentials.json.lock`` so other
    launcher processes wait as well.
    """

    FILE_NAME = "credentials.json"
    LOCK_TIMEOUT = 600

    def __init__(self, config_dir_path: Path, lock_timeout: float = LOCK_TIMEOUT):
        self.path = config_dir_path / self.FILE_NAME
        self.lock_path = config_dir_path / f"{self.FILE_NAME}.lock"
        self.lock_timeout = lock_timeout
        self._lock = asyncio.Lock()
        self._file_lock = FileLock(self.lock_path, thread_local=False)

    def _acquire_file_lock(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._file_lock.acquire(timeout=self.lock_timeout)
        except Timeout as e:
            raise ConfigurationError(
                f"Another mclaunch process has held {self.lock_path} for "
                f"{self.lock_timeout:.0f}s. Try again once it finishes."
            ) from e

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator["CredentialStore"]:
        """
        Holds the store exclusively, against this process and every other one.

        Raises:
            ConfigurationError: The lock file stayed busy for ``lock_timeout``.
        """
        async with self._lock:
            await asyncio.to_thread(self._acquire_file_lock)
            try:
                yield self
            finally:
                self._file_lock.release()

    def exists(self) -> bool:
        return self.path.is_file()

    def _load_sync(self) -> Optional[Credential]:
        if not self.path.is_file():
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return Credential.model_validate(data)
        except (json.JSONDecodeError, ValidationError, OSError) as e:
            log.warning(
                f"[yellow]Ignoring unreadable credential file '{self.path}': "
                f"{type(e).__name__}[/yellow]"
            )
            return None

    async def load(self) -> Optional[Credential]:
        """Returns the persisted credential, or None when absent or corrupt."""
        return await asyncio.to_thread(self._load_sync)

    def _save_sync(self, credential: Credential) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_name(f".{self.FILE_NAME}.{os.getpid()}.tmp")
        try:
            fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(credential.model_dump_json(indent=2))
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise ConfigurationError(
                f"Failed to save credentials to '{self.path}': {e}"
            ) from e
        log.debug(f"Credential saved to {self.path}")

    async def save(self, credential: Credential) -> None:
        """Atomically replaces the persisted credential."""
        await asyncio.to_thread(self._save_sync, credential)

    def _clear_sync(self) -> bool:
        try:
            self.path.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise ConfigurationError(
                f"Failed to delete credentials at '{self.path}': {e}"
            ) from e
        return True

    async def clear(self) -> bool:
        """Deletes the persisted credential. Returns False when there was none."""
        return await asyncio.to_thread(self._clear_sync)

"""
Handles the low-level downloading of files over HTTP into a local path.
"""

import asyncio
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Optional

import aiofiles
import aiohttp

from mclaunch_cli import __version__

log = logging.getLogger(__name__)

_connection_pool: aiohttp.ClientSession | None = None
_pool_lock = asyncio.Lock()


async def get_connection_pool(max_workers: int = 16) -> aiohttp.ClientSession:
    """
    Gets or creates a shared aiohttp ClientSession for downloads.

    This function ensures that only one connection pool is created for the
    lifetime of the application run.

    Args:
        max_workers: Maximum concurrent connections (should match config.max_workers).
    """
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            return _connection_pool

        connector = aiohttp.TCPConnector(
            limit=max_workers * 2,
            limit_per_host=max_workers,
            ttl_dns_cache=600,
            keepalive_timeout=30,
            enable_cleanup_closed=True,
        )
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=15, sock_read=60)
        _connection_pool = aiohttp.ClientSession(
            connector=connector,
            timeout=timeout,
            headers={"User-Agent": f"mclaunch-cli/{__version__}"},
        )
        log.debug(f"Created download pool with limit_per_host={max_workers}")

    return _connection_pool


async def close_connection_pool() -> None:
    """Closes the shared global connection pool."""
    global _connection_pool
    async with _pool_lock:
        if _connection_pool and not _connection_pool.closed:
            await _connection_pool.close()
            _connection_pool = None
            log.debug("Shared downloader connection pool closed.")


class Downloader:
    """
    Streams one URL into one local file. Makes a single attempt; retrying is
    the caller's policy.
    """

    CHUNK_SIZE = 131072  # 128 KB

    def __init__(self, max_workers: int = 16):
        self.max_workers = max_workers

    async def fetch(
        self,
        url: str,
        destination: Path,
        on_progress: Optional[Callable[[int], None]] = None,
    ) -> int:
        """
        Downloads ``url`` into ``destination``, overwriting it.

        Args:
            url: Source URL.
            destination: Path to write; its parent must exist.
            on_progress: Called with the size of every chunk written.

        Returns:
            The number of bytes written.

        Raises:
            aiohttp.ClientError: On connection problems or HTTP error statuses.
            OSError: When the file cannot be written.
        """
        session = await get_connection_pool(self.max_workers)
        written = 0
        async with session.get(url, allow_redirects=True) as response:
            response.raise_for_status()
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(self.CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
                    if on_progress:
                        on_progress(len(chunk))
        return written

"""
Async HTTP client for the JSON services the launcher talks to: the Microsoft
identity platform, Xbox Live, Minecraft services and Mojang's metadata hosts.
"""

import json
import logging
import time
from typing import Any, Dict, Optional

import aiohttp

from mclaunch_cli import __version__
from mclaunch_cli.exceptions import ApiResponseError

log = logging.getLogger(__name__)


class ServicesClient:
    """
    Thin wrapper over a lazily created aiohttp session.

    Every method makes exactly one request. HTTP error statuses are raised as
    ``ApiResponseError`` with the response body attached, so callers can map
    service-specific error payloads to their own error kinds.
    """

    def __init__(self, max_connections: int = 8):
        self.max_connections = max_connections
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> aiohttp.ClientSession:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_connections,
                ttl_dns_cache=300,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers={
                    "User-Agent": f"mclaunch-cli/{__version__}",
                    "Accept": "application/json",
                    "Accept-Encoding": "gzip, deflate",
                },
                timeout=aiohttp.ClientTimeout(total=60, connect=15, sock_read=30),
            )
        return self._session

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "ServicesClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        payload: Any = None,
        data: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> bytes:
        session = await self._initialize_session()
        start_time = time.monotonic()
        async with session.request(
            method, url, json=payload, data=data, headers=headers
        ) as r:
            body = await r.read()
            duration_ms = (time.monotonic() - start_time) * 1000
            log.debug(f"{method} {url} -> {r.status} ({duration_ms:.0f} ms)")
            if r.status >= 400:
                raise ApiResponseError(
                    url, r.status, body.decode("utf-8", errors="replace")
                )
            return body

    async def get_bytes(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> bytes:
        return await self._request("GET", url, headers=headers)

    async def get_json(
        self, url: str, headers: Optional[Dict[str, str]] = None
    ) -> Any:
        return json.loads(await self._request("GET", url, headers=headers))

    async def post_json(
        self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None
    ) -> Any:
        return json.loads(
            await self._request("POST", url, payload=payload, headers=headers)
        )

    async def post_form(self, url: str, form: Dict[str, str]) -> Any:
        return json.loads(await self._request("POST", url, data=form))

"""
Fake remote services for auth and resolver tests: scripted HTTP responses and
a scripted auth flow. No live network.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from mclaunch_cli.models.credential import Credential, PlayerProfile

PLAYER = PlayerProfile(id="069a79f444e94726a5befca90e38aaf5", name="Notch")


def make_credential(
    expires_at: float,
    refresh_token: Optional[str] = "refresh-1",
    access_token: str = "mc-access-1",
) -> Credential:
    return Credential(
        access_token=access_token,
        refresh_token=refresh_token,
        expires_at=expires_at,
        identity_token="ms-access",
        xbl_token="xbl-token",
        xsts_token="xsts-token",
        user_hash="uhs-1",
        profile=PLAYER,
    )


class FakeServicesClient:
    """
    Stands in for ``ServicesClient``.

    Each (method, url) route holds a list of responses served in order; the
    last one repeats. A response that is an exception instance is raised.
    Unrouted requests fail the test.
    """

    def __init__(self) -> None:
        self._routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Tuple[str, str, Dict[str, Any]]] = []

    def add(self, method: str, url: str, *responses: Any) -> "FakeServicesClient":
        self._routes.setdefault((method, url), []).extend(responses)
        return self

    def replace(self, method: str, url: str, *responses: Any) -> "FakeServicesClient":
        self._routes[(method, url)] = list(responses)
        return self

    def count(self, method: str, url: str) -> int:
        return sum(1 for m, u, _ in self.calls if m == method and u == url)

    async def _respond(self, method: str, url: str, **details: Any) -> Any:
        self.calls.append((method, url, details))
        queue = self._routes.get((method, url))
        if not queue:
            raise AssertionError(f"Unexpected request: {method} {url}")
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    async def get_bytes(self, url: str, headers: Optional[dict] = None) -> bytes:
        response = await self._respond("GET", url, headers=headers)
        if isinstance(response, bytes):
            return response
        return json.dumps(response).encode("utf-8")

    async def get_json(self, url: str, headers: Optional[dict] = None) -> Any:
        response = await self._respond("GET", url, headers=headers)
        return json.loads(response) if isinstance(response, bytes) else response

    async def post_json(self, url: str, payload: dict, headers: Optional[dict] = None) -> Any:
        return await self._respond("POST", url, payload=payload, headers=headers)

    async def post_form(self, url: str, form: dict) -> Any:
        return await self._respond("POST", url, form=form)

    async def close(self) -> None:
        pass

    async def __aenter__(self) -> "FakeServicesClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class FakeCodeReceiver:
    """Returns a fixed authorization code without any user interaction."""

    def __init__(self, code: str = "auth-code-1", error: Optional[Exception] = None):
        self.code = code
        self.error = error
        self.urls: List[str] = []

    async def receive(self, authorize_url: str, state: str) -> str:
        self.urls.append(authorize_url)
        if self.error is not None:
            raise self.error
        return self.code


class FakeAuthFlow:
    """Scripted replacement for ``AuthFlow`` used by TokenBroker tests."""

    def __init__(
        self,
        clock: Callable[[], float],
        lifetime: float = 86400,
        refresh_error: Optional[Exception] = None,
        auth_error: Optional[Exception] = None,
    ):
        self._clock = clock
        self.lifetime = lifetime
        self.refresh_error = refresh_error
        self.auth_error = auth_error
        self.refresh_calls: List[str] = []
        self.auth_calls = 0

    async def refresh(self, refresh_token: str) -> Credential:
        self.refresh_calls.append(refresh_token)
        if self.refresh_error is not None:
            raise self.refresh_error
        return make_credential(
            self._clock() + self.lifetime,
            refresh_token=f"{refresh_token}-next",
            access_token="mc-access-refreshed",
        )

    async def authenticate(self) -> Credential:
        self.auth_calls += 1
        if self.auth_error is not None:
            raise self.auth_error
        return make_credential(
            self._clock() + self.lifetime,
            refresh_token="refresh-login",
            access_token="mc-access-login",
        )

    @property
    def network_calls(self) -> int:
        return len(self.refresh_calls) + self.auth_calls

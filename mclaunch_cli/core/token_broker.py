"""
Hands out a valid game session, refreshing or re-authenticating as needed.
"""

import logging
import time
from collections.abc import Callable
from typing import Optional

from mclaunch_cli.api.auth import AuthFlow
from mclaunch_cli.exceptions import (
    AuthProtocolError,
    InvalidGrantError,
    LoginRequiredError,
)
from mclaunch_cli.models.credential import AuthStage, Credential, SessionStatus
from mclaunch_cli.storage.credential_store import CredentialStore

log = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN = 300


class TokenBroker:
    """
    Owns the persisted credential and decides how to get a usable one.

    A credential whose expiry is more than ``safety_margin`` seconds away is
    returned as is. Otherwise the stored refresh token is redeemed, and if that
    is impossible or rejected, a full interactive login is run. Every new
    credential replaces the persisted one as a whole.
    """

    def __init__(
        self,
        store: CredentialStore,
        flow: AuthFlow,
        safety_margin: float = DEFAULT_SAFETY_MARGIN,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.flow = flow
        self.safety_margin = safety_margin
        self._clock = clock

    async def obtain_valid_token(self, interactive: bool = True) -> Credential:
        """
        Returns a credential valid for at least the safety margin.

        Args:
            interactive: Whether a browser login may be started when the stored
                session cannot be refreshed.

        Raises:
            InvalidGrantError: The refresh token was rejected and ``interactive``
                is False.
            LoginRequiredError: No usable session is stored and ``interactive``
                is False.
            AuthError: Any other failure of the exchange chain.
        """
        async with self.store.exclusive():
            current = await self.store.load()
            now = self._clock()

            if current is not None and current.is_valid(self.safety_margin, now):
                log.debug(
                    f"Using stored session for {current.profile.name} "
                    f"({current.seconds_left(now):.0f}s left)"
                )
                return current

            fresh: Optional[Credential] = None
            if current is not None and current.refresh_token:
                log.info("Session expired or about to expire, refreshing...")
                try:
                    fresh = await self.flow.refresh(current.refresh_token)
                except InvalidGrantError:
                    if not interactive:
                        raise
                    log.warning(
                        "[yellow]Stored login was rejected, signing in again.[/yellow]"
                    )
            elif not interactive:
                reason = "expired and cannot be refreshed" if current else "missing"
                raise LoginRequiredError(
                    f"The stored session is {reason}. Run 'mclaunch auth login'."
                )

            if fresh is None:
                fresh = await self.flow.authenticate()

            self._check_fresh(fresh)
            await self.store.save(fresh)
            return fresh

    async def reauthenticate(self) -> Credential:
        """Forces a full interactive login and replaces the stored session."""
        async with self.store.exclusive():
            fresh = await self.flow.authenticate()
            self._check_fresh(fresh)
            await self.store.save(fresh)
            return fresh

    async def clear_session(self) -> bool:
        """Deletes the stored session. Returns False when there was none."""
        async with self.store.exclusive():
            removed = await self.store.clear()
        if removed:
            log.info("Stored session removed.")
        return removed

    async def status(self) -> SessionStatus:
        """Reports on the stored session without touching the network."""
        current = await self.store.load()
        if current is None:
            return SessionStatus(persisted=False)
        now = self._clock()
        return SessionStatus(
            persisted=True,
            valid=current.is_valid(self.safety_margin, now),
            expires_at=current.expires_at,
            player_name=current.profile.name,
            has_refresh_token=bool(current.refresh_token),
            seconds_left=max(0.0, current.seconds_left(now)),
        )

    def _check_fresh(self, credential: Credential) -> None:
        if not credential.is_valid(self.safety_margin, self._clock()):
            raise AuthProtocolError(
                f"New session expires in {credential.seconds_left(self._clock()):.0f}s, "
                f"within the {self.safety_margin:.0f}s safety margin.",
                stage=AuthStage.SESSION_ESTABLISHED,
            )

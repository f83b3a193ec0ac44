"""
Pydantic models for the authenticated session and the auth state machine.
"""

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AuthStage(str, Enum):
    """Stages of one authentication attempt, in order."""

    UNAUTHENTICATED = "unauthenticated"
    IDENTITY_CODE_REQUESTED = "identity_code_requested"
    IDENTITY_TOKEN_OBTAINED = "identity_token_obtained"
    DEVICE_AUTHORIZED = "device_authorized"
    SERVICE_AUTHORIZED = "service_authorized"
    SESSION_ESTABLISHED = "session_established"


class PlayerProfile(BaseModel):
    """The Minecraft profile the session belongs to."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str


class Credential(BaseModel):
    """
    The full authenticated session state.

    Instances are immutable: a refresh produces a new Credential that replaces
    the previous one as a whole.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: Optional[str] = None
    expires_at: float
    identity_token: str
    xbl_token: str
    xsts_token: str
    user_hash: str
    profile: PlayerProfile

    @field_validator("access_token", "identity_token", "xbl_token", "xsts_token", "user_hash")
    @classmethod
    def not_empty(cls, v: str) -> str:
        if not v:
            raise ValueError("token must not be empty")
        return v

    def seconds_left(self, now: Optional[float] = None) -> float:
        return self.expires_at - (time.time() if now is None else now)

    def is_valid(self, safety_margin: float, now: Optional[float] = None) -> bool:
        """True when the session stays usable for more than ``safety_margin`` seconds."""
        return self.seconds_left(now) > safety_margin


class SessionStatus(BaseModel):
    """What ``TokenBroker.status`` reports; computed without network access."""

    persisted: bool
    valid: bool = False
    expires_at: Optional[float] = None
    player_name: Optional[str] = None
    has_refresh_token: bool = False
    seconds_left: float = Field(default=0.0)

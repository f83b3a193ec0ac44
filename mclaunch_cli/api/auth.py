"""
Handles authentication with Microsoft, Xbox Live and Minecraft services.

One authentication attempt walks an explicit state machine; every transition
is a single network exchange trading the previous stage's token for the next
one. Failures are tagged with the stage they happened in.
"""

import dataclasses
import logging
import secrets
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Optional, TypeVar
from urllib.parse import urlencode

from mclaunch_cli.exceptions import (
    ApiResponseError,
    AuthError,
    AuthNetworkError,
    AuthProtocolError,
    ConfigurationError,
    EntitlementError,
    InvalidGrantError,
    XboxAccountError,
)
from mclaunch_cli.models.credential import AuthStage, Credential, PlayerProfile
from mclaunch_cli.utils.retry import RetryPolicy, is_transient

from .client import ServicesClient
from .login import CodeReceiver

log = logging.getLogger(__name__)

T = TypeVar("T")

MS_AUTH_URL = "https://login.live.com/oauth20_authorize.srf"
MS_TOKEN_URL = "https://login.live.com/oauth20_token.srf"
XBL_AUTH_URL = "https://user.auth.xboxlive.com/user/authenticate"
XSTS_AUTH_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"
MINECRAFT_AUTH_URL = "https://api.minecraftservices.com/authentication/login_with_xbox"
MINECRAFT_PROFILE_URL = "https://api.minecraftservices.com/minecraft/profile"
MINECRAFT_ENTITLEMENT_URL = "https://api.minecraftservices.com/entitlements/mcstore"

SCOPES = "XboxLive.signin offline_access"
GAME_ENTITLEMENTS = {"game_minecraft", "product_minecraft"}

XSTS_ERRORS = {
    2148916233: "This Microsoft account has no Xbox profile. Sign in on xbox.com once to create one.",
    2148916235: "Xbox Live is not available in your country/region.",
    2148916236: "This account needs adult verification on xbox.com (South Korea).",
    2148916237: "This account needs adult verification on xbox.com (South Korea).",
    2148916238: "This account belongs to a child (under 18) and must be added to a Family by an adult.",
}


@dataclass(frozen=True)
class AuthState:
    """
    Snapshot of one authentication attempt.

    Each transition returns a new snapshot one stage further; fields are filled
    in as the chain progresses.
    """

    stage: AuthStage = AuthStage.UNAUTHENTICATED
    code: Optional[str] = None
    identity_token: Optional[str] = None
    refresh_token: Optional[str] = None
    xbl_token: Optional[str] = None
    user_hash: Optional[str] = None
    xsts_token: Optional[str] = None
    access_token: Optional[str] = None
    expires_in: Optional[int] = None
    profile: Optional[PlayerProfile] = None

    def advance(self, stage: AuthStage, **changes: Any) -> "AuthState":
        return dataclasses.replace(self, stage=stage, **changes)


class AuthFlow:
    """
    Drives the Microsoft -> Xbox Live -> XSTS -> Minecraft chain.

    The flow itself holds no session state; it turns either an interactive
    login or a refresh token into a fresh ``Credential``.
    """

    def __init__(
        self,
        client: ServicesClient,
        client_id: str,
        redirect_uri: str,
        receiver: CodeReceiver,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initializes the flow.

        Args:
            client: HTTP client used for every exchange.
            client_id: Azure application (client) id registered for the launcher.
            redirect_uri: Redirect URI registered for that application.
            receiver: Gets the authorization code back from the user.
            retry_policy: Retry policy for transient network failures.
            clock: Source of the current UNIX time.
        """
        self._client = client
        self.client_id = client_id
        self.redirect_uri = redirect_uri
        self._receiver = receiver
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock
        self._transitions: dict[AuthStage, Callable[[AuthState], Awaitable[AuthState]]] = {
            AuthStage.UNAUTHENTICATED: self.request_code,
            AuthStage.IDENTITY_CODE_REQUESTED: self.exchange_code,
            AuthStage.IDENTITY_TOKEN_OBTAINED: self.authorize_device,
            AuthStage.DEVICE_AUTHORIZED: self.authorize_service,
            AuthStage.SERVICE_AUTHORIZED: self.establish_session,
        }

    # Entry points

    async def authenticate(self) -> Credential:
        """Runs a full interactive login from ``Unauthenticated``."""
        self._check_configured()
        log.info("Starting Microsoft login...")
        return await self._run(AuthState())

    async def refresh(self, refresh_token: str) -> Credential:
        """Re-enters the chain at ``IdentityTokenObtained`` using a refresh grant."""
        self._check_configured()
        log.info("Refreshing session...")
        state = await self.redeem_refresh_token(AuthState(), refresh_token)
        return await self._run(state)

    def _check_configured(self) -> None:
        if not self.client_id:
            raise ConfigurationError(
                "No Microsoft client id configured. Run 'mclaunch init <CLIENT_ID>' "
                "or set MS_CLIENT_ID."
            )

    async def _run(self, state: AuthState) -> Credential:
        while state.stage is not AuthStage.SESSION_ESTABLISHED:
            transition = self._transitions[state.stage]
            try:
                state = await transition(state)
            except AuthError as e:
                if e.stage is None:
                    e.stage = state.stage
                raise
            log.debug(f"Auth stage reached: {state.stage.value}")
        return self._to_credential(state)

    def _to_credential(self, state: AuthState) -> Credential:
        return Credential(
            access_token=state.access_token,
            refresh_token=state.refresh_token,
            expires_at=self._clock() + (state.expires_in or 0),
            identity_token=state.identity_token,
            xbl_token=state.xbl_token,
            xsts_token=state.xsts_token,
            user_hash=state.user_hash,
            profile=state.profile,
        )

    # Transitions

    def authorize_url(self, csrf_state: str) -> str:
        return f"{MS_AUTH_URL}?" + urlencode(
            {
                "client_id": self.client_id,
                "response_type": "code",
                "redirect_uri": self.redirect_uri,
                "scope": SCOPES,
                "state": csrf_state,
                "prompt": "select_account",
            }
        )

    async def request_code(self, state: AuthState) -> AuthState:
        csrf_state = secrets.token_urlsafe(16)
        code = await self._receiver.receive(self.authorize_url(csrf_state), csrf_state)
        log.debug(f"Received authorization code ({len(code)} chars).")
        return state.advance(AuthStage.IDENTITY_CODE_REQUESTED, code=code)

    async def exchange_code(self, state: AuthState) -> AuthState:
        log.info("Exchanging authorization code for access token...")
        res = await self._ms_token_request(
            state.stage,
            {
                "client_id": self.client_id,
                "code": state.code,
                "grant_type": "authorization_code",
                "redirect_uri": self.redirect_uri,
                "scope": SCOPES,
            },
        )
        return state.advance(
            AuthStage.IDENTITY_TOKEN_OBTAINED,
            code=None,
            identity_token=_require(res, "access_token", state.stage),
            refresh_token=res.get("refresh_token"),
        )

    async def redeem_refresh_token(self, state: AuthState, refresh_token: str) -> AuthState:
        res = await self._ms_token_request(
            state.stage,
            {
                "client_id": self.client_id,
                "refresh_token": refresh_token,
                "grant_type": "refresh_token",
                "redirect_uri": self.redirect_uri,
                "scope": SCOPES,
            },
        )
        return state.advance(
            AuthStage.IDENTITY_TOKEN_OBTAINED,
            identity_token=_require(res, "access_token", state.stage),
            # Microsoft may rotate the refresh token; keep the old one otherwise.
            refresh_token=res.get("refresh_token") or refresh_token,
        )

    async def authorize_device(self, state: AuthState) -> AuthState:
        log.info("Authenticating with Xbox Live...")
        xbl = await self._exchange(
            state.stage,
            "Xbox Live authentication",
            lambda: self._client.post_json(
                XBL_AUTH_URL,
                {
                    "Properties": {
                        "AuthMethod": "RPS",
                        "SiteName": "user.auth.xboxlive.com",
                        "RpsTicket": f"d={state.identity_token}",
                    },
                    "RelyingParty": "http://auth.xboxlive.com",
                    "TokenType": "JWT",
                },
            ),
        )
        xbl_token = _require(xbl, "Token", state.stage)
        user_hash = _user_hash(xbl, state.stage)

        log.info("Getting XSTS token...")
        xsts = await self._exchange(
            state.stage,
            "XSTS authorization",
            lambda: self._client.post_json(
                XSTS_AUTH_URL,
                {
                    "Properties": {"SandboxId": "RETAIL", "UserTokens": [xbl_token]},
                    "RelyingParty": "rp://api.minecraftservices.com/",
                    "TokenType": "JWT",
                },
            ),
            on_error=_xsts_error,
        )
        if _user_hash(xsts, state.stage) != user_hash:
            raise AuthProtocolError("Inconsistent Xbox user hash between XBL and XSTS.")
        return state.advance(
            AuthStage.DEVICE_AUTHORIZED,
            xbl_token=xbl_token,
            user_hash=user_hash,
            xsts_token=_require(xsts, "Token", state.stage),
        )

    async def authorize_service(self, state: AuthState) -> AuthState:
        log.info("Authenticating with Minecraft services...")
        res = await self._exchange(
            state.stage,
            "Minecraft authentication",
            lambda: self._client.post_json(
                MINECRAFT_AUTH_URL,
                {"identityToken": f"XBL3.0 x={state.user_hash};{state.xsts_token}"},
            ),
        )
        expires_in = res.get("expires_in")
        if not isinstance(expires_in, int) or expires_in <= 0:
            raise AuthProtocolError("Minecraft login returned no usable 'expires_in'.")
        log.debug(f"Minecraft token expires in {expires_in} seconds")
        return state.advance(
            AuthStage.SERVICE_AUTHORIZED,
            access_token=_require(res, "access_token", state.stage),
            expires_in=expires_in,
        )

    async def establish_session(self, state: AuthState) -> AuthState:
        bearer = {"Authorization": f"Bearer {state.access_token}"}

        log.info("Verifying game ownership...")
        entitlements = await self._exchange(
            state.stage,
            "Entitlement check",
            lambda: self._client.get_json(MINECRAFT_ENTITLEMENT_URL, headers=bearer),
        )
        items = entitlements.get("items") if isinstance(entitlements, dict) else None
        if not isinstance(items, list):
            raise AuthProtocolError("Malformed entitlement response.")
        names = {item.get("name") for item in items if isinstance(item, dict)}
        if not names & GAME_ENTITLEMENTS:
            raise EntitlementError("This account does not own Minecraft: Java Edition.")

        log.info("Retrieving Minecraft profile...")
        res = await self._exchange(
            state.stage,
            "Profile retrieval",
            lambda: self._client.get_json(MINECRAFT_PROFILE_URL, headers=bearer),
            on_error=_profile_error,
        )
        profile = PlayerProfile(
            id=_require(res, "id", state.stage), name=_require(res, "name", state.stage)
        )
        log.info(f"[green]✓ Signed in as {profile.name}[/green]")
        return state.advance(AuthStage.SESSION_ESTABLISHED, profile=profile)

    # Exchange helpers

    async def _ms_token_request(self, stage: AuthStage, form: dict[str, str]) -> dict:
        return await self._exchange(
            stage,
            "Microsoft token exchange",
            lambda: self._client.post_form(MS_TOKEN_URL, form),
            on_error=_ms_token_error,
        )

    async def _exchange(
        self,
        stage: AuthStage,
        description: str,
        call: Callable[[], Awaitable[T]],
        on_error: Optional[Callable[[ApiResponseError], Optional[AuthError]]] = None,
    ) -> T:
        """
        Runs one network exchange under the retry policy and maps its failures:
        exhausted transient errors become ``AuthNetworkError``; service error
        payloads go through ``on_error`` and otherwise become ``AuthProtocolError``.
        """
        try:
            result = await self._retry.run(call, description=description)
        except ApiResponseError as e:
            if is_transient(e):
                raise AuthNetworkError(
                    f"{description} kept failing: {e}", stage=stage
                ) from e
            mapped = on_error(e) if on_error else None
            if mapped is not None:
                mapped.stage = stage
                raise mapped from e
            raise AuthProtocolError(
                f"{description} failed: HTTP {e.status} {e.body[:200]}", stage=stage
            ) from e
        except ValueError as e:
            raise AuthProtocolError(
                f"{description} returned invalid JSON.", stage=stage
            ) from e
        except Exception as e:
            if is_transient(e):
                raise AuthNetworkError(
                    f"{description} kept failing: {e}", stage=stage
                ) from e
            raise
        if not isinstance(result, dict):
            raise AuthProtocolError(f"{description} returned an unexpected payload.", stage=stage)
        return result


def _require(payload: dict, key: str, stage: AuthStage) -> Any:
    value = payload.get(key)
    if not value:
        raise AuthProtocolError(f"Response is missing '{key}'.", stage=stage)
    return value


def _user_hash(payload: dict, stage: AuthStage) -> str:
    try:
        return payload["DisplayClaims"]["xui"][0]["uhs"]
    except (KeyError, IndexError, TypeError) as e:
        raise AuthProtocolError("No Xbox user hash found in response.", stage=stage) from e


def _ms_token_error(e: ApiResponseError) -> Optional[AuthError]:
    error = e.json().get("error")
    if error == "invalid_grant":
        return InvalidGrantError(
            "The Microsoft login has expired or was revoked. Please sign in again."
        )
    if error in ("invalid_client", "unauthorized_client"):
        return AuthProtocolError(
            "The configured client id was rejected by Microsoft. Check 'client_id'."
        )
    return None


def _xsts_error(e: ApiResponseError) -> Optional[AuthError]:
    if e.status != 401:
        return None
    xerr = e.json().get("XErr")
    message = XSTS_ERRORS.get(xerr) if isinstance(xerr, int) else None
    return XboxAccountError(message or f"Xbox Live refused the account (XErr {xerr}).")


def _profile_error(e: ApiResponseError) -> Optional[AuthError]:
    if e.status == 404:
        return EntitlementError("This account has no Minecraft profile.")
    if e.status == 401:
        return InvalidGrantError("The Minecraft session was rejected.")
    return None

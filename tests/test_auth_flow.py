import json
from urllib.parse import parse_qs, urlparse

import pytest

from mclaunch_cli.api.auth import (
    MINECRAFT_AUTH_URL,
    MINECRAFT_ENTITLEMENT_URL,
    MINECRAFT_PROFILE_URL,
    MS_TOKEN_URL,
    XBL_AUTH_URL,
    XSTS_AUTH_URL,
    AuthFlow,
    AuthState,
)
from mclaunch_cli.api.login import parse_redirect
from mclaunch_cli.exceptions import (
    ApiResponseError,
    AuthNetworkError,
    AuthProtocolError,
    ConfigurationError,
    ConsentDeniedError,
    EntitlementError,
    InvalidGrantError,
    XboxAccountError,
)
from mclaunch_cli.models.credential import AuthStage
from mclaunch_cli.utils.retry import RetryPolicy
from tests.fakes import FakeCodeReceiver, FakeServicesClient

NOW = 1_700_000_000.0
XUI = {"DisplayClaims": {"xui": [{"uhs": "uhs-1"}]}}


def _error(url: str, status: int, payload: dict) -> ApiResponseError:
    return ApiResponseError(url, status, json.dumps(payload))


def _happy_client() -> FakeServicesClient:
    client = FakeServicesClient()
    client.add(
        "POST",
        MS_TOKEN_URL,
        {"access_token": "ms-access", "refresh_token": "ms-refresh", "expires_in": 3600},
    )
    client.add("POST", XBL_AUTH_URL, {"Token": "xbl-token", **XUI})
    client.add("POST", XSTS_AUTH_URL, {"Token": "xsts-token", **XUI})
    client.add("POST", MINECRAFT_AUTH_URL, {"access_token": "mc-access", "expires_in": 86400})
    client.add(
        "GET",
        MINECRAFT_ENTITLEMENT_URL,
        {"items": [{"name": "product_minecraft"}, {"name": "game_minecraft"}]},
    )
    client.add("GET", MINECRAFT_PROFILE_URL, {"id": "uuid-1", "name": "Notch"})
    return client


def _flow(client, receiver=None, client_id="client-1") -> AuthFlow:
    return AuthFlow(
        client,
        client_id=client_id,
        redirect_uri="http://localhost:8080",
        receiver=receiver or FakeCodeReceiver(),
        retry_policy=RetryPolicy(max_attempts=2, base_delay=0),
        clock=lambda: NOW,
    )


@pytest.mark.asyncio
async def test_full_login_walks_every_stage() -> None:
    client = _happy_client()
    receiver = FakeCodeReceiver(code="the-code")
    credential = await _flow(client, receiver).authenticate()

    assert credential.access_token == "mc-access"
    assert credential.refresh_token == "ms-refresh"
    assert credential.identity_token == "ms-access"
    assert credential.xbl_token == "xbl-token"
    assert credential.xsts_token == "xsts-token"
    assert credential.user_hash == "uhs-1"
    assert credential.profile.name == "Notch"
    assert credential.expires_at == NOW + 86400

    _, _, token_call = client.calls[0]
    assert token_call["form"]["grant_type"] == "authorization_code"
    assert token_call["form"]["code"] == "the-code"
    _, _, xbl_call = client.calls[1]
    assert xbl_call["payload"]["Properties"]["RpsTicket"] == "d=ms-access"
    _, _, xsts_call = client.calls[2]
    assert xsts_call["payload"]["Properties"]["UserTokens"] == ["xbl-token"]
    assert xsts_call["payload"]["RelyingParty"] == "rp://api.minecraftservices.com/"
    _, _, mc_call = client.calls[3]
    assert mc_call["payload"] == {"identityToken": "XBL3.0 x=uhs-1;xsts-token"}
    _, _, profile_call = client.calls[5]
    assert profile_call["headers"] == {"Authorization": "Bearer mc-access"}


@pytest.mark.asyncio
async def test_authorize_url_requests_xbox_scopes() -> None:
    receiver = FakeCodeReceiver()
    await _flow(_happy_client(), receiver).authenticate()
    query = parse_qs(urlparse(receiver.urls[0]).query)
    assert query["client_id"] == ["client-1"]
    assert query["scope"] == ["XboxLive.signin offline_access"]
    assert query["redirect_uri"] == ["http://localhost:8080"]
    assert query["response_type"] == ["code"]


@pytest.mark.asyncio
async def test_refresh_skips_the_browser_and_rotates_refresh_token() -> None:
    client = _happy_client()
    client.replace(
        "POST", MS_TOKEN_URL, {"access_token": "ms-access-2", "refresh_token": "ms-refresh-2"}
    )
    receiver = FakeCodeReceiver()

    credential = await _flow(client, receiver).refresh("ms-refresh-1")

    assert receiver.urls == []
    assert credential.refresh_token == "ms-refresh-2"
    assert credential.identity_token == "ms-access-2"
    _, _, token_call = client.calls[0]
    assert token_call["form"]["grant_type"] == "refresh_token"
    assert token_call["form"]["refresh_token"] == "ms-refresh-1"


@pytest.mark.asyncio
async def test_refresh_keeps_refresh_token_when_not_rotated() -> None:
    client = _happy_client()
    client.replace("POST", MS_TOKEN_URL, {"access_token": "ms-access-2"})
    credential = await _flow(client).refresh("ms-refresh-1")
    assert credential.refresh_token == "ms-refresh-1"


@pytest.mark.asyncio
async def test_revoked_refresh_token_is_invalid_grant_and_not_retried() -> None:
    client = FakeServicesClient()
    client.add(
        "POST",
        MS_TOKEN_URL,
        _error(MS_TOKEN_URL, 400, {"error": "invalid_grant", "error_description": "revoked"}),
    )
    with pytest.raises(InvalidGrantError) as exc_info:
        await _flow(client).refresh("revoked")
    assert exc_info.value.stage is AuthStage.UNAUTHENTICATED
    assert client.count("POST", MS_TOKEN_URL) == 1


@pytest.mark.asyncio
async def test_child_account_is_reported_at_device_stage() -> None:
    client = _happy_client()
    client.replace(
        "POST", XSTS_AUTH_URL, _error(XSTS_AUTH_URL, 401, {"XErr": 2148916238, "Message": ""})
    )
    with pytest.raises(XboxAccountError) as exc_info:
        await _flow(client).authenticate()
    assert exc_info.value.stage is AuthStage.IDENTITY_TOKEN_OBTAINED
    assert "child" in str(exc_info.value)
    assert client.count("POST", MINECRAFT_AUTH_URL) == 0


@pytest.mark.asyncio
async def test_account_without_xbox_profile() -> None:
    client = _happy_client()
    client.replace("POST", XSTS_AUTH_URL, _error(XSTS_AUTH_URL, 401, {"XErr": 2148916233}))
    with pytest.raises(XboxAccountError, match="no Xbox profile"):
        await _flow(client).authenticate()


@pytest.mark.asyncio
async def test_missing_entitlement_stops_before_profile() -> None:
    client = _happy_client()
    client.replace("GET", MINECRAFT_ENTITLEMENT_URL, {"items": []})
    with pytest.raises(EntitlementError) as exc_info:
        await _flow(client).authenticate()
    assert exc_info.value.stage is AuthStage.SERVICE_AUTHORIZED
    assert client.count("GET", MINECRAFT_PROFILE_URL) == 0


@pytest.mark.asyncio
async def test_missing_profile_is_an_entitlement_error() -> None:
    client = _happy_client()
    client.replace(
        "GET", MINECRAFT_PROFILE_URL, _error(MINECRAFT_PROFILE_URL, 404, {"error": "NOT_FOUND"})
    )
    with pytest.raises(EntitlementError):
        await _flow(client).authenticate()


@pytest.mark.asyncio
async def test_transient_failure_is_retried_then_succeeds() -> None:
    client = _happy_client()
    client.replace(
        "POST",
        XBL_AUTH_URL,
        ApiResponseError(XBL_AUTH_URL, 503),
        {"Token": "xbl-token", **XUI},
    )
    credential = await _flow(client).authenticate()
    assert credential.xbl_token == "xbl-token"
    assert client.count("POST", XBL_AUTH_URL) == 2


@pytest.mark.asyncio
async def test_exhausted_transient_failures_become_network_error() -> None:
    client = _happy_client()
    client.replace("POST", MINECRAFT_AUTH_URL, ApiResponseError(MINECRAFT_AUTH_URL, 503))
    with pytest.raises(AuthNetworkError) as exc_info:
        await _flow(client).authenticate()
    assert exc_info.value.stage is AuthStage.DEVICE_AUTHORIZED
    assert client.count("POST", MINECRAFT_AUTH_URL) == 2


@pytest.mark.asyncio
async def test_declined_consent_is_attributed_to_first_stage() -> None:
    receiver = FakeCodeReceiver(error=ConsentDeniedError("declined"))
    client = _happy_client()
    with pytest.raises(ConsentDeniedError) as exc_info:
        await _flow(client, receiver).authenticate()
    assert exc_info.value.stage is AuthStage.UNAUTHENTICATED
    assert client.calls == []


@pytest.mark.asyncio
async def test_missing_token_field_is_protocol_error() -> None:
    client = _happy_client()
    client.replace("POST", MINECRAFT_AUTH_URL, {"expires_in": 86400})
    with pytest.raises(AuthProtocolError):
        await _flow(client).authenticate()


@pytest.mark.asyncio
async def test_login_without_client_id_is_a_configuration_error() -> None:
    with pytest.raises(ConfigurationError):
        await _flow(FakeServicesClient(), client_id="").authenticate()


def test_auth_state_advances_without_mutation() -> None:
    start = AuthState()
    nxt = start.advance(AuthStage.IDENTITY_CODE_REQUESTED, code="c")
    assert start.stage is AuthStage.UNAUTHENTICATED
    assert start.code is None
    assert nxt.stage is AuthStage.IDENTITY_CODE_REQUESTED
    assert nxt.code == "c"


def test_parse_redirect() -> None:
    assert parse_redirect({"code": "abc", "state": "s"}, "s") == "abc"
    with pytest.raises(ConsentDeniedError):
        parse_redirect({"error": "access_denied", "state": "s"}, "s")
    with pytest.raises(AuthProtocolError):
        parse_redirect({"code": "abc", "state": "other"}, "s")
    with pytest.raises(AuthProtocolError):
        parse_redirect({"state": "s"}, "s")

"""Tests for the login flow: login page, provider redirect, callback and logout."""
import asyncio
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx
from httpx import AsyncClient

from api.routers.auth import STATE_COOKIE_NAME
from core.change_bus import LocalChangeBus, auth_channel
from core.config import GOOGLE_TOKEN_URL, Settings, get_settings
from models.user import User
from schemas.events import AuthChange, AuthChangeKind
from services import identity_provider, user_service
from tests.services.test_identity_provider import CLIENT_ID, PRIVATE_KEY, make_id_token


def cookie_value(response: httpx.Response, name: str) -> str | None:
    """Value of a cookie set by the response, if any."""
    for header in response.headers.get_list("set-cookie"):
        key, _, rest = header.partition("=")
        if key == name:
            return rest.split(";", 1)[0]
    return None


def use_settings(**overrides: object) -> Settings:
    """Install settings for the app under test."""
    from api.main import app

    values = {"database_url": "sqlite+aiosqlite://", "oauth_client_id": CLIENT_ID}
    values.update(overrides)
    settings = Settings(**values)
    app.dependency_overrides[get_settings] = lambda: settings
    return settings


@pytest.fixture
def configured_provider(monkeypatch: pytest.MonkeyPatch) -> None:
    """A configured Google client whose id tokens are signed with the test key."""
    signing_key = SimpleNamespace(key=PRIVATE_KEY.public_key())
    fake_client = SimpleNamespace(get_signing_key_from_jwt=lambda _token: signing_key)
    monkeypatch.setattr(identity_provider, "get_jwks_client", lambda _settings: fake_client)
    use_settings()


# =============================================================================
# Login page
# =============================================================================


async def test__login_page__renders_sign_in(client: AsyncClient) -> None:
    """Signed out visitors see the sign in button."""
    use_settings()

    response = await client.get("/auth/login")

    assert response.status_code == 200
    assert "Sign in with Google" in response.text
    assert 'href="/auth/login/start"' in response.text


async def test__login_page__shows_error_message(client: AsyncClient) -> None:
    """Errors from a failed login are shown as an alert."""
    response = await client.get("/auth/login", params={"error": "auth_failed"})

    assert "Authentication failed. Please sign in again." in response.text


async def test__login_page__signed_in_goes_to_bookmarks(
    client: AsyncClient, auth_headers: dict[str, str],
) -> None:
    """A signed-in user skips the login page."""
    response = await client.get("/auth/login", headers=auth_headers)

    assert response.status_code == 303
    assert response.headers["location"] == "/bookmarks"


# =============================================================================
# Starting the login
# =============================================================================


async def test__start_login__redirects_to_provider_with_state(client: AsyncClient) -> None:
    """The browser is sent to the provider and the state is remembered in a cookie."""
    use_settings()

    response = await client.get("/auth/login/start")

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.netloc == "accounts.google.com"
    state = parse_qs(location.query)["state"][0]
    assert cookie_value(response, STATE_COOKIE_NAME) == state


async def test__start_login__unconfigured_provider(client: AsyncClient) -> None:
    """A missing client id sends the user back with signin_failed."""
    use_settings(oauth_client_id="")

    response = await client.get("/auth/login/start")

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login?error=signin_failed"


async def test__start_login__dev_mode_signs_in_directly(client: AsyncClient) -> None:
    """In DEV_MODE the local developer is signed in without the provider."""
    use_settings(dev_mode=True)

    response = await client.get("/auth/login/start")

    assert response.status_code == 303
    assert response.headers["location"] == "/bookmarks"
    token = cookie_value(response, "bm_session")
    assert token

    page = await client.get("/bookmarks", headers={"Authorization": f"Bearer {token}"})
    assert page.status_code == 200
    assert user_service.DEV_USER_EMAIL in page.text


# =============================================================================
# Callback
# =============================================================================


@pytest.mark.usefixtures("configured_provider")
async def test__callback__creates_user_and_session(
    client: AsyncClient, respx_mock: respx.MockRouter,
) -> None:
    """A valid code signs the user in and lands on the bookmark page."""
    respx_mock.post(GOOGLE_TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"id_token": make_id_token()}),
    )
    client.cookies.set(STATE_COOKIE_NAME, "state-123")

    response = await client.get("/auth/callback", params={"code": "abc", "state": "state-123"})

    assert response.status_code == 303
    assert response.headers["location"] == "/bookmarks"
    assert cookie_value(response, STATE_COOKIE_NAME) == '""'
    token = cookie_value(response, "bm_session")

    session = await client.get("/api/session", headers={"Authorization": f"Bearer {token}"})
    assert session.status_code == 200
    assert session.json()["user"]["email"] == "person@example.com"


@pytest.mark.usefixtures("configured_provider")
async def test__callback__rejected_code_is_auth_failed(
    client: AsyncClient, respx_mock: respx.MockRouter,
) -> None:
    """A code the provider rejects sends the user back with auth_failed."""
    respx_mock.post(GOOGLE_TOKEN_URL).mock(
        return_value=httpx.Response(400, json={"error": "invalid_grant"}),
    )
    client.cookies.set(STATE_COOKIE_NAME, "state-123")

    response = await client.get("/auth/callback", params={"code": "bad", "state": "state-123"})

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login?error=auth_failed"
    assert cookie_value(response, "bm_session") is None


@pytest.mark.usefixtures("configured_provider")
async def test__callback__state_mismatch_is_auth_failed(client: AsyncClient) -> None:
    """A callback that was not started by this browser is refused."""
    client.cookies.set(STATE_COOKIE_NAME, "state-123")

    response = await client.get("/auth/callback", params={"code": "abc", "state": "forged"})

    assert response.headers["location"] == "/auth/login?error=auth_failed"


async def test__callback__without_code_goes_to_login(client: AsyncClient) -> None:
    """A callback without a code shows the plain login page."""
    response = await client.get("/auth/callback")

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login"


@pytest.mark.usefixtures("configured_provider")
async def test__callback__unexpected_error_is_server_error(
    client: AsyncClient,
    respx_mock: respx.MockRouter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Unexpected failures are reported without a stack trace."""
    respx_mock.post(GOOGLE_TOKEN_URL).mock(
        return_value=httpx.Response(200, json={"id_token": make_id_token()}),
    )

    async def broken(*_args: object, **_kwargs: object) -> User:
        raise RuntimeError("database exploded")

    monkeypatch.setattr(user_service, "get_or_create_user", broken)
    client.cookies.set(STATE_COOKIE_NAME, "state-123")

    response = await client.get("/auth/callback", params={"code": "abc", "state": "state-123"})

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login?error=server_error"


# =============================================================================
# Logout
# =============================================================================


async def test__logout__ends_session_and_notifies(
    client: AsyncClient,
    change_bus: LocalChangeBus,
    session_token: str,
    test_user: User,
) -> None:
    """Signing out clears the cookie, ends the session and tells open views."""
    subscription = await change_bus.subscribe(auth_channel(test_user.id))
    headers = {"Authorization": f"Bearer {session_token}"}

    response = await client.post("/auth/logout", headers=headers)

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login"
    assert cookie_value(response, "bm_session") == '""'
    change = AuthChange.model_validate_json(await asyncio.wait_for(anext(subscription), 1))
    assert change.kind is AuthChangeKind.SIGNED_OUT
    assert (await client.get("/api/session", headers=headers)).status_code == 401
    await subscription.close()


async def test__logout__without_session_still_redirects(client: AsyncClient) -> None:
    """Signing out twice is harmless."""
    response = await client.post("/auth/logout")

    assert response.status_code == 303
    assert response.headers["location"] == "/auth/login"

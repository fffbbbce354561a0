"""Login flow: provider redirect, callback, and sign-out."""
import logging
import secrets

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import (
    get_async_session,
    get_optional_session,
    get_session_token,
    get_settings,
)
from api.rendering import templates
from core.config import Settings
from live.view import LOGIN_PATH
from schemas.session import Session
from services import change_feed, identity_provider, session_service, user_service
from services.exceptions import CodeExchangeError, IdentityProviderConfigError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

BOOKMARKS_PATH = "/bookmarks"
STATE_COOKIE_NAME = "bm_oauth_state"
STATE_COOKIE_MAX_AGE = 600

ERROR_MESSAGES = {
    "signin_failed": "Failed to sign in. Please try again.",
    "auth_failed": "Authentication failed. Please sign in again.",
    "server_error": "Something went wrong while signing you in.",
}


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    """Attach the session token cookie to a response."""
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.session_ttl_hours * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )


def _login_redirect(error: str | None = None) -> RedirectResponse:
    location = f"{LOGIN_PATH}?error={error}" if error else LOGIN_PATH
    return RedirectResponse(location, status_code=303)


@router.get("/login", response_class=HTMLResponse, response_model=None)
async def login_page(
    request: Request,
    error: str | None = None,
    session: Session | None = Depends(get_optional_session),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Render the login page, or skip it when already signed in."""
    if session is not None:
        return RedirectResponse(BOOKMARKS_PATH, status_code=303)
    return templates.TemplateResponse(
        request,
        "login.html",
        {
            "error": ERROR_MESSAGES.get(error, ERROR_MESSAGES["signin_failed"]) if error else None,
            "provider": settings.oauth_provider,
            "dev_mode": settings.dev_mode,
        },
    )


@router.get("/login/start")
async def start_login(
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_async_session),
) -> RedirectResponse:
    """
    Start the provider redirect login.

    In DEV_MODE the provider is skipped and the local development user is signed
    in directly.
    """
    if settings.dev_mode:
        user = await user_service.get_or_create_dev_user(db)
        _, token = await session_service.create_session(
            db, user, provider="dev", ttl_hours=settings.session_ttl_hours,
        )
        response = RedirectResponse(BOOKMARKS_PATH, status_code=303)
        set_session_cookie(response, token, settings)
        return response

    state = identity_provider.generate_state()
    try:
        authorization_url = identity_provider.build_authorization_url(settings, state)
    except IdentityProviderConfigError:
        logger.exception("Sign in error")
        return _login_redirect("signin_failed")

    response = RedirectResponse(authorization_url, status_code=302)
    response.set_cookie(
        STATE_COOKIE_NAME,
        state,
        max_age=STATE_COOKIE_MAX_AGE,
        httponly=True,
        samesite="lax",
        secure=settings.session_cookie_secure,
    )
    return response


@router.get("/callback")
async def auth_callback(
    request: Request,
    code: str | None = None,
    state: str | None = None,
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_async_session),
) -> RedirectResponse:
    """
    Finish the provider login: exchange the code, then create a session.

    Exchange failures redirect with error=auth_failed, anything unexpected with
    error=server_error. A callback without a code goes back to the plain login page.
    """
    if not code:
        return _login_redirect()

    try:
        expected_state = request.cookies.get(STATE_COOKIE_NAME)
        if not expected_state or not state or not secrets.compare_digest(expected_state, state):
            raise CodeExchangeError("OAuth state mismatch")
        claims = await identity_provider.exchange_code(code, settings)
        user = await user_service.get_or_create_user(db, claims.provider_subject, claims.email)
        _, token = await session_service.create_session(
            db, user, provider=claims.provider, ttl_hours=settings.session_ttl_hours,
        )
    except (CodeExchangeError, httpx.HTTPError) as e:
        logger.warning("Auth error: %s", e)
        response = _login_redirect("auth_failed")
    except Exception:
        logger.exception("Unexpected error during sign in callback")
        change_feed.discard_pending(db)
        await db.rollback()
        response = _login_redirect("server_error")
    else:
        response = RedirectResponse(BOOKMARKS_PATH, status_code=303)
        set_session_cookie(response, token, settings)

    response.delete_cookie(STATE_COOKIE_NAME)
    return response


@router.post("/logout")
async def logout(
    token: str | None = Depends(get_session_token),
    settings: Settings = Depends(get_settings),
    db: AsyncSession = Depends(get_async_session),
) -> RedirectResponse:
    """Sign out and go back to the login page."""
    await session_service.delete_session(db, token)
    response = _login_redirect()
    response.delete_cookie(settings.session_cookie_name)
    return response

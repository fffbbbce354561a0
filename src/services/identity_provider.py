"""OAuth 2.0 authorization code client for the third-party identity provider."""
import logging
import secrets
from dataclasses import dataclass
from urllib.parse import urlencode

import httpx
import jwt
from jwt import PyJWKClient

from core.config import Settings
from services.exceptions import CodeExchangeError, IdentityProviderConfigError

logger = logging.getLogger(__name__)

# Cache for JWKS client (reuse across requests)
_jwks_clients: dict[str, PyJWKClient] = {}


@dataclass(frozen=True)
class IdentityClaims:
    """Verified identity returned by the provider."""

    subject: str
    email: str | None
    provider: str

    @property
    def provider_subject(self) -> str:
        """Subject namespaced by provider, e.g. 'google|1234'."""
        return f"{self.provider}|{self.subject}"


def generate_state() -> str:
    """Random value tying the callback to the browser that started the login."""
    return secrets.token_urlsafe(24)


def build_authorization_url(settings: Settings, state: str) -> str:
    """
    Build the provider URL that starts the redirect login.

    The callback target is always this application's own /auth/callback.

    Raises:
        IdentityProviderConfigError: If the provider is not configured.
    """
    if not settings.oauth_configured:
        raise IdentityProviderConfigError(
            f"Identity provider '{settings.oauth_provider}' is not configured "
            "(OAUTH_CLIENT_ID is missing)",
        )
    params = {
        "client_id": settings.oauth_client_id,
        "redirect_uri": settings.oauth_redirect_uri,
        "response_type": "code",
        "scope": settings.oauth_scopes,
        "state": state,
    }
    return f"{settings.oauth_authorize_url}?{urlencode(params)}"


def get_jwks_client(settings: Settings) -> PyJWKClient:
    """Get or create a cached JWKS client for the given settings."""
    if settings.oauth_jwks_url not in _jwks_clients:
        _jwks_clients[settings.oauth_jwks_url] = PyJWKClient(
            settings.oauth_jwks_url,
            cache_jwk_set=True,
            lifespan=3600,  # Cache keys for 1 hour
        )
    return _jwks_clients[settings.oauth_jwks_url]


def decode_id_token(id_token: str, settings: Settings) -> dict:
    """
    Decode and validate an OpenID Connect id token.

    Raises:
        CodeExchangeError: If the token is invalid, expired, or has wrong audience/issuer.
    """
    try:
        jwks_client = get_jwks_client(settings)
        signing_key = jwks_client.get_signing_key_from_jwt(id_token)

        return jwt.decode(
            id_token,
            signing_key.key,
            algorithms=["RS256"],
            audience=settings.oauth_client_id,
            issuer=settings.oauth_issuer,
        )
    except jwt.ExpiredSignatureError as e:
        raise CodeExchangeError("Id token has expired") from e
    except jwt.InvalidAudienceError as e:
        raise CodeExchangeError("Id token has invalid audience") from e
    except jwt.InvalidIssuerError as e:
        raise CodeExchangeError("Id token has invalid issuer") from e
    except jwt.PyJWTError as e:
        # Log full details for debugging (server-side only)
        logger.warning("Id token validation failed: %s", e, exc_info=True)
        raise CodeExchangeError("Invalid id token") from e


async def exchange_code(
    code: str,
    settings: Settings,
    client: httpx.AsyncClient | None = None,
) -> IdentityClaims:
    """
    Exchange an authorization code for a verified identity.

    Raises:
        CodeExchangeError: If the provider rejects the code or returns no valid id token.
        IdentityProviderConfigError: If the provider is not configured.
        httpx.HTTPError: If the provider cannot be reached.
    """
    if not settings.oauth_configured:
        raise IdentityProviderConfigError(
            f"Identity provider '{settings.oauth_provider}' is not configured",
        )

    form = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.oauth_redirect_uri,
        "client_id": settings.oauth_client_id,
        "client_secret": settings.oauth_client_secret,
    }
    if client is None:
        async with httpx.AsyncClient(timeout=settings.oauth_timeout_seconds) as own_client:
            response = await own_client.post(settings.oauth_token_url, data=form)
    else:
        response = await client.post(settings.oauth_token_url, data=form)

    if response.status_code != httpx.codes.OK:
        try:
            error = response.json().get("error", "unknown_error")
        except ValueError:
            error = "unknown_error"
        raise CodeExchangeError(
            f"Token endpoint returned {response.status_code} ({error})",
        )

    try:
        id_token = response.json().get("id_token")
    except ValueError as e:
        raise CodeExchangeError("Token endpoint returned invalid JSON") from e
    if not id_token:
        raise CodeExchangeError("Token response did not include an id_token")

    claims = decode_id_token(id_token, settings)
    subject = claims.get("sub")
    if not subject:
        raise CodeExchangeError("Id token is missing the sub claim")

    return IdentityClaims(
        subject=subject,
        email=claims.get("email"),
        provider=settings.oauth_provider,
    )

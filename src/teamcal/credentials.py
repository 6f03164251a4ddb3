"""Bearer credential services.

``TokenCache`` is the injected credential accessor: a small stateful service
with an explicit expiry policy (tokens are reused until shortly before they
expire, then refreshed on the next ``get``). The calendar-list client only
ever calls ``TokenCache.get``; it never stores tokens itself.

``GoogleOAuthTokenSource`` exchanges a stored refresh token for access tokens
and is the default fetcher for the cache.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from teamcal.errors import AuthError, sanitize_error_message

logger = logging.getLogger(__name__)

GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_OAUTH_REVOKE_URL = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

# Google access tokens live for an hour; keep a margin.
DEFAULT_TOKEN_TTL_SECONDS = 50 * 60
# Refresh early to avoid edge-of-expiration failures.
EXPIRY_SKEW_SECONDS = 60
MIN_TOKEN_TTL_SECONDS = 30


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_in: int | None = None


TokenFetcher = Callable[[], Awaitable[AccessToken]]
CredentialAccessor = Callable[[], Awaitable[str]]


class TokenCache:
    """Time-boxed access-token cache with ``get``/``invalidate``."""

    def __init__(
        self,
        fetch: TokenFetcher,
        *,
        ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
        revoke: Callable[[str], Awaitable[None]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._fetch = fetch
        self._ttl_seconds = ttl_seconds
        self._revoke = revoke
        self._clock = clock
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._refresh_lock = asyncio.Lock()

    @property
    def has_token(self) -> bool:
        return self._token_is_fresh()

    async def get(self, *, force_refresh: bool = False) -> str:
        if not force_refresh and self._token_is_fresh():
            assert self._token is not None
            return self._token

        async with self._refresh_lock:
            if not force_refresh and self._token_is_fresh():
                assert self._token is not None
                return self._token
            await self._refresh()
            assert self._token is not None
            return self._token

    def invalidate(self) -> None:
        if self._token is not None:
            logger.debug("Access token invalidated")
        self._token = None
        self._expires_at = 0.0

    async def sign_out(self) -> None:
        """Drop the cached token and revoke it remotely when a revoker is configured."""
        token = self._token
        self.invalidate()
        if token is None or self._revoke is None:
            return
        try:
            await self._revoke(token)
        except AuthError as exc:
            logger.warning("Token revocation failed: %s", exc)

    def _token_is_fresh(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at

    async def _refresh(self) -> None:
        try:
            token = await self._fetch()
        except AuthError:
            self.invalidate()
            raise
        except Exception as exc:
            self.invalidate()
            message = sanitize_error_message(str(exc))
            raise AuthError(f"Access token refresh failed: {message}") from exc

        if not token.value.strip():
            self.invalidate()
            raise AuthError("Access token source returned an empty token")

        ttl = self._ttl_seconds
        if token.expires_in is not None:
            ttl = min(ttl, max(token.expires_in - EXPIRY_SKEW_SECONDS, MIN_TOKEN_TTL_SECONDS))
        self._token = token.value.strip()
        self._expires_at = self._clock() + ttl
        logger.debug("Access token refreshed (ttl=%ds)", ttl)


class GoogleOAuthCredentials(BaseModel):
    """OAuth client credentials required for refresh-token exchange."""

    model_config = ConfigDict(extra="forbid")

    client_id: str = Field(min_length=1)
    client_secret: str = Field(min_length=1)
    refresh_token: str = Field(min_length=1)

    @field_validator("client_id", "client_secret", "refresh_token")
    @classmethod
    def _normalize_non_empty(cls, value: str, info: ValidationInfo) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError(f"{info.field_name} must be a non-empty string")
        return normalized

    @classmethod
    def from_json(cls, raw_value: str) -> GoogleOAuthCredentials:
        try:
            payload = json.loads(raw_value)
        except json.JSONDecodeError as exc:
            raise AuthError(f"Credential JSON must be valid JSON: {exc.msg}") from exc

        if not isinstance(payload, dict):
            raise AuthError("Credential JSON must decode to a JSON object")

        credential_data = {
            key: _extract_google_credential_value(payload, key)
            for key in ("client_id", "client_secret", "refresh_token")
        }
        missing = sorted(key for key, value in credential_data.items() if value is None)
        if missing:
            raise AuthError(f"Credential JSON is missing required field(s): {', '.join(missing)}")

        invalid = sorted(
            key
            for key, value in credential_data.items()
            if not isinstance(value, str) or not value.strip()
        )
        if invalid:
            raise AuthError(
                f"Credential JSON must contain non-empty string field(s): {', '.join(invalid)}"
            )

        return cls(**{key: str(value) for key, value in credential_data.items()})


def _extract_google_credential_value(payload: dict[str, Any], key: str) -> Any:
    if key in payload:
        return payload[key]

    for nested_key in ("installed", "web"):
        nested = payload.get(nested_key)
        if isinstance(nested, dict) and key in nested:
            return nested[key]
    return None


def _coerce_expires_in_seconds(value: Any) -> int:
    if isinstance(value, bool):
        return 3600
    if isinstance(value, int | float):
        return int(value) if value > 0 else 3600
    return 3600


def safe_google_error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        error_payload = payload.get("error")
        if isinstance(error_payload, dict):
            message = error_payload.get("message")
            if isinstance(message, str) and message.strip():
                return " ".join(message.split())[:200]
        if isinstance(error_payload, str) and error_payload.strip():
            return " ".join(error_payload.split())[:200]

    raw_text = response.text.strip()
    if raw_text:
        return " ".join(raw_text.split())[:200]
    return "Request failed without an error payload"


class GoogleOAuthTokenSource:
    """Refresh-token exchange against Google's OAuth endpoint."""

    def __init__(self, credentials: GoogleOAuthCredentials, http_client: httpx.AsyncClient) -> None:
        self._credentials = credentials
        self._http_client = http_client

    async def __call__(self) -> AccessToken:
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_TOKEN_URL,
                data={
                    "client_id": self._credentials.client_id,
                    "client_secret": self._credentials.client_secret,
                    "refresh_token": self._credentials.refresh_token,
                    "grant_type": "refresh_token",
                },
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Google OAuth token refresh request failed: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            raise AuthError(
                "Google OAuth token refresh failed "
                f"({response.status_code}): {safe_google_error_message(response)}"
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Google OAuth token endpoint returned invalid JSON") from exc

        access_token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(access_token, str) or not access_token.strip():
            raise AuthError("Google OAuth token response is missing a non-empty access_token")

        expires_in = payload.get("expires_in") if isinstance(payload, dict) else None
        return AccessToken(
            value=access_token.strip(),
            expires_in=_coerce_expires_in_seconds(expires_in),
        )

    async def revoke(self, token: str) -> None:
        try:
            response = await self._http_client.post(
                GOOGLE_OAUTH_REVOKE_URL,
                data={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as exc:
            raise AuthError(f"Google OAuth token revocation request failed: {exc}") from exc
        # 400 means the token was already invalid.
        if response.status_code not in (200, 400):
            raise AuthError(
                f"Google OAuth token revocation failed ({response.status_code}): "
                f"{safe_google_error_message(response)}"
            )


async def fetch_user_email(http_client: httpx.AsyncClient, get_token: CredentialAccessor) -> str:
    """Return the signed-in user's email from the userinfo endpoint."""
    token = await get_token()
    try:
        response = await http_client.get(
            GOOGLE_USERINFO_URL,
            headers={"Authorization": f"Bearer {token}"},
        )
    except httpx.HTTPError as exc:
        raise AuthError(f"User info request failed: {exc}") from exc

    if response.status_code != 200:
        raise AuthError(
            f"User info request failed ({response.status_code}): "
            f"{safe_google_error_message(response)}"
        )
    try:
        payload = response.json()
    except ValueError as exc:
        raise AuthError("User info endpoint returned invalid JSON") from exc
    email = payload.get("email") if isinstance(payload, dict) else None
    if not isinstance(email, str) or not email.strip():
        raise AuthError("User info response is missing an email address")
    return email.strip()


def token_cache_from_env_json(
    raw_credentials: str,
    http_client: httpx.AsyncClient,
    *,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
) -> TokenCache:
    """Build a ``TokenCache`` backed by Google refresh-token credentials JSON."""
    source = GoogleOAuthTokenSource(GoogleOAuthCredentials.from_json(raw_credentials), http_client)
    return TokenCache(source, ttl_seconds=ttl_seconds, revoke=source.revoke)

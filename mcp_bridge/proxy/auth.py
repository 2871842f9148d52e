"""
Bearer token supply for backend and gateway requests.

TokenProvider is the only authentication surface the bridge core uses:
callers ask for a token and get either a string, None (no auth needed),
or an AuthenticationError scoped to the operation that asked.
"""

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

import httpx
from jose import JWTError, jwt

from .config import BridgeConfig
from .errors import AuthenticationError

logger = logging.getLogger(__name__)

# Seconds before expiry at which a cached token is refreshed
REFRESH_BUFFER_SECONDS = 300

# Lifetime assumed for tokens whose expiry cannot be decoded
DEFAULT_TOKEN_LIFETIME = 3600

TOKEN_ENDPOINT = "https://login.microsoftonline.com/{tenant}/oauth2/v2.0/token"


class TokenCache:
    """
    In-memory token cache with expiry tracking.

    Concurrent callers that find the cache stale share a single refresh.
    """

    def __init__(self):
        self._token: Optional[str] = None
        self._expires_at: float = 0.0
        self._pending: Optional[asyncio.Future] = None

    async def get_token(self, refresh: Callable[[], Awaitable[str]]) -> str:
        """
        Return a cached token or acquire a new one.

        Args:
            refresh: Coroutine function that acquires a fresh token

        Returns:
            A token valid for at least REFRESH_BUFFER_SECONDS
        """
        if self._token and time.time() < self._expires_at - REFRESH_BUFFER_SECONDS:
            return self._token

        if self._pending is not None:
            return await asyncio.shield(self._pending)

        loop = asyncio.get_running_loop()
        self._pending = loop.create_future()
        pending = self._pending
        try:
            token = await refresh()
            self._token = token
            self._expires_at = self.extract_expiry(token)
            pending.set_result(token)
            return token
        except asyncio.CancelledError:
            pending.cancel()
            raise
        except Exception as e:
            pending.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported twice
            pending.exception()
            raise
        finally:
            self._pending = None

    @staticmethod
    def extract_expiry(token: str) -> float:
        """Read the exp claim of a JWT, falling back to a default lifetime."""
        try:
            claims = jwt.get_unverified_claims(token)
            exp = claims.get("exp")
            if isinstance(exp, (int, float)):
                return float(exp)
        except JWTError:
            logger.debug("Token is not a decodable JWT, assuming default lifetime")
        return time.time() + DEFAULT_TOKEN_LIFETIME

    def clear(self) -> None:
        """Drop the cached token."""
        self._token = None
        self._expires_at = 0.0


class TokenProvider:
    """
    Provides bearer tokens for bridge HTTP requests.

    Modes, in order of precedence:
    - Mock: endpoint on localhost, no token is sent
    - Static: BEARER_TOKEN is used as-is
    - Client credentials: OAuth2 client-credentials grant, cached until expiry
    """

    def __init__(self, config: BridgeConfig, http_client: Optional[httpx.AsyncClient] = None):
        """
        Initialize the token provider.

        Args:
            config: Bridge configuration with credential material
            http_client: Optional client used for token requests
        """
        self.config = config
        self.scopes = [config.auth_scope]
        self.cache = TokenCache()
        self._http_client = http_client

    def is_mock_mode(self) -> bool:
        """Return True when no authentication is required."""
        return self.config.is_mock_endpoint

    def uses_client_credentials(self) -> bool:
        """Return True when the client-credentials grant is configured."""
        return (
            self.config.auth_mode == "client_credentials"
            and bool(self.config.tenant_id)
            and bool(self.config.client_id)
            and bool(self.config.client_secret)
        )

    async def get_token(self) -> Optional[str]:
        """
        Get a valid bearer token.

        Returns:
            The token, or None in mock mode

        Raises:
            AuthenticationError: If no credential is configured or acquisition fails
        """
        if self.is_mock_mode():
            return None

        if self.config.bearer_token:
            return self.config.bearer_token

        if not self.uses_client_credentials():
            raise AuthenticationError(
                "No authentication configured. Set BEARER_TOKEN, or "
                "AUTH_MODE=client_credentials with AZURE_TENANT_ID, "
                "AZURE_CLIENT_ID and AZURE_CLIENT_SECRET"
            )

        return await self.cache.get_token(self._request_client_credentials_token)

    async def _request_client_credentials_token(self) -> str:
        """Run the client-credentials grant against the token endpoint."""
        url = TOKEN_ENDPOINT.format(tenant=self.config.tenant_id)
        data = {
            "grant_type": "client_credentials",
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "scope": " ".join(self.scopes),
        }

        client = self._http_client or httpx.AsyncClient(timeout=self.config.request_timeout)
        try:
            logger.info("Requesting client-credentials token")
            response = await client.post(url, data=data)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            detail = ""
            try:
                detail = e.response.json().get("error_description", "")
            except ValueError:
                pass
            raise AuthenticationError(
                f"Token request failed: {e.response.status_code} {detail}".rstrip()
            ) from e
        except (httpx.RequestError, ValueError) as e:
            raise AuthenticationError(f"Token request failed: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not token:
            raise AuthenticationError("Token response did not contain an access_token")
        return token

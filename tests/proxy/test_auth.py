"""
Unit tests for bearer token supply.
"""

import asyncio
import time
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from jose import jwt

from mcp_bridge.proxy.auth import DEFAULT_TOKEN_LIFETIME, TokenCache, TokenProvider
from mcp_bridge.proxy.config import BridgeConfig
from mcp_bridge.proxy.errors import AuthenticationError

TOKEN_URL = "https://login.microsoftonline.com/tenant-1/oauth2/v2.0/token"


def make_jwt(exp: float) -> str:
    return jwt.encode({"exp": int(exp), "sub": "bridge"}, "secret", algorithm="HS256")


@pytest.fixture
def client_credentials_config(tmp_path):
    return BridgeConfig(
        endpoint="https://platform.example.com",
        auth_mode="client_credentials",
        tenant_id="tenant-1",
        client_id="client-1",
        client_secret="secret-1",
        cache_path=tmp_path / "cache.json",
    )


class TestTokenCache:
    """Test the TokenCache class."""

    def test_extract_expiry_from_jwt(self):
        exp = time.time() + 7200
        assert TokenCache.extract_expiry(make_jwt(exp)) == int(exp)

    def test_extract_expiry_default_for_opaque_token(self):
        before = time.time()
        expiry = TokenCache.extract_expiry("not-a-jwt")
        assert before + DEFAULT_TOKEN_LIFETIME <= expiry <= time.time() + DEFAULT_TOKEN_LIFETIME

    @pytest.mark.asyncio
    async def test_reuses_valid_token(self):
        cache = TokenCache()
        token = make_jwt(time.time() + 3600)
        refresh = AsyncMock(return_value=token)

        assert await cache.get_token(refresh) == token
        assert await cache.get_token(refresh) == token
        assert refresh.await_count == 1

    @pytest.mark.asyncio
    async def test_refreshes_token_near_expiry(self):
        cache = TokenCache()
        tokens = [make_jwt(time.time() + 60), make_jwt(time.time() + 3600)]

        async def refresh():
            return tokens.pop(0)

        first = await cache.get_token(refresh)
        second = await cache.get_token(refresh)

        assert first != second
        assert tokens == []

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_refresh(self):
        cache = TokenCache()
        calls = 0
        release = asyncio.Event()

        async def refresh():
            nonlocal calls
            calls += 1
            await release.wait()
            return "opaque-token"

        waiters = [asyncio.create_task(cache.get_token(refresh)) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*waiters)

        assert results == ["opaque-token"] * 3
        assert calls == 1

    @pytest.mark.asyncio
    async def test_failed_refresh_is_not_cached(self):
        cache = TokenCache()

        async def failing():
            raise AuthenticationError("denied")

        async def working():
            return "opaque-token"

        with pytest.raises(AuthenticationError):
            await cache.get_token(failing)
        assert await cache.get_token(working) == "opaque-token"


class TestTokenProvider:
    """Test the TokenProvider class."""

    @pytest.mark.asyncio
    async def test_mock_mode_has_no_token(self, tmp_path):
        config = BridgeConfig(endpoint="http://localhost:5309", bearer_token="ignored")
        provider = TokenProvider(config)

        assert provider.is_mock_mode()
        assert await provider.get_token() is None

    @pytest.mark.asyncio
    async def test_static_bearer_token(self, bridge_config):
        provider = TokenProvider(bridge_config)

        assert await provider.get_token() == "test-token"

    @pytest.mark.asyncio
    async def test_no_credentials(self, tmp_path):
        provider = TokenProvider(BridgeConfig(endpoint="https://platform.example.com"))

        with pytest.raises(AuthenticationError, match="No authentication configured"):
            await provider.get_token()

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_credentials_grant(self, client_credentials_config):
        token = make_jwt(time.time() + 3600)
        route = respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(200, json={"access_token": token, "token_type": "Bearer"})
        )
        provider = TokenProvider(client_credentials_config)

        assert await provider.get_token() == token
        assert await provider.get_token() == token
        assert route.call_count == 1

        body = route.calls[0].request.content.decode()
        assert "grant_type=client_credentials" in body
        assert "client_id=client-1" in body

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_credentials_rejected(self, client_credentials_config):
        respx.post(TOKEN_URL).mock(
            return_value=httpx.Response(
                401, json={"error": "invalid_client", "error_description": "Bad secret"}
            )
        )
        provider = TokenProvider(client_credentials_config)

        with pytest.raises(AuthenticationError, match="401 Bad secret"):
            await provider.get_token()

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_credentials_missing_access_token(self, client_credentials_config):
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"token_type": "Bearer"}))
        provider = TokenProvider(client_credentials_config)

        with pytest.raises(AuthenticationError, match="access_token"):
            await provider.get_token()

    @respx.mock
    @pytest.mark.asyncio
    async def test_client_credentials_network_error(self, client_credentials_config):
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("unreachable"))
        provider = TokenProvider(client_credentials_config)

        with pytest.raises(AuthenticationError, match="Token request failed"):
            await provider.get_token()

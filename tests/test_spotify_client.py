"""Tests for the Spotify client, using httpx.MockTransport."""

import base64

import httpx
import pytest

from spotify_client import Operation, SpotifyClient, UpstreamAuthError, UpstreamError


def make_client(handler) -> SpotifyClient:
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return SpotifyClient("client-id", "client-secret", http_client=http)


class TestTokenEndpoint:
    @pytest.mark.asyncio
    async def test_exchange_code(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["body"] = request.content.decode()
            return httpx.Response(200, json={
                "access_token": "at", "refresh_token": "rt", "expires_in": 3600, "scope": "user-read-private",
            })

        client = make_client(handler)
        tokens = await client.exchange_code("the-code", "http://localhost:3000/callback")

        assert tokens.access_token == "at"
        assert tokens.refresh_token == "rt"
        assert tokens.expires_in == 3600
        assert seen["url"] == "https://accounts.spotify.com/api/token"
        assert seen["auth"] == "Basic " + base64.b64encode(b"client-id:client-secret").decode()
        assert "grant_type=authorization_code" in seen["body"]
        assert "code=the-code" in seen["body"]

    @pytest.mark.asyncio
    async def test_refresh_without_rotation(self):
        client = make_client(lambda request: httpx.Response(200, json={"access_token": "new"}))
        tokens = await client.refresh_token("rt")
        assert tokens.access_token == "new"
        assert tokens.refresh_token is None

    @pytest.mark.asyncio
    async def test_token_error(self):
        client = make_client(lambda request: httpx.Response(
            400, json={"error": "invalid_grant", "error_description": "Invalid authorization code"},
        ))
        with pytest.raises(UpstreamError, match="Invalid authorization code") as exc_info:
            await client.exchange_code("bad", "http://localhost:3000/callback")
        assert exc_info.value.status_code == 400
        assert exc_info.value.operation is Operation.EXCHANGE_CODE

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        client = make_client(handler)
        with pytest.raises(UpstreamError):
            await client.refresh_token("rt")


class TestWebApi:
    @pytest.mark.asyncio
    async def test_fetch_profile(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/me"
            assert request.headers["authorization"] == "Bearer at"
            return httpx.Response(200, json={"id": "user-1", "display_name": "User"})

        profile = await make_client(handler).fetch_profile("at")
        assert profile["id"] == "user-1"

    @pytest.mark.asyncio
    async def test_profile_without_id(self):
        client = make_client(lambda request: httpx.Response(200, json={"display_name": "x"}))
        with pytest.raises(UpstreamError):
            await client.fetch_profile("at")

    @pytest.mark.asyncio
    async def test_401_is_auth_error(self):
        client = make_client(lambda request: httpx.Response(
            401, json={"error": {"status": 401, "message": "The access token expired"}},
        ))
        with pytest.raises(UpstreamAuthError):
            await client.fetch_resource("at", "GET", "/me/playlists", Operation.GET_PLAYLISTS)

    @pytest.mark.asyncio
    async def test_api_error_message(self):
        client = make_client(lambda request: httpx.Response(
            404, json={"error": {"status": 404, "message": "Player command failed: No active device found"}},
        ))
        with pytest.raises(UpstreamError, match="No active device found") as exc_info:
            await client.fetch_resource("at", "PUT", "/me/player/pause", Operation.PAUSE_PLAYBACK)
        assert not isinstance(exc_info.value, UpstreamAuthError)

    @pytest.mark.asyncio
    async def test_no_content(self):
        client = make_client(lambda request: httpx.Response(204))
        assert await client.fetch_resource("at", "POST", "/me/player/next", Operation.SKIP_TO_NEXT) is None

    @pytest.mark.asyncio
    async def test_query_and_body(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["params"] = dict(request.url.params)
            seen["body"] = request.content
            return httpx.Response(204)

        await make_client(handler).fetch_resource(
            "at", "PUT", "/me/player/play", Operation.START_PLAYBACK,
            params={"device_id": "d1"}, json={"uris": ["spotify:track:1"]},
        )
        assert seen["params"] == {"device_id": "d1"}
        assert b"spotify:track:1" in seen["body"]

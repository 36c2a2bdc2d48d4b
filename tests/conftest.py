"""Shared fixtures for spotify-mcp-server tests."""

from unittest.mock import AsyncMock, MagicMock
from urllib.parse import parse_qs, urlsplit

import pytest

from config import ServerConfig
from credential_bridge import CredentialBridge
from oauth.flow import AuthorizationFlow
from oauth.jwt_utils import TokenCodec
from oauth.pkce import derive_challenge
from oauth.stores import AuthorizationStore
from spotify_client import SpotifyClient, UpstreamTokens

TEST_SECRET = "test-secret-for-signing-bearer-tokens"
TEST_ISSUER = "http://localhost:3000"
CLIENT_REDIRECT = "http://localhost:6274/oauth/callback"
VERIFIER = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"
CHALLENGE = derive_challenge(VERIFIER)


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ServerConfig:
    return ServerConfig({
        "spotify_client_id": "spotify-client-id",
        "spotify_client_secret": "spotify-client-secret",
        "jwt_secret": TEST_SECRET,
        "oauth_issuer": TEST_ISSUER,
        "redirect_url": "http://localhost:3000/callback",
    })


@pytest.fixture
def codec() -> TokenCodec:
    return TokenCodec(TEST_SECRET, issuer=TEST_ISSUER)


@pytest.fixture
def store(clock) -> AuthorizationStore:
    return AuthorizationStore(clock=clock)


@pytest.fixture
def bridge() -> CredentialBridge:
    return CredentialBridge()


@pytest.fixture
def upstream() -> MagicMock:
    """Spotify client double: code exchange and profile succeed."""
    client = MagicMock(spec=SpotifyClient)
    client.exchange_code = AsyncMock(return_value=UpstreamTokens(
        access_token="spotify-access",
        refresh_token="spotify-refresh",
        expires_in=3600,
    ))
    client.fetch_profile = AsyncMock(return_value={"id": "spotify-user-1"})
    client.refresh_token = AsyncMock(return_value=UpstreamTokens(access_token="spotify-access-2"))
    client.fetch_resource = AsyncMock(return_value=None)
    client.aclose = AsyncMock()
    return client


@pytest.fixture
def flow(config, store, codec, upstream, bridge) -> AuthorizationFlow:
    return AuthorizationFlow(config, store, codec, upstream, bridge)


def start_authorization(flow: AuthorizationFlow, redirect_uri: str = CLIENT_REDIRECT, state: str = "client-state") -> str:
    """Run /oauth/authorize and return the state we sent to Spotify."""
    url = flow.begin_authorization(
        client_id="mcp-public-client",
        redirect_uri=redirect_uri,
        response_type="code",
        code_challenge=CHALLENGE,
        code_challenge_method="S256",
        state=state,
        scope="read",
        callback_uri="http://localhost:3000/callback",
    )
    return parse_qs(urlsplit(url).query)["state"][0]


async def obtain_code(flow: AuthorizationFlow, redirect_uri: str = CLIENT_REDIRECT) -> str:
    """Run authorize + callback and return our authorization code."""
    upstream_state = start_authorization(flow, redirect_uri)
    redirect = await flow.complete_callback("spotify-code", upstream_state, None, "http://localhost:3000/callback")
    return parse_qs(urlsplit(redirect).query)["code"][0]

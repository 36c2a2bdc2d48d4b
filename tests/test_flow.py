"""Tests for the authorization flow controller."""

from urllib.parse import parse_qs, urlsplit

import pytest

from conftest import CHALLENGE, CLIENT_REDIRECT, VERIFIER, obtain_code, start_authorization
from oauth.errors import (
    AccessDeniedError,
    InvalidGrantError,
    InvalidRedirectUriError,
    InvalidRequestError,
    ServerError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from oauth.flow import PUBLIC_CLIENT_ID
from oauth.models import DelegatedCredentials, SessionAuthBinding
from oauth.stores import AUTHORIZATION_CODE_TIMEOUT_SECONDS, PENDING_AUTHORIZATION_TIMEOUT_SECONDS
from spotify_client import Operation, UpstreamError


def code_params(code: str, verifier: str = VERIFIER, **overrides) -> dict:
    params = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": CLIENT_REDIRECT,
        "code_verifier": verifier,
        "client_id": PUBLIC_CLIENT_ID,
    }
    params.update(overrides)
    return params


def authorize_kwargs(**overrides) -> dict:
    kwargs = {
        "client_id": PUBLIC_CLIENT_ID,
        "redirect_uri": CLIENT_REDIRECT,
        "response_type": "code",
        "code_challenge": CHALLENGE,
        "code_challenge_method": "S256",
        "state": "xyz",
        "scope": "",
        "callback_uri": "http://localhost:3000/callback",
    }
    kwargs.update(overrides)
    return kwargs


class TestRegisterClient:
    def test_defaults_to_configured_redirect_uris(self, flow, config):
        info = flow.register_client()
        assert info["client_id"] == PUBLIC_CLIENT_ID
        assert info["redirect_uris"] == config.valid_redirect_uris
        assert info["grant_types"] == ["authorization_code", "refresh_token"]
        assert info["token_endpoint_auth_method"] == "none"

    def test_accepts_valid_uris(self, flow):
        info = flow.register_client(["myapp://callback", "https://example.com/cb"])
        assert info["redirect_uris"] == ["myapp://callback", "https://example.com/cb"]

    def test_rejects_http_non_loopback(self, flow):
        with pytest.raises(InvalidRedirectUriError):
            flow.register_client(["http://example.com/cb"])

    def test_rejects_non_list(self, flow):
        with pytest.raises(InvalidRedirectUriError):
            flow.register_client("https://example.com/cb")


class TestBeginAuthorization:
    def test_returns_spotify_consent_url(self, flow, store, config):
        url = flow.begin_authorization(**authorize_kwargs())
        parts = urlsplit(url)
        query = parse_qs(parts.query)

        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://accounts.spotify.com/authorize"
        assert query["client_id"] == [config.spotify_client_id]
        assert query["redirect_uri"] == ["http://localhost:3000/callback"]
        assert query["show_dialog"] == ["true"]
        assert query["scope"] == [" ".join(config.spotify_scopes)]
        assert len(store.pending) == 1

    def test_pending_entry_uses_default_scope(self, flow, store):
        url = flow.begin_authorization(**authorize_kwargs(scope=""))
        handle = parse_qs(urlsplit(url).query)["state"][0].split(":")[0]
        pending = store.pending.get(handle)
        assert pending.scope == "read"
        assert pending.code_challenge == CHALLENGE

    @pytest.mark.parametrize("overrides,error", [
        ({"client_id": ""}, InvalidRequestError),
        ({"code_challenge": ""}, InvalidRequestError),
        ({"redirect_uri": ""}, InvalidRequestError),
        ({"response_type": "token"}, UnsupportedResponseTypeError),
        ({"code_challenge_method": "plain"}, InvalidRequestError),
        ({"redirect_uri": "http://evil.com/cb"}, InvalidRequestError),
    ])
    def test_rejections_leave_no_state(self, flow, store, bridge, overrides, error):
        binding = SessionAuthBinding("someone", DelegatedCredentials("a"))
        bridge.bind("session-1", binding)

        with pytest.raises(error):
            flow.begin_authorization(**authorize_kwargs(**overrides))

        assert len(store.pending) == 0
        assert bridge.get("session-1") == binding

    def test_clears_credential_bridge(self, flow, bridge):
        bridge.bind("session-1", SessionAuthBinding("someone", DelegatedCredentials("a")))
        start_authorization(flow)
        assert len(bridge) == 0

    def test_abandoned_attempts_are_purged(self, flow, store, clock):
        start_authorization(flow)
        clock.advance(PENDING_AUTHORIZATION_TIMEOUT_SECONDS + 1)
        start_authorization(flow)
        assert len(store.pending) == 1


class TestCompleteCallback:
    @pytest.mark.asyncio
    async def test_redirects_with_code_and_state(self, flow, store, upstream):
        upstream_state = start_authorization(flow, state="client-state")
        redirect = await flow.complete_callback("spotify-code", upstream_state, None, "http://localhost:3000/callback")

        parts = urlsplit(redirect)
        query = parse_qs(parts.query)
        assert redirect.startswith(CLIENT_REDIRECT + "?")
        assert query["state"] == ["client-state"]
        assert len(query["code"][0]) == 64

        upstream.exchange_code.assert_awaited_once_with("spotify-code", "http://localhost:3000/callback")
        upstream.fetch_profile.assert_awaited_once_with("spotify-access")
        assert len(store.pending) == 0

        code = store.codes.get(query["code"][0])
        assert code.user_id == "spotify-user-1"
        assert code.credentials == DelegatedCredentials("spotify-access", "spotify-refresh")

    @pytest.mark.asyncio
    async def test_upstream_error_is_access_denied(self, flow):
        with pytest.raises(AccessDeniedError):
            await flow.complete_callback(None, None, "access_denied", "http://localhost:3000/callback")

    @pytest.mark.asyncio
    async def test_missing_code(self, flow):
        with pytest.raises(InvalidRequestError):
            await flow.complete_callback("", "state", None, "http://localhost:3000/callback")

    @pytest.mark.asyncio
    async def test_unknown_state(self, flow):
        with pytest.raises(InvalidRequestError, match="Invalid state"):
            await flow.complete_callback("c", "unknown:nonce", None, "http://localhost:3000/callback")

    @pytest.mark.asyncio
    async def test_state_nonce_mismatch(self, flow, store):
        upstream_state = start_authorization(flow)
        handle = upstream_state.split(":")[0]
        with pytest.raises(InvalidRequestError):
            await flow.complete_callback("c", f"{handle}:wrong", None, "http://localhost:3000/callback")
        # The pending entry is consumed either way
        assert len(store.pending) == 0

    @pytest.mark.asyncio
    async def test_spotify_failure_is_server_error(self, flow, store, upstream):
        upstream.exchange_code.side_effect = UpstreamError(Operation.EXCHANGE_CODE, "HTTP 400", 400)
        upstream_state = start_authorization(flow)
        with pytest.raises(ServerError):
            await flow.complete_callback("c", upstream_state, None, "http://localhost:3000/callback")
        assert len(store.codes) == 0


class TestExchangeToken:
    @pytest.mark.asyncio
    async def test_authorization_code_grant(self, flow, codec):
        code = await obtain_code(flow)
        response = flow.exchange_token(code_params(code))

        assert response.token_type == "Bearer"
        assert response.expires_in == 3600
        assert response.scope == "read"
        assert response.refresh_token

        auth = codec.verify_access_token(response.access_token)
        assert auth.user_id == "spotify-user-1"
        assert auth.credentials == DelegatedCredentials("spotify-access", "spotify-refresh")

    @pytest.mark.asyncio
    async def test_code_is_single_use(self, flow):
        code = await obtain_code(flow)
        flow.exchange_token(code_params(code))
        with pytest.raises(InvalidGrantError):
            flow.exchange_token(code_params(code))

    @pytest.mark.asyncio
    async def test_wrong_verifier_burns_code(self, flow):
        code = await obtain_code(flow)
        with pytest.raises(InvalidGrantError, match="code verifier"):
            flow.exchange_token(code_params(code, verifier="wrong-verifier"))
        with pytest.raises(InvalidGrantError):
            flow.exchange_token(code_params(code))

    @pytest.mark.asyncio
    async def test_redirect_uri_must_match(self, flow):
        code = await obtain_code(flow)
        with pytest.raises(InvalidGrantError):
            flow.exchange_token(code_params(code, redirect_uri="https://other.example.com/cb"))

    @pytest.mark.asyncio
    async def test_expired_code(self, flow, clock):
        code = await obtain_code(flow)
        clock.advance(AUTHORIZATION_CODE_TIMEOUT_SECONDS + 1)
        with pytest.raises(InvalidGrantError):
            flow.exchange_token(code_params(code))

    def test_missing_parameters(self, flow):
        with pytest.raises(InvalidRequestError):
            flow.exchange_token({"grant_type": "authorization_code", "code": "abc"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field,value", [
        ("code_verifier", 12345),
        ("code_verifier", ["a", "b"]),
        ("redirect_uri", {"uri": CLIENT_REDIRECT}),
        ("client_id", 7),
    ])
    async def test_malformed_parameters_keep_code(self, flow, store, field, value):
        code = await obtain_code(flow)
        with pytest.raises(InvalidRequestError, match=field):
            flow.exchange_token(code_params(code, **{field: value}))

        assert store.codes.get(code) is not None
        assert flow.exchange_token(code_params(code)).access_token

    @pytest.mark.parametrize("code", [["abc"], {"code": "abc"}, 42])
    def test_non_string_code(self, flow, code):
        with pytest.raises(InvalidRequestError):
            flow.exchange_token(code_params(code))

    @pytest.mark.parametrize("refresh_token", [["x"], {"t": "x"}, 1])
    def test_non_string_refresh_token(self, flow, refresh_token):
        with pytest.raises(InvalidRequestError):
            flow.exchange_token({"grant_type": "refresh_token", "refresh_token": refresh_token})

    def test_unsupported_grant_type(self, flow):
        with pytest.raises(UnsupportedGrantTypeError):
            flow.exchange_token({"grant_type": "client_credentials"})

    @pytest.mark.asyncio
    async def test_refresh_grant_reuses_credentials(self, flow, codec):
        code = await obtain_code(flow)
        first = flow.exchange_token(code_params(code))

        refreshed = flow.exchange_token({"grant_type": "refresh_token", "refresh_token": first.refresh_token})
        assert refreshed.refresh_token is None
        assert "refresh_token" not in refreshed.to_dict()

        auth = codec.verify_access_token(refreshed.access_token)
        assert auth.credentials == DelegatedCredentials("spotify-access", "spotify-refresh")

        # Refresh tokens stay valid until they expire
        flow.exchange_token({"grant_type": "refresh_token", "refresh_token": first.refresh_token})

    def test_unknown_refresh_token(self, flow):
        with pytest.raises(InvalidGrantError):
            flow.exchange_token({"grant_type": "refresh_token", "refresh_token": "nope"})

    def test_missing_refresh_token(self, flow):
        with pytest.raises(InvalidRequestError):
            flow.exchange_token({"grant_type": "refresh_token"})

"""OAuth 2.1 authorization flow for MCP clients, backed by Spotify.

The flow for one authorization attempt:

    /oauth/authorize   client -> us       pending authorization stored,
                                          user agent sent to Spotify
    /callback          Spotify -> us      Spotify code exchanged, our own
                                          authorization code issued
    /oauth/token       client -> us       code + PKCE verifier exchanged for
                                          a JWT access token and a refresh token

States: PENDING -> CODE_ISSUED -> TOKEN_ISSUED, with FAILED reachable from
each step (denied consent, expired entries, PKCE mismatch, Spotify errors).
Every request is fully validated before any store is touched.
"""

import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from config import ServerConfig
from credential_bridge import CredentialBridge
from oauth.errors import (
    AccessDeniedError,
    InvalidGrantError,
    InvalidRedirectUriError,
    InvalidRequestError,
    ServerError,
    UnsupportedGrantTypeError,
    UnsupportedResponseTypeError,
)
from oauth.jwt_utils import TokenCodec
from oauth.models import (
    AuthInfo,
    AuthorizationCode,
    DelegatedCredentials,
    PendingAuthorization,
    RefreshTokenRecord,
    TokenResponse,
)
from oauth.pkce import challenges_match, derive_challenge, ensure_supported_method
from oauth.stores import AuthorizationStore
from oauth.urls import append_query, is_allowed_redirect_uri
from spotify_client import SPOTIFY_AUTHORIZE_URL, SpotifyClient, UpstreamError

logger = logging.getLogger(__name__)

# Public clients share one client id; PKCE is the security boundary
PUBLIC_CLIENT_ID = "mcp-public-client"
DEFAULT_SCOPE = "read"


class AuthorizationFlow:
    """Drives the authorization code flow and the token endpoint."""

    def __init__(
        self,
        config: ServerConfig,
        store: AuthorizationStore,
        codec: TokenCodec,
        upstream: SpotifyClient,
        bridge: CredentialBridge,
    ):
        self.config = config
        self.store = store
        self.codec = codec
        self.upstream = upstream
        self.bridge = bridge

    # ============== Client Registration ==============

    def register_client(self, redirect_uris=None) -> dict:
        """Dynamic client registration (RFC 7591) for public clients."""
        validated = list(self.config.valid_redirect_uris)

        if redirect_uris is not None:
            if not isinstance(redirect_uris, list):
                raise InvalidRedirectUriError("redirect_uris must be an array of strings")
            validated = []
            for uri in redirect_uris:
                if not isinstance(uri, str):
                    raise InvalidRedirectUriError("redirect_uris must be an array of strings")
                if not is_allowed_redirect_uri(uri):
                    raise InvalidRedirectUriError(
                        f"Invalid redirect URI: {uri}. Must use HTTPS, localhost HTTP, or custom scheme"
                    )
                validated.append(uri)

        logger.info(f"[REGISTER] Public client registered with {len(validated)} redirect URI(s)")
        return {
            "client_id": PUBLIC_CLIENT_ID,
            "redirect_uris": validated,
            "grant_types": ["authorization_code", "refresh_token"],
            "response_types": ["code"],
            "token_endpoint_auth_method": "none",
            "application_type": "native",
        }

    # ============== Authorization ==============

    def begin_authorization(
        self,
        client_id: Optional[str],
        redirect_uri: Optional[str],
        response_type: Optional[str],
        code_challenge: Optional[str],
        code_challenge_method: Optional[str],
        state: Optional[str],
        scope: Optional[str],
        callback_uri: str,
    ) -> str:
        """Store a pending authorization and return the Spotify consent URL."""
        if not client_id or not redirect_uri or not code_challenge:
            raise InvalidRequestError("Missing required parameters")
        if response_type != "code":
            raise UnsupportedResponseTypeError()
        ensure_supported_method(code_challenge_method)
        if not is_allowed_redirect_uri(redirect_uri):
            raise InvalidRequestError(
                "Invalid redirect URI: must use HTTPS, localhost HTTP, or custom scheme"
            )

        # A new login must never reuse Spotify tokens from an earlier one
        self.bridge.clear()
        self.store.purge_expired()

        upstream_state = secrets.token_hex(32)
        handle = self.store.create_pending(PendingAuthorization(
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state or "",
            scope=scope or DEFAULT_SCOPE,
            upstream_state=upstream_state,
        ))
        logger.info(f"[AUTHORIZE] Pending authorization stored for client {client_id}")
        logger.debug(f"[AUTHORIZE] Spotify redirect URI: {callback_uri}")

        params = {
            "client_id": self.config.spotify_client_id,
            "response_type": "code",
            "state": f"{handle}:{upstream_state}",
            "redirect_uri": callback_uri,
            "scope": " ".join(self.config.spotify_scopes),
            "show_dialog": "true",
        }
        return f"{SPOTIFY_AUTHORIZE_URL}?{urlencode(params)}"

    async def complete_callback(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str],
        callback_uri: str,
    ) -> str:
        """Finish Spotify consent and return the client redirect carrying our code."""
        if error:
            logger.info(f"[CALLBACK] Spotify returned error: {error}")
            raise AccessDeniedError()
        if not code or not state:
            raise InvalidRequestError("Missing code or state parameter")

        handle, _, upstream_state = state.partition(":")
        pending = self.store.take_pending(handle)
        if pending is None or pending.upstream_state != upstream_state:
            logger.info("[CALLBACK] Rejected: unknown, expired or mismatched state")
            raise InvalidRequestError("Invalid state parameter")

        try:
            tokens = await self.upstream.exchange_code(code, callback_uri)
            profile = await self.upstream.fetch_profile(tokens.access_token)
        except UpstreamError as e:
            logger.error(f"[CALLBACK] Spotify authorization failed: {e}")
            raise ServerError()

        user_id = profile["id"]
        authorization_code = self.store.issue_code(AuthorizationCode(
            client_id=pending.client_id,
            redirect_uri=pending.redirect_uri,
            code_challenge=pending.code_challenge,
            user_id=user_id,
            credentials=DelegatedCredentials(
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
            ),
            scope=pending.scope,
        ))
        logger.info(f"[CALLBACK] Authorization code issued for Spotify user {user_id}")

        return append_query(pending.redirect_uri, {"code": authorization_code, "state": pending.state})

    # ============== Token Endpoint ==============

    def exchange_token(self, params: dict) -> TokenResponse:
        grant_type = params.get("grant_type")
        logger.debug(
            f"[TOKEN] grant_type: {grant_type}, client_id: {params.get('client_id')}, "
            f"code: {'present' if params.get('code') else 'missing'}, "
            f"code_verifier: {'present' if params.get('code_verifier') else 'missing'}"
        )

        if grant_type == "authorization_code":
            return self._exchange_authorization_code(params)
        if grant_type == "refresh_token":
            return self._exchange_refresh_token(params)
        raise UnsupportedGrantTypeError()

    def _exchange_authorization_code(self, params: dict) -> TokenResponse:
        code, redirect_uri, code_verifier, client_id = _string_params(
            params, "code", "redirect_uri", "code_verifier", "client_id"
        )

        auth_code = self.store.consume_code(code)
        if auth_code is None:
            logger.info("[TOKEN] Rejected: invalid, used or expired authorization code")
            raise InvalidGrantError("Invalid or expired authorization code")

        if client_id != auth_code.client_id or redirect_uri != auth_code.redirect_uri:
            logger.info("[TOKEN] Rejected: client_id or redirect_uri does not match the code")
            raise InvalidGrantError("Authorization code was issued to another client")

        if not challenges_match(auth_code.code_challenge, derive_challenge(code_verifier)):
            logger.info("[TOKEN] Rejected: PKCE verification failed")
            raise InvalidGrantError("Invalid code verifier")

        access_token = self.codec.create_access_token(
            auth_code.user_id, auth_code.credentials, auth_code.client_id, auth_code.scope
        )
        refresh_token = self.store.create_refresh(RefreshTokenRecord(
            user_id=auth_code.user_id,
            client_id=auth_code.client_id,
            credentials=auth_code.credentials,
            scope=auth_code.scope,
        ))
        logger.info(f"[TOKEN] Access token created for Spotify user {auth_code.user_id}")

        return TokenResponse(
            access_token=access_token,
            expires_in=self.codec.expires_in,
            scope=auth_code.scope,
            refresh_token=refresh_token,
        )

    def _exchange_refresh_token(self, params: dict) -> TokenResponse:
        (refresh_token,) = _string_params(params, "refresh_token")

        record = self.store.lookup_refresh(refresh_token)
        if record is None:
            logger.info("[TOKEN] Rejected: invalid or expired refresh token")
            raise InvalidGrantError("Invalid or expired refresh token")

        # Reuses the Spotify tokens on record; they are refreshed lazily by
        # the tool adapters when Spotify rejects them.
        access_token = self.codec.create_access_token(
            record.user_id, record.credentials, record.client_id, record.scope
        )
        logger.info(f"[TOKEN] Access token refreshed for Spotify user {record.user_id}")

        return TokenResponse(
            access_token=access_token,
            expires_in=self.codec.expires_in,
            scope=record.scope,
        )

    # ============== Bearer Verification ==============

    def verify_bearer(self, token: str) -> AuthInfo:
        """Raises InvalidTokenError for any bad token."""
        return self.codec.verify_access_token(token)


def _string_params(params: dict, *names: str) -> tuple:
    """Required token endpoint parameters, each a non-empty string.

    JSON bodies can carry numbers, lists or objects; those are rejected
    here, before any store is touched.
    """
    values = tuple(params.get(name) for name in names)
    invalid = [name for name, value in zip(names, values) if not isinstance(value, str) or not value]
    if invalid:
        raise InvalidRequestError(f"Missing or malformed parameters: {', '.join(invalid)}")
    return values

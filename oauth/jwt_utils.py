"""JWT utilities for OAuth access tokens.

Access tokens are signed JWTs that carry the Spotify access/refresh token
pair, so a verified bearer token is enough to call Spotify on the user's
behalf. Validation is signature + claims only, never a store lookup.
"""

import logging
import os
import secrets
import time
from pathlib import Path
from typing import Optional

import jwt

from oauth.errors import InvalidTokenError
from oauth.models import AuthInfo, DelegatedCredentials

logger = logging.getLogger(__name__)

# JWT configuration
JWT_ALGORITHM = "HS256"
JWT_AUDIENCE = "spotify-mcp-server"
ACCESS_TOKEN_EXPIRE_SECONDS = 60 * 60  # 1 hour, same as Spotify's own tokens

SECRET_FILE = Path.home() / ".spotify-mcp-server" / "jwt_secret"


def load_jwt_secret(configured: Optional[str] = None, secret_file: Path = SECRET_FILE) -> str:
    """Get the signing secret, creating one if none is configured.

    Order: explicit value (JWT_SECRET), then the secret file, then a freshly
    generated secret that is saved to the secret file.
    """
    if configured:
        logger.info("[JWT] Using JWT_SECRET from environment")
        return configured

    if secret_file.exists():
        try:
            secret = secret_file.read_text().strip()
            if secret:
                logger.info("[JWT] Loaded JWT secret from file")
                return secret
        except IOError as e:
            logger.warning(f"[JWT] Could not read JWT secret file: {e}")

    secret = secrets.token_urlsafe(64)

    try:
        secret_file.parent.mkdir(parents=True, exist_ok=True)
        secret_file.write_text(secret)
        os.chmod(secret_file, 0o600)  # Owner read/write only
        logger.info("[JWT] Generated and saved new JWT secret")
    except IOError as e:
        logger.warning(f"[JWT] Could not save JWT secret to file: {e}")

    return secret


class TokenCodec:
    """Issues and verifies bearer tokens for one signing key."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str = JWT_AUDIENCE,
        expires_in: int = ACCESS_TOKEN_EXPIRE_SECONDS,
    ):
        if not secret:
            raise ValueError("JWT secret must not be empty")
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.expires_in = expires_in

    def create_access_token(
        self,
        user_id: str,
        credentials: DelegatedCredentials,
        client_id: str,
        scope: str,
        now: Optional[int] = None,
    ) -> str:
        """Create a signed access token.

        Args:
            user_id: Spotify user id, stored as the subject
            credentials: Spotify tokens embedded for downstream API calls
            client_id: The OAuth client the token was issued to
            scope: Granted scope (space separated)
            now: Issue time override, seconds since the epoch

        Returns:
            A signed JWT token string
        """
        issued_at = int(time.time()) if now is None else now

        payload = {
            "sub": user_id,
            "spotify_access_token": credentials.access_token,
            "spotify_refresh_token": credentials.refresh_token,
            "client_id": client_id,
            "scope": scope,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": issued_at,
            "exp": issued_at + self.expires_in,
            "type": "access",
        }

        return jwt.encode(payload, self._secret, algorithm=JWT_ALGORITHM)

    def verify_access_token(self, token: str) -> AuthInfo:
        """Verify and decode an access token.

        Raises:
            InvalidTokenError: for any failure. Expired, malformed and forged
                tokens are reported identically.
        """
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[JWT_ALGORITHM],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": ["exp", "iat", "sub", "iss", "aud"]},
            )
        except jwt.ExpiredSignatureError:
            logger.debug("[JWT] Token expired")
            raise InvalidTokenError()
        except jwt.InvalidTokenError as e:
            logger.debug(f"[JWT] Invalid token: {e}")
            raise InvalidTokenError()

        if payload.get("type") != "access":
            logger.debug("[JWT] Token is not an access token")
            raise InvalidTokenError()

        spotify_access_token = payload.get("spotify_access_token")
        if not spotify_access_token:
            logger.debug("[JWT] Token carries no Spotify credentials")
            raise InvalidTokenError()

        return AuthInfo(
            token=token,
            user_id=payload["sub"],
            client_id=payload.get("client_id", ""),
            scopes=(payload.get("scope") or "").split(),
            expires_at=payload.get("exp"),
            credentials=DelegatedCredentials(
                access_token=spotify_access_token,
                refresh_token=payload.get("spotify_refresh_token"),
            ),
        )

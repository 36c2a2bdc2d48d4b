"""Records held by the authorization server.

Pending authorizations, authorization codes and refresh-token records live in
the in-memory stores (oauth/stores.py). Bearer tokens are never stored; they
are decoded into AuthInfo on every request.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class DelegatedCredentials:
    """Spotify's own access/refresh token pair for one user."""

    access_token: str
    refresh_token: Optional[str] = None


@dataclass(frozen=True)
class PendingAuthorization:
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    state: str
    scope: str
    upstream_state: str


@dataclass(frozen=True)
class AuthorizationCode:
    client_id: str
    redirect_uri: str
    code_challenge: str
    user_id: str
    credentials: DelegatedCredentials
    scope: str


@dataclass(frozen=True)
class RefreshTokenRecord:
    user_id: str
    client_id: str
    credentials: DelegatedCredentials
    scope: str


@dataclass(frozen=True)
class AuthInfo:
    """Identity and delegated credentials unpacked from a verified bearer token."""

    token: str
    user_id: str
    client_id: str
    scopes: list[str] = field(default_factory=list)
    expires_at: Optional[int] = None
    credentials: Optional[DelegatedCredentials] = None


@dataclass(frozen=True)
class SessionAuthBinding:
    """Delegated credentials attached to one MCP transport session."""

    user_id: str
    credentials: DelegatedCredentials


@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    expires_in: int
    scope: str
    refresh_token: Optional[str] = None
    token_type: str = "Bearer"

    def to_dict(self) -> dict:
        data = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.expires_in,
            "scope": self.scope,
        }
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        return data

"""OAuth error types.

Each error carries the RFC 6749 error code, a human readable description
and the HTTP status the endpoints answer with.
"""

from typing import Optional


class OAuthError(Exception):
    """Base class for errors surfaced to OAuth clients."""

    error = "server_error"
    status_code = 500
    default_description = "Internal server error"

    def __init__(self, description: Optional[str] = None):
        self.description = description or self.default_description
        super().__init__(self.description)

    def to_dict(self) -> dict:
        return {"error": self.error, "error_description": self.description}


class InvalidRequestError(OAuthError):
    error = "invalid_request"
    status_code = 400
    default_description = "Missing required parameters"


class InvalidRedirectUriError(OAuthError):
    error = "invalid_redirect_uri"
    status_code = 400
    default_description = "Invalid redirect URI"


class InvalidGrantError(OAuthError):
    error = "invalid_grant"
    status_code = 400
    default_description = "Invalid or expired authorization grant"


class UnsupportedGrantTypeError(OAuthError):
    error = "unsupported_grant_type"
    status_code = 400
    default_description = "Only authorization_code and refresh_token grant types are supported"


class UnsupportedResponseTypeError(OAuthError):
    error = "unsupported_response_type"
    status_code = 400
    default_description = "Only authorization code flow is supported"


class AccessDeniedError(OAuthError):
    error = "access_denied"
    status_code = 400
    default_description = "User denied authorization"


class ServerError(OAuthError):
    error = "server_error"
    status_code = 500
    default_description = "Internal server error during authorization"


class InvalidTokenError(OAuthError):
    """Bearer verification failed. The cause is never exposed."""

    error = "invalid_token"
    status_code = 401
    default_description = "Invalid or expired access token"

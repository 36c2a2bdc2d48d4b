"""PKCE (RFC 7636) helpers. Only the S256 method is supported."""

import base64
import hashlib
import hmac

from oauth.errors import InvalidRequestError

SUPPORTED_METHODS = ("S256",)


def derive_challenge(verifier: str) -> str:
    """Return the S256 challenge for a code verifier (base64url, no padding)."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def challenges_match(challenge: str, derived: str) -> bool:
    return hmac.compare_digest(challenge.encode("utf-8"), derived.encode("utf-8"))


def ensure_supported_method(method: str) -> None:
    if method not in SUPPORTED_METHODS:
        raise InvalidRequestError("Only S256 code challenge method is supported")

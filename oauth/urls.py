"""Redirect URI policy and request URL helpers."""

import json
import logging
import re
from typing import Iterable
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from starlette.requests import Request

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = ("localhost", "127.0.0.1")

# Generic URI scheme syntax (RFC 3986 section 3.1)
SCHEME_PATTERN = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*$")

# Network schemes that are never an app callback
DISALLOWED_SCHEMES = ("ftp", "ftps", "ws", "wss", "file", "data", "javascript", "gopher")


def is_allowed_redirect_uri(uri: str) -> bool:
    """Check a client redirect URI against the public-client policy.

    HTTPS is always allowed, HTTP only for loopback hosts, and any other
    custom scheme (myapp://callback) is allowed.
    """
    if not isinstance(uri, str) or not uri:
        return False

    try:
        parts = urlsplit(uri)
        hostname = parts.hostname
    except ValueError:
        return False

    scheme = parts.scheme.lower()
    if not scheme or not SCHEME_PATTERN.match(scheme):
        return False

    if scheme == "https":
        return bool(hostname)
    if scheme == "http":
        return hostname in LOOPBACK_HOSTS
    if scheme in DISALLOWED_SCHEMES:
        return False
    return True


def request_scheme(request: Request) -> str:
    """Scheme the client used, honouring Cloudflare and reverse proxy headers."""
    scheme = request.url.scheme
    cf_visitor = request.headers.get("cf-visitor")
    if cf_visitor:
        try:
            scheme = json.loads(cf_visitor).get("scheme") or scheme
        except (ValueError, AttributeError):
            pass
    forwarded_proto = request.headers.get("x-forwarded-proto")
    if forwarded_proto:
        scheme = forwarded_proto.split(",")[0].strip()
    return scheme


def request_base_url(request: Request) -> str:
    host = request.headers.get("host") or request.url.netloc
    return f"{request_scheme(request)}://{host}"


def upstream_callback_uri(request: Request, redirect_url: str, tunnel_suffixes: Iterable[str]) -> str:
    """The callback URI we hand to Spotify.

    Must come out identical at /oauth/authorize time and at /callback time,
    since Spotify rejects a code exchange whose redirect_uri differs.
    """
    host = request.headers.get("host") or ""
    hostname = host.split(":")[0]
    if hostname and any(hostname.endswith(suffix) for suffix in tunnel_suffixes):
        return f"{request_scheme(request)}://{host}/callback"
    return redirect_url


def append_query(url: str, params: dict) -> str:
    """Add query parameters to a URL, keeping any it already has."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend((key, value) for key, value in params.items() if value is not None)
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))

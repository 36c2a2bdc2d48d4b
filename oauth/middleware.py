"""OAuth middleware for MCP endpoints.

Validates Bearer tokens on protected paths. Requests without a valid token
get a 401 whose WWW-Authenticate header points at the protected resource
metadata, which is how MCP clients discover where to authorize. Event-stream
requests get the same error framed as an SSE event.
"""

import json
import logging
from typing import Iterable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from oauth.errors import InvalidTokenError
from oauth.flow import AuthorizationFlow
from oauth.urls import request_base_url

logger = logging.getLogger(__name__)


def www_authenticate(request: Request, error: str = None) -> str:
    base_url = request_base_url(request)
    value = f'Bearer realm="MCP", resource_metadata="{base_url}/.well-known/oauth-protected-resource"'
    if error:
        value += f', error="{error}"'
    return value


def wants_event_stream(request: Request) -> bool:
    return request.method == "GET" and "text/event-stream" in request.headers.get("accept", "")


def unauthorized_response(request: Request, error: str, error_description: str) -> Response:
    """401 with WWW-Authenticate (RFC 9728), as JSON or as an SSE error event."""
    headers = {
        "WWW-Authenticate": www_authenticate(request, None if error == "unauthorized" else error),
    }
    body = {"error": error, "error_description": error_description}

    if wants_event_stream(request):
        headers.update({"Cache-Control": "no-cache", "Connection": "keep-alive"})
        return Response(
            f"event: error\ndata: {json.dumps(body)}\n\n",
            status_code=401,
            media_type="text/event-stream",
            headers=headers,
        )

    return JSONResponse(body, status_code=401, headers=headers)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate OAuth Bearer tokens for the Streamable HTTP MCP endpoint."""

    def __init__(self, app, flow: AuthorizationFlow, protected_paths: Iterable[str] = ("/mcp",)):
        super().__init__(app)
        self.flow = flow
        self.protected_paths = tuple(protected_paths)

    def is_protected(self, path: str) -> bool:
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.protected_paths)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS" or not self.is_protected(request.url.path):
            return await call_next(request)

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.info("[AUTH] Request rejected: no Bearer token")
            return unauthorized_response(
                request, "unauthorized", "Authorization required. Use OAuth 2.1 flow."
            )

        token = auth_header[7:].strip()

        try:
            auth = self.flow.verify_bearer(token)
        except InvalidTokenError as e:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return unauthorized_response(request, e.error, e.description)

        request.state.auth = auth
        logger.debug(f"[AUTH] Request authorized for Spotify user {auth.user_id}")
        return await call_next(request)

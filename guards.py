"""Request guards for the MCP endpoint.

- RateLimitMiddleware: fixed window request counting per client IP
- ProtocolVersionMiddleware: rejects unsupported MCP-Protocol-Version headers
- RequestSizeLimitMiddleware: rejects bodies larger than a limit

Errors are JSON-RPC shaped, since the only clients of /mcp speak JSON-RPC.
"""

import logging
import math
import threading
import time
from typing import Callable, Iterable

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")


def jsonrpc_error(status_code: int, code: int, message: str, data: dict = None) -> JSONResponse:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return JSONResponse({"jsonrpc": "2.0", "error": error, "id": None}, status_code=status_code)


class _PathGuard(BaseHTTPMiddleware):
    def __init__(self, app, paths: Iterable[str] = ("/mcp",)):
        super().__init__(app)
        self.paths = tuple(paths)

    def applies_to(self, request: Request) -> bool:
        path = request.url.path
        return any(path == prefix or path.startswith(prefix + "/") for prefix in self.paths)


class RateLimitMiddleware(_PathGuard):
    """Simple in-memory rate limiter."""

    def __init__(
        self,
        app,
        window_seconds: float = 60,
        max_requests: int = 100,
        paths: Iterable[str] = ("/mcp",),
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(app, paths)
        self.window_seconds = window_seconds
        self.max_requests = max_requests
        self._clock = clock
        self._windows: dict[str, list] = {}  # ip -> [count, reset_at]
        self._lock = threading.Lock()

    def _prune(self, now: float) -> None:
        for key in [key for key, (_, reset_at) in self._windows.items() if now > reset_at]:
            del self._windows[key]

    async def dispatch(self, request: Request, call_next):
        if not self.applies_to(request):
            return await call_next(request)

        key = request.client.host if request.client else "unknown"
        now = self._clock()

        with self._lock:
            self._prune(now)
            window = self._windows.get(key)
            if window is None:
                window = [0, now + self.window_seconds]
                self._windows[key] = window

            if window[0] >= self.max_requests:
                retry_after = max(1, math.ceil(window[1] - now))
                limited = True
            else:
                window[0] += 1
                limited = False

        if limited:
            logger.warning(f"[GUARD] Rate limit exceeded for {key}")
            return jsonrpc_error(429, -32000, "Too many requests", {"retryAfter": retry_after})

        return await call_next(request)


class ProtocolVersionMiddleware(_PathGuard):
    """Validate the MCP protocol version header, when present."""

    def __init__(self, app, supported: Iterable[str] = SUPPORTED_PROTOCOL_VERSIONS, paths: Iterable[str] = ("/mcp",)):
        super().__init__(app, paths)
        self.supported = list(supported)

    async def dispatch(self, request: Request, call_next):
        version = request.headers.get("mcp-protocol-version")

        # No header: older clients, allowed
        if not version or not self.applies_to(request):
            return await call_next(request)

        if version not in self.supported:
            logger.warning(f"[GUARD] Unsupported protocol version: {version}")
            return jsonrpc_error(
                400, -32600, "Unsupported protocol version",
                {"supported": self.supported, "requested": version},
            )

        return await call_next(request)


class RequestSizeLimitMiddleware(_PathGuard):
    """Reject requests whose declared Content-Length exceeds max_bytes."""

    def __init__(self, app, max_bytes: int = 10 * 1024 * 1024, paths: Iterable[str] = ("/mcp",)):
        super().__init__(app, paths)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next):
        if not self.applies_to(request):
            return await call_next(request)

        try:
            content_length = int(request.headers.get("content-length", "0"))
        except ValueError:
            return jsonrpc_error(400, -32600, "Invalid Content-Length header")

        if content_length > self.max_bytes:
            logger.warning(f"[GUARD] Request too large: {content_length} > {self.max_bytes}")
            return jsonrpc_error(
                413, -32000, "Request entity too large",
                {"maxSize": self.max_bytes, "received": content_length},
            )

        return await call_next(request)

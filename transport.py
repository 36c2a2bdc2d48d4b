"""Streamable HTTP transport sessions for MCP clients.

One StreamableHTTPServerTransport per MCP session, keyed by the session id
the client echoes back in the mcp-session-id header. A session is created
by an initialize request, bound to the Spotify credentials carried by the
caller's bearer token, and torn down when the transport closes (DELETE,
server task exit or shutdown), which also drops the credential binding.
"""

import json
import logging
import threading
from contextlib import asynccontextmanager
from typing import Awaitable, Callable, Optional
from uuid import uuid4

import anyio
from anyio.abc import TaskGroup
from fastapi.responses import JSONResponse
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER, StreamableHTTPServerTransport
from starlette.requests import Request
from starlette.types import Message, Receive, Scope, Send

from credential_bridge import CredentialBridge
from guards import jsonrpc_error
from oauth.middleware import unauthorized_response
from oauth.models import AuthInfo, SessionAuthBinding

logger = logging.getLogger(__name__)

ServerRunner = Callable[..., Awaitable[None]]


def default_transport_factory(session_id: str) -> StreamableHTTPServerTransport:
    return StreamableHTTPServerTransport(mcp_session_id=session_id, is_json_response_enabled=False)


def is_initialize_request(body: bytes) -> bool:
    """True if the JSON-RPC body is, or contains, an initialize request."""
    try:
        message = json.loads(body)
    except ValueError:
        return False
    messages = message if isinstance(message, list) else [message]
    return any(isinstance(item, dict) and item.get("method") == "initialize" for item in messages)


class SessionRegistry:
    """Maps MCP session ids to their live transports.

    Args:
        server_runner: coroutine function (read_stream, write_stream) that
            serves MCP on one session until the streams close
        bridge: credential bindings to drop when a session closes
        transport_factory: builds the transport for a new session id
    """

    def __init__(
        self,
        server_runner: ServerRunner,
        bridge: CredentialBridge,
        transport_factory: Callable[[str], StreamableHTTPServerTransport] = default_transport_factory,
    ):
        self.bridge = bridge
        self._server_runner = server_runner
        self._transport_factory = transport_factory
        self._sessions: dict[str, StreamableHTTPServerTransport] = {}
        self._lock = threading.Lock()
        self._task_group: Optional[TaskGroup] = None

    @asynccontextmanager
    async def run(self):
        """Own the task group running one MCP server task per session."""
        async with anyio.create_task_group() as tg:
            self._task_group = tg
            logger.info("[SESSION] Session registry started")
            try:
                yield self
            finally:
                with anyio.CancelScope(shield=True):
                    for session_id in self.session_ids():
                        await self.close_session(session_id)
                tg.cancel_scope.cancel()
                self._task_group = None
                logger.info("[SESSION] Session registry stopped")

    def session_ids(self) -> list[str]:
        with self._lock:
            return list(self._sessions)

    async def create_session(self) -> tuple[str, StreamableHTTPServerTransport]:
        if self._task_group is None:
            raise RuntimeError("Session registry is not running")

        session_id = uuid4().hex
        transport = self._transport_factory(session_id)
        with self._lock:
            self._sessions[session_id] = transport

        await self._task_group.start(self._run_server, session_id, transport)
        logger.info(f"[SESSION] MCP session initialized: {session_id}")
        return session_id, transport

    def get_session(self, session_id: str) -> Optional[StreamableHTTPServerTransport]:
        with self._lock:
            return self._sessions.get(session_id)

    async def close_session(self, session_id: str) -> bool:
        with self._lock:
            transport = self._sessions.pop(session_id, None)
        if transport is None:
            return False

        self.bridge.unbind(session_id)
        if not transport.is_terminated:
            await transport.terminate()
        logger.info(f"[SESSION] MCP session closed: {session_id}")
        return True

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    async def _run_server(self, session_id: str, transport, *, task_status=anyio.TASK_STATUS_IGNORED):
        try:
            async with transport.connect() as (read_stream, write_stream):
                task_status.started()
                await self._server_runner(read_stream, write_stream)
        except Exception:
            logger.exception(f"[SESSION] MCP server for session {session_id} failed")
        finally:
            with anyio.CancelScope(shield=True):
                await self.close_session(session_id)


class MCPEndpoint:
    """ASGI app serving /mcp (GET, POST, DELETE).

    Expects BearerAuthMiddleware to have put the verified AuthInfo in
    request.state.auth.
    """

    def __init__(self, registry: SessionRegistry):
        self.registry = registry

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        auth: Optional[AuthInfo] = getattr(request.state, "auth", None)
        if auth is None:
            response = unauthorized_response(request, "unauthorized", "Authorization required. Use OAuth 2.1 flow.")
            await response(scope, receive, send)
            return

        started = False

        async def tracking_send(message: Message) -> None:
            nonlocal started
            if message["type"] == "http.response.start":
                started = True
            await send(message)

        try:
            await self._dispatch(request, auth, scope, receive, tracking_send)
        except Exception:
            logger.exception("[MCP] Error handling MCP request")
            if not started:
                response = jsonrpc_error(500, -32603, "Internal server error")
                await response(scope, receive, send)

    async def _dispatch(self, request: Request, auth: AuthInfo, scope: Scope, receive: Receive, send: Send) -> None:
        bridge = self.registry.bridge
        session_id = request.headers.get(MCP_SESSION_ID_HEADER)

        if session_id:
            transport = self.registry.get_session(session_id)
            if transport is None:
                await self._reject_session(scope, receive, send)
                return

            binding = bridge.get(session_id)
            if binding is not None and binding.user_id != auth.user_id:
                logger.warning(f"[MCP] Session {session_id} used by another user, rejected")
                response = JSONResponse(
                    {"error": "forbidden", "error_description": "Session belongs to another user"},
                    status_code=403,
                )
                await response(scope, receive, send)
                return
            if binding is None:
                bridge.bind(session_id, SessionAuthBinding(user_id=auth.user_id, credentials=auth.credentials))

            await transport.handle_request(scope, receive, send)
            if request.method == "DELETE":
                await self.registry.close_session(session_id)
            return

        if request.method != "POST":
            await self._reject_session(scope, receive, send)
            return

        body = await request.body()
        if not is_initialize_request(body):
            await self._reject_session(scope, receive, send)
            return

        session_id, transport = await self.registry.create_session()
        bridge.bind(session_id, SessionAuthBinding(user_id=auth.user_id, credentials=auth.credentials))
        await transport.handle_request(scope, _replay_body(body, receive), send)

    async def _reject_session(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = jsonrpc_error(400, -32000, "Bad Request: Invalid or missing session ID")
        await response(scope, receive, send)


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """A receive channel that yields an already-read body once, then defers."""
    replayed = False

    async def replay() -> Message:
        nonlocal replayed
        if not replayed:
            replayed = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return replay

"""Spotify MCP Server - remote MCP server with OAuth 2.1.

This server handles:
- OAuth 2.1 + PKCE for MCP clients, delegating consent to Spotify (oauth/)
- MCP protocol over Streamable HTTP (/mcp), one transport per session
- Spotify tools via tools.py, using the credentials bound to each session
"""
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mcp.server.streamable_http import MCP_SESSION_ID_HEADER

from config import ServerConfig, load_config
from credential_bridge import CredentialBridge
from guards import ProtocolVersionMiddleware, RateLimitMiddleware, RequestSizeLimitMiddleware
from oauth.endpoints import init_oauth_routes, router as oauth_router
from oauth.flow import AuthorizationFlow
from oauth.jwt_utils import TokenCodec, load_jwt_secret
from oauth.middleware import BearerAuthMiddleware
from oauth.stores import AuthorizationStore
from spotify_client import SpotifyClient
from tools import init_tools, mcp
from transport import MCPEndpoint, SessionRegistry

logger = logging.getLogger(__name__)

VERSION = "1.0.0"
MCP_PATH = "/mcp"


async def run_mcp_server(read_stream, write_stream) -> None:
    """Serve the FastMCP tools on one session's streams."""
    server = mcp._mcp_server
    await server.run(read_stream, write_stream, server.create_initialization_options())


def load_environment() -> None:
    """Load .env from the working directory, if present."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)


def create_app(
    config: ServerConfig,
    spotify: Optional[SpotifyClient] = None,
    registry: Optional[SessionRegistry] = None,
    store: Optional[AuthorizationStore] = None,
) -> FastAPI:
    """Build the application.

    Args:
        config: Server configuration (Spotify credentials must be set)
        spotify: Spotify client; built from config when omitted
        registry: Session registry; built around run_mcp_server when omitted
        store: Authorization state store; a fresh in-memory one when omitted
    """
    config.validate()

    spotify = spotify or SpotifyClient(config.spotify_client_id, config.spotify_client_secret)
    bridge = registry.bridge if registry else CredentialBridge(single_session=config.single_session_mode)
    registry = registry or SessionRegistry(run_mcp_server, bridge)
    codec = TokenCodec(load_jwt_secret(config.jwt_secret), issuer=config.oauth_issuer)
    flow = AuthorizationFlow(config, store or AuthorizationStore(), codec, spotify, bridge)

    init_tools(bridge, spotify)
    init_oauth_routes(flow)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"[STARTUP] Spotify MCP server {VERSION}, issuer: {config.oauth_issuer}")
        logger.info(f"[STARTUP] Single session mode: {config.single_session_mode}")
        async with registry.run():
            yield
        await spotify.aclose()
        logger.info("[SHUTDOWN] Spotify MCP server stopped")

    app = FastAPI(
        title="Spotify MCP Server",
        description="Remote MCP server for Spotify with OAuth 2.1",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.flow = flow
    app.state.registry = registry
    app.state.bridge = bridge

    # Middleware runs in reverse order of registration: CORS first, then the
    # guards, then bearer auth right before the MCP endpoint.
    app.add_middleware(BearerAuthMiddleware, flow=flow, protected_paths=(MCP_PATH,))
    app.add_middleware(RequestSizeLimitMiddleware, max_bytes=config.max_request_bytes, paths=(MCP_PATH,))
    app.add_middleware(ProtocolVersionMiddleware, paths=(MCP_PATH,))
    app.add_middleware(
        RateLimitMiddleware,
        window_seconds=config.rate_limit_window_seconds,
        max_requests=config.rate_limit_max_requests,
        paths=(MCP_PATH,),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", MCP_SESSION_ID_HEADER, "mcp-protocol-version"],
        expose_headers=[MCP_SESSION_ID_HEADER, "WWW-Authenticate"],
    )

    app.include_router(oauth_router)
    app.add_route(MCP_PATH, MCPEndpoint(registry), methods=["GET", "POST", "DELETE"], include_in_schema=False)

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "spotify-mcp-server", "sessions": len(registry)}

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        return {
            "name": "Spotify MCP Server",
            "version": VERSION,
            "transport": "streamable-http",
            "endpoints": {"streamable_http": MCP_PATH},
            "oauth": {
                "protected_resource": "/.well-known/oauth-protected-resource",
                "authorization_server": "/.well-known/oauth-authorization-server",
            },
        }

    return app


# ============== Main Entry Point ==============

if __name__ == "__main__":
    import uvicorn

    from logging_config import setup_logging

    load_environment()
    server_config = load_config()
    setup_logging(server_config.log_level, server_config.json_logs)
    logger.info(f"Streamable HTTP endpoint: {MCP_PATH}")
    uvicorn.run(create_app(server_config), host=server_config.host, port=server_config.port)

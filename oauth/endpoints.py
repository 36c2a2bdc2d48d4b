"""OAuth 2.1 endpoints for MCP server authentication.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize, /callback)
- Token endpoint (/oauth/token)
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, RedirectResponse

from oauth.errors import InvalidRequestError, OAuthError, ServerError
from oauth.flow import AuthorizationFlow
from oauth.urls import request_base_url, upstream_callback_uri

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# Set by init_oauth_routes()
_flow: AuthorizationFlow = None


def init_oauth_routes(flow: AuthorizationFlow):
    """Initialize OAuth routes with the authorization flow.

    Must be called before including the router in the app.
    """
    global _flow
    _flow = flow


def oauth_error_response(error: OAuthError, headers: dict = None) -> JSONResponse:
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=headers)


def _callback_uri(request: Request) -> str:
    config = _flow.config
    return upstream_callback_uri(request, config.redirect_url, config.tunnel_host_suffixes)


async def _read_params(request: Request) -> dict:
    """Body parameters from a form or JSON request."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            data = await request.json()
        except ValueError:
            raise InvalidRequestError("Malformed JSON body")
        if not isinstance(data, dict):
            raise InvalidRequestError("Request body must be a JSON object")
        return data
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


# ============== OAuth 2.1 Discovery Endpoints ==============

@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(request: Request):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    base_url = request_base_url(request)
    logger.info(f"[DISCOVERY] Authorization server metadata requested ({base_url})")
    return {
        "issuer": base_url,
        "authorization_endpoint": f"{base_url}/oauth/authorize",
        "token_endpoint": f"{base_url}/oauth/token",
        "registration_endpoint": f"{base_url}/oauth/register",
        "response_types_supported": ["code"],
        "grant_types_supported": ["authorization_code", "refresh_token"],
        "code_challenge_methods_supported": ["S256"],
        "scopes_supported": ["read", "write"],
        "token_endpoint_auth_methods_supported": ["none"],
        "subject_types_supported": ["public"],
    }


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(request: Request):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    base_url = request_base_url(request)
    logger.info(f"[DISCOVERY] Protected resource metadata requested ({base_url})")
    return {
        "resource": base_url,
        "authorization_servers": [base_url],
        "bearer_methods_supported": ["header"],
    }


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        data = await _read_params(request)
    except InvalidRequestError:
        data = {}

    try:
        client_info = _flow.register_client(data.get("redirect_uris"))
    except OAuthError as e:
        logger.info(f"[REGISTER] Rejected: {e.description}")
        return oauth_error_response(e)

    return JSONResponse(client_info, status_code=201)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    request: Request,
    client_id: str = "",
    redirect_uri: str = "",
    response_type: str = "",
    code_challenge: str = "",
    code_challenge_method: str = "",
    state: str = "",
    scope: str = "",
):
    """OAuth 2.0 Authorization Endpoint - redirects to Spotify consent."""
    try:
        spotify_url = _flow.begin_authorization(
            client_id=client_id,
            redirect_uri=redirect_uri,
            response_type=response_type,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
            scope=scope,
            callback_uri=_callback_uri(request),
        )
    except OAuthError as e:
        logger.info(f"[AUTHORIZE] Rejected: {e.error} ({e.description})")
        return oauth_error_response(e)

    return RedirectResponse(url=spotify_url, status_code=302)


@router.get("/callback")
async def spotify_callback(request: Request, code: str = "", state: str = "", error: str = ""):
    """Spotify OAuth callback - issues our authorization code to the client."""
    try:
        client_redirect = await _flow.complete_callback(
            code=code,
            state=state,
            error=error,
            callback_uri=_callback_uri(request),
        )
    except OAuthError as e:
        return oauth_error_response(e)

    return RedirectResponse(url=client_redirect, status_code=302)


# ============== Token Endpoint ==============

@router.post("/oauth/token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint."""
    no_store = {"Cache-Control": "no-store", "Pragma": "no-cache"}
    try:
        params = await _read_params(request)
        response = _flow.exchange_token(params)
    except OAuthError as e:
        return oauth_error_response(e, headers=no_store)
    except Exception:
        logger.exception("[TOKEN] Token endpoint error")
        return oauth_error_response(ServerError("Internal server error"), headers=no_store)

    return JSONResponse(response.to_dict(), headers=no_store)

"""Spotify accounts and Web API client.

This is the only module that talks to Spotify. It covers the token endpoint
(code exchange and refresh) and authenticated Web API calls. Every Web API
call names an Operation, which is what ends up in the logs.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

SPOTIFY_AUTHORIZE_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"
SPOTIFY_API_URL = "https://api.spotify.com/v1"

DEFAULT_TIMEOUT = 10.0


class Operation(str, Enum):
    EXCHANGE_CODE = "exchange_code"
    REFRESH_TOKEN = "refresh_token"
    GET_PROFILE = "get_profile"
    SEARCH = "search"
    GET_NOW_PLAYING = "get_now_playing"
    GET_PLAYLISTS = "get_playlists"
    GET_PLAYLIST_TRACKS = "get_playlist_tracks"
    CREATE_PLAYLIST = "create_playlist"
    ADD_TRACKS_TO_PLAYLIST = "add_tracks_to_playlist"
    START_PLAYBACK = "start_playback"
    PAUSE_PLAYBACK = "pause_playback"
    SKIP_TO_NEXT = "skip_to_next"
    SKIP_TO_PREVIOUS = "skip_to_previous"
    ADD_TO_QUEUE = "add_to_queue"


class UpstreamError(Exception):
    """Spotify could not be reached or answered with an error."""

    def __init__(self, operation: Operation, message: str, status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(f"{operation.value} failed: {message}")


class UpstreamAuthError(UpstreamError):
    """Spotify rejected the access token (HTTP 401)."""


@dataclass(frozen=True)
class UpstreamTokens:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None
    scope: Optional[str] = None


class SpotifyClient:
    """Async client for the Spotify accounts service and Web API."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        http_client: Optional[httpx.AsyncClient] = None,
        token_url: str = SPOTIFY_TOKEN_URL,
        api_url: str = SPOTIFY_API_URL,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self._http = http_client or httpx.AsyncClient(timeout=DEFAULT_TIMEOUT)
        self.token_url = token_url
        self.api_url = api_url.rstrip("/")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def exchange_code(self, code: str, redirect_uri: str) -> UpstreamTokens:
        """Exchange a Spotify authorization code for tokens."""
        return await self._token_request(
            Operation.EXCHANGE_CODE,
            {"grant_type": "authorization_code", "code": code, "redirect_uri": redirect_uri},
        )

    async def refresh_token(self, refresh_token: str) -> UpstreamTokens:
        """Refresh a Spotify access token. The refresh token may or may not be rotated."""
        return await self._token_request(
            Operation.REFRESH_TOKEN,
            {"grant_type": "refresh_token", "refresh_token": refresh_token},
        )

    async def fetch_profile(self, access_token: str) -> dict:
        profile = await self.fetch_resource(access_token, "GET", "/me", Operation.GET_PROFILE)
        if not isinstance(profile, dict) or not profile.get("id"):
            raise UpstreamError(Operation.GET_PROFILE, "profile response has no user id")
        return profile

    async def fetch_resource(
        self,
        access_token: str,
        method: str,
        path: str,
        operation: Operation,
        params: Optional[dict] = None,
        json: Optional[Any] = None,
    ) -> Any:
        """Call the Web API with a delegated access token.

        Returns the decoded JSON body, or None for empty responses
        (Spotify answers player commands with 204).
        """
        url = f"{self.api_url}/{path.lstrip('/')}"
        try:
            response = await self._http.request(
                method,
                url,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"[SPOTIFY] {operation.value} request error: {e}")
            raise UpstreamError(operation, str(e)) from e

        if response.status_code == 401:
            logger.info(f"[SPOTIFY] {operation.value} rejected: access token expired or revoked")
            raise UpstreamAuthError(operation, "access token rejected", 401)
        if response.is_error:
            logger.warning(f"[SPOTIFY] {operation.value} failed: HTTP {response.status_code}")
            raise UpstreamError(operation, _error_message(response), response.status_code)

        logger.debug(f"[SPOTIFY] {operation.value} -> HTTP {response.status_code}")
        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            # Some player endpoints answer 200 with a non-JSON body
            return None

    async def _token_request(self, operation: Operation, data: dict) -> UpstreamTokens:
        try:
            response = await self._http.post(
                self.token_url,
                data=data,
                auth=(self.client_id, self._client_secret),
            )
        except httpx.HTTPError as e:
            logger.warning(f"[SPOTIFY] {operation.value} request error: {e}")
            raise UpstreamError(operation, str(e)) from e

        if response.is_error:
            logger.warning(f"[SPOTIFY] {operation.value} failed: HTTP {response.status_code}")
            raise UpstreamError(operation, _error_message(response), response.status_code)

        try:
            body = response.json()
        except ValueError as e:
            raise UpstreamError(operation, "token response is not JSON") from e

        access_token = body.get("access_token")
        if not access_token:
            raise UpstreamError(operation, "token response has no access_token")

        logger.info(f"[SPOTIFY] {operation.value} succeeded")
        return UpstreamTokens(
            access_token=access_token,
            refresh_token=body.get("refresh_token"),
            expires_in=body.get("expires_in"),
            scope=body.get("scope"),
        )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get("message") or f"HTTP {response.status_code}"
    if isinstance(error, str):
        return body.get("error_description") or error
    return f"HTTP {response.status_code}"

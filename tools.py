"""MCP Tools for spotify-mcp-server.

Each tool looks up the Spotify credentials bound to the calling MCP session
and calls the Web API through call_spotify(), which refreshes the Spotify
access token once when Spotify rejects it.
"""

import logging
from typing import Any, Awaitable, Callable, Literal, Optional
from urllib.parse import quote

from fastmcp import Context, FastMCP
from fastmcp.exceptions import ToolError

from credential_bridge import CredentialBridge
from oauth.models import DelegatedCredentials
from spotify_client import Operation, SpotifyClient, UpstreamAuthError, UpstreamError

logger = logging.getLogger(__name__)

# Create the FastMCP server instance
mcp = FastMCP("spotify-mcp-server")

# Set by init_tools()
_bridge: CredentialBridge = None
_spotify: SpotifyClient = None

ItemType = Literal["track", "album", "artist", "playlist"]


def init_tools(bridge: CredentialBridge, spotify: SpotifyClient):
    """Initialize tools with the credential bridge and Spotify client.

    Must be called before the MCP server handles requests.
    """
    global _bridge, _spotify
    _bridge = bridge
    _spotify = spotify


async def call_spotify(
    session_id: Optional[str],
    operation: Operation,
    action: Callable[[str], Awaitable[Any]],
) -> Any:
    """Run a Web API call with the session's Spotify access token.

    On a 401 the Spotify token is refreshed, the session binding updated, and
    the call retried once.
    """
    binding = _bridge.current_credentials(session_id)
    if binding is None:
        raise ToolError("Not authenticated with Spotify. Reconnect to authorize this server.")

    credentials = binding.credentials
    try:
        return await action(credentials.access_token)
    except UpstreamAuthError:
        if not credentials.refresh_token:
            raise ToolError("Spotify access token expired. Reconnect to authorize this server.")
        logger.info(f"[TOOL] {operation.value}: Spotify token expired, refreshing")
    except UpstreamError as e:
        raise ToolError(f"Spotify request failed: {e}")

    try:
        tokens = await _spotify.refresh_token(credentials.refresh_token)
    except UpstreamError as e:
        logger.warning(f"[TOOL] {operation.value}: Spotify token refresh failed: {e}")
        raise ToolError("Spotify token refresh failed. Reconnect to authorize this server.")

    refreshed = DelegatedCredentials(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token or credentials.refresh_token,
    )
    _bridge.update_tokens(session_id, refreshed)

    try:
        return await action(refreshed.access_token)
    except UpstreamError as e:
        raise ToolError(f"Spotify request failed: {e}")


def _artists(item: dict) -> str:
    return ", ".join(artist.get("name", "") for artist in item.get("artists", []))


def format_duration(ms: int) -> str:
    minutes, seconds = divmod(round(ms / 1000), 60)
    return f"{minutes}:{seconds:02d}"


def _format_search_item(index: int, kind: str, item: dict) -> str:
    if kind == "track":
        return (
            f"{index}. \"{item.get('name')}\" by {_artists(item)} "
            f"({format_duration(item.get('duration_ms', 0))}) - ID: {item.get('id')}"
        )
    if kind == "album":
        return f"{index}. \"{item.get('name')}\" by {_artists(item)} - ID: {item.get('id')}"
    if kind == "artist":
        return f"{index}. {item.get('name')} - ID: {item.get('id')}"
    owner = (item.get("owner") or {}).get("display_name") or "Unknown"
    return f"{index}. \"{item.get('name')}\" by {owner} - ID: {item.get('id')}"


@mcp.tool()
async def search_spotify(query: str, type: ItemType, ctx: Context, limit: int = 10) -> str:
    """Search for tracks, albums, artists, or playlists on Spotify.

    Args:
        query: The search query
        type: The type of item to search for
        limit: Maximum number of results to return (1-50)
    """
    limit = max(1, min(limit, 50))
    results = await call_spotify(
        ctx.session_id,
        Operation.SEARCH,
        lambda token: _spotify.fetch_resource(
            token, "GET", "/search", Operation.SEARCH,
            params={"q": query, "type": type, "limit": limit},
        ),
    )
    items = [item for item in ((results or {}).get(f"{type}s") or {}).get("items", []) if item]
    if not items:
        return f"No {type}s found matching \"{query}\""

    lines = [_format_search_item(i, type, item) for i, item in enumerate(items, start=1)]
    return f"# Search results for \"{query}\" (type: {type})\n\n" + "\n".join(lines)


@mcp.tool()
async def get_now_playing(ctx: Context) -> str:
    """Get information about the currently playing track on Spotify."""
    current = await call_spotify(
        ctx.session_id,
        Operation.GET_NOW_PLAYING,
        lambda token: _spotify.fetch_resource(
            token, "GET", "/me/player/currently-playing", Operation.GET_NOW_PLAYING
        ),
    )
    if not current or not current.get("item"):
        return "Nothing is currently playing on Spotify"

    item = current["item"]
    if item.get("type") != "track":
        return "Currently playing item is not a track (might be a podcast episode)"

    status = "Playing" if current.get("is_playing") else "Paused"
    progress = format_duration(current.get("progress_ms") or 0)
    return (
        "# Currently Playing\n\n"
        f"**Track**: \"{item.get('name')}\"\n"
        f"**Artist**: {_artists(item)}\n"
        f"**Album**: {(item.get('album') or {}).get('name')}\n"
        f"**Progress**: {progress} / {format_duration(item.get('duration_ms', 0))}\n"
        f"**Status**: {status}\n"
        f"**ID**: {item.get('id')}"
    )


@mcp.tool()
async def get_my_playlists(ctx: Context, limit: int = 50) -> str:
    """Get a list of the current user's playlists on Spotify.

    Args:
        limit: Maximum number of playlists to return (1-50)
    """
    limit = max(1, min(limit, 50))
    page = await call_spotify(
        ctx.session_id,
        Operation.GET_PLAYLISTS,
        lambda token: _spotify.fetch_resource(
            token, "GET", "/me/playlists", Operation.GET_PLAYLISTS, params={"limit": limit}
        ),
    )
    playlists = [p for p in (page or {}).get("items", []) if p]
    if not playlists:
        return "You don't have any playlists on Spotify"

    lines = [
        f"{i}. \"{p.get('name')}\" ({(p.get('tracks') or {}).get('total', 0)} tracks) - ID: {p.get('id')}"
        for i, p in enumerate(playlists, start=1)
    ]
    return "# Your Spotify Playlists\n\n" + "\n".join(lines)


def _playlist_path(playlist_id: str) -> str:
    return f"/playlists/{quote(playlist_id, safe='')}/tracks"


async def list_playlist_tracks(session_id: Optional[str], playlist_id: str, limit: int = 50) -> str:
    limit = max(1, min(limit, 100))
    page = await call_spotify(
        session_id,
        Operation.GET_PLAYLIST_TRACKS,
        lambda token: _spotify.fetch_resource(
            token, "GET", _playlist_path(playlist_id), Operation.GET_PLAYLIST_TRACKS, params={"limit": limit}
        ),
    )
    entries = (page or {}).get("items", [])
    if not entries:
        return "This playlist doesn't have any tracks"

    lines = []
    for i, entry in enumerate(entries, start=1):
        track = (entry or {}).get("track")
        if not track:
            lines.append(f"{i}. [Removed track]")
        elif track.get("type", "track") != "track":
            lines.append(f"{i}. Unknown item")
        else:
            lines.append(_format_search_item(i, "track", track))
    return "# Tracks in Playlist\n\n" + "\n".join(lines)


async def create_user_playlist(
    session_id: Optional[str], name: str, description: Optional[str] = None, public: bool = False
) -> str:
    body = {"name": name, "public": public}
    if description is not None:
        body["description"] = description

    # Playlists are created under the user id, so look it up with the same token
    async def create(token: str):
        profile = await _spotify.fetch_profile(token)
        return await _spotify.fetch_resource(
            token, "POST", f"/users/{quote(profile['id'], safe='')}/playlists", Operation.CREATE_PLAYLIST, json=body
        )

    playlist = await call_spotify(session_id, Operation.CREATE_PLAYLIST, create)
    return f"Successfully created playlist \"{name}\"\nPlaylist ID: {(playlist or {}).get('id')}"


async def add_playlist_tracks(
    session_id: Optional[str], playlist_id: str, track_ids: list[str], position: Optional[int] = None
) -> str:
    if not track_ids:
        raise ToolError("No track IDs provided")
    if position is not None and position < 0:
        raise ToolError("Position must be a non-negative index")

    body = {"uris": [f"spotify:track:{track_id}" for track_id in track_ids]}
    if position is not None:
        body["position"] = position

    await call_spotify(
        session_id,
        Operation.ADD_TRACKS_TO_PLAYLIST,
        lambda token: _spotify.fetch_resource(
            token, "POST", _playlist_path(playlist_id), Operation.ADD_TRACKS_TO_PLAYLIST, json=body
        ),
    )
    count = len(track_ids)
    return f"Successfully added {count} track{'' if count == 1 else 's'} to playlist (ID: {playlist_id})"


@mcp.tool()
async def get_playlist_tracks(playlist_id: str, ctx: Context, limit: int = 50) -> str:
    """Get a list of tracks in a Spotify playlist.

    Args:
        playlist_id: The Spotify ID of the playlist
        limit: Maximum number of tracks to return (1-100)
    """
    return await list_playlist_tracks(ctx.session_id, playlist_id, limit)


@mcp.tool()
async def create_playlist(
    name: str, ctx: Context, description: Optional[str] = None, public: bool = False
) -> str:
    """Create a new playlist on Spotify.

    Args:
        name: The name of the playlist
        description: The description of the playlist
        public: Whether the playlist should be public
    """
    return await create_user_playlist(ctx.session_id, name, description, public)


@mcp.tool()
async def add_tracks_to_playlist(
    playlist_id: str, track_ids: list[str], ctx: Context, position: Optional[int] = None
) -> str:
    """Add tracks to a Spotify playlist.

    Args:
        playlist_id: The Spotify ID of the playlist
        track_ids: Spotify track IDs to add
        position: Position to insert the tracks (0-based index)
    """
    return await add_playlist_tracks(ctx.session_id, playlist_id, track_ids, position)


@mcp.tool()
async def play_music(
    ctx: Context,
    uri: Optional[str] = None,
    type: Optional[ItemType] = None,
    id: Optional[str] = None,
    device_id: Optional[str] = None,
) -> str:
    """Start playing a Spotify track, album, artist, or playlist.

    Args:
        uri: The Spotify URI to play (overrides type and id)
        type: The type of item to play
        id: The Spotify ID of the item to play
        device_id: The Spotify device ID to play on
    """
    if not uri and not (type and id):
        raise ToolError("Must provide either a URI or both a type and ID")

    spotify_uri = uri or f"spotify:{type}:{id}"
    is_track = type == "track" or spotify_uri.startswith("spotify:track:")
    body = {"uris": [spotify_uri]} if is_track else {"context_uri": spotify_uri}

    await call_spotify(
        ctx.session_id,
        Operation.START_PLAYBACK,
        lambda token: _spotify.fetch_resource(
            token, "PUT", "/me/player/play", Operation.START_PLAYBACK,
            params={"device_id": device_id} if device_id else None,
            json=body,
        ),
    )
    return f"Started playing {type or 'music'}" + (f" (ID: {id})" if id else "")


async def _player_command(ctx: Context, method: str, path: str, operation: Operation, device_id: Optional[str]):
    await call_spotify(
        ctx.session_id,
        operation,
        lambda token: _spotify.fetch_resource(
            token, method, path, operation,
            params={"device_id": device_id} if device_id else None,
        ),
    )


@mcp.tool()
async def pause_playback(ctx: Context, device_id: Optional[str] = None) -> str:
    """Pause Spotify playback on the active device."""
    await _player_command(ctx, "PUT", "/me/player/pause", Operation.PAUSE_PLAYBACK, device_id)
    return "Playback paused"


@mcp.tool()
async def resume_playback(ctx: Context, device_id: Optional[str] = None) -> str:
    """Resume Spotify playback on the active device."""
    await _player_command(ctx, "PUT", "/me/player/play", Operation.START_PLAYBACK, device_id)
    return "Playback resumed"


@mcp.tool()
async def skip_to_next(ctx: Context, device_id: Optional[str] = None) -> str:
    """Skip to the next track in the current Spotify playback queue."""
    await _player_command(ctx, "POST", "/me/player/next", Operation.SKIP_TO_NEXT, device_id)
    return "Skipped to next track"


@mcp.tool()
async def skip_to_previous(ctx: Context, device_id: Optional[str] = None) -> str:
    """Skip to the previous track in the current Spotify playback queue."""
    await _player_command(ctx, "POST", "/me/player/previous", Operation.SKIP_TO_PREVIOUS, device_id)
    return "Skipped to previous track"


@mcp.tool()
async def add_to_queue(
    ctx: Context,
    uri: Optional[str] = None,
    type: Optional[Literal["track", "episode"]] = None,
    id: Optional[str] = None,
    device_id: Optional[str] = None,
) -> str:
    """Add a track or episode to the Spotify playback queue.

    Args:
        uri: The Spotify URI to queue (overrides type and id)
        type: The type of item to queue
        id: The Spotify ID of the item to queue
        device_id: The Spotify device ID to queue on
    """
    if not uri and not (type and id):
        raise ToolError("Must provide either a URI or both a type and ID")

    spotify_uri = uri or f"spotify:{type}:{id}"
    params = {"uri": spotify_uri}
    if device_id:
        params["device_id"] = device_id

    await call_spotify(
        ctx.session_id,
        Operation.ADD_TO_QUEUE,
        lambda token: _spotify.fetch_resource(
            token, "POST", "/me/player/queue", Operation.ADD_TO_QUEUE, params=params
        ),
    )
    return f"Added {spotify_uri} to the queue"

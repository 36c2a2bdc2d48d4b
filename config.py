"""Config management for spotify-mcp-server.

Values come from an optional JSON file (~/.spotify-mcp-server/config.json)
overlaid by environment variables, which win. Call load_dotenv() before
load_config() to pick up a local .env file.
"""
import json
import os
from pathlib import Path
from typing import Optional


CONFIG_DIR = Path.home() / ".spotify-mcp-server"
CONFIG_FILE = CONFIG_DIR / "config.json"

DEFAULT_SPOTIFY_SCOPES = [
    "user-read-private",
    "user-read-email",
    "user-library-read",
    "user-read-recently-played",
    "user-read-playback-state",
    "user-modify-playback-state",
    "user-read-currently-playing",
    "playlist-read-private",
    "playlist-read-collaborative",
    "playlist-modify-private",
    "playlist-modify-public",
]

DEFAULT_VALID_REDIRECT_URIS = [
    "http://localhost:6274/oauth/callback",
    "https://claude.ai/api/mcp/auth_callback",
]

# Environment variable -> config key
ENV_KEYS = {
    "SPOTIFY_CLIENT_ID": "spotify_client_id",
    "SPOTIFY_CLIENT_SECRET": "spotify_client_secret",
    "REDIRECT_URL": "redirect_url",
    "JWT_SECRET": "jwt_secret",
    "OAUTH_ISSUER": "oauth_issuer",
    "VALID_REDIRECT_URIS": "valid_redirect_uris",
    "TUNNEL_HOST_SUFFIXES": "tunnel_host_suffixes",
    "SPOTIFY_SCOPES": "spotify_scopes",
    "SINGLE_SESSION_MODE": "single_session_mode",
    "MCP_HOST": "host",
    "MCP_PORT": "port",
    "RATE_LIMIT_WINDOW_SECONDS": "rate_limit_window_seconds",
    "RATE_LIMIT_MAX_REQUESTS": "rate_limit_max_requests",
    "MAX_REQUEST_BYTES": "max_request_bytes",
    "LOG_LEVEL": "log_level",
    "JSON_LOGS": "json_logs",
}


class ConfigError(Exception):
    """Required configuration is missing or malformed."""


def _as_list(value, default: list[str]) -> list[str]:
    if value is None or value == "":
        return list(default)
    if isinstance(value, str):
        return [item for item in value.replace(",", " ").split() if item]
    return [str(item) for item in value]


def _as_bool(value, default: bool = False) -> bool:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


def _as_int(key: str, value, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{key} must be an integer, got {value!r}")


class ServerConfig:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def spotify_client_id(self) -> str:
        return self.data.get("spotify_client_id") or ""

    @property
    def spotify_client_secret(self) -> str:
        return self.data.get("spotify_client_secret") or ""

    @property
    def redirect_url(self) -> str:
        return self.data.get("redirect_url") or "http://localhost:3000/callback"

    @property
    def jwt_secret(self) -> Optional[str]:
        return self.data.get("jwt_secret")

    @property
    def oauth_issuer(self) -> str:
        return (self.data.get("oauth_issuer") or "http://localhost:3000").rstrip("/")

    @property
    def valid_redirect_uris(self) -> list[str]:
        return _as_list(self.data.get("valid_redirect_uris"), DEFAULT_VALID_REDIRECT_URIS)

    @property
    def tunnel_host_suffixes(self) -> list[str]:
        return _as_list(self.data.get("tunnel_host_suffixes"), [".trycloudflare.com"])

    @property
    def spotify_scopes(self) -> list[str]:
        return _as_list(self.data.get("spotify_scopes"), DEFAULT_SPOTIFY_SCOPES)

    @property
    def single_session_mode(self) -> bool:
        return _as_bool(self.data.get("single_session_mode"))

    @property
    def host(self) -> str:
        return self.data.get("host") or "0.0.0.0"

    @property
    def port(self) -> int:
        return _as_int("MCP_PORT", self.data.get("port"), 3000)

    @property
    def rate_limit_window_seconds(self) -> int:
        return _as_int("RATE_LIMIT_WINDOW_SECONDS", self.data.get("rate_limit_window_seconds"), 60)

    @property
    def rate_limit_max_requests(self) -> int:
        return _as_int("RATE_LIMIT_MAX_REQUESTS", self.data.get("rate_limit_max_requests"), 100)

    @property
    def max_request_bytes(self) -> int:
        return _as_int("MAX_REQUEST_BYTES", self.data.get("max_request_bytes"), 10 * 1024 * 1024)

    @property
    def log_level(self) -> str:
        return (self.data.get("log_level") or "INFO").upper()

    @property
    def json_logs(self) -> bool:
        return _as_bool(self.data.get("json_logs"))

    def is_valid(self) -> bool:
        """Check if config has required fields."""
        return bool(self.spotify_client_id and self.spotify_client_secret)

    def validate(self) -> None:
        if not self.is_valid():
            raise ConfigError(
                "Missing required Spotify client credentials. "
                "Set SPOTIFY_CLIENT_ID and SPOTIFY_CLIENT_SECRET environment variables."
            )
        for key in ("port", "rate_limit_window_seconds", "rate_limit_max_requests", "max_request_bytes"):
            getattr(self, key)

    def masked(self) -> dict:
        """Config values safe to print."""
        shown = {}
        for key in ENV_KEYS.values():
            value = getattr(self, key)
            if key in ("spotify_client_secret", "jwt_secret") and value:
                value = value[:4] + "..."
            shown[key] = value
        return shown


def load_config(config_file: Path = CONFIG_FILE, environ: Optional[dict] = None) -> ServerConfig:
    """Load config from file, then apply environment overrides."""
    data = {}
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
                data = json.load(f)
        except (json.JSONDecodeError, IOError):
            data = {}

    environ = os.environ if environ is None else environ
    for env_key, key in ENV_KEYS.items():
        value = environ.get(env_key)
        if value:
            data[key] = value

    return ServerConfig(data)

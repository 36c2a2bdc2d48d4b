"""CLI entry point for spotify-mcp-server.

Commands:
    serve    run the server (default)
    status   print the resolved configuration, secrets masked
    version  print the version
"""
import argparse
import json
import sys

import uvicorn

from config import ConfigError, load_config
from logging_config import setup_logging
from main import VERSION, create_app, load_environment


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spotify-mcp-server",
        description="Remote MCP server for Spotify with OAuth 2.1",
    )
    subparsers = parser.add_subparsers(dest="command")

    serve = subparsers.add_parser("serve", help="Run the MCP server")
    serve.add_argument("--host", help="Bind address (default: MCP_HOST or 0.0.0.0)")
    serve.add_argument("--port", type=int, help="Port (default: MCP_PORT or 3000)")
    serve.add_argument("--log-level", help="Log level (default: LOG_LEVEL or INFO)")
    serve.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")

    subparsers.add_parser("status", help="Show resolved configuration")
    subparsers.add_parser("version", help="Show version")
    return parser


def cmd_serve(args) -> int:
    config = load_config()
    if args.host:
        config.data["host"] = args.host
    if args.port:
        config.data["port"] = args.port
    if args.log_level:
        config.data["log_level"] = args.log_level
    if args.json_logs:
        config.data["json_logs"] = True

    setup_logging(config.log_level, config.json_logs)

    try:
        app = create_app(config)
    except ConfigError as e:
        print(f"[X] {e}", file=sys.stderr)
        return 1

    print(f"Spotify MCP server v{VERSION}")
    print(f"  MCP endpoint: http://{config.host}:{config.port}/mcp")
    print(f"  OAuth issuer: {config.oauth_issuer}")
    uvicorn.run(app, host=config.host, port=config.port, log_level=config.log_level.lower())
    return 0


def cmd_status(args) -> int:
    config = load_config()
    print(json.dumps(config.masked(), indent=2))
    if not config.is_valid():
        print("\n[X] Spotify credentials missing (SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET)")
        return 1
    print("\n[OK] Configuration is complete")
    return 0


def main(argv=None) -> int:
    load_environment()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "version":
        print(f"spotify-mcp-server {VERSION}")
        return 0
    if args.command == "status":
        return cmd_status(args)
    if args.command is None:
        args = parser.parse_args(["serve"])
    return cmd_serve(args)


if __name__ == "__main__":
    sys.exit(main())

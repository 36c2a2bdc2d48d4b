"""Centralized logging configuration.

Log messages follow the "[TAG] message" convention, e.g. "[TOKEN] ...".
Two output formats:
- PlainFormatter: human readable lines on stderr (default)
- JSONFormatter: one JSON object per line, the tag lifted into its own field

A RedactingFilter on the handler masks bearer tokens and issued codes in case
one slips into a message.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone

SERVICE_NAME = "spotify-mcp-server"

TAG_PATTERN = re.compile(r"\[([A-Z_]+)\]\s*(.*)", re.DOTALL)

REDACTIONS = (
    (re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"), r"\1[redacted]"),
    # Authorization codes and refresh tokens are 32 random bytes in hex
    (re.compile(r"\b[0-9a-f]{64}\b"), "[redacted]"),
)


def _split_tag(message: str):
    match = TAG_PATTERN.match(message)
    if match:
        return match.group(1), match.group(2)
    return None, message


class RedactingFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        for pattern, replacement in REDACTIONS:
            message = pattern.sub(replacement, message)
        record.msg = message
        record.args = None
        return True


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service: str = SERVICE_NAME):
        super().__init__()
        self.service = service

    def format(self, record: logging.LogRecord) -> str:
        tag, message = _split_tag(record.getMessage())

        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "service": self.service,
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "logger": record.name,
            "extra": {"function": record.funcName, "line": record.lineno},
        }
        if record.exc_info:
            entry["extra"]["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry)


class PlainFormatter(logging.Formatter):
    """Plain text for local runs."""

    def __init__(self):
        super().__init__(fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(level: str = "INFO", json_logs: bool = False) -> logging.Logger:
    """Replace the root logger's handlers with a single stderr handler.

    Args:
        level: Log level name.
        json_logs: Emit JSON lines instead of plain text.

    Returns:
        The root logger.
    """
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter() if json_logs else PlainFormatter())
    handler.addFilter(RedactingFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # httpx logs every request URL at INFO
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"[STARTUP] Logging configured (level={level}, json={json_logs})")
    return root

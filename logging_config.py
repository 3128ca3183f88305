"""Centralized logging configuration.

This module provides:
- PlainFormatter for human-readable stderr output
- JSONFormatter for structured logging (one JSON object per line)
- setup_logging() which installs a single stderr handler

Logs never go to stdout: in stdio mode stdout carries the MCP protocol.
"""

import json
import logging
import re
import sys
from typing import Optional, TextIO

_TAG_RE = re.compile(r"\[([A-Za-z_][A-Za-z0-9_ -]*)\]\s*(.*)", re.DOTALL)


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def __init__(self, service: str = None):
        super().__init__()
        self.service = service or "mcp-bridge"

    def build_entry(self, record: logging.LogRecord) -> dict:
        # Extract tag from message if present: [TAG] message
        tag = None
        message = record.getMessage()
        tag_match = _TAG_RE.match(message)
        if tag_match:
            tag = tag_match.group(1)
            message = tag_match.group(2)

        log_entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "service": self.service,
            "level": record.levelname,
            "tag": tag,
            "message": message,
            "module": record.module,
            "extra": {
                "function": record.funcName,
                "line": record.lineno,
            }
        }

        if record.exc_info:
            log_entry["extra"]["exception"] = self.formatException(record.exc_info)

        return log_entry

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(self.build_entry(record), ensure_ascii=False, default=str)


class PlainFormatter(logging.Formatter):
    """Plain text formatter for stderr output (local debugging)."""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(
    level: str = "INFO",
    json_format: bool = False,
    service: Optional[str] = None,
    stream: TextIO = None,
) -> logging.Logger:
    """Configure the root logger.

    Args:
        level: Log level name (DEBUG, INFO, ...).
        json_format: Emit JSONFormatter lines instead of plain text.
        service: Service name recorded in JSON entries.
        stream: Destination stream, stderr by default.

    Returns:
        Configured root logger.
    """
    numeric_level = logging.getLevelName(level.upper()) if isinstance(level, str) else level
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(JSONFormatter(service) if json_format else PlainFormatter())
    root_logger.addHandler(handler)

    # Suppress noisy HTTP client logs (federated provider calls use httpx)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    return root_logger

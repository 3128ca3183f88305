"""MCP error taxonomy.

Every ``MCPError`` is reported to the caller verbatim as a JSON-RPC error
envelope. Anything else that escapes a handler becomes a generic internal
error and is only logged server-side.
"""

from typing import Any

INVALID_REQUEST = 100
INTERNAL_ERROR = 500


class MCPError(Exception):
    """Base class for errors surfaced to the MCP client."""

    default_code = INTERNAL_ERROR

    def __init__(self, message: str, code: int = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code if code else self.default_code
        self.data = data


class ProtocolParseError(MCPError):
    """The request line was empty or not a JSON object."""

    default_code = INVALID_REQUEST


class UnknownMethod(MCPError):
    default_code = INVALID_REQUEST


class InvalidArgument(MCPError):
    """A required field is missing or malformed, or names an unknown tool/resource/prompt."""

    default_code = INVALID_REQUEST


class HandlerFailure(MCPError):
    """Raised by tool, resource and prompt handlers to report a domain failure."""


class InternalError(MCPError):
    def __init__(self, message: str = "Internal server error", code: int = INTERNAL_ERROR, data: Any = None):
        super().__init__(message, code, data)

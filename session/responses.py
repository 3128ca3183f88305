"""Reply channels for the dispatcher.

The dispatcher never writes directly; it hands each reply to a
``ResponseHandler`` so the same server can serve stdio or be driven in-process.
"""

import logging
import sys
from typing import Any, TextIO, Union

from session.registry import to_json

logger = logging.getLogger(__name__)

RequestId = Union[int, str, None]


def success_envelope(request_id: RequestId, result: Any) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "result": result}


def error_envelope(request_id: RequestId, message: str, code: int, data: Any = None) -> dict:
    error = {"code": code, "message": message}
    if data is not None:
        error["data"] = data
    return {"jsonrpc": "2.0", "id": request_id, "error": error}


class ResponseHandler:
    """Receives one envelope per answered request."""

    def reply(self, request_id: RequestId, result: Any) -> None:
        self.send(success_envelope(request_id, result))

    def reply_error(self, request_id: RequestId, message: str, code: int, data: Any = None) -> None:
        self.send(error_envelope(request_id, message, code, data))

    def send(self, envelope: dict) -> None:
        raise NotImplementedError


class StreamResponseHandler(ResponseHandler):
    """Write each envelope as one line of JSON (stdout by default)."""

    def __init__(self, stream: TextIO = None):
        self.stream = stream

    def send(self, envelope: dict) -> None:
        stream = self.stream or sys.stdout
        line = to_json(envelope)
        logger.debug(f"[MCP] OUT {line}")
        stream.write(line + "\n")
        stream.flush()


class BufferedResponseHandler(ResponseHandler):
    """Collect envelopes in memory."""

    def __init__(self):
        self.messages: list[dict] = []

    def send(self, envelope: dict) -> None:
        self.messages.append(envelope)

    def clear(self) -> list[dict]:
        messages, self.messages = self.messages, []
        return messages

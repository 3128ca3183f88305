"""MCP tools, resources and prompts for the example stdio backend.

Replace these registrations to expose your own functionality; the bridge
itself does not care what the backend serves.
"""

import logging
from datetime import datetime, timezone

from session.dispatcher import MCPServer
from session.errors import HandlerFailure
from session.registry import PromptArgument, PromptMessage, PromptResult, ResourceContents, ToolResult

logger = logging.getLogger(__name__)

SERVER_NAME = "mcp-stdio-server"


def echo(arguments: dict) -> dict:
    """Echo back the input message."""
    message = arguments.get("message")
    if not isinstance(message, str):
        raise HandlerFailure("message must be a string", 100)
    logger.info(f"[TOOL] echo invoked, message length: {len(message)}")
    return {"message": f"Echo: {message}"}


def ping(arguments: dict) -> dict:
    logger.info("[TOOL] ping invoked")
    return {"reply": "pong"}


def tell_date_and_time(arguments: dict) -> ToolResult:
    """Current time in UTC, as ISO 8601 and as a Unix timestamp."""
    now = datetime.now(timezone.utc)
    return ToolResult({"iso": now.isoformat(), "timestamp": int(now.timestamp())})


def server_info(uri: str, arguments: dict) -> ResourceContents:
    return ResourceContents(text=f"{SERVER_NAME} (stdio)", mime_type="text/plain")


def greeting(uri: str, arguments: dict) -> str:
    return f"Hello, {arguments['name']}!"


def summarize(arguments: dict) -> PromptResult:
    text = arguments["text"]
    return PromptResult(
        description="Summarize a piece of text",
        messages=[PromptMessage("user", f"Summarize the following text in two sentences:\n\n{text}")],
    )


def register_tools(server: MCPServer) -> MCPServer:
    server.register_tool(
        "echo",
        "Echo back the input message.",
        {
            "type": "object",
            "properties": {"message": {"type": "string", "description": "The message to echo back"}},
            "required": ["message"],
        },
        echo,
        output_schema={"type": "object", "properties": {"message": {"type": "string"}}},
    )
    server.register_tool(
        "ping",
        "Simple ping tool to test connectivity.",
        {"type": "object", "properties": {}},
        ping,
    )
    server.register_tool(
        "tell_date_and_time",
        "Tell the current date and time (UTC).",
        {"type": "object", "properties": {}},
        tell_date_and_time,
    )

    server.register_resource(
        "info://server",
        "server-info",
        server_info,
        description="Name of this backend",
        mime_type="text/plain",
    )
    server.register_resource_template(
        "greeting://{name}",
        "Personalized greeting",
        greeting,
        properties=[{"name": "name", "type": "string", "description": "Who to greet", "required": True}],
        name="greeting",
        mime_type="text/plain",
    )

    server.register_prompt(
        "summarize",
        "Summarize a piece of text",
        summarize,
        arguments=[PromptArgument("text", "Text to summarize", required=True)],
    )
    return server

"""MCP session dispatcher.

One unit of work is one line of JSON text: ``MCPServer.run`` parses it,
routes it by ``method`` to the registered tools, resources and prompts, and
hands the reply (or error envelope) to the configured ``ResponseHandler``.
Nothing raised by a handler escapes ``run``; a bad line or a failing tool
never stops the session loop.
"""

import json
import logging
import sys
from typing import Any, Iterable, Optional

from session.errors import InternalError, InvalidArgument, MCPError, ProtocolParseError, UnknownMethod
from session.registry import (
    Prompt,
    PromptArgument,
    PromptHandler,
    PromptResult,
    Resource,
    ResourceContents,
    ResourceHandler,
    ResourceTemplate,
    Tool,
    ToolHandler,
    ToolResult,
)
from session.responses import ResponseHandler, StreamResponseHandler

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = "2025-03-26"
SERVER_VERSION = "1.0.0"


class MCPServer:
    def __init__(
        self,
        name: str,
        response_handler: Optional[ResponseHandler] = None,
        instructions: Optional[str] = None,
        version: str = SERVER_VERSION,
        protocol_version: str = PROTOCOL_VERSION,
    ):
        self.name = name
        self.version = version
        self.protocol_version = protocol_version
        self.instructions = instructions
        self.response_handler = response_handler or StreamResponseHandler()
        self.initialized = False

        self.tools: dict[str, Tool] = {}
        self.resources: dict[str, Resource] = {}
        self.resource_templates: dict[str, ResourceTemplate] = {}
        self.prompts: dict[str, Prompt] = {}

    # ================================
    # Registration
    # ================================

    def register_tool(
        self,
        name: str,
        description: str,
        input_schema: dict,
        handler: ToolHandler,
        output_schema: Optional[dict] = None,
    ) -> Tool:
        tool = Tool(name, description, input_schema, handler, output_schema)
        self.tools[name] = tool
        return tool

    def register_resource(
        self,
        uri: str,
        name: str,
        handler: ResourceHandler,
        description: Optional[str] = None,
        mime_type: Optional[str] = None,
        properties: Optional[dict] = None,
        required: Optional[list[str]] = None,
    ) -> Resource:
        resource = Resource(
            uri=uri,
            name=name,
            handler=handler,
            description=description,
            mime_type=mime_type,
            properties=properties or {},
            required=required or [],
        )
        self.resources[uri] = resource
        return resource

    def register_resource_template(
        self,
        uri_template: str,
        description: str,
        handler: ResourceHandler,
        properties: Optional[list[dict]] = None,
        name: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> ResourceTemplate:
        template = ResourceTemplate(
            uri_template=uri_template,
            description=description,
            handler=handler,
            properties=properties or [],
            name=name,
            mime_type=mime_type,
        )
        self.resource_templates[uri_template] = template
        return template

    def register_prompt(
        self,
        name: str,
        description: str,
        handler: PromptHandler,
        arguments: Optional[list[PromptArgument]] = None,
    ) -> Prompt:
        prompt = Prompt(name, description, handler, arguments or [])
        self.prompts[name] = prompt
        return prompt

    # ================================
    # Entry point
    # ================================

    def run(self, line: str) -> None:
        """Handle one request line and emit at most one reply."""
        try:
            body = self.parse(line)
        except ProtocolParseError as e:
            logger.info(f"[MCP] Rejected input: {e.message}")
            self.response_handler.reply_error(0, e.message, e.code, e.data)
            return

        method = body.get("method")
        expects_reply = "id" in body
        request_id = body.get("id")
        logger.info(f"[MCP] Request {method}")

        try:
            result = self.dispatch(method, body.get("params"))
        except MCPError as e:
            logger.info(f"[MCP] {method} failed: {e.message} ({e.code})")
            if expects_reply:
                self.response_handler.reply_error(request_id, e.message, e.code, e.data)
            return
        except Exception:
            logger.exception(f"[MCP] Unhandled error in {method}")
            if expects_reply:
                error = InternalError()
                self.response_handler.reply_error(request_id, error.message, error.code)
            return

        if result is None or not expects_reply:
            return
        try:
            self.response_handler.reply(request_id, result)
        except (TypeError, ValueError):
            logger.exception(f"[MCP] Could not serialize the {method} result")
            error = InternalError()
            self.response_handler.reply_error(request_id, error.message, error.code)

    @staticmethod
    def parse(line: str) -> dict:
        if not line or not line.strip():
            raise ProtocolParseError("Empty input body")
        try:
            body = json.loads(line)
        except (ValueError, RecursionError):
            raise ProtocolParseError("Failed to parse request body")
        if not isinstance(body, dict):
            raise ProtocolParseError("Failed to parse request body")
        return body

    def dispatch(self, method: Any, params: Any) -> Any:
        """Route one parsed request; returns the result payload or None for no reply."""
        if not isinstance(method, str):
            raise UnknownMethod("Invalid method")
        if not isinstance(params, dict):
            params = {}

        handler = self._get_request_handlers().get(method)
        if handler is not None:
            return handler(params)
        if method.startswith("notifications/"):
            return None
        raise UnknownMethod("Invalid method")

    def _get_request_handlers(self):
        return {
            "initialize": self._handle_initialize,
            "notifications/initialized": self._handle_initialized,
            "ping": self._handle_ping,
            "prompts/list": self._handle_list_prompts,
            "prompts/get": self._handle_get_prompt,
            "resources/list": self._handle_list_resources,
            "resources/read": self._handle_read_resource,
            "resources/templates/list": self._handle_list_resource_templates,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }

    # ================================
    # Lifecycle
    # ================================

    def _handle_initialize(self, params: dict) -> dict:
        """Advertise only the capability kinds that have registrations."""
        capabilities = {}
        if self.prompts:
            capabilities["prompts"] = {"listChanged": True}
        if self.resources or self.resource_templates:
            capabilities["resources"] = {"listChanged": True}
        if self.tools:
            capabilities["tools"] = {"listChanged": True}

        client_info = params.get("clientInfo") or {}
        if isinstance(client_info, dict) and client_info.get("name"):
            logger.info(f"[MCP] Client connected: {client_info.get('name')} {client_info.get('version', '')}".rstrip())

        result = {
            "protocolVersion": self.protocol_version,
            "serverInfo": {"name": self.name, "version": self.version},
            "capabilities": capabilities,
        }
        if self.instructions is not None:
            result["instructions"] = self.instructions
        return result

    def _handle_initialized(self, params: dict) -> None:
        self.initialized = True
        return None

    def _handle_ping(self, params: dict) -> dict:
        return {}

    # ================================
    # Prompts
    # ================================

    def _handle_list_prompts(self, params: dict) -> dict:
        return {"prompts": [prompt.to_dict() for prompt in self.prompts.values()]}

    def _handle_get_prompt(self, params: dict) -> Any:
        name = params.get("name")
        if not isinstance(name, str):
            raise InvalidArgument("Missing or invalid prompt name")

        prompt = self.prompts.get(name)
        if prompt is None:
            raise InvalidArgument(f"Unknown prompt: {name}")

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}
        for argument in prompt.arguments:
            if argument.required and argument.name not in arguments:
                raise InvalidArgument(f"Missing required argument: {argument.name}")

        result = prompt.handler(arguments)
        if isinstance(result, PromptResult):
            return result.to_dict()
        return result

    # ================================
    # Resources
    # ================================

    def _handle_list_resources(self, params: dict) -> dict:
        return {"resources": [resource.to_dict() for resource in self.resources.values()]}

    def _handle_list_resource_templates(self, params: dict) -> dict:
        return {"resourceTemplates": [template.to_dict() for template in self.resource_templates.values()]}

    def _handle_read_resource(self, params: dict) -> dict:
        """Exact URIs win over templates; templates are tried in registration order."""
        uri = params.get("uri")
        if not isinstance(uri, str):
            raise InvalidArgument("Missing or invalid resource uri")

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            arguments = {}

        resource = self.resources.get(uri)
        if resource is not None:
            contents = resource.handler(uri, arguments)
            return {"contents": self._normalize_contents(contents, uri, resource.mime_type)}

        for template in self.resource_templates.values():
            captured = template.match(uri)
            if captured is not None:
                contents = template.handler(uri, {**arguments, **captured})
                return {"contents": self._normalize_contents(contents, uri, template.mime_type)}

        raise InvalidArgument(f"Unknown resource: {uri}")

    @staticmethod
    def _normalize_contents(contents: Any, uri: str, mime_type: Optional[str]) -> list[dict]:
        if contents is None:
            return []
        if isinstance(contents, (str, ResourceContents)):
            contents = [contents]

        normalized = []
        for item in contents:
            if isinstance(item, str):
                item = ResourceContents(text=item, mime_type=mime_type or "text/plain")
            if not isinstance(item, ResourceContents):
                raise TypeError(f"Resource handler returned {type(item).__name__}")
            if item.uri is None:
                item.uri = uri
            normalized.append(item.to_dict())
        return normalized

    # ================================
    # Tools
    # ================================

    def _handle_list_tools(self, params: dict) -> dict:
        return {"tools": [tool.to_dict() for tool in self.tools.values()]}

    def _handle_call_tool(self, params: dict) -> dict:
        name = params.get("name")
        if not isinstance(name, str):
            raise InvalidArgument("Missing or invalid tool name")

        arguments = params.get("arguments")
        if not isinstance(arguments, dict):
            raise InvalidArgument("Tool call must include arguments object")

        tool = self.tools.get(name)
        if tool is None:
            raise InvalidArgument(f"Unknown tool: {name}")

        result = tool.handler(arguments)
        if not isinstance(result, ToolResult):
            result = ToolResult(content=result)
        return result.to_dict()


def run_stdio(server: MCPServer, lines: Iterable[str] = None) -> None:
    """Read one request per line until end of input; a bad line never ends the loop."""
    source = lines if lines is not None else sys.stdin
    for line in source:
        server.run(line)
    logger.info("[MCP] Input closed, server stopped")

"""Registration records for tools, resources and prompts.

Schemas are supplied pre-built by the caller; these classes only carry them
alongside the handler and render the list/result shapes sent on the wire.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

ToolHandler = Callable[[dict], Any]
ResourceHandler = Callable[[str, dict], Any]
PromptHandler = Callable[[dict], "PromptResult"]

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def to_json(value: Any) -> str:
    """Compact JSON with unescaped unicode, as written on the wire."""
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


# ================================
# Tools
# ================================

@dataclass
class ToolResult:
    """Outcome of a tool call.

    ``content`` is rendered twice: as JSON text for display and verbatim as
    structured content.
    """

    content: Any
    is_error: bool = False

    def to_dict(self) -> dict:
        return {
            "content": [{"type": "text", "text": to_json(self.content)}],
            "structuredContent": self.content,
            "isError": self.is_error,
        }


@dataclass
class Tool:
    name: str
    description: str
    input_schema: dict
    handler: ToolHandler
    output_schema: Optional[dict] = None

    def to_dict(self) -> dict:
        entry = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.output_schema is not None:
            entry["outputSchema"] = self.output_schema
        return entry


# ================================
# Resources
# ================================

@dataclass
class ResourceContents:
    text: str
    mime_type: str = "text/plain"
    uri: Optional[str] = None

    def to_dict(self) -> dict:
        return {"uri": self.uri, "mimeType": self.mime_type, "text": self.text}


@dataclass
class Resource:
    """A resource readable at one exact URI."""

    uri: str
    name: str
    handler: ResourceHandler
    description: Optional[str] = None
    mime_type: Optional[str] = None
    properties: dict = field(default_factory=dict)
    required: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        entry = {"name": self.name, "uri": self.uri}
        if self.description is not None:
            entry["description"] = self.description
        if self.mime_type is not None:
            entry["mimeType"] = self.mime_type
        if self.properties or self.required:
            schema = {"type": "object", "properties": self.properties}
            if self.required:
                schema["required"] = list(dict.fromkeys(self.required))
            entry["inputSchema"] = schema
        return entry


def compile_uri_template(uri_template: str) -> re.Pattern:
    """Turn ``scheme://{a}/{b}`` into a regex capturing each placeholder.

    A placeholder matches one path segment: it never spans a ``/``.
    """
    parts = []
    position = 0
    for match in _PLACEHOLDER_RE.finditer(uri_template):
        parts.append(re.escape(uri_template[position:match.start()]))
        parts.append(f"(?P<{match.group(1)}>[^/]+)")
        position = match.end()
    parts.append(re.escape(uri_template[position:]))
    try:
        return re.compile("".join(parts))
    except re.error as e:
        raise ValueError(f"Invalid URI template {uri_template!r}: {e}") from e


@dataclass
class ResourceTemplate:
    """Resources addressed by a URI template such as ``notes://{folder}/{id}``.

    ``properties`` is a list of ``{"name", "type", "description"?, "required"?}``.
    """

    uri_template: str
    description: str
    handler: ResourceHandler
    properties: list[dict] = field(default_factory=list)
    name: Optional[str] = None
    mime_type: Optional[str] = None
    pattern: re.Pattern = field(init=False, repr=False)

    def __post_init__(self):
        self.pattern = compile_uri_template(self.uri_template)

    def match(self, uri: str) -> Optional[dict[str, str]]:
        """Return captured placeholder values if ``uri`` matches, else None."""
        found = self.pattern.fullmatch(uri)
        if found is None:
            return None
        return found.groupdict()

    def to_dict(self) -> dict:
        properties = {}
        required = []
        for prop in self.properties:
            properties[prop["name"]] = {k: v for k, v in prop.items() if k not in ("name", "required")}
            if prop.get("required"):
                required.append(prop["name"])

        entry = {"uriTemplate": self.uri_template}
        if self.name is not None:
            entry["name"] = self.name
        entry["description"] = self.description
        if self.mime_type is not None:
            entry["mimeType"] = self.mime_type
        entry["inputSchema"] = {"type": "object", "properties": properties, "required": required}
        return entry


# ================================
# Prompts
# ================================

@dataclass
class PromptArgument:
    name: str
    description: Optional[str] = None
    required: bool = False

    def to_dict(self) -> dict:
        return {"name": self.name, "description": self.description, "required": self.required}


@dataclass
class PromptMessage:
    role: str
    text: str

    def to_dict(self) -> dict:
        return {"role": self.role, "content": {"type": "text", "text": self.text}}


@dataclass
class PromptResult:
    description: str
    messages: list[PromptMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "messages": [message.to_dict() for message in self.messages],
        }


@dataclass
class Prompt:
    name: str
    description: str
    handler: PromptHandler
    arguments: list[PromptArgument] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [argument.to_dict() for argument in self.arguments],
        }

import pytest

from session.registry import (
    Prompt,
    PromptArgument,
    PromptMessage,
    PromptResult,
    Resource,
    ResourceTemplate,
    Tool,
    ToolResult,
    compile_uri_template,
    to_json,
)


def _noop(*args):
    return None


class TestUriTemplates:
    def test_captures_each_placeholder(self):
        template = ResourceTemplate("notes://{folder}/{id}", "Notes", _noop)

        assert template.match("notes://work/42") == {"folder": "work", "id": "42"}

    def test_placeholder_never_spans_a_slash(self):
        template = ResourceTemplate("notes://{id}", "Notes", _noop)

        assert template.match("notes://a/b") is None

    def test_requires_full_match(self):
        template = ResourceTemplate("notes://{id}", "Notes", _noop)

        assert template.match("prefix-notes://1") is None
        assert template.match("notes://1/extra") is None

    def test_literal_parts_are_escaped(self):
        pattern = compile_uri_template("file://a.b/{name}")

        assert pattern.fullmatch("file://a.b/x") is not None
        assert pattern.fullmatch("file://aXb/x") is None

    def test_duplicate_placeholder_is_rejected(self):
        with pytest.raises(ValueError):
            compile_uri_template("x://{id}/{id}")


class TestWireShapes:
    def test_tool_result_renders_text_and_structured_content(self):
        result = ToolResult({"message": "héllo"})

        assert result.to_dict() == {
            "content": [{"type": "text", "text": '{"message":"héllo"}'}],
            "structuredContent": {"message": "héllo"},
            "isError": False,
        }

    def test_tool_output_schema_is_optional(self):
        plain = Tool("a", "A", {"type": "object"}, _noop)
        typed = Tool("b", "B", {"type": "object"}, _noop, output_schema={"type": "object"})

        assert "outputSchema" not in plain.to_dict()
        assert typed.to_dict()["outputSchema"] == {"type": "object"}

    def test_resource_input_schema_only_when_declared(self):
        bare = Resource("info://a", "a", _noop)
        with_args = Resource("info://b", "b", _noop, properties={"q": {"type": "string"}}, required=["q", "q"])

        assert bare.to_dict() == {"name": "a", "uri": "info://a"}
        assert with_args.to_dict()["inputSchema"] == {
            "type": "object",
            "properties": {"q": {"type": "string"}},
            "required": ["q"],
        }

    def test_template_input_schema_from_properties(self):
        template = ResourceTemplate(
            "greeting://{name}",
            "Greeting",
            _noop,
            properties=[
                {"name": "name", "type": "string", "required": True},
                {"name": "lang", "type": "string", "description": "Language"},
            ],
        )

        entry = template.to_dict()

        assert entry["uriTemplate"] == "greeting://{name}"
        assert entry["inputSchema"] == {
            "type": "object",
            "properties": {
                "name": {"type": "string"},
                "lang": {"type": "string", "description": "Language"},
            },
            "required": ["name"],
        }

    def test_prompt_shapes(self):
        prompt = Prompt("p", "Prompt", _noop, [PromptArgument("text", "Text", required=True)])
        result = PromptResult("desc", [PromptMessage("user", "hi")])

        assert prompt.to_dict() == {
            "name": "p",
            "description": "Prompt",
            "arguments": [{"name": "text", "description": "Text", "required": True}],
        }
        assert result.to_dict() == {
            "description": "desc",
            "messages": [{"role": "user", "content": {"type": "text", "text": "hi"}}],
        }

    def test_to_json_is_compact(self):
        assert to_json({"a": [1, 2]}) == '{"a":[1,2]}'

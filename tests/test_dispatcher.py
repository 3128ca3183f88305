import io
import json
from datetime import datetime

from session.dispatcher import PROTOCOL_VERSION, MCPServer, run_stdio
from session.errors import HandlerFailure
from session.registry import PromptArgument, PromptMessage, PromptResult, ResourceContents
from session.responses import BufferedResponseHandler, StreamResponseHandler


def request(method, request_id=1, **params) -> str:
    body = {"method": method, "params": params}
    if request_id is not None:
        body["id"] = request_id
    return json.dumps(body)


class TestParsing:
    def setup_method(self):
        self.handler = BufferedResponseHandler()
        self.server = MCPServer("test-server", self.handler)

    def test_malformed_line_replies_with_id_zero(self):
        # Act
        self.server.run("{")

        # Assert
        assert self.handler.messages == [{
            "jsonrpc": "2.0",
            "id": 0,
            "error": {"code": 100, "message": "Failed to parse request body"},
        }]

    def test_empty_line_replies_with_id_zero(self):
        self.server.run("   \n")

        assert len(self.handler.messages) == 1
        assert self.handler.messages[0]["id"] == 0
        assert self.handler.messages[0]["error"]["message"] == "Empty input body"

    def test_non_object_json_is_a_parse_error(self):
        self.server.run("[1, 2]")

        assert self.handler.messages[0]["error"]["code"] == 100

    def test_unknown_method(self):
        self.server.run(request("does/not/exist", 7))

        assert self.handler.messages == [{
            "jsonrpc": "2.0",
            "id": 7,
            "error": {"code": 100, "message": "Invalid method"},
        }]

    def test_string_ids_are_echoed(self):
        self.server.run(request("ping", "abc"))

        assert self.handler.messages == [{"jsonrpc": "2.0", "id": "abc", "result": {}}]


class TestNotifications:
    def setup_method(self):
        self.handler = BufferedResponseHandler()
        self.server = MCPServer("test-server", self.handler)

    def test_initialized_notification_gets_no_reply(self):
        self.server.run(request("notifications/initialized", None))

        assert self.handler.messages == []
        assert self.server.initialized

    def test_other_notifications_are_acknowledged_silently(self):
        self.server.run(request("notifications/cancelled", None, requestId=3))

        assert self.handler.messages == []

    def test_failing_request_without_id_gets_no_reply(self):
        self.server.run(request("tools/call", None, name="missing", arguments={}))

        assert self.handler.messages == []


class TestInitialize:
    def test_capabilities_omitted_when_nothing_registered(self):
        # Arrange
        handler = BufferedResponseHandler()
        server = MCPServer("empty", handler)

        # Act
        server.run(request("initialize", protocolVersion=PROTOCOL_VERSION))

        # Assert
        result = handler.messages[0]["result"]
        assert result == {
            "protocolVersion": PROTOCOL_VERSION,
            "serverInfo": {"name": "empty", "version": "1.0.0"},
            "capabilities": {},
        }

    def test_capabilities_follow_registrations(self):
        handler = BufferedResponseHandler()
        server = MCPServer("tools-only", handler, instructions="Be nice")
        server.register_tool("echo", "Echo", {"type": "object"}, lambda args: args)
        server.register_resource_template("t://{x}", "T", lambda uri, args: "t")

        server.run(request("initialize"))

        result = handler.messages[0]["result"]
        assert set(result["capabilities"]) == {"tools", "resources"}
        assert result["instructions"] == "Be nice"

    def test_tools_list_empty_server(self):
        handler = BufferedResponseHandler()
        server = MCPServer("empty", handler)

        server.run(request("tools/list"))

        assert handler.messages[0]["result"] == {"tools": []}


class TestToolCalls:
    def setup_method(self):
        self.handler = BufferedResponseHandler()
        self.server = MCPServer("test-server", self.handler)
        self.server.register_tool(
            "add",
            "Add two numbers",
            {"type": "object", "properties": {"a": {"type": "number"}, "b": {"type": "number"}}},
            lambda args: {"sum": args["a"] + args["b"]},
        )

    def test_successful_call(self):
        # Act
        self.server.run(request("tools/call", 1, name="add", arguments={"a": 2, "b": 3}))

        # Assert
        assert self.handler.messages == [{
            "jsonrpc": "2.0",
            "id": 1,
            "result": {
                "content": [{"type": "text", "text": '{"sum":5}'}],
                "structuredContent": {"sum": 5},
                "isError": False,
            },
        }]

    def test_unknown_tool_is_an_error_not_a_crash(self):
        self.server.run('{"method":"tools/call","id":1,"params":{"name":"missing","arguments":{}}}')

        reply = self.handler.messages[0]
        assert reply["id"] == 1
        assert reply["error"]["code"] != 0
        assert reply["error"]["message"] == "Unknown tool: missing"

    def test_arguments_must_be_an_object(self):
        self.server.run(request("tools/call", 1, name="add"))
        self.server.run(request("tools/call", 2, name="add", arguments=[1, 2]))

        assert [m["error"]["code"] for m in self.handler.messages] == [100, 100]

    def test_name_must_be_a_string(self):
        self.server.run(request("tools/call", 1, name=5, arguments={}))

        assert self.handler.messages[0]["error"]["message"] == "Missing or invalid tool name"

    def test_unexpected_exception_becomes_internal_error(self, caplog):
        # Arrange
        def explode(args):
            raise RuntimeError("secret detail")

        self.server.register_tool("explode", "Boom", {"type": "object"}, explode)

        # Act
        self.server.run(request("tools/call", 9, name="explode", arguments={}))

        # Assert - generic on the wire, full detail in the log
        assert self.handler.messages[0]["error"] == {"code": 500, "message": "Internal server error"}
        assert "secret detail" in caplog.text

    def test_handler_failure_keeps_its_code_and_data(self):
        def refuse(args):
            raise HandlerFailure("Not allowed", 403, {"reason": "policy"})

        self.server.register_tool("refuse", "Refuse", {"type": "object"}, refuse)

        self.server.run(request("tools/call", 4, name="refuse", arguments={}))

        assert self.handler.messages[0]["error"] == {
            "code": 403,
            "message": "Not allowed",
            "data": {"reason": "policy"},
        }

    def test_failure_does_not_stop_later_calls(self):
        self.server.run(request("tools/call", 1, name="missing", arguments={}))
        self.server.run(request("tools/call", 2, name="add", arguments={"a": 1, "b": 1}))

        assert "error" in self.handler.messages[0]
        assert self.handler.messages[1]["result"]["structuredContent"] == {"sum": 2}


class TestResources:
    def setup_method(self):
        self.handler = BufferedResponseHandler()
        self.server = MCPServer("test-server", self.handler)
        self.server.register_resource("info://exact", "exact", lambda uri, args: "exact body")
        self.server.register_resource_template(
            "info://{name}",
            "Named info",
            lambda uri, args: ResourceContents(text=f"{args['name']}:{args.get('lang', '-')}"),
        )

    def test_exact_uri_wins_over_template(self):
        self.server.run(request("resources/read", 1, uri="info://exact"))

        assert self.handler.messages[0]["result"] == {
            "contents": [{"uri": "info://exact", "mimeType": "text/plain", "text": "exact body"}],
        }

    def test_template_captures_merge_into_arguments(self):
        self.server.run(request("resources/read", 1, uri="info://alice", arguments={"lang": "en"}))

        assert self.handler.messages[0]["result"]["contents"][0]["text"] == "alice:en"

    def test_unmatched_uri(self):
        self.server.run(request("resources/read", 1, uri="info://a/b"))

        assert self.handler.messages[0]["error"] == {"code": 100, "message": "Unknown resource: info://a/b"}

    def test_lists(self):
        self.server.run(request("resources/list", 1))
        self.server.run(request("resources/templates/list", 2))

        resources, templates = self.handler.clear()
        assert [r["uri"] for r in resources["result"]["resources"]] == ["info://exact"]
        assert [t["uriTemplate"] for t in templates["result"]["resourceTemplates"]] == ["info://{name}"]


class TestPrompts:
    def setup_method(self):
        self.handler = BufferedResponseHandler()
        self.server = MCPServer("test-server", self.handler)
        self.server.register_prompt(
            "greet",
            "Greet someone",
            lambda args: PromptResult("Greeting", [PromptMessage("user", f"Say hi to {args['who']}")]),
            [PromptArgument("who", required=True)],
        )

    def test_get_prompt(self):
        self.server.run(request("prompts/get", 1, name="greet", arguments={"who": "Bob"}))

        assert self.handler.messages[0]["result"] == {
            "description": "Greeting",
            "messages": [{"role": "user", "content": {"type": "text", "text": "Say hi to Bob"}}],
        }

    def test_missing_required_argument(self):
        self.server.run(request("prompts/get", 1, name="greet", arguments={}))

        assert self.handler.messages[0]["error"]["message"] == "Missing required argument: who"

    def test_unknown_prompt(self):
        self.server.run(request("prompts/get", 1, name="nope"))

        assert self.handler.messages[0]["error"]["code"] == 100

    def test_list_prompts(self):
        self.server.run(request("prompts/list", 1))

        assert self.handler.messages[0]["result"]["prompts"][0]["name"] == "greet"


class TestStdioLoop:
    def test_malformed_line_does_not_stop_the_loop(self):
        # Arrange
        output = io.StringIO()
        server = MCPServer("stdio", StreamResponseHandler(output))
        lines = ["{\n", request("ping", 2) + "\n"]

        # Act
        run_stdio(server, lines)

        # Assert - exactly one reply per line, one JSON object per output line
        replies = [json.loads(line) for line in output.getvalue().splitlines()]
        assert len(replies) == 2
        assert replies[0]["id"] == 0
        assert replies[1] == {"jsonrpc": "2.0", "id": 2, "result": {}}

    def test_notifications_write_nothing(self):
        output = io.StringIO()
        server = MCPServer("stdio", StreamResponseHandler(output))

        run_stdio(server, [request("notifications/initialized", None)])

        assert output.getvalue() == ""

    def test_deeply_nested_line_is_a_parse_error(self):
        output = io.StringIO()
        server = MCPServer("stdio", StreamResponseHandler(output))

        run_stdio(server, ["[" * 100000 + "\n", request("ping", 2) + "\n"])

        replies = [json.loads(line) for line in output.getvalue().splitlines()]
        assert replies[0]["id"] == 0
        assert replies[0]["error"] == {"code": 100, "message": "Failed to parse request body"}
        assert replies[1] == {"jsonrpc": "2.0", "id": 2, "result": {}}

    def test_unserializable_result_becomes_internal_error(self, caplog):
        # Arrange
        output = io.StringIO()
        server = MCPServer("stdio", StreamResponseHandler(output))
        server.register_prompt("clock", "Current time", lambda args: {"when": datetime(2020, 1, 1)})
        lines = [request("prompts/get", 1, name="clock") + "\n", request("ping", 2) + "\n"]

        # Act
        run_stdio(server, lines)

        # Assert
        replies = [json.loads(line) for line in output.getvalue().splitlines()]
        assert replies[0] == {"jsonrpc": "2.0", "id": 1, "error": {"code": 500, "message": "Internal server error"}}
        assert replies[1] == {"jsonrpc": "2.0", "id": 2, "result": {}}
        assert "Could not serialize the prompts/get result" in caplog.text

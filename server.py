"""Example stdio MCP backend - the default ``MCP_CLI_CMD`` of the bridge.

Reads one JSON request per line from stdin and writes one reply per line to
stdout until end of input. Logs go to stderr, which the bridge forwards to
its own log.
"""
import logging
import os
import sys

from dotenv import load_dotenv

from logging_config import setup_logging
from session.dispatcher import MCPServer, run_stdio
from tools import SERVER_NAME, register_tools

logger = logging.getLogger(__name__)


def build_server(response_handler=None) -> MCPServer:
    server = MCPServer(
        SERVER_NAME,
        response_handler=response_handler,
        instructions="Example backend exposing echo, ping and tell_date_and_time.",
    )
    return register_tools(server)


def main() -> int:
    load_dotenv()
    setup_logging(os.getenv("LOG_LEVEL", "WARNING"), os.getenv("LOG_FORMAT", "plain").lower() == "json")
    logger.info(f"[MCP] {SERVER_NAME} reading requests from stdin")
    run_stdio(build_server())
    return 0


if __name__ == "__main__":
    sys.exit(main())

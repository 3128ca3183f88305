"""Streamable HTTP endpoint that relays MCP requests to a stdio backend.

Each POST /mcp spawns a fresh backend process (``MCP_CLI_CMD`` through
``/bin/sh -c``), writes the request body to its stdin, closes stdin, and
returns everything the process printed to stdout as the response body.
One process serves exactly one request; nothing is pooled or reused.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.responses import Response

from config import Config
from oauth.middleware import get_issuer, unauthorized_response, validate_bearer
from oauth.stores import TokenStore

logger = logging.getLogger(__name__)

# Router for the MCP endpoint
router = APIRouter(tags=["mcp"])

# Grace period for the stderr pump after the process has exited
STDERR_DRAIN_SECONDS = 1.0

# These will be set by init_bridge_routes()
_config: Optional[Config] = None
_store: Optional[TokenStore] = None


def init_bridge_routes(config: Config, store: TokenStore):
    """Initialize the /mcp route with config and the shared token store.

    Must be called before including the router in the app.
    """
    global _config, _store
    _config = config
    _store = store


class BackendError(Exception):
    """The backend process could not be run to completion."""


class BackendTimeout(BackendError):
    """The backend did not finish within the configured deadline."""


@dataclass
class BackendResult:
    exit_code: int
    output: str


# ============== Backend process ==============

async def _pump_stderr(stream: asyncio.StreamReader) -> None:
    """Forward backend stderr to the log, one line at a time."""
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            logger.warning("[mcp-cli stderr] line exceeds buffer limit, skipped")
            continue
        if not line:
            break
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            logger.info(f"[mcp-cli stderr] {text}")


async def _exchange(process: asyncio.subprocess.Process, payload: bytes) -> tuple[bytes, int]:
    try:
        process.stdin.write(payload)
        await process.stdin.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The backend may exit before reading its input; its exit code decides the outcome
        logger.warning("[BRIDGE] Backend closed stdin before the payload was written")
    finally:
        process.stdin.close()

    output = await process.stdout.read()
    exit_code = await process.wait()
    return output, exit_code


async def run_backend(
    command: str,
    payload: bytes,
    cwd: Optional[str] = None,
    timeout: float = 30,
    trace: bool = False,
) -> BackendResult:
    """Run one backend round trip.

    The process is always reaped before returning: on timeout or any other
    failure it is killed first.
    """
    if trace:
        logger.info(f"[mcp-cli stdin] {payload.decode('utf-8', errors='replace').rstrip()}")

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
        )
    except OSError as e:
        raise BackendError(f"Failed to start backend: {e}") from e

    stderr_task = asyncio.create_task(_pump_stderr(process.stderr))
    try:
        try:
            output, exit_code = await asyncio.wait_for(_exchange(process, payload), timeout)
        except asyncio.TimeoutError:
            raise BackendTimeout(f"Backend did not finish within {timeout}s")
    finally:
        if process.returncode is None:
            logger.warning(f"[BRIDGE] Killing backend process {process.pid}")
            process.kill()
            await process.wait()
        try:
            await asyncio.wait_for(stderr_task, STDERR_DRAIN_SECONDS)
        except asyncio.TimeoutError:
            logger.debug("[BRIDGE] stderr pump did not finish, cancelled")

    text = output.decode("utf-8", errors="replace")
    if trace and text.strip():
        logger.info(f"[mcp-cli stdout] {text.rstrip()}")
    return BackendResult(exit_code=exit_code, output=text)


def is_notification_only(body: str) -> bool:
    """True when the body parses as one message, or a batch, none of which carries an ``id``."""
    try:
        parsed = json.loads(body)
    except (ValueError, RecursionError):
        return False
    messages = parsed if isinstance(parsed, list) else [parsed]
    if not messages:
        return False
    return all(isinstance(message, dict) and "id" not in message for message in messages)


def bridge_error(status_code: int, error: str) -> JSONResponse:
    return JSONResponse({"error": error}, status_code=status_code)


# ============== Endpoint ==============

@router.post("/mcp")
async def mcp_endpoint(request: Request) -> Response:
    """Forward the request body to a fresh backend process and relay its reply."""
    _store.purge_expired()

    if _config.require_auth:
        if validate_bearer(request, _store) is None:
            issuer = get_issuer(request, _config.base_url)
            return unauthorized_response(issuer, "Missing or invalid bearer token")

    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        return bridge_error(400, "invalid_request")

    payload = body if body.endswith("\n") else f"{body}\n"

    try:
        result = await run_backend(
            _config.cli_command,
            payload.encode("utf-8"),
            cwd=_config.cli_working_dir,
            timeout=_config.cli_timeout_seconds,
            trace=_config.cli_trace_stdout,
        )
    except BackendTimeout as e:
        logger.error(f"[BRIDGE] {e}")
        return bridge_error(504, "mcp_cli_timeout")
    except BackendError as e:
        logger.error(f"[BRIDGE] {e}")
        return bridge_error(500, "mcp_cli_failed")

    if result.exit_code == 0 and not result.output.strip() and is_notification_only(body):
        return Response(status_code=204)

    if result.exit_code != 0 or not result.output.strip():
        if result.exit_code != 0:
            logger.error(f"[BRIDGE] Backend exited with code {result.exit_code}")
        else:
            logger.error("[BRIDGE] Backend produced no output")
        return bridge_error(500, "mcp_cli_failed")

    output = result.output if result.output.endswith("\n") else f"{result.output}\n"
    return Response(
        content=output,
        media_type="application/json; charset=utf-8",
        headers={"Cache-Control": "no-store"},
    )

"""Streamable HTTP MCP bridge.

This server handles:
- MCP requests via Streamable HTTP (/mcp), each relayed to a one-shot stdio
  backend process (bridge.py)
- OAuth 2.0 flow for MCP clients (oauth/), with a local or federated
  (Microsoft Entra ID) authentication adapter
- Liveness endpoints (/, /healthz)

Run with ``python main.py`` or ``mcp-bridge serve``.
"""
import logging
from typing import Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from config import Config, load_config
from oauth.adapters import AuthorizationAdapter, LocalAuthorizationAdapter
from oauth.errors import OAuthError, oauth_error_handler
from oauth.federated import FederatedAuthorizationAdapter
from oauth.stores import TokenStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


class CORSHeadersMiddleware(BaseHTTPMiddleware):
    """Answer every OPTIONS request with 204 and add CORS headers to all responses."""

    def __init__(self, app, allow_origin: str = "*"):
        super().__init__(app)
        self.headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Headers": "authorization, content-type",
            "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
        }

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            return Response(status_code=204, headers=self.headers)
        try:
            response = await call_next(request)
        except Exception:
            logger.exception(f"[HTTP] Unhandled error on {request.method} {request.url.path}")
            response = PlainTextResponse("Internal server error\n", status_code=500)
        response.headers.update(self.headers)
        return response


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Plain-text 404 and empty 405 instead of FastAPI's JSON ``detail`` bodies."""
    if exc.status_code == 404:
        return PlainTextResponse("Not found\n", status_code=404)
    if exc.status_code == 405:
        return Response(status_code=405, headers=getattr(exc, "headers", None))
    return PlainTextResponse(f"{exc.detail}\n", status_code=exc.status_code)


def build_adapter(
    config: Config,
    store: TokenStore,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthorizationAdapter:
    if config.auth_adapter == "federated":
        federated = config.federated
        problem = federated.validate()
        if problem:
            # Requests still fail with server_error until this is fixed
            logger.warning(f"[STARTUP] Federated adapter selected but misconfigured: {problem}")
        return FederatedAuthorizationAdapter(federated, store, base_url=config.base_url, transport=transport)
    return LocalAuthorizationAdapter(store)


def create_app(
    config: Optional[Config] = None,
    store: Optional[TokenStore] = None,
    adapter: Optional[AuthorizationAdapter] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """Build the FastAPI app.

    ``transport`` is handed to the federated adapter's httpx client so tests can
    fake the identity provider.
    """
    config = config or load_config()
    store = store or TokenStore(
        code_ttl=config.code_ttl_seconds,
        token_ttl=config.token_ttl_seconds,
        refresh_ttl=config.refresh_ttl_seconds,
    )
    adapter = adapter or build_adapter(config, store, transport)

    app = FastAPI(
        title="Streamable HTTP MCP Bridge",
        description="Relays MCP requests to a stdio backend, with OAuth 2.0",
        version=VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    app.add_middleware(CORSHeadersMiddleware, allow_origin=config.cors_allow_origin)
    app.add_exception_handler(OAuthError, oauth_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)

    # ============== Include Routers ==============

    from oauth.endpoints import router as oauth_router, init_oauth_routes
    init_oauth_routes(config, store, adapter)
    app.include_router(oauth_router)

    from bridge import router as bridge_router, init_bridge_routes
    init_bridge_routes(config, store)
    app.include_router(bridge_router)

    # ============== Server Info Endpoints ==============

    @app.get("/")
    async def root():
        return PlainTextResponse("Streamable-HTTP MCP bridge is running.\n")

    @app.get("/healthz")
    async def health_check():
        return PlainTextResponse("ok\n")

    app.state.config = config
    app.state.store = store
    app.state.adapter = adapter

    logger.info(f"[STARTUP] MCP CLI command: {config.cli_command}")
    if config.cli_working_dir:
        logger.info(f"[STARTUP] MCP CLI working dir: {config.cli_working_dir}")
    logger.info(f"[STARTUP] Auth required: {config.require_auth}, adapter: {adapter.name}")
    return app


def serve(config: Optional[Config] = None) -> None:
    """Configure logging and run the app under uvicorn."""
    import uvicorn
    from logging_config import setup_logging

    config = config or load_config()
    setup_logging(config.log_level, config.log_json)
    app = create_app(config)
    logger.info(f"[STARTUP] Streamable-HTTP MCP server listening on http://{config.host}:{config.port}")
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


# ============== Main Entry Point ==============

if __name__ == "__main__":
    serve()

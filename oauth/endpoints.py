"""OAuth 2.0 endpoints for the MCP bridge.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Authorization (/oauth/authorize), delegated to the configured adapter
- Federated provider callback (/oauth/entra/callback)
- Token endpoint (/oauth/token)

A single confidential client is configured; there is no dynamic registration.
"""

import base64
import binascii
import json
import logging
from typing import Optional
from urllib.parse import parse_qsl

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from config import Config
from oauth.adapters import AuthorizationAdapter, is_allowed_redirect_uri
from oauth.errors import NO_STORE_HEADERS, OAuthError
from oauth.federated import CALLBACK_PATH, FederatedAuthorizationAdapter
from oauth.middleware import get_issuer
from oauth.pkce import constant_time_equal, derive_challenge
from oauth.stores import AuthorizationRequest, TokenPair, TokenStore

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

GRANT_TYPES = ["authorization_code", "client_credentials", "refresh_token"]

# These will be set by init_oauth_routes()
_config: Optional[Config] = None
_store: Optional[TokenStore] = None
_adapter: Optional[AuthorizationAdapter] = None


def init_oauth_routes(config: Config, store: TokenStore, adapter: AuthorizationAdapter):
    """Initialize OAuth routes with config, token store and authentication adapter.

    Must be called before including the router in the app.
    """
    global _config, _store, _adapter
    _config = config
    _store = store
    _adapter = adapter


def _purge_expired() -> None:
    _store.purge_expired()
    _adapter.purge_expired()


# ============== Discovery Endpoints ==============

@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(request: Request):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    issuer = get_issuer(request, _config.base_url)
    return {
        "issuer": issuer,
        "authorization_endpoint": f"{issuer}/oauth/authorize",
        "token_endpoint": f"{issuer}/oauth/token",
        "response_types_supported": ["code"],
        "grant_types_supported": GRANT_TYPES,
        "token_endpoint_auth_methods_supported": ["client_secret_basic", "client_secret_post"],
        "code_challenge_methods_supported": ["S256", "plain"],
    }


@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(request: Request):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    issuer = get_issuer(request, _config.base_url)
    return {
        "resource": f"{issuer}/mcp",
        "authorization_servers": [issuer],
        "bearer_methods_supported": ["header"],
    }


# ============== Authorization ==============

@router.get("/oauth/authorize")
async def authorize(request: Request):
    """OAuth 2.0 Authorization Endpoint - validates, then hands off to the adapter."""
    _purge_expired()
    params = request.query_params

    if params.get("response_type") != "code":
        raise OAuthError(400, "unsupported_response_type", "Only response_type=code is supported.")

    client_id = params.get("client_id")
    if client_id != _config.client_id:
        raise OAuthError(401, "invalid_client", "Unknown client_id.")

    redirect_uri = params.get("redirect_uri")
    if not redirect_uri or not is_allowed_redirect_uri(redirect_uri, _config.redirect_uris):
        logger.info(f"[AUTH] Rejected redirect_uri: {redirect_uri}")
        raise OAuthError(400, "invalid_request", "redirect_uri is not allowed.")

    code_challenge = params.get("code_challenge") or None
    context = AuthorizationRequest(
        client_id=client_id,
        redirect_uri=redirect_uri,
        scope=params.get("scope") or None,
        client_state=params.get("state") or None,
        code_challenge=code_challenge,
        code_challenge_method=(params.get("code_challenge_method") or "plain") if code_challenge else None,
    )
    return await _adapter.authorize(request, context)


@router.get(CALLBACK_PATH)
async def federated_callback(request: Request):
    """Redirect target for the federated identity provider."""
    if not isinstance(_adapter, FederatedAuthorizationAdapter):
        return PlainTextResponse("Not found\n", status_code=404)
    _purge_expired()
    return await _adapter.callback(request)


# ============== Token Endpoint ==============

def parse_basic_auth(header: Optional[str]) -> Optional[tuple[str, str]]:
    """Decode ``Authorization: Basic`` into (client_id, client_secret)."""
    if not header:
        return None
    scheme, _, credentials = header.strip().partition(" ")
    if scheme.lower() != "basic" or not credentials.strip():
        return None
    try:
        decoded = base64.b64decode(credentials.strip()).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None
    if ":" not in decoded:
        return None
    client_id, _, client_secret = decoded.partition(":")
    return client_id, client_secret


async def _read_token_params(request: Request) -> dict[str, str]:
    """Read the token request from a JSON or form-encoded body."""
    content_type = request.headers.get("content-type", "").lower()

    if "application/json" in content_type:
        try:
            data = await request.json()
        except ValueError:
            raise OAuthError(400, "invalid_request", "Invalid JSON body.")
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise OAuthError(400, "invalid_request", "Invalid JSON body.")
        return {
            key: value if isinstance(value, str) else json.dumps(value)
            for key, value in data.items()
            if value is not None
        }

    if "multipart/form-data" in content_type:
        form = await request.form()
        return {key: value for key, value in form.items() if isinstance(value, str)}

    try:
        body = (await request.body()).decode("utf-8")
    except UnicodeDecodeError:
        raise OAuthError(400, "invalid_request", "Unable to read request body.")
    return dict(parse_qsl(body, keep_blank_values=True))


def _validate_client(client_id: Optional[str], client_secret: Optional[str]) -> bool:
    if not client_id or not client_secret:
        return False
    id_ok = constant_time_equal(client_id, _config.client_id)
    secret_ok = constant_time_equal(client_secret, _config.client_secret)
    return id_ok and secret_ok


def _token_response(pair: TokenPair, scope: Optional[str]) -> JSONResponse:
    body = {
        "access_token": pair.access_token,
        "token_type": "bearer",
        "expires_in": pair.expires_in,
    }
    if pair.refresh_token:
        body["refresh_token"] = pair.refresh_token
    if scope is not None:
        body["scope"] = scope
    return JSONResponse(body, headers=NO_STORE_HEADERS)


def _grant_authorization_code(params: dict[str, str], client_id: str) -> JSONResponse:
    code = params.get("code")
    redirect_uri = params.get("redirect_uri")
    code_verifier = params.get("code_verifier")
    if not code or not redirect_uri:
        raise OAuthError(400, "invalid_request", "code and redirect_uri are required.")

    # A redirect_uri mismatch leaves the code in place; only success or expiry removes it
    record = _store.lookup_code(code)
    if record is None or record.redirect_uri != redirect_uri or record.client_id != client_id:
        logger.debug("[TOKEN] Invalid authorization code")
        raise OAuthError(400, "invalid_grant", "Invalid authorization code.")

    if record.code_challenge:
        if not code_verifier:
            raise OAuthError(400, "invalid_grant", "code_verifier is required.")
        expected = derive_challenge(code_verifier, record.code_challenge_method)
        if not constant_time_equal(expected, record.code_challenge):
            raise OAuthError(400, "invalid_grant", "PKCE verification failed.")

    if _store.consume_code(code) is None:
        raise OAuthError(400, "invalid_grant", "Invalid authorization code.")

    pair = _store.issue_token_pair(record.client_id, record.scope)
    return _token_response(pair, record.scope)


def _grant_client_credentials(params: dict[str, str], client_id: str) -> JSONResponse:
    scope = params.get("scope") or None
    pair = _store.issue_token_pair(client_id, scope, with_refresh=False)
    return _token_response(pair, scope)


def _grant_refresh_token(params: dict[str, str], client_id: str) -> JSONResponse:
    refresh_token = params.get("refresh_token")
    if not refresh_token:
        raise OAuthError(400, "invalid_request", "refresh_token is required.")

    record = _store.lookup_refresh_token(refresh_token)
    if record is None or record.client_id != client_id:
        raise OAuthError(400, "invalid_grant", "Invalid refresh_token.")

    if _config.rotate_refresh_tokens:
        _store.delete_refresh_token(refresh_token)

    pair = _store.issue_token_pair(record.client_id, record.scope)
    return _token_response(pair, record.scope)


_GRANT_HANDLERS = {
    "authorization_code": _grant_authorization_code,
    "client_credentials": _grant_client_credentials,
    "refresh_token": _grant_refresh_token,
}


@router.post("/oauth/token")
async def token(request: Request):
    """OAuth 2.0 Token Endpoint."""
    _purge_expired()
    params = await _read_token_params(request)

    basic = parse_basic_auth(request.headers.get("authorization"))
    if basic:
        client_id, client_secret = basic
    else:
        client_id, client_secret = params.get("client_id"), params.get("client_secret")

    if not _validate_client(client_id, client_secret):
        logger.info(f"[TOKEN] Client authentication failed for: {client_id}")
        raise OAuthError(401, "invalid_client", headers={"WWW-Authenticate": "Basic"})

    grant_type = params.get("grant_type")
    logger.debug(f"[TOKEN] grant_type: {grant_type}, client_id: {client_id}")
    if not grant_type:
        raise OAuthError(400, "invalid_request", "grant_type is required.")

    handler = _GRANT_HANDLERS.get(grant_type)
    if handler is None:
        raise OAuthError(400, "unsupported_grant_type", "Unsupported grant_type.")
    return handler(params, client_id)

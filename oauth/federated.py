"""Federated login through Microsoft Entra ID (OIDC authorization code + PKCE).

The provider authenticates the user; this server then issues its own opaque
authorization code, so MCP clients never see provider tokens:

1. /oauth/authorize stores a pending request keyed by a fresh ``state`` and
   redirects to the provider with our own nonce and S256 challenge.
2. The provider redirects back to /oauth/entra/callback with ``code``.
3. The code is exchanged server-to-server, the id_token is verified (signature,
   issuer, audience, nonce) and a local authorization code is minted.
"""

import logging
from typing import Optional

import httpx
from fastapi import Request
from fastapi.responses import Response

from config import FederatedConfig
from oauth.adapters import AuthorizationAdapter, build_redirect_url, redirect, redirect_with_error
from oauth.errors import OAuthError
from oauth.jwt_utils import IdTokenError, find_signing_key, token_key_id, verify_id_token
from oauth.middleware import get_issuer
from oauth.pkce import STATE_BYTES, generate_pkce_pair, random_token
from oauth.stores import AuthorizationRequest, PendingAuthorization, TokenStore

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/entra/callback"


class FederatedError(Exception):
    """Token exchange with the provider failed; carries an OAuth error code."""

    def __init__(self, error: str, description: Optional[str] = None):
        super().__init__(description or error)
        self.error = error
        self.description = description


class FederatedAuthorizationAdapter(AuthorizationAdapter):
    """Delegate user authentication to Entra ID, then issue a local code."""

    name = "federated"

    def __init__(
        self,
        config: FederatedConfig,
        store: TokenStore,
        base_url: str = "",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.store = store
        self.base_url = base_url
        self._transport = transport
        self._jwks: Optional[dict] = None

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=self.config.http_timeout_seconds,
            transport=self._transport,
        )

    def _require_config(self) -> None:
        error = self.config.validate()
        if error:
            logger.error(f"[ENTRA] Federated login misconfigured: {error}")
            raise OAuthError(500, "server_error", error)

    def redirect_uri(self, request: Request) -> str:
        if self.config.redirect_uri:
            return self.config.redirect_uri
        return f"{get_issuer(request, self.base_url)}{CALLBACK_PATH}"

    def build_authorize_url(self, request: Request, state: str, code_challenge: str, nonce: str) -> str:
        return build_redirect_url(self.config.authorize_endpoint, {
            "client_id": self.config.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri(request),
            "response_mode": "query",
            "scope": " ".join(self.config.scopes),
            "state": state,
            "nonce": nonce,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        })

    # ============== Authorization ==============

    async def authorize(self, request: Request, context: AuthorizationRequest) -> Response:
        self._require_config()

        state = random_token(STATE_BYTES)
        nonce = random_token(STATE_BYTES)
        code_verifier, code_challenge = generate_pkce_pair()

        self.store.save_pending(state, PendingAuthorization(
            **context.model_dump(),
            expires_at=self.store.now() + self.config.state_ttl_seconds,
            nonce=nonce,
            code_verifier=code_verifier,
        ))

        logger.info(f"[ENTRA] Redirecting client {context.client_id} to identity provider")
        return redirect(self.build_authorize_url(request, state, code_challenge, nonce))

    # ============== Provider calls ==============

    async def exchange_code(self, request: Request, code: str, code_verifier: str) -> str:
        """Redeem the provider code and return its id_token."""
        form = {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri(request),
            "code_verifier": code_verifier,
        }
        if self.config.scopes:
            form["scope"] = " ".join(self.config.scopes)

        try:
            async with self._http_client() as client:
                response = await client.post(self.config.token_endpoint, data=form)
        except httpx.HTTPError as e:
            logger.warning(f"[ENTRA] Token endpoint unreachable: {e}")
            raise FederatedError("server_error", "Failed to reach Entra token endpoint.")

        try:
            payload = response.json()
        except ValueError:
            raise FederatedError("server_error", "Invalid token response.")
        if not isinstance(payload, dict):
            raise FederatedError("server_error", "Invalid token response.")

        if not response.is_success:
            logger.info(f"[ENTRA] Token exchange rejected: {payload.get('error')}")
            raise FederatedError(
                payload.get("error") or "access_denied",
                payload.get("error_description") or "Token exchange failed.",
            )

        id_token = payload.get("id_token")
        if not id_token:
            raise FederatedError("server_error", "Missing id_token from Entra.")
        return id_token

    async def fetch_jwks(self, refresh: bool = False) -> dict:
        if self._jwks is not None and not refresh:
            return self._jwks
        try:
            async with self._http_client() as client:
                response = await client.get(self.config.jwks_url)
                response.raise_for_status()
                jwks = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[ENTRA] Could not fetch signing keys: {e}")
            raise FederatedError("server_error", "Failed to fetch Entra signing keys.")
        if not isinstance(jwks, dict):
            logger.warning("[ENTRA] Signing key document is not a JSON object")
            raise FederatedError("server_error", "Failed to fetch Entra signing keys.")
        self._jwks = jwks
        return jwks

    async def verify(self, id_token: str, nonce: str) -> dict:
        key_id = token_key_id(id_token)
        signing_key = find_signing_key(await self.fetch_jwks(), key_id)
        if signing_key is None:
            # Keys rotate; retry once against a fresh document
            signing_key = find_signing_key(await self.fetch_jwks(refresh=True), key_id)
        if signing_key is None:
            raise IdTokenError("Invalid id_token.")

        return verify_id_token(
            id_token,
            signing_key,
            issuer=self.config.issuer,
            audience=self.config.client_id,
            nonce=nonce,
        )

    # ============== Callback ==============

    async def callback(self, request: Request) -> Response:
        self._require_config()
        params = request.query_params

        error = params.get("error")
        state = params.get("state")
        if error:
            description = params.get("error_description")
            pending = self.store.lookup_pending(state)
            if pending is not None:
                self.store.delete_pending(state)
                logger.info(f"[ENTRA] Provider returned error: {error}")
                return redirect_with_error(pending.redirect_uri, error, description, pending.client_state)
            raise OAuthError(400, error, description)

        code = params.get("code")
        if not state or not code:
            raise OAuthError(400, "invalid_request", "code and state are required.")

        pending = self.store.lookup_pending(state)
        if pending is None:
            raise OAuthError(400, "invalid_request", "Unknown or expired state.")

        try:
            id_token = await self.exchange_code(request, code, pending.code_verifier)
            claims = await self.verify(id_token, pending.nonce)
        except (FederatedError, IdTokenError) as e:
            self.store.delete_pending(state)
            logger.info(f"[ENTRA] Federated login failed: {e.error} ({e.description})")
            return redirect_with_error(pending.redirect_uri, e.error, e.description, pending.client_state)

        self.store.delete_pending(state)
        local_code = self.store.issue_code(pending)
        logger.info(f"[ENTRA] User authenticated: {claims.get('preferred_username') or claims.get('sub')}")
        return redirect(build_redirect_url(pending.redirect_uri, {
            "code": local_code,
            "state": pending.client_state,
        }))

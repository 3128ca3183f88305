"""In-memory stores for OAuth sessions.

A single ``TokenStore`` instance is created by the app factory and handed to the
OAuth endpoints, the federated adapter and the /mcp bridge. Everything lives in
process memory; a restart drops every code, token and pending login.
"""

import logging
import threading
import time
from typing import Callable, Optional

from pydantic import BaseModel

from oauth.pkce import CODE_BYTES, TOKEN_BYTES, random_token

logger = logging.getLogger(__name__)


class AuthorizationRequest(BaseModel):
    """Normalized /authorize parameters handed to an authentication adapter."""

    client_id: str
    redirect_uri: str
    scope: Optional[str] = None
    client_state: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None


class AuthorizationCode(BaseModel):
    client_id: str
    redirect_uri: str
    scope: Optional[str] = None
    code_challenge: Optional[str] = None
    code_challenge_method: Optional[str] = None
    expires_at: float


class AccessToken(BaseModel):
    client_id: str
    scope: Optional[str] = None
    expires_at: float


class RefreshToken(BaseModel):
    client_id: str
    scope: Optional[str] = None
    expires_at: float
    access_token: str


class PendingAuthorization(AuthorizationRequest):
    """A federated login waiting for the identity provider callback."""

    expires_at: float
    nonce: str
    code_verifier: str


class TokenPair(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: int


class TokenStore:
    """Codes, tokens and pending federated logins, keyed by their opaque value.

    Lookups never return an expired record: one found during lookup is deleted
    and ``None`` is returned. ``purge_expired`` sweeps every map and is called at
    the top of each OAuth and /mcp request instead of running a background task.
    """

    def __init__(
        self,
        code_ttl: int = 600,
        token_ttl: int = 3600,
        refresh_ttl: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        self.code_ttl = code_ttl
        self.token_ttl = token_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock
        self._lock = threading.RLock()

        self.authorization_codes: dict[str, AuthorizationCode] = {}
        self.access_tokens: dict[str, AccessToken] = {}
        self.refresh_tokens: dict[str, RefreshToken] = {}
        self.pending_authorizations: dict[str, PendingAuthorization] = {}

    def now(self) -> float:
        return self._clock()

    def is_expired(self, expires_at: float) -> bool:
        return expires_at <= self._clock()

    # ============== Issuance ==============

    def issue_code(self, request: AuthorizationRequest) -> str:
        """Mint a single-use authorization code bound to ``request``."""
        code = random_token(CODE_BYTES)
        record = AuthorizationCode(
            client_id=request.client_id,
            redirect_uri=request.redirect_uri,
            scope=request.scope,
            code_challenge=request.code_challenge,
            code_challenge_method=request.code_challenge_method,
            expires_at=self._clock() + self.code_ttl,
        )
        with self._lock:
            self.authorization_codes[code] = record
        logger.debug(f"[TOKEN] Authorization code issued for client: {request.client_id}")
        return code

    def issue_token_pair(
        self,
        client_id: str,
        scope: Optional[str] = None,
        with_refresh: bool = True,
    ) -> TokenPair:
        """Mint an access token and, unless ``with_refresh`` is False, a refresh token."""
        access_token = random_token(TOKEN_BYTES)
        now = self._clock()
        refresh_token = None

        with self._lock:
            self.access_tokens[access_token] = AccessToken(
                client_id=client_id,
                scope=scope,
                expires_at=now + self.token_ttl,
            )
            if with_refresh:
                refresh_token = random_token(TOKEN_BYTES)
                self.refresh_tokens[refresh_token] = RefreshToken(
                    client_id=client_id,
                    scope=scope,
                    expires_at=now + self.refresh_ttl,
                    access_token=access_token,
                )

        logger.info(f"[TOKEN] Access token issued for client: {client_id}")
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=self.token_ttl,
        )

    def save_pending(self, state: str, record: PendingAuthorization) -> None:
        with self._lock:
            self.pending_authorizations[state] = record

    # ============== Lookup ==============

    def _lookup(self, table: dict, key: Optional[str]):
        if not key:
            return None
        with self._lock:
            record = table.get(key)
            if record is None:
                return None
            if self.is_expired(record.expires_at):
                del table[key]
                return None
            return record

    def lookup_code(self, code: Optional[str]) -> Optional[AuthorizationCode]:
        return self._lookup(self.authorization_codes, code)

    def lookup_access_token(self, token: Optional[str]) -> Optional[AccessToken]:
        return self._lookup(self.access_tokens, token)

    def lookup_refresh_token(self, token: Optional[str]) -> Optional[RefreshToken]:
        return self._lookup(self.refresh_tokens, token)

    def lookup_pending(self, state: Optional[str]) -> Optional[PendingAuthorization]:
        return self._lookup(self.pending_authorizations, state)

    # ============== Removal ==============

    def consume_code(self, code: str) -> Optional[AuthorizationCode]:
        """Remove and return a code; ``None`` if another request consumed it first."""
        with self._lock:
            return self.authorization_codes.pop(code, None)

    def delete_refresh_token(self, token: str) -> None:
        with self._lock:
            self.refresh_tokens.pop(token, None)

    def delete_pending(self, state: str) -> None:
        with self._lock:
            self.pending_authorizations.pop(state, None)

    def purge_expired(self) -> int:
        """Drop every expired record across all maps. Returns the number removed."""
        removed = 0
        with self._lock:
            for table in (
                self.authorization_codes,
                self.access_tokens,
                self.refresh_tokens,
                self.pending_authorizations,
            ):
                expired = [key for key, record in table.items() if self.is_expired(record.expires_at)]
                for key in expired:
                    del table[key]
                removed += len(expired)
        if removed:
            logger.debug(f"[TOKEN] Purged {removed} expired records")
        return removed

"""Authentication adapters for the /authorize endpoint.

An adapter decides how the end user is authenticated once the request itself
has been validated. ``local`` trusts the configured client and issues a code
straight away; ``federated`` (see ``oauth.federated``) sends the user to an
external identity provider first.
"""

import logging
import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from fastapi import Request
from fastapi.responses import RedirectResponse, Response

from oauth.stores import AuthorizationRequest, TokenStore

logger = logging.getLogger(__name__)


def build_redirect_url(url: str, params: dict[str, Optional[str]]) -> str:
    """Set query parameters on ``url``, replacing any existing values; ``None`` values are skipped."""
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    for key, value in params.items():
        if value is not None:
            query[key] = value
    return urlunsplit(parts._replace(query=urlencode(query)))


def redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url=url, status_code=302)


def redirect_with_error(
    redirect_uri: str,
    error: str,
    description: Optional[str] = None,
    state: Optional[str] = None,
) -> RedirectResponse:
    return redirect(build_redirect_url(redirect_uri, {
        "error": error,
        "error_description": description,
        "state": state,
    }))


def normalize_redirect_uri(uri: str) -> str:
    """Collapse duplicate path separators and strip trailing slashes."""
    parts = urlsplit(uri)
    path = re.sub(r"/{2,}", "/", parts.path).rstrip("/")
    return urlunsplit(parts._replace(path=path))


def is_allowed_redirect_uri(uri: str, allowed: list[str]) -> bool:
    if uri in allowed:
        return True
    normalized = normalize_redirect_uri(uri)
    return any(normalize_redirect_uri(candidate) == normalized for candidate in allowed)


class AuthorizationAdapter:
    """Strategy invoked by /authorize after the request has been validated."""

    name = "base"

    async def authorize(self, request: Request, context: AuthorizationRequest) -> Response:
        raise NotImplementedError

    def purge_expired(self) -> None:
        """Hook for adapters holding their own state; the shared store is purged separately."""


class LocalAuthorizationAdapter(AuthorizationAdapter):
    """Issue the authorization code immediately; the client credential is the only gate."""

    name = "local"

    def __init__(self, store: TokenStore):
        self.store = store

    async def authorize(self, request: Request, context: AuthorizationRequest) -> Response:
        code = self.store.issue_code(context)
        logger.info(f"[AUTH] Local authorization granted for client: {context.client_id}")
        return redirect(build_redirect_url(context.redirect_uri, {
            "code": code,
            "state": context.client_state,
        }))

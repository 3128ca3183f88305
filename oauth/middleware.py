"""Bearer-token checks for the /mcp endpoint.

Access tokens are opaque values looked up in the shared ``TokenStore``; an
expired token is indistinguishable from an unknown one.
"""

import logging
import re
from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from oauth.stores import AccessToken, TokenStore

logger = logging.getLogger(__name__)

_BEARER_RE = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)


def get_issuer(request: Request, base_url: str = "") -> str:
    """Externally visible base URL of this server.

    The configured base URL wins; otherwise it is rebuilt from the
    X-Forwarded-Proto / X-Forwarded-Host headers, then Host.
    """
    if base_url:
        return base_url.rstrip("/")
    protocol = request.headers.get("x-forwarded-proto") or request.url.scheme
    host = request.headers.get("x-forwarded-host") or request.headers.get("host") or request.url.netloc
    return f"{protocol}://{host}"


def extract_bearer_token(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    match = _BEARER_RE.match(header.strip())
    if not match:
        return None
    return match.group(1).strip()


def validate_bearer(request: Request, store: TokenStore) -> Optional[AccessToken]:
    """Return the access token record for the request's bearer token, or None."""
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        logger.info("[AUTH] Request rejected: no Bearer token")
        return None

    record = store.lookup_access_token(token)
    if record is None:
        logger.info("[AUTH] Request rejected: invalid or expired token")
        return None
    return record


def unauthorized_response(issuer: str, error_description: str) -> JSONResponse:
    """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
    return JSONResponse(
        {"error": "unauthorized", "error_description": error_description},
        status_code=401,
        headers={
            "WWW-Authenticate": f'Bearer resource_metadata="{issuer}/.well-known/oauth-protected-resource"'
        },
    )

"""OAuth error responses (RFC 6749 section 5.2)."""

from typing import Optional

from fastapi import Request
from fastapi.responses import JSONResponse

NO_STORE_HEADERS = {
    "Cache-Control": "no-store",
    "Pragma": "no-cache",
}


class OAuthError(Exception):
    """An OAuth protocol error rendered as ``{error, error_description?}``."""

    def __init__(
        self,
        status_code: int,
        error: str,
        description: Optional[str] = None,
        headers: Optional[dict[str, str]] = None,
    ):
        super().__init__(description or error)
        self.status_code = status_code
        self.error = error
        self.description = description
        self.headers = headers or {}


def oauth_error_response(
    status_code: int,
    error: str,
    description: Optional[str] = None,
    headers: Optional[dict[str, str]] = None,
) -> JSONResponse:
    body = {"error": error}
    if description:
        body["error_description"] = description
    return JSONResponse(
        body,
        status_code=status_code,
        headers={**NO_STORE_HEADERS, **(headers or {})},
    )


async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    return oauth_error_response(exc.status_code, exc.error, exc.description, exc.headers)

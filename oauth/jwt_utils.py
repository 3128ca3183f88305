"""JWT utilities for identity tokens issued by a federated provider.

Validation uses PyJWT against a JWKS document fetched by the caller, so the
network side (and its timeout) stays with the adapter.
"""

import logging
from typing import Optional

import jwt

logger = logging.getLogger(__name__)

# Clock skew tolerated on exp/nbf/iat, in seconds
ID_TOKEN_LEEWAY_SECONDS = 5


class IdTokenError(Exception):
    """The id_token failed verification; carries an OAuth error code."""

    def __init__(self, description: str, error: str = "invalid_grant"):
        super().__init__(description)
        self.error = error
        self.description = description


def token_key_id(token: str) -> Optional[str]:
    """Return the ``kid`` header of an unverified JWT, or None."""
    try:
        return jwt.get_unverified_header(token).get("kid")
    except jwt.PyJWTError:
        return None


def find_signing_key(jwks: dict, key_id: Optional[str]) -> Optional[jwt.PyJWK]:
    """Pick the key matching ``key_id`` from a JWKS document.

    Without a ``kid`` the first usable key is returned.
    """
    try:
        key_set = jwt.PyJWKSet.from_dict(jwks)
    except jwt.PyJWTError as e:
        logger.warning(f"[JWT] Unusable key set: {e}")
        return None

    for key in key_set.keys:
        if key_id is None or key.key_id == key_id:
            return key
    return None


def verify_id_token(
    token: str,
    signing_key: jwt.PyJWK,
    issuer: str,
    audience: str,
    nonce: str,
    leeway: int = ID_TOKEN_LEEWAY_SECONDS,
) -> dict:
    """Verify signature, issuer, audience, expiry and nonce of an id_token.

    Returns:
        The decoded claims.

    Raises:
        IdTokenError: if any check fails.
    """
    try:
        claims = jwt.decode(
            token,
            signing_key.key,
            algorithms=[signing_key.algorithm_name],
            audience=audience,
            issuer=issuer,
            leeway=leeway,
            options={"require": ["exp", "iss", "aud"]},
        )
    except jwt.ExpiredSignatureError:
        logger.debug("[JWT] id_token expired")
        raise IdTokenError("Invalid id_token.")
    except jwt.PyJWTError as e:
        logger.debug(f"[JWT] Invalid id_token: {e}")
        raise IdTokenError("Invalid id_token.")

    if claims.get("nonce") != nonce:
        raise IdTokenError("Nonce mismatch.")

    return claims

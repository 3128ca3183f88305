"""PKCE and token-generation helpers.

Shared by the authorization endpoints, the token store and the federated adapter.
"""

import base64
import hashlib
import hmac
import secrets
from typing import Optional

# Default random lengths in bytes
CODE_BYTES = 24
TOKEN_BYTES = 32
STATE_BYTES = 18
VERIFIER_BYTES = 48


def base64url(data: bytes) -> str:
    """URL-safe base64 without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def random_token(byte_length: int = TOKEN_BYTES) -> str:
    """Return a URL-safe random string carrying ``byte_length`` bytes of entropy."""
    return base64url(secrets.token_bytes(byte_length))


def derive_challenge(verifier: str, method: Optional[str] = None) -> str:
    """Derive a PKCE code challenge from a verifier (RFC 7636).

    ``S256`` hashes the verifier; ``plain``, a missing method and any unknown
    method return the verifier unchanged. Passing unknown methods through is a
    permissive policy: a stricter server would reject them at /authorize.
    """
    if method == "S256":
        return base64url(hashlib.sha256(verifier.encode("utf-8")).digest())
    return verifier


def constant_time_equal(a: str, b: str) -> bool:
    """Compare two strings without short-circuiting on the first difference.

    Unequal lengths return False immediately, which leaks length only.
    """
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        return False
    return hmac.compare_digest(a_bytes, b_bytes)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate an S256 (code_verifier, code_challenge) pair."""
    verifier = random_token(VERIFIER_BYTES)
    return verifier, derive_challenge(verifier, "S256")

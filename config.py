"""Config management for the MCP bridge.

Settings come from the process environment, optionally seeded from a ``.env``
file in the working directory. ``Config`` wraps the raw mapping and exposes
typed properties; nothing is cached, so tests can build one from a plain dict.
"""
import os
import re
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

AUTH_ADAPTERS = ("local", "federated")
DEFAULT_AUTHORITY_HOST = "https://login.microsoftonline.com"
DEFAULT_ENTRA_SCOPES = ["openid", "profile", "email"]


def _split_list(value: Optional[str], fallback: list[str], separator: str = r"[\s,]+") -> list[str]:
    raw = (value or "").strip()
    if not raw:
        return list(fallback)
    return [entry.strip() for entry in re.split(separator, raw) if entry.strip()]


class _EnvView:
    """Typed accessors over a string mapping."""

    def __init__(self, data: Mapping[str, str] = None):
        self.data = dict(data or {})

    def _str(self, key: str, default: str = "") -> str:
        value = self.data.get(key)
        if value is None:
            return default
        return value.strip()

    def _bool(self, key: str, default: bool = False) -> bool:
        value = self.data.get(key)
        if value is None or not value.strip():
            return default
        return value.strip().lower() == "true"

    def _int(self, key: str, default: int) -> int:
        value = self.data.get(key)
        if value is None or not value.strip():
            return default
        try:
            return int(value.strip(), 10)
        except ValueError:
            raise ValueError(f"{key} must be an integer, got {value!r}")

    def _ttl(self, key: str, default: int) -> int:
        value = self._int(key, default)
        if value <= 0:
            raise ValueError(f"{key} must be positive, got {value}")
        return value


class FederatedConfig(_EnvView):
    """Microsoft Entra ID (OIDC) provider settings."""

    @property
    def tenant_id(self) -> str:
        return self._str("ENTRA_TENANT_ID")

    @property
    def client_id(self) -> str:
        return self._str("ENTRA_CLIENT_ID")

    @property
    def client_secret(self) -> str:
        return self._str("ENTRA_CLIENT_SECRET")

    @property
    def redirect_uri(self) -> str:
        return self._str("ENTRA_REDIRECT_URI")

    @property
    def scopes(self) -> list[str]:
        return _split_list(self.data.get("ENTRA_SCOPES"), DEFAULT_ENTRA_SCOPES)

    @property
    def authority_host(self) -> str:
        return (self._str("ENTRA_AUTHORITY_HOST") or DEFAULT_AUTHORITY_HOST).rstrip("/")

    @property
    def state_ttl_seconds(self) -> int:
        return self._ttl("ENTRA_STATE_TTL_SECONDS", 600)

    @property
    def http_timeout_seconds(self) -> int:
        return self._ttl("ENTRA_HTTP_TIMEOUT_SECONDS", 10)

    @property
    def authority_base(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}/oauth2/v2.0"

    @property
    def authorize_endpoint(self) -> str:
        return f"{self.authority_base}/authorize"

    @property
    def token_endpoint(self) -> str:
        return f"{self.authority_base}/token"

    @property
    def issuer(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}/v2.0"

    @property
    def jwks_url(self) -> str:
        return f"{self.authority_host}/{self.tenant_id}/discovery/v2.0/keys"

    def validate(self) -> Optional[str]:
        """Return a description of the first missing setting, or None."""
        if not self.tenant_id:
            return "ENTRA_TENANT_ID is required."
        if not self.client_id:
            return "ENTRA_CLIENT_ID is required."
        if not self.client_secret:
            return "ENTRA_CLIENT_SECRET is required."
        return None


class Config(_EnvView):
    """Configuration container."""

    # ---- HTTP server ----

    @property
    def host(self) -> str:
        return self._str("HOST", "0.0.0.0")

    @property
    def port(self) -> int:
        return self._int("PORT", 8787)

    @property
    def base_url(self) -> str:
        return self._str("BASE_URL").rstrip("/")

    @property
    def cors_allow_origin(self) -> str:
        return self._str("CORS_ALLOW_ORIGIN", "*")

    # ---- Backend process ----

    @property
    def cli_command(self) -> str:
        return self._str("MCP_CLI_CMD", "mcp-stdio-server")

    @property
    def cli_working_dir(self) -> Optional[str]:
        return self._str("MCP_CLI_CWD") or None

    @property
    def cli_trace_stdout(self) -> bool:
        return self._bool("MCP_CLI_TRACE_STDOUT")

    @property
    def cli_timeout_seconds(self) -> int:
        return self._ttl("MCP_CLI_TIMEOUT_SECONDS", 30)

    # ---- OAuth ----

    @property
    def require_auth(self) -> bool:
        return self._bool("MCP_REQUIRE_AUTH")

    @property
    def client_id(self) -> str:
        return self._str("OAUTH_CLIENT_ID", "mcp-client")

    @property
    def client_secret(self) -> str:
        return self._str("OAUTH_CLIENT_SECRET", "mcp-secret")

    @property
    def redirect_uris(self) -> list[str]:
        return _split_list(
            self.data.get("OAUTH_REDIRECT_URIS"),
            ["http://localhost:3000/callback"],
            separator=",",
        )

    @property
    def code_ttl_seconds(self) -> int:
        return self._ttl("OAUTH_CODE_TTL_SECONDS", 600)

    @property
    def token_ttl_seconds(self) -> int:
        return self._ttl("OAUTH_TOKEN_TTL_SECONDS", 3600)

    @property
    def refresh_ttl_seconds(self) -> int:
        return self._ttl("OAUTH_REFRESH_TTL_SECONDS", 86400)

    @property
    def rotate_refresh_tokens(self) -> bool:
        return self._bool("OAUTH_ROTATE_REFRESH_TOKENS")

    @property
    def auth_adapter(self) -> str:
        value = self._str("OAUTH_AUTH_ADAPTER", "local").lower()
        if value == "entra":
            return "federated"
        if value not in AUTH_ADAPTERS:
            raise ValueError(f"OAUTH_AUTH_ADAPTER must be one of {', '.join(AUTH_ADAPTERS)}, got {value!r}")
        return value

    @property
    def federated(self) -> FederatedConfig:
        return FederatedConfig(self.data)

    # ---- Logging ----

    @property
    def log_level(self) -> str:
        return self._str("LOG_LEVEL", "INFO").upper()

    @property
    def log_json(self) -> bool:
        return self._str("LOG_FORMAT", "plain").lower() == "json"

    def validate(self) -> None:
        """Touch every typed property so malformed values fail at startup."""
        for name in (
            "port", "cli_timeout_seconds", "code_ttl_seconds", "token_ttl_seconds",
            "refresh_ttl_seconds", "auth_adapter",
        ):
            getattr(self, name)
        if self.auth_adapter == "federated":
            federated = self.federated
            for name in ("state_ttl_seconds", "http_timeout_seconds"):
                getattr(federated, name)


def load_config(env: Mapping[str, str] = None, env_file: Optional[Path] = None) -> Config:
    """Load config from the environment.

    When ``env`` is None, ``.env`` (or ``env_file``) is loaded into ``os.environ``
    first without overriding variables that are already set.
    """
    if env is None:
        path = Path(env_file) if env_file else Path(".env")
        if path.exists():
            load_dotenv(path)
        env = os.environ
    config = Config(env)
    config.validate()
    return config

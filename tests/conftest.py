import pytest

from config import Config
from oauth.stores import TokenStore

CLIENT_ID = "mcp-client"
CLIENT_SECRET = "mcp-secret"
REDIRECT_URI = "http://localhost:3000/callback"


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock) -> TokenStore:
    return TokenStore(code_ttl=600, token_ttl=3600, refresh_ttl=86400, clock=clock)


@pytest.fixture
def make_config():
    """Build a ``Config`` from explicit env values on top of test defaults."""

    def factory(**env) -> Config:
        data = {
            "OAUTH_CLIENT_ID": CLIENT_ID,
            "OAUTH_CLIENT_SECRET": CLIENT_SECRET,
            "OAUTH_REDIRECT_URIS": REDIRECT_URI,
        }
        data.update(env)
        return Config(data)

    return factory

import base64
import hashlib

from oauth.pkce import (
    base64url,
    constant_time_equal,
    derive_challenge,
    generate_pkce_pair,
    random_token,
)


class TestDeriveChallenge:
    def test_s256_matches_rfc7636_example(self):
        # Arrange
        verifier = "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk"

        # Act
        challenge = derive_challenge(verifier, "S256")

        # Assert
        assert challenge == "E9Melhoa2OwvFrEMTJguCHaoeK1t8URWbuGJSstw-cM"

    def test_s256_is_base64url_sha256_without_padding(self):
        verifier = "some-verifier-value"

        expected = base64.urlsafe_b64encode(
            hashlib.sha256(verifier.encode("utf-8")).digest()
        ).decode("ascii").rstrip("=")

        assert derive_challenge(verifier, "S256") == expected
        assert derive_challenge(verifier, "S256") == derive_challenge(verifier, "S256")
        assert "=" not in expected

    def test_plain_missing_and_unknown_methods_pass_through(self):
        assert derive_challenge("abc", "plain") == "abc"
        assert derive_challenge("abc", None) == "abc"
        assert derive_challenge("abc", "S512") == "abc"


class TestRandomTokens:
    def test_random_token_is_url_safe_and_unpadded(self):
        token = random_token(32)

        assert len(token) == 43
        assert set(token) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_")

    def test_random_tokens_are_unique(self):
        tokens = {random_token(24) for _ in range(50)}

        assert len(tokens) == 50

    def test_generate_pkce_pair(self):
        # Act
        verifier, challenge = generate_pkce_pair()

        # Assert RFC 7636 length bounds
        assert 43 <= len(verifier) <= 128
        assert challenge == derive_challenge(verifier, "S256")

    def test_base64url(self):
        assert base64url(b"\xfb\xff") == "-_8"


class TestConstantTimeEqual:
    def test_equal_strings(self):
        assert constant_time_equal("mcp-secret", "mcp-secret")

    def test_different_strings_of_same_length(self):
        assert not constant_time_equal("mcp-secret", "mcp-secreT")

    def test_different_lengths(self):
        assert not constant_time_equal("short", "much longer value")

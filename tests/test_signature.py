"""Unit tests for token header decoding and signature verification."""

from __future__ import annotations

from typing import Any

import pytest
from conftest import b64url_encode, make_unsigned_jwt, sign_token, tamper_signature

from idtoken.certs import load_signing_key
from idtoken.exceptions import SignatureError
from idtoken.signature import SIGNING_ALGORITHM, decode_header, verify_signature


@pytest.fixture
def key_a(cert_a: str):
    """Signing key loaded from certificate A."""
    return load_signing_key("123", cert_a)


@pytest.fixture
def key_b(cert_b: str):
    """Signing key loaded from certificate B."""
    return load_signing_key("321", cert_b)


# ─────────────────────────────────────────────────────────────────────────────
# decode_header
# ─────────────────────────────────────────────────────────────────────────────


class TestDecodeHeader:
    """Tests for unverified header decoding."""

    def test_decodes_signed_token_header(self, token: str) -> None:
        """Returns alg and kid of a real token."""
        header = decode_header(token)
        assert header["alg"] == "RS256"
        assert header["kid"] == "123"

    def test_rejects_two_segments(self) -> None:
        """Rejects a token with only 2 parts."""
        with pytest.raises(SignatureError, match="expected 3 segments"):
            decode_header("part1.part2")

    def test_rejects_plain_string(self) -> None:
        """Rejects a non-JWT string."""
        with pytest.raises(SignatureError):
            decode_header("whatever")

    def test_rejects_empty_segment(self) -> None:
        """Rejects a token with an empty segment."""
        with pytest.raises(SignatureError):
            decode_header("a..c")

    def test_rejects_non_json_header(self) -> None:
        """Rejects a header that is not JSON."""
        bad = b64url_encode(b"not json")
        with pytest.raises(SignatureError, match="Malformed token header"):
            decode_header(f"{bad}.e30.c2ln")

    def test_rejects_non_object_header(self) -> None:
        """Rejects a header that is a JSON array."""
        bad = b64url_encode(b'["RS256"]')
        with pytest.raises(SignatureError, match="JSON object"):
            decode_header(f"{bad}.e30.c2ln")

    def test_rejects_non_string_token(self) -> None:
        """Rejects bytes or None instead of a string."""
        with pytest.raises(SignatureError, match="must be a string"):
            decode_header(None)  # type: ignore[arg-type]

    @pytest.mark.parametrize("kid", [[1], {"a": 1}, 123, True])
    def test_rejects_non_string_kid(self, payload: dict[str, Any], kid: Any) -> None:
        """A kid that is not a string is a malformed header."""
        token = make_unsigned_jwt({"alg": "RS256", "kid": kid}, payload)
        with pytest.raises(SignatureError, match="kid must be a string") as exc_info:
            decode_header(token)
        assert exc_info.value.details == {"kid": kid}

    def test_null_kid_allowed(self, payload: dict[str, Any]) -> None:
        """A null kid counts as absent."""
        token = make_unsigned_jwt({"alg": "RS256", "kid": None}, payload)
        assert decode_header(token)["kid"] is None


# ─────────────────────────────────────────────────────────────────────────────
# verify_signature
# ─────────────────────────────────────────────────────────────────────────────


class TestVerifySignature:
    """Tests for cryptographic verification."""

    def test_valid_signature_returns_claims(self, token: str, key_a, payload: dict[str, Any]) -> None:
        """Returns the decoded claims as a plain dict."""
        claims = verify_signature(token, key_a)
        assert type(claims) is dict
        assert claims == payload

    def test_does_not_validate_claims(self, rsa_key_a, key_a) -> None:
        """Expired or foreign claims still decode at this stage."""
        token = sign_token(rsa_key_a, {"iss": "https://accounts.fake.com", "exp": 1})
        claims = verify_signature(token, key_a)
        assert claims["iss"] == "https://accounts.fake.com"

    def test_wrong_key_fails(self, token: str, key_b) -> None:
        """Fails when verified against another certificate."""
        with pytest.raises(SignatureError, match="signature verification failed"):
            verify_signature(token, key_b)

    def test_tampered_signature_fails(self, token: str, key_a) -> None:
        """Fails when signature bytes are mutated."""
        with pytest.raises(SignatureError):
            verify_signature(tamper_signature(token), key_a)

    def test_tampered_payload_fails(self, token: str, key_a, payload: dict[str, Any]) -> None:
        """Fails when claims are swapped under the original signature."""
        head, _, signature = token.split(".")
        forged = b64url_encode(f'{{"aud": "evil", "exp": {payload["exp"]}}}'.encode())
        with pytest.raises(SignatureError):
            verify_signature(f"{head}.{forged}.{signature}", key_a)

    @pytest.mark.parametrize("alg", ["HS256", "none", "RS512", "ES256"])
    def test_rejects_other_algorithms(self, key_a, payload: dict[str, Any], alg: str) -> None:
        """Only RS256 is accepted, whatever the header says."""
        token = make_unsigned_jwt({"alg": alg, "kid": "123"}, payload)
        with pytest.raises(SignatureError, match="Unsupported token algorithm") as exc_info:
            verify_signature(token, key_a)
        assert exc_info.value.details == {"alg": alg}

    def test_rejects_missing_algorithm(self, key_a, payload: dict[str, Any]) -> None:
        """Rejects a header without alg."""
        token = make_unsigned_jwt({"kid": "123"}, payload)
        with pytest.raises(SignatureError, match="Unsupported token algorithm"):
            verify_signature(token, key_a)

    def test_rs512_signed_token_rejected(self, rsa_key_a, key_a, payload: dict[str, Any]) -> None:
        """A genuinely signed RS512 token is still rejected."""
        token = sign_token(rsa_key_a, payload, alg="RS512")
        with pytest.raises(SignatureError):
            verify_signature(token, key_a)

    def test_malformed_payload(self, key_a) -> None:
        """Garbage payload is reported as SignatureError."""
        head = b64url_encode(b'{"alg": "RS256", "kid": "123"}')
        with pytest.raises(SignatureError):
            verify_signature(f"{head}.!!!invalid!!!.c2ln", key_a)

    def test_algorithm_constant(self) -> None:
        """Provider signs with RS256."""
        assert SIGNING_ALGORITHM == "RS256"

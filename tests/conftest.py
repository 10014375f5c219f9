"""Shared pytest fixtures for the idtoken test suite."""

from __future__ import annotations

import base64
import json
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import MagicMock

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat
from cryptography.x509.oid import NameOID

# pylint: disable=redefined-outer-name

ISSUER = "https://accounts.google.com"
AUDIENCE = "123456789.apps.googleusercontent.com"
CLIENT_ID = "123456789.apps.googleusercontent.com"
CERTS_URI = "https://www.googleapis.com/oauth2/v1/certs"
NOW = 1_700_000_000.0


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def b64url_encode(data: bytes) -> str:
    """Encode bytes to base64url without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("utf-8")


def make_unsigned_jwt(header: dict[str, Any], payload: dict[str, Any]) -> str:
    """Create a JWT-like string (header.payload.signature) for structure tests."""
    h = b64url_encode(json.dumps(header).encode())
    p = b64url_encode(json.dumps(payload).encode())
    s = b64url_encode(b"fake-signature-bytes")
    return f"{h}.{p}.{s}"


def key_to_pem(private_key: Any) -> bytes:
    """Serialize a private key to PEM bytes for authlib."""
    return private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())


def make_certificate(private_key: Any, common_name: str = "Test") -> str:
    """Create a self-signed PEM certificate for the key."""
    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "BE"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test"),
            x509.NameAttribute(NameOID.COMMON_NAME, common_name),
        ]
    )
    now = datetime.now(timezone.utc)
    cert = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(private_key, hashes.SHA256())
    )
    return cert.public_bytes(Encoding.PEM).decode("utf-8")


def sign_token(
    private_key: Any,
    claims: dict[str, Any],
    *,
    kid: str | None = "123",
    alg: str = "RS256",
) -> str:
    """Create a real signed JWT using authlib."""
    from authlib.jose import jwt

    header: dict[str, Any] = {"alg": alg, "typ": "JWT"}
    if kid is not None:
        header["kid"] = kid
    token_bytes: bytes = jwt.encode(header, claims, key_to_pem(private_key))
    return token_bytes.decode("utf-8")


def tamper_signature(token: str) -> str:
    """Flip the first character of the signature segment."""
    head, payload, signature = token.split(".")
    first = "B" if signature[0] == "A" else "A"
    return f"{head}.{payload}.{first}{signature[1:]}"


def certs_response(body: Any, status_code: int = 200) -> httpx.Response:
    """Build a certificate endpoint response."""
    request = httpx.Request("GET", CERTS_URI)
    if isinstance(body, (dict, list)):
        return httpx.Response(status_code, json=body, request=request)
    return httpx.Response(status_code, text=body, request=request)


class FakeClock:
    """Controllable time source."""

    def __init__(self, now: float = NOW) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# ─────────────────────────────────────────────────────────────────────────────
# Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def rsa_key_a() -> rsa.RSAPrivateKey:
    """RSA key behind certificate A (kid 123)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def rsa_key_b() -> rsa.RSAPrivateKey:
    """RSA key behind certificate B (kid 321)."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def cert_a(rsa_key_a: rsa.RSAPrivateKey) -> str:
    """Self-signed PEM certificate for key A."""
    return make_certificate(rsa_key_a, "Test A")


@pytest.fixture(scope="session")
def cert_b(rsa_key_b: rsa.RSAPrivateKey) -> str:
    """Self-signed PEM certificate for key B."""
    return make_certificate(rsa_key_b, "Test B")


@pytest.fixture(scope="session")
def ec_cert() -> str:
    """Self-signed certificate holding an EC key."""
    return make_certificate(ec.generate_private_key(ec.SECP256R1()), "Test EC")


@pytest.fixture
def certs_body(cert_a: str, cert_b: str) -> dict[str, str]:
    """Certificate endpoint body in ``{kid: PEM}`` form."""
    return {"123": cert_a, "321": cert_b}


@pytest.fixture
def clock() -> FakeClock:
    """Time source frozen at NOW."""
    return FakeClock()


@pytest.fixture
def payload(clock: FakeClock) -> dict[str, Any]:
    """Claims of a token valid for ten more seconds."""
    return {
        "exp": int(clock.now) + 10,
        "iss": ISSUER,
        "aud": AUDIENCE,
        "cid": CLIENT_ID,
        "sub": "12345",
        "email": "test@gmail.com",
        "provider_id": "google.com",
        "verified": True,
    }


@pytest.fixture
def token(rsa_key_a: rsa.RSAPrivateKey, payload: dict[str, Any]) -> str:
    """Token signed by key A with kid 123."""
    return sign_token(rsa_key_a, payload)


@pytest.fixture
def make_http_client() -> Callable[..., MagicMock]:
    """Build a mock httpx.Client answering GETs with the given responses in order.

    The last response is repeated once the list is exhausted. Exceptions in
    the list are raised instead of returned.
    """

    def _make(*responses: httpx.Response | Exception) -> MagicMock:
        queue = list(responses)
        client = MagicMock(spec=httpx.Client)

        def mock_get(url: str, **kwargs: Any) -> httpx.Response:
            item = queue.pop(0) if len(queue) > 1 else queue[0]
            if isinstance(item, Exception):
                raise item
            return item

        client.get = MagicMock(side_effect=mock_get)
        return client

    return _make


@pytest.fixture
def http_client(make_http_client: Callable[..., MagicMock], certs_body: dict[str, str]) -> MagicMock:
    """Mock httpx.Client serving certificates A and B."""
    return make_http_client(certs_response(certs_body))


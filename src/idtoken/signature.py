"""Signature verification for compact JWS identity tokens.

Only ``RS256`` is accepted, whatever the token header declares. Claims
returned here are decoded but not validated yet.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from typing import TYPE_CHECKING, Any

from authlib.jose import JsonWebToken
from authlib.jose.errors import BadSignatureError, JoseError

from idtoken.exceptions import SignatureError

if TYPE_CHECKING:
    from idtoken.certs import SigningKey

logger = logging.getLogger(__name__)

#: Algorithm published by the provider for id_token signatures.
SIGNING_ALGORITHM = "RS256"

_jwt = JsonWebToken([SIGNING_ALGORITHM])


def decode_header(token: str) -> dict[str, Any]:
    """Decode the header segment of a token without verifying it.

    Args:
        token: Compact JWS string (``header.payload.signature``).

    Returns:
        The decoded header (``alg``, ``kid``, ...).

    Raises:
        SignatureError: If the token is not three base64url segments, the
            header is not a JSON object, or its ``kid`` is not a string.
    """
    parts = _split(token)
    try:
        header = json.loads(_b64url_decode(parts[0]))
    except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
        raise SignatureError(f"Malformed token header: {exc}") from exc

    if not isinstance(header, dict):
        raise SignatureError("Malformed token header: expected a JSON object")
    kid = header.get("kid")
    if kid is not None and not isinstance(kid, str):
        raise SignatureError("Malformed token header: kid must be a string", details={"kid": kid})
    return header


def verify_signature(token: str, key: SigningKey) -> dict[str, Any]:
    """Verify the token signature against one signing key.

    Args:
        token: Compact JWS string.
        key: Candidate signing key.

    Returns:
        Decoded claims as a plain dict.

    Raises:
        SignatureError: On malformed encoding, absent or unsupported
            algorithm, or signature mismatch.
    """
    header = decode_header(token)
    alg = header.get("alg")
    if alg != SIGNING_ALGORITHM:
        raise SignatureError(
            f"Unsupported token algorithm: {alg!r} (expected {SIGNING_ALGORITHM})",
            details={"alg": alg},
        )

    try:
        claims = _jwt.decode(token, key.public_key)
    except BadSignatureError as exc:
        logger.debug("Signature mismatch for kid=%s", key.kid)
        raise SignatureError("Token signature verification failed", details={"kid": key.kid}) from exc
    except (JoseError, ValueError) as exc:
        raise SignatureError(f"Malformed token: {exc}") from exc

    return dict(claims)


def _split(token: str) -> list[str]:
    """Split a compact token into its three segments."""
    if not isinstance(token, str):
        raise SignatureError(f"Token must be a string, got {type(token).__name__}")

    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise SignatureError(f"Malformed token: expected 3 segments, got {len(parts)}")
    return parts


def _b64url_decode(data: str) -> bytes:
    """Decode base64url-encoded data with padding fix.

    Args:
        data: Base64url-encoded string.

    Returns:
        Decoded bytes.
    """
    padding = 4 - len(data) % 4
    if padding != 4:
        data += "=" * padding
    return base64.urlsafe_b64decode(data)


__all__ = [
    "SIGNING_ALGORITHM",
    "decode_header",
    "verify_signature",
]

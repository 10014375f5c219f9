"""Identity token validation.

Verify identity tokens issued by an identity provider (Google by default):
signature against the provider's published certificates, then issuer,
expiration, audience and authorized party.

Example:
    >>> from idtoken import Validator  # doctest: +SKIP
    >>> validator = Validator()  # doctest: +SKIP
    >>> claims = validator.check(token, "123.apps.googleusercontent.com")  # doctest: +SKIP
"""

from __future__ import annotations

from idtoken.certs import CertificateStore, SigningKey, load_signing_key
from idtoken.claims import GOOGLE_ISSUERS, ClaimsValidator
from idtoken.config import ValidatorConfig, load_config
from idtoken.exceptions import (
    AudienceMismatchError,
    CertificateError,
    ClaimsError,
    ClientIDMismatchError,
    ConfigurationError,
    ExpiredTokenError,
    IDTokenError,
    InvalidIssuerError,
    SignatureError,
)
from idtoken.meta import __version__
from idtoken.signature import decode_header, verify_signature
from idtoken.validator import Validator

__all__ = [
    "GOOGLE_ISSUERS",
    "AudienceMismatchError",
    "CertificateError",
    "CertificateStore",
    "ClaimsError",
    "ClaimsValidator",
    "ClientIDMismatchError",
    "ConfigurationError",
    "ExpiredTokenError",
    "IDTokenError",
    "InvalidIssuerError",
    "SignatureError",
    "SigningKey",
    "Validator",
    "ValidatorConfig",
    "__version__",
    "decode_header",
    "load_config",
    "load_signing_key",
    "verify_signature",
]

"""Exceptions raised while validating identity tokens.

Exception hierarchy::

    IDTokenError
        ConfigurationError (invalid configuration, also ValueError)
        CertificateError (signing certificates unavailable)
        SignatureError (malformed token or bad signature)
        ClaimsError (base for semantic claim failures)
            InvalidIssuerError
            ExpiredTokenError
            AudienceMismatchError
            ClientIDMismatchError
"""

from __future__ import annotations

from typing import Any


class IDTokenError(Exception):
    """Base exception for all idtoken errors.

    Attributes:
        message: Human-readable error message.
        details: Additional error context as key-value pairs.

    Examples:
        >>> raise IDTokenError("Something went wrong", details={"kid": "123"})
        Traceback (most recent call last):
        ...
        idtoken.exceptions.IDTokenError: Something went wrong
    """

    def __init__(
        self,
        message: str,
        *,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize IDTokenError.

        Args:
            message: Human-readable error message.
            details: Additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(IDTokenError, ValueError):
    """Validator configuration is invalid."""


class CertificateError(IDTokenError):
    """Signing certificates could not be fetched, parsed or matched.

    Attributes:
        kid: Key identifier being resolved, if any.
    """

    def __init__(
        self,
        message: str,
        *,
        kid: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize CertificateError.

        Args:
            message: Human-readable error message.
            kid: Key identifier being resolved.
            details: Additional error context.
        """
        merged = dict(details or {})
        if kid is not None:
            merged.setdefault("kid", kid)
        super().__init__(message, details=merged)
        self.kid = kid


class SignatureError(IDTokenError):
    """Token is malformed or its signature does not verify."""


class ClaimsError(IDTokenError):
    """Base exception for claim validation failures.

    Attributes:
        claim: Name of the claim that failed.
        actual: Value found in the token.
        expected: Value(s) the caller accepts.
    """

    claim: str = ""

    def __init__(self, message: str, *, actual: Any = None, expected: Any = None) -> None:
        """Initialize ClaimsError.

        Args:
            message: Human-readable error message.
            actual: Value found in the token.
            expected: Value(s) the caller accepts.
        """
        super().__init__(
            message,
            details={"claim": self.claim, "actual": actual, "expected": expected},
        )
        self.actual = actual
        self.expected = expected


class InvalidIssuerError(ClaimsError):
    """The ``iss`` claim is not one of the provider's issuers."""

    claim = "iss"


class ExpiredTokenError(ClaimsError):
    """The ``exp`` claim is missing or not in the future."""

    claim = "exp"


class AudienceMismatchError(ClaimsError):
    """The ``aud`` claim does not contain the expected audience."""

    claim = "aud"


class ClientIDMismatchError(ClaimsError):
    """The ``azp``/``cid`` claim does not match the expected client id."""

    claim = "azp"


__all__ = [
    "AudienceMismatchError",
    "CertificateError",
    "ClaimsError",
    "ClientIDMismatchError",
    "ConfigurationError",
    "ExpiredTokenError",
    "IDTokenError",
    "InvalidIssuerError",
    "SignatureError",
]

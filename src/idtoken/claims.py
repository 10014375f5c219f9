"""Semantic validation of decoded token claims.

Checks run in a fixed order (issuer, expiration, audience, client id) so the
most security-critical failure is reported first.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from idtoken.exceptions import (
    AudienceMismatchError,
    ClientIDMismatchError,
    ExpiredTokenError,
    InvalidIssuerError,
)

logger = logging.getLogger(__name__)

#: Issuer values used by Google in id_tokens.
GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")

Audience = str | Iterable[str]


class ClaimsValidator:
    """Validates issuer, expiration, audience and authorized party.

    Stateless apart from the accepted issuers, so one instance may be shared
    between threads.

    Args:
        issuers: Accepted ``iss`` values.
    """

    def __init__(self, issuers: Iterable[str] = GOOGLE_ISSUERS) -> None:
        self._issuers = frozenset(issuers)

    @property
    def issuers(self) -> frozenset[str]:
        """Accepted issuer values."""
        return self._issuers

    def validate(
        self,
        claims: Mapping[str, Any],
        expected_audience: Audience,
        expected_client_id: str | None = None,
        *,
        now: float,
    ) -> dict[str, Any]:
        """Validate claims and return a normalized copy.

        Args:
            claims: Decoded token claims.
            expected_audience: Accepted audience value or values.
            expected_client_id: Expected ``azp``/``cid``; None skips the check.
            now: Current time (epoch seconds).

        Returns:
            A new dict with ``azp`` and ``cid`` filled from each other.

        Raises:
            InvalidIssuerError: ``iss`` is not an accepted issuer.
            ExpiredTokenError: ``exp`` is missing or not after ``now``.
            AudienceMismatchError: ``aud`` holds none of the expected values.
            ClientIDMismatchError: ``azp``/``cid`` absent or different.
        """
        check_issuer(claims, self._issuers)
        check_expiration(claims, now)
        check_audience(claims, expected_audience)
        if expected_client_id is not None:
            check_client_id(claims, expected_client_id)
        return normalize_client_claims(claims)


def check_issuer(claims: Mapping[str, Any], issuers: frozenset[str]) -> None:
    """Validate the ``iss`` claim."""
    iss = claims.get("iss")
    if iss not in issuers:
        logger.warning("Rejected token from issuer %r", iss)
        raise InvalidIssuerError(
            f"Token issuer {iss!r} is not accepted",
            actual=iss,
            expected=sorted(issuers),
        )


def check_expiration(claims: Mapping[str, Any], now: float) -> None:
    """Validate the ``exp`` claim (strictly in the future)."""
    exp = claims.get("exp")
    # NaN and infinity decode from JSON and never compare as expired
    if isinstance(exp, bool) or not isinstance(exp, (int, float)) or not _is_finite(exp):
        raise ExpiredTokenError(f"Token has no valid expiration: exp={exp!r}", actual=exp, expected=now)
    if exp <= now:
        raise ExpiredTokenError(f"Token expired at {format_timestamp(exp)}", actual=exp, expected=now)


def check_audience(claims: Mapping[str, Any], expected: Audience) -> None:
    """Validate the ``aud`` claim against one or more accepted values."""
    aud = claims.get("aud")
    accepted = [expected] if isinstance(expected, str) else list(expected)
    present = aud if isinstance(aud, list) else [aud]

    if not any(value in accepted for value in present if isinstance(value, str)):
        raise AudienceMismatchError(
            f"Token audience {aud!r} does not match {_describe(accepted)}",
            actual=aud,
            expected=expected if isinstance(expected, str) else accepted,
        )


def check_client_id(claims: Mapping[str, Any], expected: str) -> None:
    """Validate ``azp``, or the legacy ``cid`` when ``azp`` is absent."""
    azp = claims.get("azp")
    actual = azp if azp is not None else claims.get("cid")

    if actual is None:
        raise ClientIDMismatchError("Token has neither azp nor cid claim", actual=None, expected=expected)
    if actual != expected:
        raise ClientIDMismatchError(
            f"Token client id {actual!r} does not match {expected!r}",
            actual=actual,
            expected=expected,
        )


def normalize_client_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    """Return a copy where ``azp`` and ``cid`` are filled from each other."""
    result = dict(claims)
    azp = result.get("azp")
    cid = result.get("cid")
    if azp is None and cid is not None:
        result["azp"] = cid
    elif cid is None and azp is not None:
        result["cid"] = azp
    return result


def format_timestamp(value: float) -> str:
    """Render epoch seconds as UTC ISO 8601, or the raw number when out of range."""
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc).isoformat()
    except (OverflowError, OSError, ValueError):
        return f"{value!r} (epoch seconds)"


def _is_finite(value: float) -> bool:
    # Arbitrarily large JSON integers cannot be converted to float
    return not isinstance(value, float) or math.isfinite(value)


def _describe(accepted: list[str]) -> str:
    if len(accepted) == 1:
        return repr(accepted[0])
    return "any of " + ", ".join(repr(v) for v in accepted)


__all__ = [
    "GOOGLE_ISSUERS",
    "ClaimsValidator",
    "check_audience",
    "check_client_id",
    "check_expiration",
    "check_issuer",
    "format_timestamp",
    "normalize_client_claims",
]

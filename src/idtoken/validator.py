"""Identity token validator.

Composes the certificate store, the signature verifier and the claims
validator behind a single ``check`` call.

Example:
    >>> from idtoken import Validator  # doctest: +SKIP
    >>> with Validator() as validator:  # doctest: +SKIP
    ...     claims = validator.check(token, "123.apps.googleusercontent.com")
    >>> claims["email"]  # doctest: +SKIP
    'user@gmail.com'
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable
from pathlib import Path
from types import TracebackType
from typing import Any

import httpx

from idtoken.certs import CertificateStore, KeyMaterial
from idtoken.claims import Audience, ClaimsValidator
from idtoken.config import ValidatorConfig, load_config
from idtoken.exceptions import IDTokenError
from idtoken.signature import decode_header, verify_signature

logger = logging.getLogger(__name__)


class Validator:
    """Validates provider-issued identity tokens.

    One instance is meant to live for the whole process and may be shared
    between threads. Certificates are fetched on first use and refreshed
    lazily.

    Args:
        config: Validator settings (defaults to Google's endpoint and issuers).
        static_certificate: Single certificate or public key to trust instead
            of fetching certificates. Overrides ``config.static_certificate``.
        refresh_interval: Staleness window override (seconds).
        http_client: httpx.Client for certificate fetches. When omitted, one is
            built with ``config.http_timeout`` and closed by ``close()``.
        clock: Current time provider (epoch seconds).

    Example:
        >>> validator = Validator(static_certificate=cert_pem)  # doctest: +SKIP
        >>> validator.check(token, "my-client-id")["sub"]  # doctest: +SKIP
        '12345'
    """

    def __init__(
        self,
        config: ValidatorConfig | None = None,
        *,
        static_certificate: KeyMaterial | None = None,
        refresh_interval: float | None = None,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        config = config or ValidatorConfig()
        if refresh_interval is not None:
            config = dataclasses.replace(config, refresh_interval=refresh_interval)
        if static_certificate is None:
            static_certificate = config.static_certificate

        self._config = config
        self._clock = clock
        self._owns_http = False

        if static_certificate is None and http_client is None:
            http_client = httpx.Client(timeout=config.http_timeout)
            self._owns_http = True
        self._http = http_client

        self._store = CertificateStore(
            http_client,
            certs_uri=config.certs_uri,
            refresh_interval=config.refresh_interval,
            min_refresh_interval=config.min_refresh_interval,
            static_certificate=static_certificate,
            clock=clock,
        )
        self._claims = ClaimsValidator(config.issuers)

    @classmethod
    def from_config_file(cls, path: str | Path, **kwargs: Any) -> Validator:
        """Create a validator from the ``idtoken`` section of a YAML file.

        Args:
            path: YAML configuration file.
            **kwargs: Extra constructor arguments (``http_client``, ``clock``...).

        Returns:
            A configured Validator.
        """
        return cls(load_config(path), **kwargs)

    @property
    def config(self) -> ValidatorConfig:
        """Effective configuration."""
        return self._config

    @property
    def store(self) -> CertificateStore:
        """Certificate store backing this validator."""
        return self._store

    def check(
        self,
        token: str,
        expected_audience: Audience,
        expected_client_id: str | None = None,
    ) -> dict[str, Any]:
        """Validate a token and return its claims.

        Stages run in order and the first failure aborts the call:
        header decode, key lookup, signature, claims.

        Args:
            token: Compact JWS identity token.
            expected_audience: Accepted audience value or values.
            expected_client_id: Expected authorized party; None skips the check.

        Returns:
            The claims, with ``azp`` and ``cid`` filled from each other.

        Raises:
            SignatureError: Malformed token or bad signature.
            CertificateError: Certificates unavailable or kid unknown.
            InvalidIssuerError: Unknown issuer.
            ExpiredTokenError: Token expired.
            AudienceMismatchError: Audience mismatch.
            ClientIDMismatchError: Authorized party mismatch.
        """
        try:
            header = decode_header(token)
            kid = header.get("kid")
            key = self._store.get_key(kid)
            claims = verify_signature(token, key)
            result = self._claims.validate(
                claims,
                expected_audience,
                expected_client_id,
                now=self._clock(),
            )
        except IDTokenError as exc:
            logger.warning("Token rejected (%s): %s", type(exc).__name__, exc.message)
            raise

        logger.debug("Token accepted: kid=%s sub=%s", kid, result.get("sub"))
        return result

    def close(self) -> None:
        """Close the HTTP client if this validator created it."""
        if self._owns_http and self._http is not None:
            self._http.close()

    def __enter__(self) -> Validator:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


__all__ = ["Validator"]

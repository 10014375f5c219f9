"""Signing certificate cache for the identity provider.

The ``CertificateStore`` resolves a token's key identifier (``kid``) to the
public key that signed it. Keys come either from a single statically injected
certificate or from the provider's published certificate endpoint, which is
fetched lazily and cached for ``refresh_interval`` seconds.

Example:
    >>> import httpx  # doctest: +SKIP
    >>> store = CertificateStore(httpx.Client(timeout=10))  # doctest: +SKIP
    >>> key = store.get_key("0a1b2c")  # doctest: +SKIP
    >>> key.fingerprint  # doctest: +SKIP
    '4f2e...'
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

import httpx
from authlib.jose import JsonWebKey
from authlib.jose.errors import JoseError
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric.rsa import RSAPublicKey
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    PublicFormat,
    load_pem_public_key,
)

from idtoken.exceptions import CertificateError

logger = logging.getLogger(__name__)

#: Provider endpoint publishing ``{kid: PEM certificate}``.
GOOGLE_CERTS_URI = "https://www.googleapis.com/oauth2/v1/certs"

#: Default staleness window for fetched certificates (seconds).
DEFAULT_REFRESH_INTERVAL = 3600.0

#: Minimum age of the cache before an unknown kid may force a refresh (seconds).
DEFAULT_MIN_REFRESH_INTERVAL = 60.0

#: Key identifier under which a static certificate is stored.
WILDCARD_KID = "*"

KeyMaterial = str | bytes | x509.Certificate | RSAPublicKey


@dataclass(frozen=True, slots=True)
class SigningKey:
    """Public key used to verify token signatures.

    Attributes:
        kid: Key identifier, or ``"*"`` for a static certificate.
        public_key: RSA public key.
        pem: PEM text the key was loaded from.
        fingerprint: SHA-256 of the DER SubjectPublicKeyInfo (hex).
    """

    kid: str
    public_key: RSAPublicKey
    pem: str
    fingerprint: str


def load_signing_key(kid: str, material: KeyMaterial) -> SigningKey:
    """Build a SigningKey from a certificate or public key.

    Args:
        kid: Key identifier to attach.
        material: PEM certificate or public key (str or bytes), a parsed
            ``x509.Certificate`` or an ``RSAPublicKey``.

    Returns:
        The loaded signing key.

    Raises:
        CertificateError: If the material cannot be parsed or is not RSA.
    """
    if isinstance(material, x509.Certificate):
        public_key: Any = material.public_key()
    elif isinstance(material, RSAPublicKey):
        public_key = material
    elif isinstance(material, (str, bytes)):
        raw = material.encode("utf-8") if isinstance(material, str) else material
        try:
            if b"CERTIFICATE" in raw:
                public_key = x509.load_pem_x509_certificate(raw).public_key()
            else:
                public_key = load_pem_public_key(raw)
        except ValueError as exc:
            raise CertificateError(f"Invalid certificate for kid={kid!r}: {exc}", kid=kid) from exc
    else:
        raise CertificateError(f"Unsupported key material type: {type(material).__name__}", kid=kid)

    if not isinstance(public_key, RSAPublicKey):
        raise CertificateError(
            f"Certificate for kid={kid!r} does not hold an RSA key ({type(public_key).__name__})",
            kid=kid,
        )

    pem_bytes = public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    der_bytes = public_key.public_bytes(Encoding.DER, PublicFormat.SubjectPublicKeyInfo)
    if isinstance(material, str):
        pem = material
    elif isinstance(material, bytes):
        pem = material.decode("utf-8")
    else:
        pem = pem_bytes.decode("utf-8")

    return SigningKey(
        kid=kid,
        public_key=public_key,
        pem=pem,
        fingerprint=hashlib.sha256(der_bytes).hexdigest(),
    )


def parse_certificates(body: Any) -> dict[str, SigningKey]:
    """Parse a certificate endpoint body into signing keys.

    Two shapes are understood: the ``{kid: PEM certificate}`` mapping and a
    JSON Web Key Set (``{"keys": [...]}``).

    Args:
        body: Decoded JSON body.

    Returns:
        Mapping of kid to SigningKey.

    Raises:
        CertificateError: If the body has the wrong shape or holds no key.
    """
    if not isinstance(body, dict):
        raise CertificateError(f"Certificate endpoint returned {type(body).__name__}, expected a JSON object")

    if isinstance(body.get("keys"), list):
        keys = _parse_jwks(body["keys"])
    else:
        keys = {}
        for kid, pem in body.items():
            if not isinstance(pem, str):
                raise CertificateError(f"Certificate for kid={kid!r} is not a PEM string", kid=kid)
            keys[kid] = load_signing_key(kid, pem)

    if not keys:
        raise CertificateError("Certificate endpoint returned no keys")
    return keys


def _parse_jwks(entries: list[Any]) -> dict[str, SigningKey]:
    """Convert RSA entries of a JWKS into signing keys."""
    keys: dict[str, SigningKey] = {}
    for entry in entries:
        if not isinstance(entry, dict) or entry.get("kty") != "RSA":
            continue
        kid = entry.get("kid")
        if not kid:
            logger.debug("Skipping JWKS entry without kid")
            continue
        try:
            public_key = JsonWebKey.import_key(entry).get_public_key()
        except (JoseError, ValueError) as exc:
            raise CertificateError(f"Invalid JWK for kid={kid!r}: {exc}", kid=kid) from exc
        keys[kid] = load_signing_key(kid, public_key)
    return keys


class CertificateStore:
    """Cache of provider signing keys, keyed by kid.

    Args:
        http_client: httpx.Client used to fetch ``certs_uri``.
        certs_uri: Provider certificate endpoint.
        refresh_interval: Seconds after which the cache is stale.
        min_refresh_interval: Minimum cache age before an unknown kid may
            trigger a refresh.
        static_certificate: Single pre-loaded certificate or public key. When
            given, the store never fetches and answers every lookup with it.
        clock: Current time provider (epoch seconds).

    Example:
        >>> store = CertificateStore(static_certificate=pem)  # doctest: +SKIP
        >>> store.get_key("anything").kid  # doctest: +SKIP
        '*'
    """

    def __init__(
        self,
        http_client: httpx.Client | None = None,
        *,
        certs_uri: str = GOOGLE_CERTS_URI,
        refresh_interval: float = DEFAULT_REFRESH_INTERVAL,
        min_refresh_interval: float = DEFAULT_MIN_REFRESH_INTERVAL,
        static_certificate: KeyMaterial | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if static_certificate is None and http_client is None:
            raise ValueError("http_client is required unless static_certificate is given")

        self._http = http_client
        self._certs_uri = certs_uri
        self._refresh_interval = refresh_interval
        self._min_refresh_interval = min_refresh_interval
        self._clock = clock
        self._lock = threading.Lock()
        self._last_refresh: float | None = None
        self._static = static_certificate is not None

        keys: dict[str, SigningKey] = {}
        if static_certificate is not None:
            keys[WILDCARD_KID] = load_signing_key(WILDCARD_KID, static_certificate)
            logger.debug("Certificate store seeded with static key %s", keys[WILDCARD_KID].fingerprint[:16])
        self._keys: Mapping[str, SigningKey] = MappingProxyType(keys)

    @property
    def is_static(self) -> bool:
        """Whether the store was seeded with a static certificate."""
        return self._static

    @property
    def keys(self) -> Mapping[str, SigningKey]:
        """Read-only snapshot of the cached keys."""
        return self._keys

    @property
    def last_refresh(self) -> float | None:
        """Time of the last successful refresh, or None."""
        return self._last_refresh

    @property
    def refresh_interval(self) -> float:
        """Staleness window in seconds."""
        return self._refresh_interval

    def is_stale(self, now: float | None = None) -> bool:
        """Whether the fetched keys have outlived the staleness window.

        A static store is never stale.
        """
        if self._static:
            return False
        if self._last_refresh is None:
            return True
        now = self._clock() if now is None else now
        return now - self._last_refresh >= self._refresh_interval

    def get_key(self, kid: str | None) -> SigningKey:
        """Resolve a key identifier to a signing key.

        Args:
            kid: Key identifier from the token header (may be None).

        Returns:
            The matching signing key.

        Raises:
            CertificateError: If certificates cannot be fetched or no key
                matches after the refresh policy has been applied.
        """
        if self._static:
            return self._keys[WILDCARD_KID]

        key = self._lookup(self._keys, kid)
        if key is not None and not self.is_stale():
            return key

        with self._lock:
            # Another thread may have refreshed while we waited
            now = self._clock()
            key = self._lookup(self._keys, kid)
            if self._needs_refresh(key is not None, now):
                self._refresh_locked(now)
                key = self._lookup(self._keys, kid)

        if key is None:
            available = sorted(self._keys)
            raise CertificateError(
                f"No certificate found for kid={kid!r}",
                kid=kid,
                details={"available_kids": available},
            )
        return key

    def refresh(self) -> Mapping[str, SigningKey]:
        """Fetch the certificate endpoint now, regardless of staleness.

        Returns:
            The new key snapshot.

        Raises:
            CertificateError: If the fetch fails or the store is static.
        """
        if self._static:
            raise CertificateError("Static certificate store cannot be refreshed")
        with self._lock:
            self._refresh_locked(self._clock())
        return self._keys

    def _needs_refresh(self, found: bool, now: float) -> bool:
        """Apply the refresh policy for one lookup."""
        last_refresh = self._last_refresh
        if last_refresh is None or self.is_stale(now):
            return True
        if found:
            return False
        age = now - last_refresh
        if age >= self._min_refresh_interval:
            logger.debug("Unknown kid, cache is %.0fs old: refreshing", age)
            return True
        logger.debug("Unknown kid, cache refreshed %.0fs ago: not refreshing", age)
        return False

    def _refresh_locked(self, now: float) -> None:
        """Fetch and replace the cached keys. Caller holds the lock."""
        if self._http is None:
            raise CertificateError("No HTTP client configured for certificate fetches")
        uri = self._certs_uri
        try:
            response = self._http.get(uri)
        except httpx.HTTPError as exc:
            logger.warning("Certificate fetch failed: %s", exc)
            raise CertificateError(f"Certificate fetch failed: {exc}", details={"uri": uri}) from exc

        if response.status_code != 200:
            logger.warning("Certificate fetch failed: HTTP %s from %s", response.status_code, uri)
            raise CertificateError(
                f"Certificate fetch failed: HTTP {response.status_code} from {uri}",
                details={"uri": uri, "status_code": response.status_code},
            )

        try:
            body = response.json()
        except ValueError as exc:
            logger.warning("Certificate endpoint returned invalid JSON")
            raise CertificateError(f"Certificate endpoint returned invalid JSON: {exc}", details={"uri": uri}) from exc

        keys = parse_certificates(body)
        self._keys = MappingProxyType(keys)
        self._last_refresh = now
        logger.info("Fetched %d signing certificate(s) from %s", len(keys), uri)

    @staticmethod
    def _lookup(keys: Mapping[str, SigningKey], kid: str | None) -> SigningKey | None:
        """Find a key by kid; without kid, use the only key if there is one."""
        if kid:
            return keys.get(kid)
        if len(keys) == 1:
            return next(iter(keys.values()))
        return None


__all__ = [
    "DEFAULT_MIN_REFRESH_INTERVAL",
    "DEFAULT_REFRESH_INTERVAL",
    "GOOGLE_CERTS_URI",
    "WILDCARD_KID",
    "CertificateStore",
    "SigningKey",
    "load_signing_key",
    "parse_certificates",
]

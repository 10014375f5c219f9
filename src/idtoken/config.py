"""Configuration for the token validator.

Settings can be built in code or loaded from the ``idtoken`` section of a
YAML file::

    idtoken:
      certs_uri: https://www.googleapis.com/oauth2/v1/certs
      issuers: [accounts.google.com, https://accounts.google.com]
      refresh_interval: 3600
      min_refresh_interval: 60
      http_timeout: 10
      static_certificate_file: ${IDTOKEN_CERT_FILE:-}

String values support ``${VAR}`` (required) and ``${VAR:-default}``
environment variable references.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from idtoken.certs import (
    DEFAULT_MIN_REFRESH_INTERVAL,
    DEFAULT_REFRESH_INTERVAL,
    GOOGLE_CERTS_URI,
)
from idtoken.claims import GOOGLE_ISSUERS
from idtoken.exceptions import ConfigurationError

log = logging.getLogger(__name__)

#: Top-level YAML key holding the validator settings.
CONFIG_SECTION = "idtoken"

# Pattern for environment variable substitution: ${VAR} or ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([a-zA-Z_][a-zA-Z0-9_]*)(?::-([^}]*))?\}")


def _expand_env_vars(value: str, source: str | None = None) -> str:
    """Expand environment variables in a string value.

    Args:
        value: String potentially containing ${VAR} patterns.
        source: Source file for error messages.

    Returns:
        String with environment variables expanded.

    Raises:
        ConfigurationError: If a required variable is not set.

    Examples:
        >>> os.environ["IDTOKEN_DOC_VAR"] = "hello"
        >>> _expand_env_vars("${IDTOKEN_DOC_VAR} world")
        'hello world'
        >>> _expand_env_vars("${IDTOKEN_MISSING:-default}")
        'default'
    """

    def replacer(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default_value = match.group(2)

        env_value = os.environ.get(var_name)
        if env_value is not None:
            return env_value
        if default_value is not None:
            return default_value

        where = f" (in {source})" if source else ""
        raise ConfigurationError(
            f"Environment variable '{var_name}' is not set{where}",
            details={"variable": var_name, "source": source},
        )

    return _ENV_VAR_PATTERN.sub(replacer, value)


def _expand_env_vars_recursive(data: Any, source: str | None = None) -> Any:
    """Recursively expand environment variables in config data."""
    if isinstance(data, dict):
        return {k: _expand_env_vars_recursive(v, source) for k, v in data.items()}
    if isinstance(data, list):
        return [_expand_env_vars_recursive(item, source) for item in data]
    if isinstance(data, str):
        return _expand_env_vars(data, source)
    return data


@dataclass(frozen=True, slots=True)
class ValidatorConfig:
    """Validator settings.

    Attributes:
        certs_uri: Provider certificate endpoint.
        issuers: Accepted ``iss`` claim values.
        refresh_interval: Seconds before fetched certificates are stale.
        min_refresh_interval: Minimum cache age before an unknown kid
            forces a refresh.
        http_timeout: Timeout for the HTTP client built by the validator.
        static_certificate: PEM certificate or public key. Disables fetching.

    Examples:
        >>> config = ValidatorConfig(refresh_interval=60)
        >>> config.refresh_interval
        60
        >>> ValidatorConfig(refresh_interval=0)
        Traceback (most recent call last):
        ...
        idtoken.exceptions.ConfigurationError: refresh_interval must be positive, got 0
    """

    certs_uri: str = GOOGLE_CERTS_URI
    issuers: tuple[str, ...] = GOOGLE_ISSUERS
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    min_refresh_interval: float = DEFAULT_MIN_REFRESH_INTERVAL
    http_timeout: float = 10.0
    static_certificate: str | None = None

    def __post_init__(self) -> None:
        """Validate config values."""
        if not self.certs_uri.startswith(("https://", "http://")):
            raise ConfigurationError(f"certs_uri must be an http(s) URL, got {self.certs_uri!r}")
        if not self.issuers:
            raise ConfigurationError("issuers must not be empty")
        for name in ("refresh_interval", "http_timeout"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigurationError(f"{name} must be positive, got {value}")
        if self.min_refresh_interval < 0:
            raise ConfigurationError(f"min_refresh_interval must not be negative, got {self.min_refresh_interval}")

    @classmethod
    def from_mapping(cls, data: dict[str, Any], *, base_dir: Path | None = None) -> ValidatorConfig:
        """Build a config from a plain mapping.

        Accepts the dataclass fields plus ``static_certificate_file``, a path
        (relative to ``base_dir``) read into ``static_certificate``.

        Args:
            data: Settings mapping.
            base_dir: Directory for relative certificate paths.

        Returns:
            The validated config.

        Raises:
            ConfigurationError: On unknown keys, bad types or values.
        """
        data = dict(data)
        cert_file = data.pop("static_certificate_file", None)
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown {CONFIG_SECTION} setting(s): {', '.join(unknown)}")

        if cert_file:
            if "static_certificate" in data:
                raise ConfigurationError("Use either static_certificate or static_certificate_file, not both")
            path = Path(cert_file)
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            try:
                data["static_certificate"] = path.read_text(encoding="utf-8")
            except OSError as exc:
                raise ConfigurationError(f"Cannot read static certificate {path}: {exc}") from exc
            log.debug("Loaded static certificate from %s", path)

        if "issuers" in data:
            issuers = data["issuers"]
            data["issuers"] = (issuers,) if isinstance(issuers, str) else tuple(issuers)

        for name in ("refresh_interval", "min_refresh_interval", "http_timeout"):
            if name in data:
                try:
                    data[name] = float(data[name])
                except (TypeError, ValueError) as exc:
                    raise ConfigurationError(f"{name} must be a number, got {data[name]!r}") from exc

        return cls(**data)


def load_config(path: str | Path) -> ValidatorConfig:
    """Load validator settings from a YAML file.

    Args:
        path: YAML file with an ``idtoken`` section.

    Returns:
        The validated config. A file without the section yields defaults.

    Raises:
        ConfigurationError: If the file is unreadable, not valid YAML, or
            holds invalid settings.
    """
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    raw = raw or {}
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")

    section = raw.get(CONFIG_SECTION) or {}
    if not isinstance(section, dict):
        raise ConfigurationError(f"'{CONFIG_SECTION}' section in {path} must be a mapping")

    log.debug("Loading validator config from %s", path)
    section = _expand_env_vars_recursive(section, str(path))
    return ValidatorConfig.from_mapping(section, base_dir=path.parent)


__all__ = [
    "CONFIG_SECTION",
    "ValidatorConfig",
    "load_config",
]

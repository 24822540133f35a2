"""Client configuration loaded from environment variables.

All configuration values have sensible defaults for a backend running on
``localhost:8000``. ``from_env()`` raises ``ConfigValidationError`` if any
numeric value is out of its valid range, so bad configuration is caught
at startup rather than on the first search.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from mapqld.core.constants import (
    DEFAULT_API_BASE,
    DEFAULT_BACKOFF_BASE_S,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_EXPORT_TIMEOUT_S,
    DEFAULT_RETRIES,
    DEFAULT_TIMEOUT_S,
    WGS84,
)
from mapqld.core.exceptions import PermanentError


class ConfigValidationError(PermanentError):
    """Raised when configuration values are out of valid range.

    Attributes:
        key: The configuration key that failed validation.
        value: The invalid value.
    """

    default_stage = "config"
    default_code = "CONFIG_VALIDATION_FAILED"

    def __init__(self, key: str, value: object, message: str) -> None:
        self.key = key
        self.value = value
        super().__init__(f"Invalid configuration {key}={value!r}: {message}")


@dataclass(frozen=True, slots=True)
class ClientConfig:
    """Immutable client configuration.

    Attributes:
        api_base: Backend origin, e.g. ``http://localhost:8000``.
        request_timeout_s: Per-attempt timeout for resolve/intersect/catalog calls.
        export_timeout_s: Per-attempt timeout for the KMZ export call.
        retries: Retries after the first attempt (total attempts = retries + 1).
        backoff_base_s: Base delay in seconds, doubled on every retry.
        debounce_ms: Quiet period after the last keystroke before searching.
        download_dir: Directory exported archives are written to.
        source_crs: CRS of backend geometry (reprojected to WGS 84 for rendering).
    """

    api_base: str = DEFAULT_API_BASE
    request_timeout_s: float = DEFAULT_TIMEOUT_S
    export_timeout_s: float = DEFAULT_EXPORT_TIMEOUT_S
    retries: int = DEFAULT_RETRIES
    backoff_base_s: float = DEFAULT_BACKOFF_BASE_S
    debounce_ms: int = DEFAULT_DEBOUNCE_MS
    download_dir: str = "."
    source_crs: str = WGS84

    @classmethod
    def from_env(cls) -> ClientConfig:
        """Load and validate configuration from ``MAPQLD_*`` environment variables.

        Raises:
            ConfigValidationError: If a numeric value is out of range
                or a required string value is empty.
            ValueError: If a numeric environment variable cannot be
                parsed (e.g. ``MAPQLD_RETRIES=abc``).
        """
        config = cls(
            api_base=os.getenv("MAPQLD_API_BASE", DEFAULT_API_BASE).rstrip("/"),
            request_timeout_s=float(os.getenv("MAPQLD_REQUEST_TIMEOUT_S", "20")),
            export_timeout_s=float(os.getenv("MAPQLD_EXPORT_TIMEOUT_S", "60")),
            retries=int(os.getenv("MAPQLD_RETRIES", "2")),
            backoff_base_s=float(os.getenv("MAPQLD_BACKOFF_BASE_S", "0.5")),
            debounce_ms=int(os.getenv("MAPQLD_DEBOUNCE_MS", "400")),
            download_dir=os.getenv("MAPQLD_DOWNLOAD_DIR", "."),
            source_crs=os.getenv("MAPQLD_SOURCE_CRS", WGS84),
        )
        validate_config(config)
        return config

    @property
    def debounce_s(self) -> float:
        """Debounce window in seconds."""
        return self.debounce_ms / 1000.0


def validate_config(config: ClientConfig) -> None:
    """Validate configuration ranges.  Raises ``ConfigValidationError``."""
    if not config.api_base:
        raise ConfigValidationError("MAPQLD_API_BASE", config.api_base, "must not be empty")

    if not config.api_base.startswith(("http://", "https://")):
        raise ConfigValidationError(
            "MAPQLD_API_BASE",
            config.api_base,
            "must be an http:// or https:// URL",
        )

    if config.request_timeout_s <= 0:
        raise ConfigValidationError(
            "MAPQLD_REQUEST_TIMEOUT_S",
            config.request_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.export_timeout_s <= 0:
        raise ConfigValidationError(
            "MAPQLD_EXPORT_TIMEOUT_S",
            config.export_timeout_s,
            "must be > 0 (seconds)",
        )

    if config.retries < 0:
        raise ConfigValidationError("MAPQLD_RETRIES", config.retries, "must be >= 0")

    if config.backoff_base_s < 0:
        raise ConfigValidationError(
            "MAPQLD_BACKOFF_BASE_S",
            config.backoff_base_s,
            "must be >= 0 (seconds)",
        )

    if config.debounce_ms < 0:
        raise ConfigValidationError(
            "MAPQLD_DEBOUNCE_MS",
            config.debounce_ms,
            "must be >= 0 (milliseconds)",
        )

    if not config.source_crs:
        raise ConfigValidationError("MAPQLD_SOURCE_CRS", config.source_crs, "must not be empty")

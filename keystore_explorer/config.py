"""
Runtime settings for the explorer, read from ``KEYSTORE_EXPLORER_*`` variables.
"""
import os
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Mapping, Optional

ENV_PREFIX = "KEYSTORE_EXPLORER_"

_KEYSTORE_FORMATS = ("JKS", "PKCS12")
_MAC_DIGESTS = ("sha1", "sha224", "sha256", "sha384", "sha512")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Settings:
    """Application settings with validated defaults."""

    # Container format tried when no provider claims a file by its extension
    default_keystore_format: str = "JKS"
    pkcs12_mac_iterations: int = 10000
    pkcs12_mac_digest: str = "sha256"
    log_level: str = "INFO"
    max_upload_mb: int = 16

    def __post_init__(self):
        if self.default_keystore_format not in _KEYSTORE_FORMATS:
            raise ValueError(
                f"default_keystore_format must be one of {', '.join(_KEYSTORE_FORMATS)}"
            )
        if not isinstance(self.pkcs12_mac_iterations, int) or self.pkcs12_mac_iterations < 1:
            raise ValueError("pkcs12_mac_iterations must be a positive integer")
        if self.pkcs12_mac_digest not in _MAC_DIGESTS:
            raise ValueError(f"pkcs12_mac_digest must be one of {', '.join(_MAC_DIGESTS)}")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        if not isinstance(self.max_upload_mb, int) or self.max_upload_mb < 1:
            raise ValueError("max_upload_mb must be a positive integer")

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from environment variables.

        Args:
            environ: Mapping to read instead of ``os.environ``

        Returns:
            Settings instance

        Raises:
            ValueError: If a variable holds an invalid value
        """
        environ = os.environ if environ is None else environ
        values = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw.strip() == "":
                continue
            raw = raw.strip()
            if field.type in (int, "int"):
                try:
                    values[field.name] = int(raw)
                except ValueError:
                    raise ValueError(f"{field.name} must be an integer, got {raw!r}") from None
            elif field.name == "pkcs12_mac_digest":
                values[field.name] = raw.lower()
            else:
                values[field.name] = raw.upper()
        return cls(**values)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, read from the environment once."""
    return Settings.from_env()

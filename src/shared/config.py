"""Environment-driven settings shared by every Lambda handler."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from .exceptions import ConfigurationError


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw == '':
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class Settings:
    """Resolved configuration values."""

    receipts_bucket: str
    receipts_table: str
    categories_table: Optional[str] = None
    openai_api_key: str = ''
    openai_model: str = 'gpt-4o'
    openai_base_url: str = 'https://api.openai.com/v1'
    extraction_timeout_seconds: int = 60
    extraction_max_attempts: int = 1
    signed_url_ttl_seconds: int = 600
    image_url_ttl_seconds: int = 3600
    default_currency: str = 'USD'
    orphan_grace_hours: int = 24

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> 'Settings':
        """
        Build settings from environment variables.

        Args:
            env: Mapping to read from (default: os.environ)

        Returns:
            Settings instance

        Raises:
            ConfigurationError: If a required variable is missing or malformed
        """
        if env is None:
            env = os.environ

        missing = [name for name in ('RECEIPTS_BUCKET', 'RECEIPTS_TABLE') if not env.get(name)]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")

        settings = cls(
            receipts_bucket=env['RECEIPTS_BUCKET'],
            receipts_table=env['RECEIPTS_TABLE'],
            categories_table=env.get('CATEGORIES_TABLE') or None,
            openai_api_key=env.get('OPENAI_API_KEY', ''),
            openai_model=env.get('OPENAI_MODEL') or 'gpt-4o',
            openai_base_url=(env.get('OPENAI_BASE_URL') or 'https://api.openai.com/v1').rstrip('/'),
            extraction_timeout_seconds=_int(env, 'EXTRACTION_TIMEOUT_SECONDS', 60),
            extraction_max_attempts=_int(env, 'EXTRACTION_MAX_ATTEMPTS', 1),
            signed_url_ttl_seconds=_int(env, 'SIGNED_URL_TTL_SECONDS', 600),
            image_url_ttl_seconds=_int(env, 'IMAGE_URL_TTL_SECONDS', 3600),
            default_currency=(env.get('DEFAULT_CURRENCY') or 'USD').upper(),
            orphan_grace_hours=_int(env, 'ORPHAN_GRACE_HOURS', 24)
        )

        if settings.extraction_max_attempts < 1:
            raise ConfigurationError("EXTRACTION_MAX_ATTEMPTS must be at least 1")
        if settings.extraction_timeout_seconds <= 0:
            raise ConfigurationError("EXTRACTION_TIMEOUT_SECONDS must be positive")

        return settings

    def require_categories_table(self) -> str:
        """Return the categories table name or fail loudly."""
        if not self.categories_table:
            raise ConfigurationError("Missing required settings: CATEGORIES_TABLE")
        return self.categories_table

"""
Configuration module for the Forward-Auth Gateway.

This module uses Pydantic Settings to load and validate process settings:
where the portal configuration document lives, which session cache to use,
where data-protection key material comes from, and how to bind the server.

Portal definitions themselves are NOT environment settings; they are read
from the YAML document at CONFIG_PATH by ``app.registry``.

Environment variables are loaded from .env file or system environment.
"""

from functools import lru_cache
from typing import List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Process settings loaded from environment variables.

    CONFIG_ENCRYPTION_KEY is deliberately absent: the secret codec reads it
    straight from the environment on every call.
    """

    # =========================================================================
    # Configuration Document
    # =========================================================================

    CONFIG_PATH: str = Field(
        default="/config/config.yaml",
        description="Path to the YAML portal configuration document",
        min_length=1,
    )

    # =========================================================================
    # Session Cache
    # =========================================================================

    REDIS_CONNECTION_STRING: Optional[str] = Field(
        None,
        description="Redis URL (redis://host:6379/0) or host:port; in-process cache when unset",
    )

    REDIS_INSTANCE_NAME: str = Field(
        default="FwdaForwardAuth:",
        description="Key prefix for every entry the gateway writes to Redis",
    )

    # =========================================================================
    # Data Protection (ticket and correlation encryption)
    # =========================================================================

    DATA_PROTECTION_KEY: Optional[str] = Field(
        None,
        description=(
            "Comma-separated urlsafe-base64 32-byte keys; the first protects new "
            "payloads, the rest are accepted for reading during rotation"
        ),
    )

    DP_KEYS_PATH: str = Field(
        default="/keys/dataprotection",
        description="Directory holding the generated key ring when DATA_PROTECTION_KEY is unset",
    )

    # =========================================================================
    # Identity Provider Communication
    # =========================================================================

    PROVIDER_TIMEOUT_SECONDS: float = Field(
        default=10.0,
        description="Timeout for discovery, JWKS, token and userinfo requests",
        gt=0,
        le=120,
    )

    JWKS_CACHE_SECONDS: int = Field(
        default=3600,
        description="Time to cache each provider's discovery document and JWKS in seconds",
        ge=60,
        le=86400,  # Max 24 hours
    )

    # =========================================================================
    # Server Configuration
    # =========================================================================

    LISTEN_ADDRESS: str = Field(
        default="0.0.0.0",
        description="Host to bind the gateway server",
    )

    LISTEN_PORT: int = Field(
        default=5005,
        description="Port to bind the gateway server",
        ge=1,
        le=65535,
    )

    LOG_LEVEL: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )

    ENVIRONMENT: str = Field(
        default="production",
        description="Deployment environment name, reported in startup logs",
    )

    # =========================================================================
    # Pydantic Settings Configuration
    # =========================================================================

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra env vars not defined here
    )

    # =========================================================================
    # Computed Properties
    # =========================================================================

    @property
    def data_protection_keys(self) -> List[str]:
        """
        Parse DATA_PROTECTION_KEY into an ordered key list.

        Returns:
            Keys with surrounding whitespace removed, current key first,
            or an empty list if not configured.
        """
        if not self.DATA_PROTECTION_KEY:
            return []

        return [
            key.strip()
            for key in self.DATA_PROTECTION_KEY.split(",")
            if key.strip()
        ]

    @property
    def uses_redis(self) -> bool:
        return bool(self.REDIS_CONNECTION_STRING)

    # =========================================================================
    # Validators
    # =========================================================================

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """
        Validate LOG_LEVEL is a standard logging level name.

        Raises:
            ValueError: If the level is not recognised
        """
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

        level = v.strip().upper()
        if level not in allowed_levels:
            raise ValueError(
                f"LOG_LEVEL must be one of {allowed_levels}, got: {v}"
            )

        return level


# =============================================================================
# Settings Singleton
# =============================================================================

@lru_cache()
def get_settings() -> Settings:
    """
    Get or create a singleton Settings instance.

    This function is cached so that the settings are loaded only once
    during the application lifecycle.

    Returns:
        Settings instance with all configuration loaded and validated.

    Raises:
        ValidationError: If an environment variable has an invalid value.

    Example:
        >>> from app.config import get_settings
        >>> settings = get_settings()
        >>> print(settings.CONFIG_PATH)
    """
    return Settings()


# =============================================================================
# Configuration Helpers
# =============================================================================

def validate_configuration(settings: Optional[Settings] = None) -> dict:
    """
    Validate process settings and return a status report.

    Called during application startup; errors are logged and warnings are
    informational.

    Returns:
        Dictionary with validation status and any warnings.

    Example:
        >>> status = validate_configuration()
        >>> if not status["valid"]:
        ...     print(status["errors"])
    """
    settings = settings or get_settings()
    errors = []
    warnings = []

    for key in settings.data_protection_keys:
        if len(key) != 44:
            errors.append(
                "DATA_PROTECTION_KEY entries must be urlsafe-base64 encoded 32-byte keys"
            )
            break

    if not settings.uses_redis:
        warnings.append(
            "REDIS_CONNECTION_STRING is not set; sessions live in process memory "
            "and are not shared between instances"
        )

    if not settings.data_protection_keys:
        warnings.append(
            f"DATA_PROTECTION_KEY is not set; using the key ring under {settings.DP_KEYS_PATH}"
        )

    return {
        "valid": len(errors) == 0,
        "errors": errors,
        "warnings": warnings,
        "config_path": settings.CONFIG_PATH,
        "cache": "redis" if settings.uses_redis else "memory",
    }


if __name__ == "__main__":
    """
    Validate the current environment:
        python -m app.config
    """
    status = validate_configuration()

    print("=" * 80)
    print("GATEWAY CONFIGURATION")
    print("=" * 80)
    print(f"  Config path:    {status['config_path']}")
    print(f"  Session cache:  {status['cache']}")

    if status["valid"]:
        print("\n✓ All critical checks passed!")
    else:
        print("\n✗ Configuration errors found:")
        for error in status["errors"]:
            print(f"  - {error}")

    if status["warnings"]:
        print("\n⚠ Warnings:")
        for warning in status["warnings"]:
            print(f"  - {warning}")

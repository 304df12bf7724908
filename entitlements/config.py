"""
Application Configuration - Pydantic Settings for type-safe config.

NO DICTIONARIES - All configuration is strongly typed.
FAIL FAST - Critical config is validated at startup.
"""

import sys

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when critical configuration is missing or invalid."""

    pass


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_title: str = "StoreKit Entitlements Demo"
    api_version: str = "0.1.0"
    api_description: str = "StoreKit purchases validated with iaptic"

    # iaptic validator - NO DEFAULT credentials
    iaptic_app_name: str = ""
    iaptic_public_key: str = ""
    iaptic_base_url: str = "https://validator.iaptic.com"
    iaptic_timeout: float = 30.0

    # App identity
    bundle_id: str = "com.example.storekit-demo"
    application_username: str = "demo_user"
    product_ids: list[str] = ["monthly_with_intro", "weekly_with_intro"]

    # Local StoreKit testing store
    storekit_environment: str = "xcode"  # xcode, sandbox or production
    storekit_config_path: str = ""  # Optional .storekit configuration file
    storekit_signing_key: str = "local-storekit-testing-signing-key-0001"
    storekit_ask_to_buy: bool = False

    # Entitlement flag persistence (empty = in-memory only)
    entitlement_state_path: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"  # json or console

    # Observability - Metrics
    metrics_enabled: bool = True
    service_name: str = "storekit-entitlements"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @model_validator(mode="after")
    def validate_critical_config(self) -> "Settings":
        """
        FAIL FAST: Validate critical configuration at startup.

        Without validator credentials no purchase can ever grant an
        entitlement, so the app refuses to start.
        """
        errors: list[str] = []

        if not self.iaptic_app_name:
            errors.append("IAPTIC_APP_NAME is required but empty or missing")
        if not self.iaptic_public_key:
            errors.append("IAPTIC_PUBLIC_KEY is required but empty or missing")
        if not self.iaptic_base_url.startswith(("http://", "https://")):
            errors.append(f"IAPTIC_BASE_URL must be an HTTP URL, got: {self.iaptic_base_url}")

        if self.storekit_environment.lower() not in ("xcode", "sandbox", "production"):
            errors.append(
                "STOREKIT_ENVIRONMENT must be 'xcode', 'sandbox' or 'production', "
                f"got: {self.storekit_environment}"
            )

        if not self.product_ids:
            errors.append("PRODUCT_IDS must list at least one product")

        if errors:
            error_msg = "\n".join(
                [
                    "",
                    "=" * 60,
                    "CRITICAL CONFIGURATION ERROR - APPLICATION CANNOT START",
                    "=" * 60,
                    *[f"  ✗ {e}" for e in errors],
                    "=" * 60,
                    "",
                ]
            )
            print(error_msg, file=sys.stderr)
            raise ConfigurationError(error_msg)

        return self


# Global settings instance - validates at import time
settings = Settings()


def get_settings() -> Settings:
    """Get application settings instance."""
    return settings

"""
iaptic validator models - Immutable dataclasses for validation results.

NO DICTIONARIES - All data uses strongly typed models.

The validator answers every validation call with the full collection of
purchases it knows for the application username; that collection is the
source of truth for the entitlement flag.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True)
class VerifiedPurchase:
    """A purchase the validator has verified and recorded."""

    id: str  # Product identifier, e.g. "apple:monthly_with_intro"
    purchase_id: str | None = None
    transaction_id: str | None = None
    platform: str | None = None
    purchase_date: datetime | None = None
    expiry_date: datetime | None = None
    is_expired: bool | None = None  # Absent for non-expiring purchases
    is_trial_period: bool | None = None
    is_intro_period: bool | None = None
    renewal_intent: str | None = None  # "Renew" or "Lapse"

    def is_active(self) -> bool:
        """A purchase counts as active unless the validator flagged it expired."""
        return not (self.is_expired or False)


@dataclass(frozen=True)
class ValidationResponse:
    """Result of a validation call."""

    is_valid: bool
    purchases: list[VerifiedPurchase] = field(default_factory=list)
    error_code: int | None = None
    error_message: str | None = None
    http_status: int | None = None


@dataclass(frozen=True)
class IapticConfig:
    """Configuration for the iaptic validator."""

    app_name: str
    public_key: str
    base_url: str = "https://validator.iaptic.com"
    timeout: float = 30.0

    @property
    def validate_url(self) -> str:
        """Get the validation endpoint URL."""
        return f"{self.base_url.rstrip('/')}/v1/validate"

    def __post_init__(self) -> None:
        """Validate configuration fields."""
        if not self.app_name:
            raise ValueError("iaptic app_name is required")
        if not self.public_key:
            raise ValueError("iaptic public_key is required")
        if self.timeout <= 0:
            raise ValueError(f"Timeout must be positive: {self.timeout}")

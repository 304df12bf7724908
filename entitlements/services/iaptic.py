"""
iaptic Validator Client.

NO DICTIONARIES - All data uses strongly typed models.

Sends StoreKit 2 signed transactions to the iaptic receipt validator and
keeps the collection of verified purchases it answers with.
https://www.iaptic.com/documentation/api/v1/validate
"""

from datetime import UTC, datetime

import httpx
from structlog import get_logger

from entitlements.exceptions import ValidationServiceError
from entitlements.models.iaptic import IapticConfig, ValidationResponse, VerifiedPurchase

logger = get_logger(__name__)


def parse_purchase_date(value: object) -> datetime | None:
    """Parse a validator date, given as epoch milliseconds or ISO-8601 text."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValueError(f"Invalid date value: {value!r}")
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        if value.isdigit():
            return datetime.fromtimestamp(int(value) / 1000, tz=UTC)
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    raise ValueError(f"Invalid date value: {value!r}")


def _optional_bool(value: object) -> bool | None:
    return None if value is None else bool(value)


def _optional_str(value: object) -> str | None:
    return None if value is None else str(value)


def parse_verified_purchase(data: dict) -> VerifiedPurchase:
    """Parse one entry of the validator's purchase collection."""
    return VerifiedPurchase(
        id=str(data["id"]),
        purchase_id=_optional_str(data.get("purchaseId")),
        transaction_id=_optional_str(data.get("transactionId")),
        platform=_optional_str(data.get("platform")),
        purchase_date=parse_purchase_date(data.get("purchaseDate")),
        expiry_date=parse_purchase_date(data.get("expiryDate")),
        is_expired=_optional_bool(data.get("isExpired")),
        is_trial_period=_optional_bool(data.get("isTrialPeriod")),
        is_intro_period=_optional_bool(data.get("isIntroPeriod")),
        renewal_intent=_optional_str(data.get("renewalIntent")),
    )


class IapticClient:
    """
    iaptic validator client.

    The verified purchase list is replaced on every successful validation
    and stays ``None`` until the first one.
    """

    def __init__(
        self,
        config: IapticConfig,
        application_username: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Initialize iaptic client.

        Args:
            config: Validator credentials and endpoint
            application_username: Default user the purchases are attached to
            http_client: Shared HTTP client (a client per request when omitted)
        """
        self.config = config
        self.application_username = application_username
        self._http_client = http_client
        self._verified_purchases: list[VerifiedPurchase] | None = None

        logger.info(
            "iaptic_client_initialized",
            app_name=config.app_name,
            base_url=config.base_url,
        )

    def get_verified_purchases(self) -> list[VerifiedPurchase] | None:
        """Return purchases from the last successful validation, or None."""
        if self._verified_purchases is None:
            return None
        return list(self._verified_purchases)

    def _build_body(
        self,
        product_id: str,
        jws_representation: str,
        application_username: str,
    ) -> dict[str, object]:
        return {
            "id": product_id,
            "type": "application",
            "products": [],
            "transaction": {
                "id": product_id,
                "type": "apple-sk2",
                "jwsRepresentation": jws_representation,
            },
            "additionalData": {
                "applicationUsername": application_username,
            },
        }

    async def _post(self, body: dict[str, object]) -> httpx.Response:
        auth = httpx.BasicAuth(self.config.app_name, self.config.public_key)
        if self._http_client is not None:
            return await self._http_client.post(
                self.config.validate_url,
                json=body,
                auth=auth,
                timeout=self.config.timeout,
            )
        async with httpx.AsyncClient() as client:
            return await client.post(
                self.config.validate_url,
                json=body,
                auth=auth,
                timeout=self.config.timeout,
            )

    async def validate_with_jws(
        self,
        product_id: str,
        jws_representation: str,
        application_username: str | None = None,
    ) -> ValidationResponse:
        """
        Validate a StoreKit 2 signed transaction.

        Args:
            product_id: Product (or bundle) identifier the transaction belongs to
            jws_representation: Compact JWS of the transaction
            application_username: User to attach the purchase to

        Returns:
            Validation result; ``is_valid`` is False when the validator
            rejected the transaction

        Raises:
            ValidationServiceError: If the validator cannot be reached or
                answers with something other than a validation result
        """
        username = application_username or self.application_username
        body = self._build_body(product_id, jws_representation, username)

        logger.info("validating_with_iaptic", product_id=product_id, username=username)

        try:
            response = await self._post(body)
        except httpx.TimeoutException as exc:
            logger.error("iaptic_validation_timeout", product_id=product_id)
            raise ValidationServiceError("Request timed out") from exc
        except httpx.HTTPError as exc:
            logger.error("iaptic_validation_transport_error", error=str(exc))
            raise ValidationServiceError(f"Request failed: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None

        if not isinstance(payload, dict) or "ok" not in payload:
            logger.error(
                "iaptic_unexpected_response",
                status=response.status_code,
                body=response.text[:500],
            )
            if response.status_code == 401:
                raise ValidationServiceError("Invalid validator credentials", 401)
            raise ValidationServiceError(
                f"Unexpected response (HTTP {response.status_code})",
                response.status_code,
            )

        if not payload["ok"]:
            result = ValidationResponse(
                is_valid=False,
                error_code=payload.get("code"),
                error_message=payload.get("message"),
                http_status=payload.get("status", response.status_code),
            )
            logger.warning(
                "iaptic_validation_rejected",
                product_id=product_id,
                code=result.error_code,
                message=result.error_message,
            )
            return result

        data = payload.get("data") or {}
        if not isinstance(data, dict):
            logger.error("iaptic_collection_malformed", error="data is not an object")
            raise ValidationServiceError("Malformed purchase collection: data is not an object")

        try:
            purchases = [parse_verified_purchase(item) for item in data.get("collection") or []]
        except (KeyError, TypeError, ValueError, OverflowError, OSError) as exc:
            # Out-of-range epoch values overflow the platform time_t
            logger.error("iaptic_collection_malformed", error=str(exc))
            raise ValidationServiceError(f"Malformed purchase collection: {exc}") from exc

        self._verified_purchases = purchases

        logger.info(
            "iaptic_validation_succeeded",
            product_id=product_id,
            purchase_count=len(purchases),
        )

        return ValidationResponse(
            is_valid=True,
            purchases=purchases,
            http_status=response.status_code,
        )

"""
Pydantic schemas for inbound gateway notifications and settlement results.
"""
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from settlement.exceptions import MalformedNotification


class GatewayNotification(BaseModel):
    """
    Payment outcome reported by the gateway.

    Field aliases follow the gateway's invoice callback payload, so the raw
    JSON body can be validated directly.
    """

    gateway_payment_id: str = Field(..., alias="id", description="Gateway payment/invoice id")
    correlation_id: str = Field(
        ..., alias="external_id", description="Correlation string chosen at payment creation"
    )
    status: str = Field(..., description="Reported status (PAID, SETTLED, EXPIRED, ...)")
    amount: Optional[int] = Field(default=None, description="Invoice amount")
    paid_amount: Optional[int] = Field(default=None, description="Amount actually paid")
    paid_at: Optional[datetime] = Field(default=None, description="Payment timestamp")
    payer_email: Optional[str] = Field(default=None, description="Payer contact")
    payment_method: Optional[str] = Field(default=None, description="Payment method")
    payment_channel: Optional[str] = Field(default=None, description="Payment channel")

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        str_strip_whitespace=True,
        json_schema_extra={
            "examples": [
                {
                    "id": "65f1c0ffee0000000000abcd",
                    "external_id": "purchase_42_1718000000000",
                    "status": "PAID",
                    "amount": 150000,
                    "paid_amount": 150000,
                    "paid_at": "2024-06-10T08:30:00Z",
                    "payer_email": "buyer@example.com",
                    "payment_method": "BANK_TRANSFER",
                    "payment_channel": "BCA",
                }
            ]
        },
    )

    @field_validator("gateway_payment_id", "correlation_id", "status")
    @classmethod
    def validate_required_text(cls, v: str) -> str:
        """Required identifiers must not be blank."""
        if not v:
            raise ValueError("must not be empty")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: str) -> str:
        """Normalize status casing."""
        return v.upper()

    @field_validator("amount", "paid_amount", mode="before")
    @classmethod
    def validate_amount(cls, v: Any) -> Any:
        """Gateways send amounts as numbers or numeric strings; keep whole units."""
        if v is None or v == "":
            return None
        if isinstance(v, bool):
            raise ValueError("must be a number")
        try:
            return int(round(float(v)))
        except (TypeError, ValueError, OverflowError) as e:
            raise ValueError("must be a number") from e

    @classmethod
    def parse_payload(cls, payload: Mapping[str, Any]) -> "GatewayNotification":
        """
        Validate a raw notification payload.

        Raises:
            MalformedNotification: If required fields are missing or invalid
        """
        if not isinstance(payload, Mapping) or not payload:
            raise MalformedNotification("Notification body is required")
        try:
            return cls.model_validate(dict(payload))
        except ValidationError as e:
            fields = sorted({".".join(str(p) for p in err["loc"]) for err in e.errors()})
            raise MalformedNotification(
                f"Malformed notification: invalid or missing {', '.join(fields)}",
                errors=e.errors(include_url=False),
            ) from e

    def log_fields(self) -> Dict[str, Any]:
        """Identifying fields for structured logs."""
        return {
            "gateway_payment_id": self.gateway_payment_id,
            "correlation_id": self.correlation_id,
            "gateway_status": self.status,
        }

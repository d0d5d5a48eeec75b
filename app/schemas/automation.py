from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic.alias_generators import to_camel


FulfillmentStatus = Literal["unfulfilled", "partial", "fulfilled"]
CrmTaskPriority = Literal["low", "medium", "high"]
TickStatus = Literal["idle", "completed", "partial", "failed"]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# Trigger side


class TriggerConditions(_CamelModel):
    min_cart_value: float | None = None
    min_order_total: float | None = None
    specific_tag: str | None = None


class CartItem(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore", coerce_numbers_to_str=True)

    name: str = ""
    quantity: int = 1
    price: float = 0
    image: str | None = None
    variant_title: str | None = None

    @model_validator(mode="before")
    @classmethod
    def drop_nulls(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return {key: value for key, value in data.items() if value is not None}
        return data


class TriggerData(_CamelModel):
    """Event snapshot stored on a run. Unknown keys are kept for webhook payloads."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow", coerce_numbers_to_str=True)

    customer_email: str | None = None
    email: str | None = None
    customer_name: str | None = None
    customer_id: str | None = None
    order_id: str | None = None
    order_number: str | None = None
    total: float | None = None
    order_total: float | None = None
    cart_id: str | None = None
    cart_value: float | None = None
    items: list[CartItem] = Field(default_factory=list)
    subtotal: float | None = None
    recovery_url: str | None = None
    tag_id: str | None = None

    @field_validator("items", mode="before")
    @classmethod
    def keep_readable_items(cls, value: Any) -> Any:
        if not isinstance(value, list):
            return []
        items = []
        for item in value:
            try:
                items.append(CartItem.model_validate(item))
            except ValidationError:
                continue
        return items

    @classmethod
    def from_snapshot(cls, raw: dict[str, Any]) -> "TriggerData":
        """Decode a stored event snapshot, dropping fields whose values cannot be read.

        The raw snapshot is still forwarded untouched wherever it is needed as-is.
        """
        data = dict(raw)
        field_names = {field.alias or name: name for name, field in cls.model_fields.items()}
        while True:
            try:
                return cls.model_validate(data)
            except ValidationError as exc:
                bad_keys = {error["loc"][0] for error in exc.errors() if error.get("loc")}
                dropped = False
                for key in bad_keys:
                    for candidate in (key, field_names.get(key)):
                        if candidate in data:
                            data.pop(candidate)
                            dropped = True
                if not dropped:
                    return cls()

    @property
    def recipient_email(self) -> str | None:
        for value in (self.customer_email, self.email):
            if value and value.strip():
                return value.strip()
        return None


# Action side


class SendEmailConfig(_CamelModel):
    template: str | None = None
    subject: str | None = None
    body: str | None = None


class ChangeOrderStatusConfig(_CamelModel):
    status: FulfillmentStatus | None = None


class CustomerTagConfig(_CamelModel):
    tag_id: str | None = None


class MarketingConsentConfig(_CamelModel):
    consent: bool = False


class WebhookCallConfig(_CamelModel):
    url: str | None = None
    method: Literal["GET", "POST", "PUT", "PATCH", "DELETE"] = "POST"
    headers: dict[str, str] = Field(default_factory=dict)

    @field_validator("method", mode="before")
    @classmethod
    def normalize_method(cls, value: Any) -> Any:
        if value is None:
            return "POST"
        if isinstance(value, str):
            return value.strip().upper() or "POST"
        return value


class CrmCreateTaskConfig(_CamelModel):
    title: str | None = None
    description: str | None = None
    priority: CrmTaskPriority = "medium"
    due_in_days: int = Field(default=1, ge=0, le=365)


class CrmAddNoteConfig(_CamelModel):
    content: str | None = None


# Cron tick response


class ScheduledRunsSummaryOut(_CamelModel):
    processed: int
    succeeded: int
    failed: int
    cancelled: int = 0
    skipped: int = 0
    reclaimed: int = 0


class AbandonedCartsSummaryOut(_CamelModel):
    checked: int
    emails_sent: int


class TickResultsOut(_CamelModel):
    scheduled_runs: ScheduledRunsSummaryOut
    abandoned_carts: AbandonedCartsSummaryOut
    errors: list[str] = Field(default_factory=list)


class CronTickOut(_CamelModel):
    success: bool
    status: TickStatus
    timestamp: datetime
    results: TickResultsOut

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "success": True,
                "status": "partial",
                "timestamp": "2026-10-18T09:00:00+00:00",
                "results": {
                    "scheduledRuns": {
                        "processed": 3,
                        "succeeded": 2,
                        "failed": 1,
                        "cancelled": 0,
                        "skipped": 0,
                        "reclaimed": 0,
                    },
                    "abandonedCarts": {"checked": 4, "emailsSent": 2},
                    "errors": ["Run 5f1c...: No webhook URL specified"],
                },
            }
        },
    )


class CronFailureOut(BaseModel):
    error: str
    details: str

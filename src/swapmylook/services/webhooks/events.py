"""Typed webhook events.

Inbound payloads are parsed into a closed set of event classes. Each known event
type has its own class and anything unrecognized becomes UnknownEvent, which
processing ignores. Adding a new event type means adding a class here and a
handler in the processor's dispatch table.
"""

from enum import Enum
from typing import Any, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator


class SubscriptionEventKind(str, Enum):
    CREATED = "subscription.created"
    UPDATED = "subscription.updated"
    ACTIVE = "subscription.active"
    RENEWED = "subscription.renewed"
    PLAN_CHANGED = "subscription.plan_changed"
    ON_HOLD = "subscription.on_hold"
    CANCELLED = "subscription.cancelled"
    FAILED = "subscription.failed"
    EXPIRED = "subscription.expired"


class PaymentEventKind(str, Enum):
    SUCCEEDED = "payment.succeeded"
    FAILED = "payment.failed"


class SubscriptionPayload(BaseModel):
    """Normalized view of a payment-provider subscription or payment object.

    Providers name the same identifiers differently across event types
    (``id`` vs ``subscription_id``, flat ``customer_id`` vs nested
    ``customer.customer_id``, ``current_period_end`` vs ``next_billing_date``).
    """

    model_config = ConfigDict(extra="ignore")

    subscription_id: str | None = None
    customer_id: str | None = None
    product_id: str | None = None
    status: str | None = None
    period_end: int | float | str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    payment_id: str | None = None
    amount: int | float | None = None
    currency: str | None = None

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value: Any) -> dict[str, Any]:
        return value if isinstance(value, dict) else {}

    @classmethod
    def from_data(cls, data: dict[str, Any], is_payment: bool = False) -> "SubscriptionPayload":
        customer = data.get("customer") if isinstance(data.get("customer"), dict) else {}
        subscription_id = data.get("subscription_id")
        if subscription_id is None and not is_payment:
            subscription_id = data.get("id")
        return cls(
            subscription_id=subscription_id,
            customer_id=data.get("customer_id") or customer.get("customer_id"),
            product_id=data.get("product_id"),
            status=data.get("status"),
            period_end=data.get("current_period_end") or data.get("next_billing_date"),
            metadata=data.get("metadata") or {},
            payment_id=(data.get("payment_id") or data.get("id")) if is_payment else None,
            amount=data.get("total_amount", data.get("amount")) if is_payment else None,
            currency=data.get("currency") if is_payment else None,
        )

    @property
    def app_user_id(self) -> str | None:
        value = self.metadata.get("app_user_id")
        return str(value) if value else None

    @property
    def plan(self) -> str | None:
        value = self.metadata.get("plan")
        return str(value).lower() if value else None


class GenerationCompleted(BaseModel):
    job_id: UUID | None = None
    prediction_id: str | None = None
    output_url: str


class GenerationFailed(BaseModel):
    job_id: UUID | None = None
    prediction_id: str | None = None
    error: str


class SubscriptionEvent(BaseModel):
    kind: SubscriptionEventKind
    payload: SubscriptionPayload


class PaymentEvent(BaseModel):
    kind: PaymentEventKind
    payload: SubscriptionPayload


class UnknownEvent(BaseModel):
    provider: str
    event_type: str | None = None


WebhookEvent = Union[
    GenerationCompleted, GenerationFailed, SubscriptionEvent, PaymentEvent, UnknownEvent
]

_SUBSCRIPTION_TYPES = frozenset(kind.value for kind in SubscriptionEventKind)
_PAYMENT_TYPES = frozenset(kind.value for kind in PaymentEventKind)

MISSING_OUTPUT_ERROR = "Provider reported success without output"


class EventParseError(ValueError):
    """Payload is valid JSON but not a usable event object."""

    pass


def event_type_of(provider: str, payload: Any) -> str | None:
    """Best-effort event type for the receipt row, before full parsing."""
    if not isinstance(payload, dict):
        return None
    if isinstance(payload.get("type"), str):
        return payload["type"]
    if provider == "generation" and isinstance(payload.get("status"), str):
        return f"prediction.{payload['status']}"
    return None


def _parse_uuid(value: Any) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _first_url(output: Any) -> str | None:
    if isinstance(output, list):
        output = output[0] if output else None
    return output if isinstance(output, str) and output else None


def parse_generation_event(payload: dict[str, Any], job_id: Any = None) -> WebhookEvent:
    """Parse a generation-provider payload.

    Accepts a Replicate prediction object (``id``, ``status``, ``output``,
    ``error``) or a typed envelope ``{type, data}``.

    Args:
        payload: Decoded JSON body
        job_id: Job id carried by the callback URL; the envelope's own
            ``data.job_id`` takes precedence
    """
    url_job_id = _parse_uuid(job_id)
    event_type = payload.get("type")
    if isinstance(event_type, str):
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        job_id = _parse_uuid(data.get("job_id")) or url_job_id
        prediction_id = data.get("prediction_id")
        if event_type == "generation.completed":
            output_url = _first_url(data.get("output_url") or data.get("output"))
            if output_url is None:
                return GenerationFailed(
                    job_id=job_id, prediction_id=prediction_id, error=MISSING_OUTPUT_ERROR
                )
            return GenerationCompleted(
                job_id=job_id, prediction_id=prediction_id, output_url=output_url
            )
        if event_type == "generation.failed":
            return GenerationFailed(
                job_id=job_id,
                prediction_id=prediction_id,
                error=str(data.get("error") or "Generation failed"),
            )
        return UnknownEvent(provider="generation", event_type=event_type)

    status = payload.get("status")
    prediction_id = payload.get("id")
    if not isinstance(prediction_id, str) or not isinstance(status, str):
        return UnknownEvent(provider="generation", event_type=None)

    if status == "succeeded":
        output_url = _first_url(payload.get("output"))
        if output_url is None:
            return GenerationFailed(
                job_id=url_job_id, prediction_id=prediction_id, error=MISSING_OUTPUT_ERROR
            )
        return GenerationCompleted(
            job_id=url_job_id, prediction_id=prediction_id, output_url=output_url
        )
    if status == "failed":
        error = payload.get("error") or "Generation failed"
        return GenerationFailed(job_id=url_job_id, prediction_id=prediction_id, error=str(error))
    if status == "canceled":
        return GenerationFailed(
            job_id=url_job_id,
            prediction_id=prediction_id,
            error="Prediction was canceled by the provider",
        )
    return UnknownEvent(provider="generation", event_type=f"prediction.{status}")


def parse_payment_event(payload: dict[str, Any]) -> WebhookEvent:
    """Parse a payment-provider ``{type, data}`` envelope."""
    event_type = payload.get("type")
    data = payload.get("data")
    if not isinstance(event_type, str):
        return UnknownEvent(provider="payments", event_type=None)
    if event_type not in _SUBSCRIPTION_TYPES and event_type not in _PAYMENT_TYPES:
        return UnknownEvent(provider="payments", event_type=event_type)
    if not isinstance(data, dict):
        raise EventParseError(f"Event {event_type} has no data object")

    try:
        if event_type in _SUBSCRIPTION_TYPES:
            return SubscriptionEvent(
                kind=SubscriptionEventKind(event_type), payload=SubscriptionPayload.from_data(data)
            )
        return PaymentEvent(
            kind=PaymentEventKind(event_type),
            payload=SubscriptionPayload.from_data(data, is_payment=True),
        )
    except ValidationError as e:
        raise EventParseError(f"Malformed {event_type} data: {e}") from e


def parse_event(provider: str, payload: Any, job_id: Any = None) -> WebhookEvent:
    """Parse a decoded JSON payload into a typed event.

    Args:
        provider: "generation" or "payments"
        payload: Decoded JSON body
        job_id: ``job_id`` query parameter of the callback URL (generation only)

    Returns:
        One of the WebhookEvent classes (UnknownEvent for unrecognized input)

    Raises:
        EventParseError: Payload is not a JSON object or lacks its data section
    """
    if not isinstance(payload, dict):
        raise EventParseError("Webhook payload must be a JSON object")
    if provider == "generation":
        try:
            return parse_generation_event(payload, job_id=job_id)
        except ValidationError as e:
            raise EventParseError(f"Malformed generation event: {e}") from e
    if provider == "payments":
        return parse_payment_event(payload)
    return UnknownEvent(provider=provider, event_type=event_type_of(provider, payload))

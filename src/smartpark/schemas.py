"""
Request payload schemas and API Gateway event parsing.
"""
import base64
import json
from datetime import datetime
from typing import Any, Dict, Literal, Optional, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from smartpark.errors import ValidationError

SPACE_NUMBER_PATTERN = r"^[A-Za-z0-9]{2}$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"
MAX_PAGE_SIZE = 100

ModelT = TypeVar("ModelT", bound=BaseModel)


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ReserveRequest(RequestModel):
    space_number: str = Field(pattern=SPACE_NUMBER_PATTERN)
    checkout_time: datetime
    email: str = Field(pattern=EMAIL_PATTERN)


class PayRequest(RequestModel):
    payment_id: str = Field(min_length=1)
    redirect_url: Optional[str] = None
    redirect: bool = False


class CheckoutRequest(RequestModel):
    space_number: str = Field(pattern=SPACE_NUMBER_PATTERN)


class PageQuery(RequestModel):
    limit: int = Field(default=20, ge=1, le=MAX_PAGE_SIZE)
    cursor: Optional[str] = None


class PaymentHistoryQuery(PageQuery):
    email: str = Field(pattern=EMAIL_PATTERN)


# Webhook events, one payload schema per event type

class WebhookCustomer(BaseModel):
    model_config = ConfigDict(extra="allow")

    email: Optional[str] = None


class ChargeData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    tx_ref: str = Field(min_length=1)
    status: Optional[str] = None
    customer: Optional[WebhookCustomer] = None

    @field_validator("id", mode="before")
    @classmethod
    def transaction_id_as_string(cls, value: Any) -> Any:
        # the provider sends numeric transaction ids
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: str = Field(min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)


class ChargeCompletedEvent(BaseModel):
    event: Literal["charge.completed"]
    data: ChargeData


class ChargeFailedEvent(BaseModel):
    event: Literal["charge.failed"]
    data: ChargeData


WEBHOOK_EVENT_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "charge.completed": ChargeCompletedEvent,
    "charge.failed": ChargeFailedEvent,
}


def parse_webhook_event(payload: Dict[str, Any]) -> BaseModel:
    """Validate the envelope, then the payload schema registered for its type.

    Unregistered event types come back as the bare WebhookEnvelope.
    """
    envelope = validate(WebhookEnvelope, payload)
    schema = WEBHOOK_EVENT_SCHEMAS.get(envelope.event)
    if schema is None:
        return envelope
    return validate(schema, payload)


def validate(model: Type[ModelT], payload: Any) -> ModelT:
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as e:
        details = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in e.errors()
        ]
        raise ValidationError("Validation failed", details=details) from e


def parse_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """JSON body of an API Gateway proxy event"""
    body = event.get("body")
    if body is None or body == "":
        return {}
    if isinstance(body, dict):
        return body
    try:
        if event.get("isBase64Encoded"):
            body = base64.b64decode(body).decode("utf-8")
        parsed = json.loads(body)
    except (ValueError, TypeError) as e:
        raise ValidationError("Invalid JSON in request body") from e
    if not isinstance(parsed, dict):
        raise ValidationError("Request body must be a JSON object")
    return parsed


def query_params(event: Dict[str, Any]) -> Dict[str, str]:
    return event.get("queryStringParameters") or {}


def header(event: Dict[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup"""
    headers = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None

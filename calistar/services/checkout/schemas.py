"""API request/response schemas for checkout endpoints.

Request models are deliberately permissive: required-field and amount rules
are enforced by the orchestrator so they surface as the checkout error codes
rather than generic 422s.
"""

from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CustomerIn(BaseModel):
    name: str | None = None
    tax_id: str | None = Field(default=None, validation_alias=AliasChoices("taxId", "tax_id", "document"))
    email: str | None = None
    phone: str | None = None


class CartItemIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    name: str | None = None
    price: Any = None
    quantity: int = 1
    size: str | None = None


class CreatePixRequest(BaseModel):
    amount: Any = None
    items: list[CartItemIn] = Field(default_factory=list)
    customer: CustomerIn = Field(default_factory=CustomerIn)


class PaymentIntentResponse(CamelModel):
    id: str
    order_id: str
    amount: float
    pix_code: str
    qr_image: str
    expires_at: str


class PaymentStatusResponse(CamelModel):
    id: str
    status: str
    status_code: int | str | None
    amount: float | None
    paid: bool
    order_id: str | None = None
    order_status: str | None = None


class QuoteRequest(BaseModel):
    subtotal: Any = None


class QuoteResponse(CamelModel):
    subtotal: float
    shipping: float
    total: float
    free_shipping: bool
    remaining_for_free_shipping: float


class OrderResponse(CamelModel):
    order_id: str
    payment_id: str | None
    status: str
    amount: float
    transaction_id: str | None
    expires_at: str
    paid_at: str | None
    timeline: list[dict[str, Any]]


class WebhookPayer(BaseModel):
    name: str | None = None
    document: str | None = None


class WebhookData(BaseModel):
    id: str = Field(min_length=1)
    transaction_id: str | None = None
    external_id: str | None = None
    client_code: str | None = None
    amount: Decimal | None = None
    payer: WebhookPayer | None = None


class WebhookPayload(BaseModel):
    """Inbound gateway notification body."""

    event_name: str
    data: WebhookData

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, EmailStr, Field, PositiveInt, field_validator


# ---- untrusted metadata, validated at the extractor boundary ----

EntityKey = Union[int, str]


class CartItemIn(BaseModel):
    # client-side price/name fields are accepted and ignored; pricing is always re-read from the catalog
    model_config = ConfigDict(extra="ignore")

    productId: EntityKey
    quantity: PositiveInt

    @field_validator("quantity", mode="before")
    @classmethod
    def _reject_fractional(cls, v):
        if isinstance(v, bool) or (isinstance(v, float) and not v.is_integer()):
            raise ValueError("quantity must be a whole number")
        return v


class CartGroupIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    storeId: EntityKey
    items: List[CartItemIn] = Field(min_length=1)


class ShippingInfoIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    firstName: str = Field(min_length=1)
    lastName: str = Field(min_length=1)
    email: EmailStr
    phone: str = ""
    address: str = Field(min_length=1)
    state: str = Field(min_length=1)
    area: Optional[str] = None


class VerifyRequest(BaseModel):
    reference: Optional[str] = None


# ---- intents ----

@dataclass(frozen=True)
class SubscriptionIntent:
    store_id: EntityKey
    plan: str


@dataclass(frozen=True)
class OrderIntent:
    cart_groups: List[CartGroupIn]
    shipping_info: ShippingInfoIn
    delivery_fee: Decimal = Decimal("0")
    user_id: Optional[str] = None
    payment_method: Optional[str] = None


Intent = Union[SubscriptionIntent, OrderIntent]


# ---- gateway ----

@dataclass(frozen=True)
class GatewayTransaction:
    reference: str
    status: str
    amount: Decimal                 # major units
    amount_minor: int
    currency: str
    channel: Optional[str]
    fees: Decimal                   # major units
    paid_at: Optional[datetime]
    transaction_id: Optional[str]
    raw_metadata: Any = None


# ---- pricing / fulfillment ----

@dataclass(frozen=True)
class PricedLine:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class PricedStoreGroup:
    store_id: int
    lines: List[PricedLine]
    total: Decimal


@dataclass(frozen=True)
class VerifiedPricing:
    groups: List[PricedStoreGroup]
    subtotal: Decimal
    delivery_fee: Decimal
    grand_total: Decimal


@dataclass(frozen=True)
class OrderSummary:
    order_number: str
    reference: str
    grand_total: Optional[Decimal]
    sub_order_count: int
    status: str
    payment_status: str
    created_at: Optional[datetime]
    sub_order_ids: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class FulfillmentResult:
    summary: OrderSummary
    already_fulfilled: bool
    # an existing order set was flipped back to paid by this call
    status_restored: bool = False


@dataclass(frozen=True)
class SubscriptionResult:
    store_id: int
    plan: str
    status: str
    expiry_date: Optional[datetime]
    product_limit: Optional[int]
    updated: bool
    deactivated_products: int = 0


@dataclass
class VerificationOutcome:
    """What the orchestrator hands the route layer for rendering."""
    reference: str
    amount: Decimal
    subscription: Optional[SubscriptionResult] = None
    order: Optional[FulfillmentResult] = None
    pending_metadata: Any = None
    # authenticated caller, None for anonymous polls and webhooks
    viewer_id: Optional[str] = None

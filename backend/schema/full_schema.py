import enum
import uuid
from decimal import Decimal
from sqlalchemy import JSON, Boolean, CheckConstraint, DateTime, ForeignKey, Index, Integer, Numeric, UniqueConstraint, Uuid
from uuid6 import uuid7
from datetime import datetime
from typing import Any, Dict, List, Optional
from sqlmodel import Column, SQLModel, Field, String
from backend.common.utils import now


class SubscriptionPlan(str, enum.Enum):
    FREE = "free"
    BASIC = "basic"
    STANDARD = "standard"
    PREMIUM = "premium"


class SubscriptionStatus(str, enum.Enum):
    INACTIVE = "inactive"
    ACTIVE = "active"
    EXPIRED = "expired"


class OrderStatus(str, enum.Enum):
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"


class Store(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    name: str = Field(sa_column=Column(String(255), nullable=False))
    owner_id: Optional[str] = Field(default=None, sa_column=Column(String(64), index=True, nullable=True))
    subscription_plan: str = Field(default=SubscriptionPlan.FREE.value, sa_column=Column(String(32), nullable=False, default=SubscriptionPlan.FREE.value))
    subscription_status: str = Field(default=SubscriptionStatus.INACTIVE.value, sa_column=Column(String(32), nullable=False, default=SubscriptionStatus.INACTIVE.value))
    subscription_start_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    subscription_expiry_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    # NULL means unbounded (premium)
    product_limit: Optional[int] = Field(default=10, sa_column=Column(Integer, nullable=True, default=10))
    last_payment_reference: Optional[str] = Field(default=None, sa_column=Column(String(128), nullable=True, index=True))
    last_payment_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    last_payment_date: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


class Product(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(
        default_factory=uuid7,
        sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False)
    )
    store_id: int = Field(sa_column=Column(Integer, ForeignKey("store.id", ondelete="CASCADE"), index=True, nullable=False))
    name: str = Field(sa_column=Column(String(255), nullable=False))
    price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    inventory_quantity: int = Field(default=0, sa_column=Column(Integer, nullable=False, default=0))
    is_active: bool = Field(default=True, sa_column=Column(Boolean, nullable=False, default=True))
    is_deleted: bool = Field(default=False, sa_column=Column(Boolean, nullable=False, default=False))
    deactivated_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        CheckConstraint("inventory_quantity >= 0", name="ck_product_inventory_non_negative"),
    )


# one per (reference, store); the unique constraint is what makes a replayed reference a detectable conflict
class SubOrder(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    store_id: int = Field(sa_column=Column(Integer, ForeignKey("store.id", ondelete="RESTRICT"), index=True, nullable=False))
    user_id: Optional[str] = Field(default=None, sa_column=Column(String(64), index=True, nullable=True))
    reference: str = Field(sa_column=Column(String(128), index=True, nullable=False))
    total_price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    status: str = Field(default=OrderStatus.PROCESSING.value, sa_column=Column(String(32), nullable=False))
    payment_status: str = Field(default=PaymentStatus.PAID.value, sa_column=Column(String(32), nullable=False))
    payment_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    payment_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    shipping_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))

    __table_args__ = (
        UniqueConstraint("reference", "store_id", name="uq_suborder_reference_store"),
    )


class SubOrderItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    sub_order_id: int = Field(sa_column=Column(Integer, ForeignKey("suborder.id", ondelete="CASCADE"), index=True, nullable=False))
    product_id: int = Field(sa_column=Column(Integer, ForeignKey("product.id", ondelete="RESTRICT"), nullable=False))
    product_name: str = Field(sa_column=Column(String(255), nullable=False))
    quantity: int = Field(sa_column=Column(Integer, nullable=False))
    price_at_purchase: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    item_total: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))

    __table_args__ = (
        UniqueConstraint("sub_order_id", "product_id", name="uq_suborder_item_product"),
    )


class MainOrder(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    public_id: uuid.UUID = Field(default_factory=uuid7, sa_column=Column(Uuid(as_uuid=True), unique=True, index=True, nullable=False))
    order_number: str = Field(sa_column=Column(String(32), nullable=False, unique=True))
    user_id: Optional[str] = Field(default=None, sa_column=Column(String(64), index=True, nullable=True))
    reference: str = Field(sa_column=Column(String(128), nullable=False, unique=True))
    sub_order_ids: List[int] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    total_amount: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    delivery_fee: Decimal = Field(default=Decimal("0"), sa_column=Column(Numeric(12, 2), nullable=False))
    grand_total: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    shipping_info: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    payment_method: Optional[str] = Field(default=None, sa_column=Column(String(32), nullable=True))
    payment_status: str = Field(default=PaymentStatus.PAID.value, sa_column=Column(String(32), nullable=False))
    status: str = Field(default=OrderStatus.PROCESSING.value, sa_column=Column(String(32), nullable=False))
    paid_at: Optional[datetime] = Field(default=None, sa_column=Column(DateTime(timezone=True), nullable=True))
    payment_details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))
    updated_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now, onupdate=now))


# insert-only
class PaymentAuditLog(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    reference: Optional[str] = Field(default=None, sa_column=Column(String(128), index=True, nullable=True))
    user_id: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    event: str = Field(sa_column=Column(String(64), nullable=False))
    amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    expected_amount: Optional[Decimal] = Field(default=None, sa_column=Column(Numeric(12, 2), nullable=True))
    error: Optional[str] = Field(default=None, sa_column=Column(String(1024), nullable=True))
    meta: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON, nullable=True))
    ip_address: Optional[str] = Field(default=None, sa_column=Column(String(64), nullable=True))
    user_agent: Optional[str] = Field(default=None, sa_column=Column(String(512), nullable=True))
    created_at: datetime = Field(default_factory=now, sa_column=Column(DateTime(timezone=True), nullable=False, default=now))

    __table_args__ = (
        Index("ix_paymentauditlog_event_created_at", "event", "created_at"),
    )

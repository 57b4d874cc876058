from sqlalchemy import (
    String, ForeignKey, Boolean, Numeric, Enum, Text, Date, DateTime, Integer, UniqueConstraint, Index
)
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from datetime import date, datetime
from decimal import Decimal
from rasoi.db import Base
from rasoi.models.common import IdMixin, TSMMixin, TenantScopedMixin, utcnow

# ── Enums ───────────────────────────────────────────────────────────────────
class OrderStatus(PyEnum):
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class OrderType(PyEnum):
    DINE_IN = "DINE_IN"
    TAKEAWAY = "TAKEAWAY"
    DELIVERY = "DELIVERY"

class OrderSource(PyEnum):
    MANUAL = "MANUAL"
    QR = "QR"
    WEB = "WEB"
    ZOMATO = "ZOMATO"
    SWIGGY = "SWIGGY"

class PaymentMethod(PyEnum):
    CASH = "CASH"
    CARD = "CARD"
    UPI = "UPI"
    CREDIT = "CREDIT"  # udhaar: settled later against the customer's balance
    GPAY = "GPAY"
    APPLE_PAY = "APPLE_PAY"
    OTHER = "OTHER"

class PaymentStatus(PyEnum):
    PENDING = "PENDING"
    PAID = "PAID"

class ItemStatus(PyEnum):
    PENDING = "PENDING"
    REORDER = "REORDER"  # appended after the order was placed
    PREPARING = "PREPARING"
    READY = "READY"
    SERVED = "SERVED"

class TableStatus(PyEnum):
    AVAILABLE = "AVAILABLE"
    OCCUPIED = "OCCUPIED"
    RESERVED = "RESERVED"

class Platform(PyEnum):
    ZOMATO = "ZOMATO"
    SWIGGY = "SWIGGY"

class WebhookStatus(PyEnum):
    RECEIVED = "RECEIVED"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"
    REPLAYED = "REPLAYED"

# ── Identity ────────────────────────────────────────────────────────────────
class Tenant(Base, IdMixin, TSMMixin):
    __tablename__ = "tenant"
    name: Mapped[str] = mapped_column(String(160))

class Restaurant(Base, IdMixin, TSMMixin):
    __tablename__ = "restaurant"
    tenant_id: Mapped[str] = mapped_column(String(36), ForeignKey("tenant.id"), index=True)
    name: Mapped[str] = mapped_column(String(160))
    slug: Mapped[str] = mapped_column(String(80), unique=True)  # public QR ordering
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Dining ──────────────────────────────────────────────────────────────────
class Hall(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "hall"
    name: Mapped[str] = mapped_column(String(80))

class RestaurantTable(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "restaurant_table"
    __table_args__ = (UniqueConstraint("restaurant_id", "table_number", name="uq_table_number"),)
    hall_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("hall.id"))
    table_number: Mapped[str] = mapped_column(String(20))
    seats: Mapped[int] = mapped_column(Integer, default=4)
    # derived from active dine-in orders, except RESERVED which is set by staff
    table_status: Mapped[TableStatus] = mapped_column(Enum(TableStatus), default=TableStatus.AVAILABLE)

# ── Catalog (owned by the menu service, read here for pricing) ──────────────
class Product(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "product"
    name: Mapped[str] = mapped_column(String(160))
    price: Mapped[Decimal] = mapped_column(Numeric(12, 2))
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=0)
    cost: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True)

# ── Customers ───────────────────────────────────────────────────────────────
class Customer(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "customer"
    __table_args__ = (UniqueConstraint("restaurant_id", "phone", name="uq_customer_phone"),)
    name: Mapped[str] = mapped_column(String(160))
    phone: Mapped[str] = mapped_column(String(20))
    # Σ total_amount of COMPLETED + CREDIT + PENDING orders; see services/credit.py
    credit_balance: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    total_orders: Mapped[int] = mapped_column(Integer, default=0)
    total_spent: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    last_visit_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

# ── Orders ──────────────────────────────────────────────────────────────────
class Order(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "order"
    __table_args__ = (
        # order numbers are unique per restaurant per business day
        UniqueConstraint("restaurant_id", "business_date", "order_number", name="uq_order_number"),
        UniqueConstraint("restaurant_id", "source", "external_order_id", name="uq_order_external_id"),
        Index("ix_order_table_status", "table_id", "status"),
        Index("ix_order_customer_credit", "customer_id", "payment_method", "payment_status"),
    )
    order_number: Mapped[str] = mapped_column(String(20))
    business_date: Mapped[date] = mapped_column(Date, default=lambda: utcnow().date())  # UTC day the order was placed
    order_type: Mapped[OrderType] = mapped_column(Enum(OrderType), default=OrderType.DINE_IN)
    status: Mapped[OrderStatus] = mapped_column(Enum(OrderStatus), default=OrderStatus.ACTIVE)
    cancel_reason: Mapped[str | None] = mapped_column(Text)

    table_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("restaurant_table.id"))
    hall_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("hall.id"))
    table_number: Mapped[str | None] = mapped_column(String(20))
    assigned_staff_id: Mapped[str | None] = mapped_column(String(36))
    customer_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("customer.id"))
    customer_name: Mapped[str | None] = mapped_column(String(160))
    customer_phone: Mapped[str | None] = mapped_column(String(20))
    notes: Mapped[str | None] = mapped_column(Text)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))

    payment_method: Mapped[PaymentMethod | None] = mapped_column(Enum(PaymentMethod))
    payment_status: Mapped[PaymentStatus] = mapped_column(Enum(PaymentStatus), default=PaymentStatus.PENDING)
    payment_provider: Mapped[str | None] = mapped_column(String(100))
    payment_reference: Mapped[str | None] = mapped_column(String(200))
    payment_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2))  # tendered, informational
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    source: Mapped[OrderSource] = mapped_column(Enum(OrderSource), default=OrderSource.MANUAL)
    external_order_id: Mapped[str | None] = mapped_column(String(80))
    external_metadata: Mapped[str | None] = mapped_column(Text)  # raw platform payload (json)

    placed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    preparing_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    ready_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

class OrderItem(Base, IdMixin, TSMMixin):
    __tablename__ = "order_item"
    order_id: Mapped[str] = mapped_column(String(36), ForeignKey("order.id"), index=True)
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id"))
    name_snapshot: Mapped[str] = mapped_column(String(160))
    price_snapshot: Mapped[Decimal] = mapped_column(Numeric(12, 2))  # unit price after product discount
    cost_snapshot: Mapped[Decimal] = mapped_column(Numeric(12, 2), default=0)
    quantity: Mapped[int] = mapped_column(Integer)
    notes: Mapped[str | None] = mapped_column(Text)
    status: Mapped[ItemStatus] = mapped_column(Enum(ItemStatus), default=ItemStatus.PENDING)

# ── Audit ───────────────────────────────────────────────────────────────────
class AuditLog(Base, IdMixin, TSMMixin):
    __tablename__ = "audit_log"
    tenant_id: Mapped[str] = mapped_column(String(36))
    restaurant_id: Mapped[str | None] = mapped_column(String(36))
    actor_id: Mapped[str | None] = mapped_column(String(36))
    entity: Mapped[str] = mapped_column(String(60))
    entity_id: Mapped[str] = mapped_column(String(36))
    action: Mapped[str] = mapped_column(String(60))
    reason: Mapped[str | None] = mapped_column(Text)
    before: Mapped[str | None] = mapped_column(Text)
    after: Mapped[str | None] = mapped_column(Text)

# ── Delivery platform integrations ──────────────────────────────────────────
class IntegrationConfig(Base, IdMixin, TSMMixin, TenantScopedMixin):
    __tablename__ = "integration_config"
    __table_args__ = (UniqueConstraint("platform", "external_restaurant_id", name="uq_integration_external"),)
    platform: Mapped[Platform] = mapped_column(Enum(Platform))
    external_restaurant_id: Mapped[str] = mapped_column(String(80))
    webhook_secret: Mapped[str] = mapped_column(String(255))
    is_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_accept: Mapped[bool] = mapped_column(Boolean, default=False)

class IntegrationMenuMap(Base, IdMixin, TSMMixin):
    __tablename__ = "integration_menu_map"
    __table_args__ = (UniqueConstraint("integration_id", "external_item_id", name="uq_menu_map_item"),)
    integration_id: Mapped[str] = mapped_column(String(36), ForeignKey("integration_config.id"), index=True)
    external_item_id: Mapped[str] = mapped_column(String(80))
    product_id: Mapped[str] = mapped_column(String(36), ForeignKey("product.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

class IntegrationWebhookLog(Base, IdMixin, TSMMixin):
    __tablename__ = "integration_webhook_log"
    platform: Mapped[Platform] = mapped_column(Enum(Platform))
    # unknown external restaurants are logged too, without an integration
    integration_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("integration_config.id"), index=True)
    tenant_id: Mapped[str | None] = mapped_column(String(36))
    restaurant_id: Mapped[str | None] = mapped_column(String(36), index=True)
    external_event_id: Mapped[str | None] = mapped_column(String(80))
    payload_raw: Mapped[str] = mapped_column(Text)
    signature_valid: Mapped[bool] = mapped_column(Boolean, default=False)
    status: Mapped[WebhookStatus] = mapped_column(Enum(WebhookStatus), default=WebhookStatus.RECEIVED)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    order_id: Mapped[str | None] = mapped_column(String(36))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    replayed_by: Mapped[str | None] = mapped_column(String(36))

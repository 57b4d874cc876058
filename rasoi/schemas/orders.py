from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Literal

OrderTypeLiteral = Literal["DINE_IN", "TAKEAWAY", "DELIVERY"]
StaffSourceLiteral = Literal["MANUAL", "ZOMATO", "SWIGGY"]  # aggregator orders punched in by staff
PublicSourceLiteral = Literal["QR", "WEB"]
PaymentMethodLiteral = Literal["CASH", "CARD", "UPI", "CREDIT", "GPAY", "APPLE_PAY", "OTHER"]
PaymentStatusLiteral = Literal["PENDING", "PAID"]
ItemStatusLiteral = Literal["PENDING", "REORDER", "PREPARING", "READY", "SERVED"]
PHONE_PATTERN = r"^\+?[1-9]\d{9,14}$"

# No price or total fields anywhere below: money is always computed server-side.
class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(ge=1, le=100)
    notes: Optional[str] = Field(default=None, max_length=200)

class OrderIn(BaseModel):
    items: list[OrderItemIn] = Field(min_length=1, max_length=50)
    order_type: Optional[OrderTypeLiteral] = None
    source: StaffSourceLiteral = "MANUAL"
    table_id: Optional[str] = None
    table_number: Optional[str] = Field(default=None, max_length=20)
    customer_id: Optional[str] = None
    customer_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    customer_phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    assigned_staff_id: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)

class PublicOrderIn(BaseModel):
    items: list[OrderItemIn] = Field(min_length=1, max_length=50)
    customer_name: str = Field(min_length=2, max_length=100)
    customer_phone: str = Field(pattern=PHONE_PATTERN)
    table_number: Optional[str] = Field(default=None, max_length=20)
    notes: Optional[str] = Field(default=None, max_length=500)
    source: PublicSourceLiteral = "QR"

class AddItemsIn(BaseModel):
    items: list[OrderItemIn] = Field(min_length=1, max_length=50)

class OrderItemUpdateIn(BaseModel):
    quantity: Optional[int] = Field(default=None, ge=1, le=100)
    notes: Optional[str] = Field(default=None, max_length=200)
    status: Optional[ItemStatusLiteral] = None

class OrderStatusIn(BaseModel):
    status: Literal["COMPLETED", "CANCELLED"]
    cancel_reason: Optional[str] = Field(default=None, max_length=500)

class RejectIn(BaseModel):
    reason: str = Field(min_length=1, max_length=500)

class PaymentIn(BaseModel):
    payment_method: PaymentMethodLiteral
    payment_status: PaymentStatusLiteral = "PAID"
    payment_provider: Optional[str] = Field(default=None, max_length=100)
    payment_reference: Optional[str] = Field(default=None, max_length=200)
    payment_amount: Optional[Decimal] = Field(default=None, gt=0)
    discount_amount: Optional[Decimal] = Field(default=None, ge=0)
    paid_at: Optional[datetime] = None

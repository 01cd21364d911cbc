# pharmorder/domain/schemas.py
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from pharmorder.domain.order_status import OrderStatus


# carts
class ItemIn(BaseModel):
    """Schema dla dodawania produktu do koszyka."""

    product_id: int = Field(..., gt=0, description="ID produktu (musi być > 0)")
    quantity: int = Field(..., gt=0, description="Ilość produktu (musi być > 0)")


class CartAddressesIn(BaseModel):
    shipping_address_id: int | None = Field(None, gt=0)
    billing_address_id: int | None = Field(None, gt=0)


class ItemQuantityIn(BaseModel):
    quantity: int = Field(..., gt=0)


class CouponIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


class CartItemOut(BaseModel):
    product_id: int
    product_name: str | None = None
    product_sku: str | None = None
    quantity: int
    unit_price: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    total: Decimal


class CartOut(BaseModel):
    """Schema dla koszyka (response)."""

    cart_id: int
    user_id: int
    status: str
    version: int
    items: List[CartItemOut]
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total: Decimal
    coupon_code: str | None = None
    shipping_address_id: int | None = None
    billing_address_id: int | None = None
    expires_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


# orders
class OrderCreate(BaseModel):
    """Schema dla tworzenia zamówienia z aktywnego koszyka."""

    payment_method: str = Field(..., min_length=1, max_length=50, description="np. payhere, cash, bank_transfer, credit")
    shipping_address_id: int | None = Field(None, gt=0)
    billing_address_id: int | None = Field(None, gt=0)
    use_credit: bool = False
    customer_notes: str | None = Field(None, max_length=2000)


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: str | None = None
    tracking_number: str | None = Field(None, max_length=255)
    tracking_url: str | None = Field(None, max_length=500)
    expected_delivery_date: date | None = None


class OrderCancelIn(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class OrderItemOut(BaseModel):
    id: int
    product_id: int
    product_name: str
    product_sku: str | None = None
    generic_name: str | None = None
    manufacturer: str | None = None
    batch_number: str | None = None
    expiry_date: date | None = None
    quantity: int
    unit_price: Decimal
    tax_percentage: Decimal
    tax_amount: Decimal
    subtotal: Decimal
    total: Decimal
    status: str
    fulfilled_quantity: int
    stock_state: str

    model_config = ConfigDict(from_attributes=True)


class StatusHistoryOut(BaseModel):
    previous_status: str | None = None
    new_status: str
    notes: str | None = None
    changed_by: int | None = None
    changed_by_name: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Schema dla zamówienia (response)."""

    id: int
    order_number: str
    user_id: int
    doctor_id: int | None = None
    subtotal: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    total: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    coupon_code: str | None = None
    item_count: int
    total_quantity: int
    status: str
    payment_status: str
    payment_method: str | None = None
    is_credit: bool
    credit_due_date: date | None = None
    shipping_address: Dict[str, Any] | None = None
    billing_address: Dict[str, Any] | None = None
    tracking_number: str | None = None
    tracking_url: str | None = None
    expected_delivery_date: date | None = None
    customer_notes: str | None = None
    cancel_reason: str | None = None
    created_at: datetime
    items: List[OrderItemOut] = []

    model_config = ConfigDict(from_attributes=True)


class OrderDetailOut(OrderOut):
    status_history: List[StatusHistoryOut] = []


class OrderCreatedOut(BaseModel):
    order: OrderOut
    payhere_data: Dict[str, Any] | None = None


class OrderListOut(BaseModel):
    items: List[OrderOut]
    total: int
    page: int
    limit: int
    pages: int


# payments
class PaymentIn(BaseModel):
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    method: str = Field(..., min_length=1, max_length=50)
    transaction_id: str | None = Field(None, max_length=255)
    notes: str | None = None


class RefundIn(BaseModel):
    amount: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1000)


class PaymentOut(BaseModel):
    id: int
    order_id: int
    amount: Decimal
    method: str
    transaction_id: str | None = None
    status: str
    refunded_amount: Decimal
    refunded_payment_id: int | None = None
    provider: str | None = None
    notes: str | None = None
    processed_by: int | None = None
    processed_at: datetime | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentRecordedOut(BaseModel):
    payment: PaymentOut
    paid_amount: Decimal
    due_amount: Decimal
    payment_status: str


class PaymentVerifyOut(BaseModel):
    order_number: str
    status: str
    payment_status: str
    payment_method: str | None = None
    total: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    item_count: int
    payments: List[PaymentOut]
    created_at: datetime


# discounts
class DiscountItemIn(BaseModel):
    product_id: int = Field(..., gt=0)
    subtotal: Decimal = Field(..., ge=0)


class DiscountValidateIn(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    cart_total: Decimal = Field(..., ge=0)
    shipping_amount: Decimal = Field(Decimal("0"), ge=0)
    items: List[DiscountItemIn] = []


class DiscountValidateOut(BaseModel):
    valid: bool
    discount_amount: Decimal
    reason: str | None = None
    code: str | None = None
    type: str | None = None


# inventory
class RestockIn(BaseModel):
    quantity: int = Field(..., gt=0)
    reference_number: str | None = Field(None, max_length=50)
    reason: str | None = Field(None, max_length=255)
    created_by: int | None = None


class StockAdjustIn(BaseModel):
    """Korekta inwentaryzacyjna - docelowy stan fizyczny."""

    new_quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=255)
    created_by: int | None = None


class StockLevelsOut(BaseModel):
    product_id: int
    stock_quantity: int
    reserved_quantity: int
    available_quantity: int
    track_inventory: bool


class MovementOut(BaseModel):
    id: int
    product_id: int
    type: str
    quantity_before: int
    quantity_change: int
    quantity_after: int
    reserved_before: int
    reserved_after: int
    reference_type: str
    reference_id: int | None = None
    reference_number: str | None = None
    reason: str | None = None
    created_by: int | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

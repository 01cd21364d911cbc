from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
)
from sqlalchemy.orm import relationship
from datetime import datetime, timezone

from pharmorder.data.database import Base


def _now():
    return datetime.now(timezone.utc)


class OrderModel(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True)
    order_number = Column(String(50), nullable=False, unique=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=True)

    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    shipping_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total = Column(Numeric(12, 2), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False, default=0)
    due_amount = Column(Numeric(12, 2), nullable=False, default=0)

    discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=True)
    coupon_code = Column(String(50), nullable=True)
    item_count = Column(Integer, nullable=False, default=0)
    total_quantity = Column(Integer, nullable=False, default=0)

    status = Column(String(30), nullable=False, default="pending", index=True)
    payment_status = Column(String(20), nullable=False, default="pending")
    payment_method = Column(String(50), nullable=True)

    is_credit = Column(Boolean, nullable=False, default=False)
    credit_due_date = Column(Date, nullable=True)

    shipping_address = Column(JSON, nullable=True)
    billing_address = Column(JSON, nullable=True)

    tracking_number = Column(String(255), nullable=True)
    tracking_url = Column(String(500), nullable=True)
    expected_delivery_date = Column(Date, nullable=True)

    customer_notes = Column(Text, nullable=True)
    cancel_reason = Column(Text, nullable=True)
    cancelled_by = Column(Integer, nullable=True)
    ip_address = Column(String(45), nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    shipped_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItemModel",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItemModel.id",
    )
    payments = relationship(
        "PaymentModel",
        back_populates="order",
        order_by="PaymentModel.id",
    )
    status_history = relationship(
        "OrderStatusHistoryModel",
        back_populates="order",
        order_by="OrderStatusHistoryModel.id",
    )
    user = relationship("UserModel")
    doctor = relationship("DoctorModel")

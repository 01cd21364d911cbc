from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String, Text
from sqlalchemy.orm import relationship

from pharmorder.data.database import Base


class PaymentModel(Base):
    """
    Jeden wiersz na ruch pieniędzy: kwota dodatnia = wpłata, ujemna = zwrot.
    transaction_id jest UNIQUE - granica idempotencji dla powiadomień bramki.
    """

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(String(50), nullable=False)
    transaction_id = Column(String(255), nullable=True, unique=True)
    status = Column(String(20), nullable=False, default="pending")

    refunded_amount = Column(Numeric(12, 2), nullable=False, default=0)
    refunded_payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    refund_reason = Column(Text, nullable=True)

    provider = Column(String(50), nullable=True)
    provider_response = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)

    processed_by = Column(Integer, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    order = relationship("OrderModel", back_populates="payments")

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from pharmorder.data.database import Base


class OrderStatusHistoryModel(Base):
    """Append-only: jeden wiersz na przejście statusu, nigdy nie modyfikowany."""

    __tablename__ = "order_status_history"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)

    previous_status = Column(String(30), nullable=True)
    new_status = Column(String(30), nullable=False)
    notes = Column(Text, nullable=True)

    changed_by = Column(Integer, nullable=True)
    changed_by_name = Column(String(100), nullable=True)
    ip_address = Column(String(45), nullable=True)
    # "metadata" jest zarezerwowane przez declarative
    meta = Column("metadata", JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    order = relationship("OrderModel", back_populates="status_history")

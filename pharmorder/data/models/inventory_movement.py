from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String

from pharmorder.data.database import Base


class InventoryMovementModel(Base):
    __tablename__ = "inventory_movements"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    type = Column(String(20), nullable=False)  # reservation, fulfillment, release, restock, adjustment
    quantity_before = Column(Integer, nullable=False)
    quantity_change = Column(Integer, nullable=False)
    quantity_after = Column(Integer, nullable=False)
    reserved_before = Column(Integer, nullable=False)
    reserved_after = Column(Integer, nullable=False)

    reference_type = Column(String(30), nullable=False, default="order")
    reference_id = Column(Integer, nullable=True)
    reference_number = Column(String(50), nullable=True)
    batch_number = Column(String(100), nullable=True)
    reason = Column(String(255), nullable=True)

    created_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        Index("ix_movements_reference", "reference_number", "product_id", "type"),
    )

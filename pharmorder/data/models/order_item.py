from sqlalchemy import Column, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from pharmorder.data.database import Base


class OrderItemModel(Base):
    """Snapshot pozycji - ceny i dane produktu z chwili złożenia zamówienia."""

    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)

    product_name = Column(String(255), nullable=False)
    product_sku = Column(String(100), nullable=True)
    generic_name = Column(String(255), nullable=True)
    manufacturer = Column(String(255), nullable=True)
    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    original_price = Column(Numeric(12, 2), nullable=True)
    cost_price = Column(Numeric(12, 2), nullable=True)
    tax_percentage = Column(Numeric(5, 2), nullable=False, default=0)
    tax_amount = Column(Numeric(12, 2), nullable=False, default=0)
    subtotal = Column(Numeric(12, 2), nullable=False)
    total = Column(Numeric(12, 2), nullable=False)

    status = Column(String(20), nullable=False, default="pending")  # pending, fulfilled, cancelled
    fulfilled_quantity = Column(Integer, nullable=False, default=0)
    stock_state = Column(String(20), nullable=False, default="reserved")  # reserved, fulfilled, released

    order = relationship("OrderModel", back_populates="items")

    __table_args__ = (UniqueConstraint("order_id", "product_id", name="u_order_product"),)

from sqlalchemy import Boolean, Column, Date, Integer, Numeric, String

from pharmorder.data.database import Base


class ProductModel(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    sku = Column(String(100), nullable=True, unique=True)
    generic_name = Column(String(255), nullable=True)
    manufacturer = Column(String(255), nullable=True)

    agency_id = Column(Integer, nullable=True, index=True)
    brand_id = Column(Integer, nullable=True, index=True)
    category_id = Column(Integer, nullable=True, index=True)

    batch_number = Column(String(100), nullable=True)
    expiry_date = Column(Date, nullable=True)

    selling_price = Column(Numeric(12, 2), nullable=False)
    cost_price = Column(Numeric(12, 2), nullable=True)
    tax_enabled = Column(Boolean, nullable=False, default=False)
    tax_percentage = Column(Numeric(5, 2), nullable=False, default=0)

    # stan fizyczny i zarezerwowany; dostępne = stock - reserved
    stock_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    low_stock_threshold = Column(Integer, nullable=False, default=10)
    track_inventory = Column(Boolean, nullable=False, default=True)
    allow_backorder = Column(Boolean, nullable=False, default=False)

    is_active = Column(Boolean, nullable=False, default=True)

    @property
    def available_quantity(self) -> int:
        return (self.stock_quantity or 0) - (self.reserved_quantity or 0)

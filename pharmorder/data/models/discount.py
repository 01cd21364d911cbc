from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, Numeric, String

from pharmorder.data.database import Base


class DiscountModel(Base):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=True, unique=True)

    type = Column(String(20), nullable=False, default="percentage")  # percentage, fixed_amount, free_shipping
    value = Column(Numeric(12, 2), nullable=False)

    min_order_amount = Column(Numeric(12, 2), nullable=True)
    max_discount_amount = Column(Numeric(12, 2), nullable=True)

    usage_limit = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)

    start_date = Column(DateTime(timezone=True), nullable=True)
    end_date = Column(DateTime(timezone=True), nullable=True)

    is_active = Column(Boolean, nullable=False, default=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    # zakres: puste/NULL = bez ograniczeń w danym wymiarze
    product_ids = Column(JSON, nullable=True)
    category_ids = Column(JSON, nullable=True)
    agency_ids = Column(JSON, nullable=True)
    brand_ids = Column(JSON, nullable=True)
    manufacturers = Column(JSON, nullable=True)
    batch_numbers = Column(JSON, nullable=True)
    excluded_product_ids = Column(JSON, nullable=True)

    @property
    def is_scoped(self) -> bool:
        return any(
            [
                self.product_ids,
                self.category_ids,
                self.agency_ids,
                self.brand_ids,
                self.manufacturers,
                self.batch_numbers,
                self.excluded_product_ids,
            ]
        )

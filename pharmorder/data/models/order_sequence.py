from sqlalchemy import Column, Integer, String

from pharmorder.data.database import Base


class OrderSequenceModel(Base):
    """Licznik numerów zamówień na dzień (YYMMDD), blokowany FOR UPDATE."""

    __tablename__ = "order_sequences"

    day_key = Column(String(6), primary_key=True)
    last_value = Column(Integer, nullable=False, default=0)

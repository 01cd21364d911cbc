from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship

from pharmorder.data.database import Base


class DoctorModel(Base):
    """Profil kredytowy lekarza/kliniki."""

    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)

    license_number = Column(String(100), nullable=True)
    hospital_clinic = Column(String(255), nullable=True)
    is_verified = Column(Boolean, nullable=False, default=False)

    credit_limit = Column(Numeric(12, 2), nullable=False, default=0)
    current_credit = Column(Numeric(12, 2), nullable=False, default=0)
    # dni na spłatę, NULL -> wartość z ustawień
    payment_terms = Column(Integer, nullable=True)

    user = relationship("UserModel")

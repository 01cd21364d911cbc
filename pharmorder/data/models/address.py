from sqlalchemy import Boolean, Column, ForeignKey, Integer, String

from pharmorder.data.database import Base


class AddressModel(Base):
    __tablename__ = "addresses"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    label = Column(String(50), nullable=True)
    contact_name = Column(String(100), nullable=True)
    contact_phone = Column(String(30), nullable=True)
    address_line1 = Column(String(255), nullable=False)
    address_line2 = Column(String(255), nullable=True)
    city = Column(String(100), nullable=False)
    state = Column(String(100), nullable=True)
    country = Column(String(100), nullable=False, default="Sri Lanka")
    postal_code = Column(String(20), nullable=True)
    is_default = Column(Boolean, nullable=False, default=False)

    def snapshot(self) -> dict:
        """Zdenormalizowana kopia adresu zapisywana na zamówieniu."""
        return {
            "id": self.id,
            "label": self.label,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "address_line1": self.address_line1,
            "address_line2": self.address_line2,
            "city": self.city,
            "state": self.state,
            "country": self.country,
            "postal_code": self.postal_code,
        }

from sqlalchemy import Column, String, Text

from pharmorder.data.database import Base


class SystemSettingModel(Base):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=True)

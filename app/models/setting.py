from sqlalchemy import Column, String, Text
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class Setting(Base):
    """Runtime-editable key/value overrides for pricing and policy settings."""
    __tablename__ = "settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow)

from sqlalchemy import Column, String, Text
from app.db.session import Base
from app.db.types import UTCDateTime

class IdempotencyRecord(Base):
    __tablename__ = "idempotency_records"

    key = Column(String(128), primary_key=True)
    status = Column(String(20), nullable=False, default="pending") # pending, completed
    response_json = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)

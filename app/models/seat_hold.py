import uuid
from typing import Optional
from sqlalchemy import Column, String, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class SeatHold(Base):
    """
    Short-lived exclusive claim on one seat of one screening.

    Only one row may exist per (screening, seat); an expired row is dead weight
    until the cleanup sweep, or the next hold request for that seat, deletes it.
    """
    __tablename__ = "seat_holds"
    __table_args__ = (
        UniqueConstraint("screening_id", "seat_id", name="uq_seat_holds_screening_seat"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    screening_id = Column(Uuid, ForeignKey("screenings.id"), nullable=False, index=True)
    seat_id = Column(Uuid, ForeignKey("seats.id"), nullable=False)
    client_token = Column(String(64), nullable=False, index=True)
    user_id = Column(Uuid, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    last_heartbeat_at = Column(UTCDateTime, nullable=False, default=utcnow)
    expires_at = Column(UTCDateTime, nullable=False, index=True)

    screening = relationship("Screening")
    seat = relationship("Seat")

    def is_expired(self, now) -> bool:
        return now >= self.expires_at

    def is_owned_by(self, client_token: Optional[str], user_id=None) -> bool:
        if client_token and self.client_token == client_token:
            return True
        return user_id is not None and self.user_id is not None and self.user_id == user_id

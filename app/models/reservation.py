import uuid
import enum
from sqlalchemy import Column, ForeignKey, Index, Uuid, text, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class ReservationStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    EXPIRED = "Expired"
    CANCELED = "Canceled"
    COMPLETED = "Completed"

LIVE_RESERVATION_STATUSES = (ReservationStatus.PENDING, ReservationStatus.CONFIRMED)

_LIVE_PREDICATE = "status IN ('Pending', 'Confirmed')"

class Reservation(Base):
    __tablename__ = "reservations"
    __table_args__ = (
        Index(
            "uq_reservations_live_seat",
            "screening_id",
            "seat_id",
            unique=True,
            postgresql_where=text(_LIVE_PREDICATE),
            sqlite_where=text(_LIVE_PREDICATE),
        ),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    group_id = Column(Uuid, nullable=False, index=True) # shared by rows created together
    screening_id = Column(Uuid, ForeignKey("screenings.id"), nullable=False, index=True)
    seat_id = Column(Uuid, ForeignKey("seats.id"), nullable=False)
    member_id = Column(Uuid, ForeignKey("members.id"), nullable=True, index=True)
    status = Column(
        SAEnum(
            ReservationStatus,
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=ReservationStatus.PENDING,
        index=True,
    )
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True)

    screening = relationship("Screening")
    seat = relationship("Seat")
    member = relationship("Member")

import uuid
from datetime import timedelta

from sqlalchemy import Column, String, Boolean, Integer, DECIMAL, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime

# Reservations expire and holds are clamped this long before the show starts
RESERVATION_CUTOFF = timedelta(minutes=30)

class Movie(Base):
    __tablename__ = "movies"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    screenings = relationship("Screening", back_populates="movie")

class Screening(Base):
    __tablename__ = "screenings"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    movie_id = Column(Uuid, ForeignKey("movies.id"), nullable=False, index=True)
    hall_id = Column(Uuid, ForeignKey("halls.id"), nullable=False, index=True)
    seat_layout_id = Column(Uuid, ForeignKey("seat_layouts.id"), nullable=False)
    start_at = Column(UTCDateTime, nullable=False, index=True)
    duration_minutes = Column(Integer, nullable=False)
    is_first_show_weekday = Column(Boolean, nullable=False, default=False)
    is_special_day = Column(Boolean, nullable=False, default=False) # Halk Günü
    price_override = Column(DECIMAL(10, 2), nullable=True)

    movie = relationship("Movie", back_populates="screenings")
    hall = relationship("Hall")
    layout = relationship("SeatLayout")

    @property
    def reservation_deadline(self):
        return self.start_at - RESERVATION_CUTOFF

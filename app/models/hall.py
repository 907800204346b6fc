import uuid
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class Hall(Base):
    __tablename__ = "halls"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False)
    screen_type = Column(String(50), nullable=True) # 'imax', 'regular', etc.
    capacity = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True)

    # Relationships
    layouts = relationship("SeatLayout", back_populates="hall", cascade="all, delete-orphan")

class SeatLayout(Base):
    __tablename__ = "seat_layouts"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    hall_id = Column(Uuid, ForeignKey("halls.id"), nullable=False, index=True)
    version = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, default=True)
    created_at = Column(UTCDateTime, default=utcnow)

    hall = relationship("Hall", back_populates="layouts")
    seats = relationship("Seat", back_populates="layout", cascade="all, delete-orphan")

import uuid
from sqlalchemy import Column, String, Integer, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship
from app.db.session import Base

class Seat(Base):
    __tablename__ = "seats"
    __table_args__ = (
        UniqueConstraint("seat_layout_id", "row", "col", name="uq_seats_layout_position"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    seat_layout_id = Column(Uuid, ForeignKey("seat_layouts.id"), nullable=False, index=True)
    row = Column(Integer, nullable=False)
    col = Column(Integer, nullable=False)
    label = Column(String(10), nullable=False) # "A1", "C12"

    layout = relationship("SeatLayout", back_populates="seats")


def seat_label(row: int, col: int) -> str:
    """Row 1 -> 'A', row 27 -> 'AA'."""
    letters = ""
    n = row
    while n > 0:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return f"{letters}{col}"

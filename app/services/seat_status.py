from typing import List
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.exceptions import NotFoundError
from app.models.reservation import Reservation, LIVE_RESERVATION_STATUSES
from app.models.screening import Screening
from app.models.seat import Seat
from app.models.seat_hold import SeatHold
from app.models.ticket import Ticket
from app.schemas.seat import SeatMapResponse, SeatStatus


def get_seat_map(db: Session, screening_id: UUID, clock: Clock = system_clock) -> SeatMapResponse:
    """Every seat of the screening's layout with its status: sold > reserved > held > available."""
    screening = db.query(Screening).filter(Screening.id == screening_id).first()
    if not screening:
        raise NotFoundError("Screening not found")
    now = clock.now()

    seats = (
        db.query(Seat)
        .filter(Seat.seat_layout_id == screening.seat_layout_id)
        .order_by(Seat.row, Seat.col)
        .all()
    )
    sold = {
        t.seat_id for t in db.query(Ticket.seat_id).filter(Ticket.screening_id == screening_id).all()
    }
    reserved = {
        r.seat_id
        for r in db.query(Reservation.seat_id)
        .filter(
            Reservation.screening_id == screening_id,
            Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        )
        .all()
    }
    held = {
        h.seat_id: h.expires_at
        for h in db.query(SeatHold)
        .filter(SeatHold.screening_id == screening_id, SeatHold.expires_at > now)
        .all()
    }

    out: List[SeatStatus] = []
    for seat in seats:
        if seat.id in sold:
            status = "sold"
        elif seat.id in reserved:
            status = "reserved"
        elif seat.id in held:
            status = "held"
        else:
            status = "available"
        out.append(
            SeatStatus(
                seat_id=seat.id,
                row=seat.row,
                col=seat.col,
                label=seat.label,
                status=status,
                held_until=held.get(seat.id) if status == "held" else None,
            )
        )
    return SeatMapResponse(screening_id=screening_id, start_at=screening.start_at, seats=out)

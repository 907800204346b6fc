from uuid import UUID
from typing import List, Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock, get_optional_user_id
from app.core.clock import Clock
from app.models.reservation import Reservation
from app.schemas.reservation import ReservationCreate, ReservationResponse, ReservationSeat
from app.services import reservations as reservation_service

router = APIRouter(prefix="/reservations", tags=["Reservations"])


def _serialize_group(rows: List[Reservation]) -> ReservationResponse:
    first = rows[0]
    return ReservationResponse(
        reservation_id=first.group_id,
        screening_id=first.screening_id,
        member_id=first.member_id,
        expires_at=first.expires_at,
        seats=[
            ReservationSeat(
                id=r.id,
                seat_id=r.seat_id,
                row=r.seat.row,
                col=r.seat.col,
                label=r.seat.label,
                status=r.status,
                expires_at=r.expires_at,
            )
            for r in rows
        ],
    )


@router.post("/", response_model=ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(
    data: ReservationCreate,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    """
    Convert the caller's held seats into a Pending reservation.

    All seats must be held by `client_token`. The reservation expires
    30 minutes before the screening starts.
    """
    rows = reservation_service.create_reservation(
        db,
        data.screening_id,
        data.seat_ids,
        data.client_token,
        member_id=data.member_id,
        user_id=user_id,
        clock=clock,
    )
    return _serialize_group(rows)


@router.get("/{reservation_id}", response_model=ReservationResponse)
def get_reservation(reservation_id: UUID, db: Session = Depends(get_db)):
    return _serialize_group(reservation_service.get_reservation(db, reservation_id))


@router.post("/{reservation_id}/confirm", response_model=ReservationResponse)
def confirm_reservation(
    reservation_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return _serialize_group(reservation_service.confirm_reservation(db, reservation_id, clock=clock))


@router.post("/{reservation_id}/cancel", response_model=ReservationResponse)
def cancel_reservation(
    reservation_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    return _serialize_group(reservation_service.cancel_reservation(db, reservation_id, clock=clock))

from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock, get_optional_user_id
from app.core.clock import Clock
from app.schemas.seat import (
    SeatHold as SeatHoldSchema,
    SeatHoldRequest,
    SeatHoldResponse,
    SeatHoldTokenRequest,
)
from app.services import seat_holds

router = APIRouter(prefix="/holds", tags=["Seat Holds"])


# ---------------------------------------------------------------------------
# POST /holds: lock seats for this client
# ---------------------------------------------------------------------------


@router.post("/", response_model=SeatHoldResponse, status_code=status.HTTP_201_CREATED)
def create_holds(
    data: SeatHoldRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    """
    Hold seats for a screening.

    - Seats already held by this client are refreshed.
    - The hold never outlives the reservation deadline (30 min before start).
    """
    holds = seat_holds.create_holds(
        db,
        data.screening_id,
        data.seat_ids,
        data.client_token,
        user_id=user_id,
        ttl_seconds=data.ttl_seconds,
        clock=clock,
    )
    return SeatHoldResponse(
        holds=[SeatHoldSchema.model_validate(h) for h in holds],
        expires_at=min(h.expires_at for h in holds),
    )


# ---------------------------------------------------------------------------
# POST /holds/{id}/extend: heartbeat
# ---------------------------------------------------------------------------


@router.post("/{hold_id}/extend", response_model=SeatHoldSchema)
def extend_hold(
    hold_id: UUID,
    data: SeatHoldTokenRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    return seat_holds.extend_hold(db, hold_id, data.client_token, user_id=user_id, clock=clock)


# ---------------------------------------------------------------------------
# DELETE /holds/{id}
# ---------------------------------------------------------------------------


@router.delete("/{hold_id}", status_code=status.HTTP_204_NO_CONTENT)
def release_hold(
    hold_id: UUID,
    client_token: str = Query(..., min_length=1, max_length=64),
    db: Session = Depends(get_db),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    seat_holds.release_hold(db, hold_id, client_token, user_id=user_id)

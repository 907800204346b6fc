from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock
from app.core.clock import Clock
from app.schemas.seat import SeatMapResponse
from app.services.seat_status import get_seat_map

router = APIRouter(prefix="/screenings", tags=["Screenings"])


@router.get("/{screening_id}/seats", response_model=SeatMapResponse)
def seat_map(
    screening_id: UUID,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Seat statuses for the seat selection screen. No authentication required."""
    return get_seat_map(db, screening_id, clock=clock)

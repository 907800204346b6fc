from fastapi import APIRouter, Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock, require_admin
from app.core.clock import Clock
from app.core.config import settings
from app.models.reservation import Reservation
from app.models.seat_hold import SeatHold
from app.services.reservations import expire_reservations
from app.services.seat_holds import cleanup_expired_holds

router = APIRouter(
    prefix="/admin/maintenance",
    tags=["Admin - Maintenance"],
    dependencies=[Depends(require_admin)],
)


@router.post("/cleanup-holds")
def cleanup_holds(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Drain expired seat holds now instead of waiting for the background sweep."""
    batch_size = settings.HOLD_CLEANUP_BATCH_SIZE
    total = 0
    while True:
        count = cleanup_expired_holds(db, batch_size=batch_size, clock=clock)
        total += count
        if count < batch_size:
            break
    return {"deleted_holds": total}


@router.post("/expire-reservations")
def expire_pending_reservations(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    return {"expired_reservations": expire_reservations(db, clock=clock)}


@router.get("/stats")
def maintenance_stats(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    now = clock.now()
    active_holds = db.query(SeatHold).filter(SeatHold.expires_at > now).count()
    expired_holds = db.query(SeatHold).filter(SeatHold.expires_at <= now).count()
    by_status = dict(
        db.query(Reservation.status, func.count(Reservation.id)).group_by(Reservation.status).all()
    )
    return {
        "active_holds": active_holds,
        "expired_holds": expired_holds,
        "reservations": {s.value: c for s, c in by_status.items()},
    }

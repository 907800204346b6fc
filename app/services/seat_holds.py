"""
Seat holds: short-lived, client-scoped locks on (screening, seat).

A hold request runs its sold/reserved/held checks and its insert in one
transaction. The unique constraint on seat_holds(screening_id, seat_id) is what
actually serialises two callers racing for the same seat; the loser's flush
fails and is reported as a ConflictError.
"""
import logging
from datetime import timedelta
from typing import Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import (
    ConflictError,
    HoldExpiredError,
    NotFoundError,
    PolicyError,
    UnauthorizedError,
    ValidationError,
)
from app.models.hall import SeatLayout
from app.models.reservation import Reservation, LIVE_RESERVATION_STATUSES
from app.models.screening import Screening
from app.models.seat import Seat
from app.models.seat_hold import SeatHold
from app.models.ticket import Ticket
from app.services.settings_reader import SettingsReader

logger = logging.getLogger(__name__)

MAX_SEATS_PER_HOLD = 10
MAX_TTL_SECONDS = 3600
MAX_CLIENT_TOKEN_LENGTH = 64
T60_CUTOFF = timedelta(minutes=60)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _labels(seat_ids: Iterable[UUID], seats_by_id: Dict[UUID, Seat]) -> str:
    return ", ".join(
        seats_by_id[s].label if s in seats_by_id else str(s) for s in seat_ids
    )


def _validate_request(seat_ids: List[UUID], client_token: str, ttl_seconds: Optional[int]) -> None:
    if not client_token or not client_token.strip():
        raise ValidationError("client_token is required")
    if len(client_token) > MAX_CLIENT_TOKEN_LENGTH:
        raise ValidationError(f"client_token must be at most {MAX_CLIENT_TOKEN_LENGTH} characters")
    if not seat_ids:
        raise ValidationError("At least one seat must be selected")
    if len(seat_ids) > MAX_SEATS_PER_HOLD:
        raise ValidationError(f"Cannot hold more than {MAX_SEATS_PER_HOLD} seats at once")
    if len(set(seat_ids)) != len(seat_ids):
        raise ValidationError("Duplicate seats are not allowed")
    if ttl_seconds is not None and not (1 <= ttl_seconds <= MAX_TTL_SECONDS):
        raise ValidationError(f"ttl_seconds must be between 1 and {MAX_TTL_SECONDS}")


def check_t60_cutoff(screening: Screening, now) -> None:
    """Rejects booking actions inside the last hour before the show, when enabled."""
    if settings.ENFORCE_T60_CUTOFF and now >= screening.start_at - T60_CUTOFF:
        raise PolicyError(
            "Bookings close 60 minutes before the screening starts"
        )


def load_layout_seats(db: Session, screening: Screening, seat_ids: List[UUID]) -> Dict[UUID, Seat]:
    """Returns the requested seats; raises if any is not part of the screening's layout."""
    layout = db.query(SeatLayout).filter(SeatLayout.id == screening.seat_layout_id).first()
    if not layout:
        raise NotFoundError("Seat layout for this screening not found")

    seats = (
        db.query(Seat)
        .filter(Seat.seat_layout_id == layout.id, Seat.id.in_(seat_ids))
        .all()
    )
    seats_by_id = {s.id: s for s in seats}
    missing = [s for s in seat_ids if s not in seats_by_id]
    if missing:
        raise ValidationError(
            "Seats do not belong to this screening's layout: "
            + ", ".join(str(s) for s in missing)
        )
    return seats_by_id


def active_holds_for_seats(db: Session, screening_id: UUID, seat_ids: List[UUID], now) -> List[SeatHold]:
    return (
        db.query(SeatHold)
        .filter(
            SeatHold.screening_id == screening_id,
            SeatHold.seat_id.in_(seat_ids),
            SeatHold.expires_at > now,
        )
        .all()
    )


def _bounded_expiry(hold: SeatHold, wanted, deadline, max_minutes: int):
    """
    Expiry for a hold being kept alive: never past created_at + max_minutes or
    the reservation deadline.
    """
    ceiling = min(hold.created_at + timedelta(minutes=max_minutes), deadline)
    # A hold created with a long TTL may already sit past the ceiling; keep it, never shorten
    return max(hold.expires_at, min(wanted, ceiling))


def _load_owned_hold(db: Session, hold_id: UUID, client_token: Optional[str], user_id) -> SeatHold:
    hold = db.query(SeatHold).filter(SeatHold.id == hold_id).first()
    if not hold:
        raise NotFoundError("Seat hold not found")
    if not hold.is_owned_by(client_token, user_id):
        raise UnauthorizedError("This seat hold belongs to another client")
    return hold


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def create_holds(
    db: Session,
    screening_id: UUID,
    seat_ids: List[UUID],
    client_token: str,
    user_id: Optional[UUID] = None,
    ttl_seconds: Optional[int] = None,
    clock: Clock = system_clock,
) -> List[SeatHold]:
    """
    Lock `seat_ids` for the caller.

    Seats the caller already holds are refreshed rather than rejected. The
    expiry never passes the screening's reservation deadline (start - 30 min).
    """
    seat_ids = list(seat_ids)
    _validate_request(seat_ids, client_token, ttl_seconds)
    now = clock.now()

    screening = db.query(Screening).filter(Screening.id == screening_id).first()
    if not screening:
        raise NotFoundError("Screening not found")
    check_t60_cutoff(screening, now)
    deadline = screening.reservation_deadline
    if now >= deadline:
        raise PolicyError("Seat selection has closed for this screening")

    seats_by_id = load_layout_seats(db, screening, seat_ids)

    sold = [
        t.seat_id
        for t in db.query(Ticket.seat_id)
        .filter(Ticket.screening_id == screening_id, Ticket.seat_id.in_(seat_ids))
        .all()
    ]
    if sold:
        raise ConflictError(f"Seats already sold: {_labels(sold, seats_by_id)}", sold)

    reserved = [
        r.seat_id
        for r in db.query(Reservation.seat_id)
        .filter(
            Reservation.screening_id == screening_id,
            Reservation.seat_id.in_(seat_ids),
            Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        )
        .all()
    ]
    if reserved:
        raise ConflictError(f"Seats already reserved: {_labels(reserved, seats_by_id)}", reserved)

    existing = (
        db.query(SeatHold)
        .filter(SeatHold.screening_id == screening_id, SeatHold.seat_id.in_(seat_ids))
        .all()
    )
    active = [h for h in existing if not h.is_expired(now)]
    foreign = [h for h in active if not h.is_owned_by(client_token, user_id)]
    if foreign:
        earliest = min(h.expires_at for h in foreign)
        held_ids = [h.seat_id for h in foreign]
        raise ConflictError(
            f"Seats already held by another client: {_labels(held_ids, seats_by_id)}. "
            f"Held until: {earliest.isoformat()}",
            held_ids,
        )

    reader = SettingsReader(db)
    ttl = ttl_seconds or reader.get_int("SeatHold:DefaultTtlSeconds") or 120
    max_minutes = reader.get_int("SeatHold:MaxExtendMinutes") or 10
    expires_at = min(now + timedelta(seconds=ttl), deadline)

    try:
        # Expired rows still occupy the unique (screening, seat) slot
        for hold in existing:
            if hold.is_expired(now):
                db.delete(hold)
        db.flush()

        owned = {h.seat_id: h for h in active}
        holds = []
        for seat_id in seat_ids:
            hold = owned.get(seat_id)
            if hold is None:
                hold = SeatHold(
                    screening_id=screening_id,
                    seat_id=seat_id,
                    client_token=client_token,
                    user_id=user_id,
                    created_at=now,
                    last_heartbeat_at=now,
                    expires_at=expires_at,
                )
                db.add(hold)
            else:
                # Re-holding is a heartbeat and shares its lifetime cap
                hold.expires_at = _bounded_expiry(hold, expires_at, deadline, max_minutes)
                hold.last_heartbeat_at = now
                if hold.user_id is None:
                    hold.user_id = user_id
            holds.append(hold)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError(
            f"Seats were just taken by another client: {_labels(seat_ids, seats_by_id)}",
            seat_ids,
        )
    except Exception:
        db.rollback()
        raise

    for hold in holds:
        db.refresh(hold)
    logger.info(
        "Held %d seat(s) for screening %s until %s",
        len(holds), screening_id, min(h.expires_at for h in holds).isoformat(),
    )
    return holds


def extend_hold(
    db: Session,
    hold_id: UUID,
    client_token: Optional[str],
    user_id: Optional[UUID] = None,
    clock: Clock = system_clock,
) -> SeatHold:
    """
    Heartbeat: push the expiry forward by the configured step.

    Total lifetime is capped at created_at + max-extend minutes and at the
    screening's reservation deadline, however often the client heartbeats.
    """
    now = clock.now()
    hold = _load_owned_hold(db, hold_id, client_token, user_id)
    if hold.is_expired(now):
        raise HoldExpiredError("Seat hold has expired; request a new hold", [hold.seat_id])

    reader = SettingsReader(db)
    step = reader.get_int("SeatHold:HeartbeatExtendSeconds") or 120
    max_minutes = reader.get_int("SeatHold:MaxExtendMinutes") or 10

    hold.expires_at = _bounded_expiry(
        hold, now + timedelta(seconds=step), hold.screening.reservation_deadline, max_minutes
    )
    hold.last_heartbeat_at = now
    db.commit()
    db.refresh(hold)
    return hold


def release_hold(
    db: Session,
    hold_id: UUID,
    client_token: Optional[str],
    user_id: Optional[UUID] = None,
) -> None:
    hold = _load_owned_hold(db, hold_id, client_token, user_id)
    db.delete(hold)
    db.commit()
    logger.info("Released seat hold %s", hold_id)


def validate_holds_for_reservation(
    db: Session,
    screening_id: UUID,
    seat_ids: List[UUID],
    client_token: Optional[str],
    user_id: Optional[UUID] = None,
    clock: Clock = system_clock,
) -> bool:
    """True iff every seat has a live hold owned by the caller."""
    seat_ids = list(seat_ids)
    if not seat_ids:
        return False
    holds = active_holds_for_seats(db, screening_id, seat_ids, clock.now())
    owned = {h.seat_id for h in holds if h.is_owned_by(client_token, user_id)}
    return all(s in owned for s in seat_ids)


def remove_holds_for_seats(
    db: Session,
    screening_id: UUID,
    seat_ids: List[UUID],
    client_token: Optional[str],
    user_id: Optional[UUID] = None,
) -> int:
    """Deletes the caller's holds on these seats. Does not commit."""
    if not client_token and user_id is None:
        return 0
    holds = (
        db.query(SeatHold)
        .filter(SeatHold.screening_id == screening_id, SeatHold.seat_id.in_(list(seat_ids)))
        .all()
    )
    removed = 0
    for hold in holds:
        if hold.is_owned_by(client_token, user_id):
            db.delete(hold)
            removed += 1
    return removed


def cleanup_expired_holds(db: Session, batch_size: int = 100, clock: Clock = system_clock) -> int:
    """Deletes up to `batch_size` expired holds and returns how many went."""
    now = clock.now()
    ids = [
        row.id
        for row in db.query(SeatHold.id)
        .filter(SeatHold.expires_at <= now)
        .order_by(SeatHold.expires_at)
        .limit(batch_size)
        .all()
    ]
    if not ids:
        return 0
    count = (
        db.query(SeatHold)
        .filter(SeatHold.id.in_(ids), SeatHold.expires_at <= now)
        .delete(synchronize_session="fetch")
    )
    db.commit()
    return count

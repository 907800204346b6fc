import logging
import uuid
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from app.core.clock import Clock, system_clock
from app.core.exceptions import ConflictError, NotFoundError, PolicyError, ValidationError
from app.models.member import Member
from app.models.reservation import Reservation, ReservationStatus, LIVE_RESERVATION_STATUSES
from app.models.screening import Screening
from app.services.seat_holds import (
    MAX_SEATS_PER_HOLD,
    check_t60_cutoff,
    remove_holds_for_seats,
    validate_holds_for_reservation,
)
from app.services.settings_reader import SettingsReader

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _check_advance_booking(db: Session, screening: Screening, member: Optional[Member], now) -> None:
    reader = SettingsReader(db)
    is_vip = member is not None and member.is_active_vip
    if is_vip:
        limit = reader.get_int("VipAdvanceBookingDays")
        limit = 7 if limit is None else limit
    else:
        limit = reader.get_int("RegularAdvanceBookingDays")
        limit = 2 if limit is None else limit

    days_until = (screening.start_at.date() - now.date()).days
    if days_until > limit:
        kind = "VIP" if is_vip else "Regular"
        raise PolicyError(
            f"{kind} members can only book tickets up to {limit} days in advance. "
            f"This screening is {days_until} days away."
        )


def load_reservation_group(db: Session, reservation_id: UUID) -> List[Reservation]:
    """All rows created together with `reservation_id` (a row id or a group id)."""
    row = db.query(Reservation).filter(Reservation.id == reservation_id).first()
    group_id = row.group_id if row else reservation_id
    return (
        db.query(Reservation)
        .options(joinedload(Reservation.seat))
        .filter(or_(Reservation.id == reservation_id, Reservation.group_id == group_id))
        .order_by(Reservation.created_at, Reservation.id)
        .all()
    )


def _require_group(db: Session, reservation_id: UUID) -> List[Reservation]:
    rows = load_reservation_group(db, reservation_id)
    if not rows:
        raise NotFoundError("Reservation not found")
    return rows


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


def create_reservation(
    db: Session,
    screening_id: UUID,
    seat_ids: List[UUID],
    client_token: str,
    member_id: Optional[UUID] = None,
    user_id: Optional[UUID] = None,
    clock: Clock = system_clock,
) -> List[Reservation]:
    """
    Turn the caller's live holds into one Pending reservation per seat.

    Every row expires at the screening's reservation deadline (start - 30 min)
    and the consumed holds are deleted in the same transaction.
    """
    seat_ids = list(seat_ids)
    if not client_token or not client_token.strip():
        raise ValidationError("client_token is required")
    if not seat_ids:
        raise ValidationError("At least one seat must be selected")
    if len(seat_ids) > MAX_SEATS_PER_HOLD:
        raise ValidationError(f"Cannot reserve more than {MAX_SEATS_PER_HOLD} seats at once")
    if len(set(seat_ids)) != len(seat_ids):
        raise ValidationError("Duplicate seats are not allowed")

    now = clock.now()
    screening = db.query(Screening).filter(Screening.id == screening_id).first()
    if not screening:
        raise NotFoundError("Screening not found")

    member = None
    if member_id is not None:
        member = db.query(Member).filter(Member.id == member_id).first()
        if not member:
            raise NotFoundError("Member not found")

    _check_advance_booking(db, screening, member, now)
    check_t60_cutoff(screening, now)

    if not validate_holds_for_reservation(db, screening_id, seat_ids, client_token, user_id, clock=clock):
        raise ConflictError(
            "All seats must be held by the requesting client before creating a reservation.",
            seat_ids,
        )

    group_id = uuid.uuid4()
    expires_at = screening.reservation_deadline
    reservations = [
        Reservation(
            group_id=group_id,
            screening_id=screening_id,
            seat_id=seat_id,
            member_id=member_id,
            status=ReservationStatus.PENDING,
            expires_at=expires_at,
            created_at=now,
        )
        for seat_id in seat_ids
    ]
    try:
        db.add_all(reservations)
        db.flush()
        remove_holds_for_seats(db, screening_id, seat_ids, client_token, user_id)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ConflictError("One or more seats were reserved by another client", seat_ids)
    except Exception:
        db.rollback()
        raise

    logger.info(
        "Created reservation %s for %d seat(s) on screening %s", group_id, len(reservations), screening_id
    )
    return load_reservation_group(db, group_id)


def get_reservation(db: Session, reservation_id: UUID) -> List[Reservation]:
    return _require_group(db, reservation_id)


def confirm_reservation(db: Session, reservation_id: UUID, clock: Clock = system_clock) -> List[Reservation]:
    now = clock.now()
    rows = _require_group(db, reservation_id)
    for r in rows:
        if r.status != ReservationStatus.PENDING:
            raise ConflictError(f"Reservation cannot be confirmed while {r.status.value}")
        if r.expires_at <= now:
            raise ConflictError("Reservation has expired")
    for r in rows:
        r.status = ReservationStatus.CONFIRMED
        r.updated_at = now
    db.commit()
    return rows


def cancel_reservation(db: Session, reservation_id: UUID, clock: Clock = system_clock) -> List[Reservation]:
    now = clock.now()
    rows = _require_group(db, reservation_id)
    for r in rows:
        if r.status not in LIVE_RESERVATION_STATUSES:
            raise ConflictError(f"Reservation cannot be canceled while {r.status.value}")
    for r in rows:
        r.status = ReservationStatus.CANCELED
        r.updated_at = now
    db.commit()
    logger.info("Canceled reservation %s", reservation_id)
    return rows


def expire_reservations(db: Session, clock: Clock = system_clock) -> int:
    """
    Move Pending reservations past their deadline to Expired.

    Each row is a conditional update in its own savepoint, so a row that a
    concurrent sale has just completed is skipped and a failing row does not
    abort the rest of the batch.
    """
    now = clock.now()
    ids = [
        row.id
        for row in db.query(Reservation.id)
        .filter(
            Reservation.status == ReservationStatus.PENDING,
            Reservation.expires_at <= now,
        )
        .all()
    ]
    expired = 0
    for reservation_id in ids:
        try:
            with db.begin_nested():
                expired += (
                    db.query(Reservation)
                    .filter(
                        Reservation.id == reservation_id,
                        Reservation.status == ReservationStatus.PENDING,
                    )
                    .update(
                        {"status": ReservationStatus.EXPIRED, "updated_at": now},
                        synchronize_session=False,
                    )
                )
        except SQLAlchemyError:
            logger.exception("Failed to expire reservation %s", reservation_id)
    db.commit()
    if expired:
        logger.info("Expired %d reservation(s)", expired)
    return expired

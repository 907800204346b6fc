"""
Ticket sale orchestration.

Order of work for one sale: idempotency claim, seat checks, price quote,
payment, then a single transaction writing the payment, the tickets and the
reservation/hold bookkeeping. A declined payment is returned as a normal
response and leaves the database untouched.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.exceptions import ConflictError, NotFoundError, ValidationError
from app.models.member import Member, MemberCredit
from app.models.reservation import Reservation, ReservationStatus, LIVE_RESERVATION_STATUSES
from app.models.screening import Screening
from app.models.seat import Seat
from app.models.ticket import (
    Payment,
    PaymentMethod,
    PaymentStatus,
    Ticket,
    TicketChannel,
    TicketType,
)
from app.schemas.pricing import PriceQuoteItemRequest, PriceQuoteResponse
from app.schemas.ticket import SellTicketRequest, SellTicketResponse, SoldTicket, TicketDetail
from app.services.idempotency import IdempotencyStore
from app.services.payments import PaymentGateway, StubPaymentGateway, authorize_with_timeout
from app.services.pricing import calculate_quote
from app.services.reservations import load_reservation_group
from app.services.seat_holds import active_holds_for_seats, remove_holds_for_seats
from app.services.ticket_codes import unique_ticket_code

logger = logging.getLogger(__name__)

MAX_ITEMS_PER_SALE = 10


@dataclass
class _SaleLine:
    seat: Seat
    ticket_type: TicketType
    is_vip_guest: bool = False


# ---------------------------------------------------------------------------
# Seat checks
# ---------------------------------------------------------------------------


def _sold_seat_ids(db: Session, screening_id: UUID, seat_ids: List[UUID]) -> set:
    return {
        t.seat_id
        for t in db.query(Ticket.seat_id)
        .filter(Ticket.screening_id == screening_id, Ticket.seat_id.in_(seat_ids))
        .all()
    }


def _reject_foreign_holds(db, screening_id, seats, client_token, user_id, now) -> None:
    labels = {s.id: s.label for s in seats}
    for hold in active_holds_for_seats(db, screening_id, list(labels), now):
        if not hold.is_owned_by(client_token, user_id):
            raise ConflictError(
                f"Seat {labels[hold.seat_id]} is held by another user", [hold.seat_id]
            )


def _reservation_lines(
    db: Session,
    request: SellTicketRequest,
    now,
    user_id: Optional[UUID],
) -> tuple:
    reservations = load_reservation_group(db, request.reservation_id)
    if not reservations:
        raise NotFoundError("Reservation not found")

    for r in reservations:
        if request.member_id is not None and r.member_id != request.member_id:
            raise ConflictError("Reservation belongs to a different member")
        if r.screening_id != request.screening_id:
            raise ConflictError("Reservation is for a different screening")
        if r.status not in LIVE_RESERVATION_STATUSES:
            raise ConflictError(f"Reservation is {r.status.value} and cannot be sold")
        if r.status == ReservationStatus.PENDING and r.expires_at <= now:
            raise ConflictError("Reservation has expired")

    seats = [r.seat for r in reservations]
    # Holds were consumed when the reservation was made; only a live hold
    # taken since by somebody else blocks the handoff.
    _reject_foreign_holds(db, request.screening_id, seats, request.client_token, user_id, now)

    sold = _sold_seat_ids(db, request.screening_id, [s.id for s in seats])
    if sold:
        label = next(s.label for s in seats if s.id in sold)
        raise ConflictError(f"Seat {label} is already sold", sold)

    lines = [_SaleLine(seat=s, ticket_type=TicketType.FULL) for s in seats]
    return lines, reservations


def _direct_lines(
    db: Session,
    request: SellTicketRequest,
    screening: Screening,
    now,
    user_id: Optional[UUID],
) -> List[_SaleLine]:
    items = request.items or []
    if not items:
        raise ValidationError("At least one item is required for a direct sale")
    if len(items) > MAX_ITEMS_PER_SALE:
        raise ValidationError(f"Cannot sell more than {MAX_ITEMS_PER_SALE} tickets at once")
    seat_ids = [i.seat_id for i in items]
    if len(set(seat_ids)) != len(seat_ids):
        raise ValidationError("Duplicate seats are not allowed")

    seats_by_id = {s.id: s for s in db.query(Seat).filter(Seat.id.in_(seat_ids)).all()}
    lines = []
    for item in items:
        seat = seats_by_id.get(item.seat_id)
        if seat is None:
            raise NotFoundError(f"Seat {item.seat_id} not found")
        if seat.seat_layout_id != screening.seat_layout_id:
            raise ValidationError(f"Seat {seat.label} is not part of this screening's hall")
        lines.append(_SaleLine(seat=seat, ticket_type=item.ticket_type, is_vip_guest=item.is_vip_guest))

    sold = _sold_seat_ids(db, screening.id, seat_ids)
    reserved = {
        r.seat_id
        for r in db.query(Reservation.seat_id)
        .filter(
            Reservation.screening_id == screening.id,
            Reservation.seat_id.in_(seat_ids),
            Reservation.status.in_(LIVE_RESERVATION_STATUSES),
        )
        .all()
    }
    for line in lines:
        if line.seat.id in sold:
            raise ConflictError(f"Seat {line.seat.label} is already sold", [line.seat.id])
        if line.seat.id in reserved:
            raise ConflictError(f"Seat {line.seat.label} is reserved", [line.seat.id])

    # Box office staff may sell over another client's hold
    if request.channel != TicketChannel.BOX_OFFICE:
        _reject_foreign_holds(
            db, screening.id, [line.seat for line in lines], request.client_token, user_id, now
        )
    return lines


# ---------------------------------------------------------------------------
# Sale
# ---------------------------------------------------------------------------


def _totals(quote: PriceQuoteResponse) -> dict:
    return dict(
        currency=quote.currency,
        total_before=quote.total_before,
        total_after=quote.total_after,
        total_discount=quote.total_discount,
    )


def _void_quietly(gateway: PaymentGateway, transaction_id: str) -> None:
    try:
        voided = gateway.void(transaction_id)
    except Exception:
        logger.exception("Void of payment %s failed; manual reconciliation required", transaction_id)
        return
    if not voided:
        logger.error("Gateway refused to void payment %s; manual reconciliation required", transaction_id)


def _sell(
    db: Session,
    request: SellTicketRequest,
    clock: Clock,
    gateway: PaymentGateway,
    user_id: Optional[UUID],
) -> SellTicketResponse:
    if request.reservation_id is not None and request.items:
        raise ValidationError("Provide either reservation_id or items, not both")
    if request.reservation_id is None and not request.items:
        raise ValidationError("Either reservation_id or items is required")
    if request.payment_method == PaymentMethod.MEMBER_CREDIT and request.member_id is None:
        raise ValidationError("member_id is required to pay with member credit")

    now = clock.now()
    screening = db.query(Screening).filter(Screening.id == request.screening_id).first()
    if not screening:
        raise NotFoundError("Screening not found")
    if now >= screening.start_at:
        raise ConflictError("Cannot sell tickets for a screening that has already started")

    reservations: List[Reservation] = []
    if request.reservation_id is not None:
        lines, reservations = _reservation_lines(db, request, now, user_id)
    else:
        lines = _direct_lines(db, request, screening, now, user_id)

    member_id = request.member_id
    if member_id is None and reservations:
        member_id = reservations[0].member_id
    if member_id is not None:
        if not db.query(Member).filter(Member.id == member_id).first():
            raise NotFoundError("Member not found")

    quote = calculate_quote(
        db,
        screening.id,
        [
            PriceQuoteItemRequest(
                seat_id=line.seat.id, ticket_type=line.ticket_type, quantity=1, is_vip_guest=line.is_vip_guest
            )
            for line in lines
        ],
        member_id=member_id,
        clock=clock,
    )

    metadata = dict(request.payment_metadata)
    metadata.update(
        screening_id=str(screening.id),
        seat_count=len(lines),
        channel=request.channel.value,
    )
    if request.reservation_id is not None:
        metadata["reservation_id"] = str(request.reservation_id)

    amount = quote.total_after
    result = authorize_with_timeout(gateway, amount, request.payment_method, member_id, metadata)
    if not result.is_success:
        logger.warning(
            "Payment %s for screening %s (%d seat(s)): %s",
            "timed out" if result.timed_out else "declined",
            screening.id, len(lines), result.error_message,
        )
        return SellTicketResponse(
            payment_status=PaymentStatus.UNKNOWN if result.timed_out else PaymentStatus.FAILED,
            payment_error=result.error_message,
            items=[],
            **_totals(quote),
        )

    seat_ids = [line.seat.id for line in lines]
    try:
        payment = Payment(
            member_id=member_id,
            amount=amount,
            method=request.payment_method,
            status=PaymentStatus.SUCCEEDED,
            external_reference=result.transaction_id,
            created_at=now,
        )
        db.add(payment)
        db.flush()
        if request.payment_method == PaymentMethod.MEMBER_CREDIT and amount > 0:
            db.add(
                MemberCredit(
                    member_id=member_id,
                    amount=-amount,
                    description="Ticket purchase",
                    reference=result.transaction_id,
                    created_at=now,
                )
            )

        issued = set()
        tickets = []
        for line, quoted in zip(lines, quote.items):
            ticket = Ticket(
                screening_id=screening.id,
                seat_id=line.seat.id,
                payment_id=payment.id,
                type=line.ticket_type,
                channel=request.channel,
                price=quoted.final_price,
                ticket_code=unique_ticket_code(db, issued),
                applied_pricing_json=quoted.model_dump_json(),
                sold_at=now,
            )
            db.add(ticket)
            tickets.append((ticket, line, quoted))
        db.flush()

        if reservations:
            for r in reservations:
                r.status = ReservationStatus.COMPLETED
                r.updated_at = now
            remove_holds_for_seats(db, screening.id, seat_ids, request.client_token, user_id)
        elif request.client_token:
            remove_holds_for_seats(db, screening.id, seat_ids, request.client_token, user_id)
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception(
            "Payment %s captured but the sale could not be recorded", result.transaction_id
        )
        _void_quietly(gateway, result.transaction_id)
        if isinstance(exc, IntegrityError):
            raise ConflictError("One or more seats were sold by a concurrent request", seat_ids) from exc
        raise

    logger.info(
        "Sold %d ticket(s) for screening %s, payment %s",
        len(tickets), screening.id, result.transaction_id,
    )
    return SellTicketResponse(
        payment_status=PaymentStatus.SUCCEEDED,
        payment_reference=result.transaction_id,
        items=[
            SoldTicket(
                ticket_id=ticket.id,
                ticket_code=ticket.ticket_code,
                seat_id=line.seat.id,
                seat_label=line.seat.label,
                ticket_type=line.ticket_type,
                final_price=quoted.final_price,
                applied_rule=quoted.applied_rule,
            )
            for ticket, line, quoted in tickets
        ],
        **_totals(quote),
    )


def sell_tickets(
    db: Session,
    request: SellTicketRequest,
    clock: Clock = system_clock,
    gateway: Optional[PaymentGateway] = None,
    user_id: Optional[UUID] = None,
) -> SellTicketResponse:
    """
    Sell tickets from a reservation or directly from a list of seats.

    With an idempotency key, a repeated request gets the first successful (or
    timed-out) response back without touching seats or the payment gateway
    again. Declines release the key.
    """
    gateway = gateway or StubPaymentGateway(db, clock)
    key = request.idempotency_key
    store = IdempotencyStore(db, clock) if key else None
    if store is not None:
        cached = store.claim(key, SellTicketResponse)
        if cached is not None:
            logger.info("Returning cached sale response for idempotency key %s", key)
            return cached

    try:
        response = _sell(db, request, clock, gateway, user_id)
    except Exception:
        if store is not None:
            store.release(key)
        raise

    if store is not None:
        # A timed-out payment may still capture, so its key stays spent
        if response.payment_status in (PaymentStatus.SUCCEEDED, PaymentStatus.UNKNOWN):
            store.store(key, response)
        else:
            store.release(key)
    return response


def get_ticket(db: Session, ticket_id: UUID) -> TicketDetail:
    ticket = db.query(Ticket).filter(Ticket.id == ticket_id).first()
    if not ticket:
        raise NotFoundError("Ticket not found")
    return TicketDetail(
        id=ticket.id,
        ticket_code=ticket.ticket_code,
        screening_id=ticket.screening_id,
        seat_id=ticket.seat_id,
        seat_label=ticket.seat.label,
        type=ticket.type,
        channel=ticket.channel,
        price=Decimal(ticket.price),
        payment_id=ticket.payment_id,
        sold_at=ticket.sold_at,
        applied_pricing=json.loads(ticket.applied_pricing_json) if ticket.applied_pricing_json else None,
    )

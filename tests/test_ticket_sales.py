import json
import re
import threading
import time
from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from app.core.config import settings
from app.core.exceptions import ConflictError, NotFoundError, TicketCodeExhaustedError, ValidationError
from app.models.idempotency import IdempotencyRecord
from app.models.member import MemberCredit
from app.models.reservation import Reservation, ReservationStatus
from app.models.seat_hold import SeatHold
from app.models.ticket import Payment, PaymentMethod, PaymentStatus, Ticket, TicketChannel, TicketType
from app.schemas.ticket import SellTicketItem, SellTicketRequest
from app.services import reservations, seat_holds, ticket_codes, ticket_sales
from app.services.payments import PaymentGateway, PaymentResult, StubPaymentGateway, authorize_with_timeout

from tests.conftest import NOW

CODE_PATTERN = re.compile(r"^[A-Z]{2}\d{2}-\d{2}[A-Z]{2}$")


class RecordingGateway(StubPaymentGateway):
    def __init__(self, db, clock):
        super().__init__(db, clock)
        self.calls = []
        self.voided = []

    def authorize_and_capture(self, amount, method, member_id, metadata):
        self.calls.append((amount, method, member_id, dict(metadata)))
        return super().authorize_and_capture(amount, method, member_id, metadata)

    def void(self, transaction_id):
        self.voided.append(transaction_id)
        return True


@pytest.fixture
def gateway(db, clock):
    return RecordingGateway(db, clock)


def _direct(screening, seats, **kwargs):
    kwargs.setdefault("channel", TicketChannel.BOX_OFFICE)
    kwargs.setdefault("payment_method", PaymentMethod.CASH)
    return SellTicketRequest(
        screening_id=screening.id,
        items=[SellTicketItem(seat_id=s.id) for s in seats],
        **kwargs,
    )


def _sell(db, request, clock, gateway, **kwargs):
    return ticket_sales.sell_tickets(db, request, clock=clock, gateway=gateway, **kwargs)


# ---------------------------------------------------------------------------
# Direct sales
# ---------------------------------------------------------------------------


def test_box_office_sale_persists_tickets_and_payment(db, screening, seats, clock, gateway):
    response = _sell(db, _direct(screening, seats[:2]), clock, gateway)

    assert response.payment_status == PaymentStatus.SUCCEEDED
    assert response.total_after == Decimal("200.00")
    assert response.payment_reference.startswith("CC_20261013120000_")
    assert [i.seat_label for i in response.items] == ["A1", "A2"]
    assert all(CODE_PATTERN.match(i.ticket_code) for i in response.items)

    tickets = db.query(Ticket).all()
    assert len(tickets) == 2
    payment = db.query(Payment).one()
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.amount == Decimal("200.00")
    assert payment.external_reference == response.payment_reference
    snapshot = json.loads(tickets[0].applied_pricing_json)
    assert snapshot["applied_rule"]["code"] == "BASE_PRICE"

    metadata = gateway.calls[0][3]
    assert metadata["seat_count"] == 2
    assert metadata["channel"] == "BoxOffice"
    assert metadata["screening_id"] == str(screening.id)


def test_seat_cannot_be_sold_twice(db, screening, seats, clock, gateway):
    _sell(db, _direct(screening, seats[:1]), clock, gateway)

    with pytest.raises(ConflictError) as exc:
        _sell(db, _direct(screening, seats[:1]), clock, gateway)

    assert "already sold" in exc.value.message
    assert len(gateway.calls) == 1
    assert db.query(Ticket).count() == 1


def test_ticket_types_are_priced(db, screening, seats, clock, gateway):
    request = SellTicketRequest(
        screening_id=screening.id,
        channel=TicketChannel.BOX_OFFICE,
        payment_method=PaymentMethod.CASH,
        items=[
            SellTicketItem(seat_id=seats[0].id, ticket_type=TicketType.STUDENT),
            SellTicketItem(seat_id=seats[1].id, ticket_type=TicketType.FULL),
        ],
    )

    response = _sell(db, request, clock, gateway)

    assert [i.final_price for i in response.items] == [Decimal("60.00"), Decimal("100.00")]
    student = db.query(Ticket).filter(Ticket.seat_id == seats[0].id).one()
    assert student.type == TicketType.STUDENT
    assert student.price == Decimal("60.00")


def test_online_sale_blocked_by_foreign_hold(db, screening, seats, clock, gateway):
    seat_holds.create_holds(db, screening.id, [seats[0].id], "client-a", clock=clock)

    with pytest.raises(ConflictError) as exc:
        _sell(db, _direct(screening, seats[:1], channel=TicketChannel.ONLINE, client_token="client-b"), clock, gateway)
    assert "held by another user" in exc.value.message

    with pytest.raises(ConflictError):
        _sell(db, _direct(screening, seats[:1], channel=TicketChannel.ONLINE), clock, gateway)
    assert gateway.calls == []


def test_online_sale_of_own_hold_releases_it(db, screening, seats, clock, gateway):
    seat_holds.create_holds(db, screening.id, [seats[0].id], "client-a", clock=clock)

    response = _sell(
        db, _direct(screening, seats[:1], channel=TicketChannel.ONLINE, client_token="client-a"), clock, gateway
    )

    assert response.payment_status == PaymentStatus.SUCCEEDED
    assert db.query(SeatHold).count() == 0


def test_box_office_overrides_holds(db, screening, seats, clock, gateway):
    seat_holds.create_holds(db, screening.id, [seats[0].id], "client-a", clock=clock)

    response = _sell(db, _direct(screening, seats[:1]), clock, gateway)

    assert response.payment_status == PaymentStatus.SUCCEEDED


def test_direct_sale_rejects_reserved_seat(db, screening, seats, clock, gateway):
    seat_holds.create_holds(db, screening.id, [seats[0].id], "client-a", clock=clock)
    reservations.create_reservation(db, screening.id, [seats[0].id], "client-a", clock=clock)

    with pytest.raises(ConflictError) as exc:
        _sell(db, _direct(screening, seats[:1]), clock, gateway)
    assert "reserved" in exc.value.message


def test_direct_sale_validation(db, screening, seats, clock, gateway):
    with pytest.raises(ValidationError):
        _sell(db, SellTicketRequest(screening_id=screening.id, items=[]), clock, gateway)
    with pytest.raises(ValidationError):
        _sell(db, _direct(screening, seats[:11]), clock, gateway)
    with pytest.raises(ValidationError):
        _sell(db, _direct(screening, [seats[0], seats[0]]), clock, gateway)
    with pytest.raises(ValidationError):
        _sell(db, _direct(screening, seats[:1], reservation_id=uuid4()), clock, gateway)
    with pytest.raises(ValidationError):
        _sell(db, _direct(screening, seats[:1], payment_method=PaymentMethod.MEMBER_CREDIT), clock, gateway)
    assert gateway.calls == []


def test_vip_guest_flag_requires_vip_guest_type():
    with pytest.raises(ValueError):
        SellTicketItem(seat_id=uuid4(), ticket_type=TicketType.FULL, is_vip_guest=True)


def test_missing_references(db, screening, seats, clock, gateway):
    with pytest.raises(NotFoundError):
        _sell(db, SellTicketRequest(screening_id=uuid4(), items=[SellTicketItem(seat_id=seats[0].id)]), clock, gateway)
    with pytest.raises(NotFoundError):
        _sell(db, _direct(screening, seats[:1], member_id=uuid4()), clock, gateway)
    with pytest.raises(NotFoundError):
        _sell(
            db,
            SellTicketRequest(screening_id=screening.id, items=[SellTicketItem(seat_id=uuid4())]),
            clock,
            gateway,
        )


def test_started_screening_cannot_be_sold(db, make_screening, seats, clock, gateway):
    screening = make_screening(start_in=timedelta(minutes=10))
    clock.advance(minutes=10)

    with pytest.raises(ConflictError) as exc:
        _sell(db, _direct(screening, seats[:1]), clock, gateway)
    assert "already started" in exc.value.message


# ---------------------------------------------------------------------------
# Payment outcomes
# ---------------------------------------------------------------------------


def test_declined_payment_persists_nothing(db, screening, seats, clock, gateway):
    seat_holds.create_holds(db, screening.id, [seats[0].id], "client-a", clock=clock)
    request = _direct(
        screening,
        seats[:1],
        channel=TicketChannel.ONLINE,
        client_token="client-a",
        payment_metadata={"simulate_failure": True},
    )

    response = _sell(db, request, clock, gateway)

    assert response.payment_status == PaymentStatus.FAILED
    assert response.items == []
    assert response.total_after == Decimal("100.00")
    assert response.payment_error
    assert db.query(Ticket).count() == 0
    assert db.query(Payment).count() == 0
    assert db.query(SeatHold).count() == 1


def test_member_credit_payment(db, screening, seats, clock, gateway, make_member):
    poor = make_member(credit="50.00")
    rich = make_member(credit="500.00")

    declined = _sell(
        db, _direct(screening, seats[:1], member_id=poor.id, payment_method=PaymentMethod.MEMBER_CREDIT), clock, gateway
    )
    assert declined.payment_status == PaymentStatus.FAILED
    assert "Insufficient member credit" in declined.payment_error

    paid = _sell(
        db, _direct(screening, seats[:2], member_id=rich.id, payment_method=PaymentMethod.MEMBER_CREDIT), clock, gateway
    )
    assert paid.payment_status == PaymentStatus.SUCCEEDED
    debit = db.query(MemberCredit).filter(MemberCredit.member_id == rich.id, MemberCredit.amount < 0).one()
    assert debit.amount == Decimal("-200.00")
    assert debit.reference == paid.payment_reference


class LateCaptureGateway(PaymentGateway):
    """Remote-style gateway that captures only after `release` is set."""

    def __init__(self):
        self.release = threading.Event()
        self.void_called = threading.Event()
        self.captured = []
        self.voided = []

    def authorize_and_capture(self, amount, method, member_id, metadata):
        self.release.wait(5)
        transaction_id = f"txn-{len(self.captured) + 1}"
        self.captured.append(transaction_id)
        return PaymentResult(True, transaction_id=transaction_id)

    def void(self, transaction_id):
        self.voided.append(transaction_id)
        self.void_called.set()
        return True


def test_gateway_timeout_is_unknown_and_late_capture_is_voided():
    late = LateCaptureGateway()

    result = authorize_with_timeout(late, Decimal("10"), PaymentMethod.CASH, None, {}, timeout=0.05)

    assert not result.is_success
    assert result.timed_out
    assert "timed out" in result.error_message

    late.release.set()
    assert late.void_called.wait(2)
    assert late.voided == late.captured == ["txn-1"]


def test_late_decline_is_not_voided():
    class LateDecline(LateCaptureGateway):
        def authorize_and_capture(self, amount, method, member_id, metadata):
            self.release.wait(5)
            self.captured.append("declined")
            return PaymentResult(False, error_message="declined")

    late = LateDecline()
    assert authorize_with_timeout(late, Decimal("10"), PaymentMethod.CASH, None, {}, timeout=0.05).timed_out

    late.release.set()
    deadline = time.monotonic() + 2
    while not late.captured and time.monotonic() < deadline:
        time.sleep(0.01)
    time.sleep(0.05)
    assert late.voided == []


def test_timed_out_sale_keeps_idempotency_key_spent(db, screening, seats, clock, monkeypatch):
    monkeypatch.setattr(settings, "PAYMENT_TIMEOUT_SECONDS", 0.05)
    late = LateCaptureGateway()
    request = _direct(screening, seats[:1], idempotency_key="key-1")

    first = _sell(db, request, clock, late)
    second = _sell(db, request, clock, late)

    assert first.payment_status == PaymentStatus.UNKNOWN
    assert second.model_dump() == first.model_dump()
    assert db.query(IdempotencyRecord).one().status == "completed"
    assert db.query(Ticket).count() == 0

    late.release.set()
    assert late.void_called.wait(2)
    assert late.captured == ["txn-1"]
    assert late.voided == ["txn-1"]


def test_local_gateway_runs_on_the_calling_thread(db, clock):
    seen = []

    class ThreadRecordingStub(StubPaymentGateway):
        def authorize_and_capture(self, amount, method, member_id, metadata):
            seen.append(threading.get_ident())
            return super().authorize_and_capture(amount, method, member_id, metadata)

    result = authorize_with_timeout(
        ThreadRecordingStub(db, clock), Decimal("10"), PaymentMethod.CASH, None, {}, timeout=0.05
    )

    assert result.is_success
    assert seen == [threading.get_ident()]


def test_failed_persistence_rolls_back_and_voids(db, screening, seats, clock, gateway, monkeypatch):
    def exhausted(db, issued=None):
        raise TicketCodeExhaustedError("no codes left")

    monkeypatch.setattr(ticket_sales, "unique_ticket_code", exhausted)

    with pytest.raises(TicketCodeExhaustedError):
        _sell(db, _direct(screening, seats[:1]), clock, gateway)

    assert len(gateway.voided) == 1
    assert db.query(Payment).count() == 0
    assert db.query(Ticket).count() == 0


def test_ticket_code_generation_gives_up_after_ten_attempts(db, screening, seats, monkeypatch, sell_seat):
    taken = sell_seat(screening, seats[0])
    attempts = []

    def same_code():
        attempts.append(1)
        return taken.ticket_code

    monkeypatch.setattr(ticket_codes, "generate_ticket_code", same_code)

    with pytest.raises(TicketCodeExhaustedError):
        ticket_codes.unique_ticket_code(db)
    assert len(attempts) == 10


def test_generated_codes_match_format():
    for _ in range(50):
        assert CODE_PATTERN.match(ticket_codes.generate_ticket_code())


# ---------------------------------------------------------------------------
# Idempotency
# ---------------------------------------------------------------------------


def test_idempotent_retry_returns_cached_response(db, screening, seats, clock, gateway):
    request = _direct(screening, seats[:2], idempotency_key="order-42")

    first = _sell(db, request, clock, gateway)
    second = _sell(db, request, clock, gateway)

    assert second.model_dump() == first.model_dump()
    assert len(gateway.calls) == 1
    assert db.query(Ticket).count() == 2
    assert db.query(IdempotencyRecord).one().status == "completed"


def test_declined_payment_releases_idempotency_key(db, screening, seats, clock, gateway):
    declined = _direct(screening, seats[:1], idempotency_key="order-7", payment_metadata={"simulate_failure": True})
    assert _sell(db, declined, clock, gateway).payment_status == PaymentStatus.FAILED
    assert db.query(IdempotencyRecord).count() == 0

    retry = _direct(screening, seats[:1], idempotency_key="order-7")
    assert _sell(db, retry, clock, gateway).payment_status == PaymentStatus.SUCCEEDED
    assert len(gateway.calls) == 2


def test_in_flight_idempotency_key_is_a_conflict(db, screening, seats, clock, gateway):
    db.add(
        IdempotencyRecord(
            key="order-9",
            status="pending",
            created_at=NOW,
            expires_at=NOW + timedelta(minutes=60),
        )
    )
    db.commit()

    with pytest.raises(ConflictError):
        _sell(db, _direct(screening, seats[:1], idempotency_key="order-9"), clock, gateway)
    assert gateway.calls == []


def test_expired_idempotency_record_is_ignored(db, screening, seats, clock, gateway):
    request = _direct(screening, seats[:1], idempotency_key="order-11")
    _sell(db, request, clock, gateway)

    clock.advance(minutes=61)
    with pytest.raises(ConflictError):
        _sell(db, request, clock, gateway)
    assert len(gateway.calls) == 1


# ---------------------------------------------------------------------------
# Reservation-based sales
# ---------------------------------------------------------------------------


def _reserve(db, screening, seats, clock, token="client-a", member=None):
    ids = [s.id for s in seats]
    seat_holds.create_holds(db, screening.id, ids, token, clock=clock)
    rows = reservations.create_reservation(
        db, screening.id, ids, token, member_id=member.id if member else None, clock=clock
    )
    return rows[0].group_id


def test_reservation_sale_completes_reservation(db, screening, seats, clock, gateway, make_member):
    vip = make_member(vip=True, approved=True)
    group_id = _reserve(db, screening, seats[:2], clock, member=vip)

    response = _sell(
        db,
        SellTicketRequest(
            screening_id=screening.id,
            reservation_id=group_id,
            member_id=vip.id,
            client_token="client-a",
        ),
        clock,
        gateway,
    )

    assert response.payment_status == PaymentStatus.SUCCEEDED
    assert [i.applied_rule.code for i in response.items] == ["VIP_MONTHLY_FREE", "BASE_PRICE"]
    assert response.total_after == Decimal("100.00")
    statuses = {r.status for r in db.query(Reservation).all()}
    assert statuses == {ReservationStatus.COMPLETED}
    assert db.query(Ticket).count() == 2
    assert gateway.calls[0][3]["reservation_id"] == str(group_id)
    assert db.query(Payment).one().member_id == vip.id


def test_reservation_sale_without_live_holds_is_accepted(db, screening, seats, clock, gateway):
    group_id = _reserve(db, screening, seats[:1], clock)
    assert db.query(SeatHold).count() == 0

    response = _sell(
        db,
        SellTicketRequest(screening_id=screening.id, reservation_id=group_id, client_token="someone-else"),
        clock,
        gateway,
    )

    assert response.payment_status == PaymentStatus.SUCCEEDED


def test_reservation_sale_by_single_row_id(db, screening, seats, clock, gateway):
    group_id = _reserve(db, screening, seats[:2], clock)
    row_id = db.query(Reservation).filter(Reservation.group_id == group_id).first().id

    response = _sell(db, SellTicketRequest(screening_id=screening.id, reservation_id=row_id), clock, gateway)

    assert len(response.items) == 2


def test_reservation_sale_checks(db, make_screening, screening, seats, clock, gateway, make_member):
    member = make_member()
    group_id = _reserve(db, screening, seats[:1], clock, member=member)
    other_screening = make_screening(start_in=timedelta(hours=5))

    with pytest.raises(NotFoundError):
        _sell(db, SellTicketRequest(screening_id=screening.id, reservation_id=uuid4()), clock, gateway)
    with pytest.raises(ConflictError):
        _sell(
            db,
            SellTicketRequest(screening_id=screening.id, reservation_id=group_id, member_id=make_member().id),
            clock,
            gateway,
        )
    with pytest.raises(ConflictError):
        _sell(db, SellTicketRequest(screening_id=other_screening.id, reservation_id=group_id), clock, gateway)

    reservations.cancel_reservation(db, group_id, clock=clock)
    with pytest.raises(ConflictError) as exc:
        _sell(db, SellTicketRequest(screening_id=screening.id, reservation_id=group_id), clock, gateway)
    assert "Canceled" in exc.value.message
    assert gateway.calls == []


def test_expired_reservation_cannot_be_sold(db, screening, seats, clock, gateway):
    group_id = _reserve(db, screening, seats[:1], clock)
    clock.at = screening.start_at - timedelta(minutes=30)

    with pytest.raises(ConflictError) as exc:
        _sell(db, SellTicketRequest(screening_id=screening.id, reservation_id=group_id), clock, gateway)
    assert "expired" in exc.value.message


def test_get_ticket(db, screening, seats, clock, gateway):
    response = _sell(db, _direct(screening, seats[:1]), clock, gateway)

    detail = ticket_sales.get_ticket(db, response.items[0].ticket_id)

    assert detail.ticket_code == response.items[0].ticket_code
    assert detail.seat_label == "A1"
    assert detail.applied_pricing["final_price"] == "100.00"
    with pytest.raises(NotFoundError):
        ticket_sales.get_ticket(db, uuid4())

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ENABLE_BACKGROUND_JOBS", "false")

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.deps import get_clock
from app.core.clock import FrozenClock
from app.db.base import Base
from app.db.session import get_db
from app.main import app
from app.models.hall import Hall, SeatLayout
from app.models.member import Member, MemberApproval, MemberCredit
from app.models.screening import Movie, Screening
from app.models.seat import Seat, seat_label
from app.models.setting import Setting
from app.models.ticket import Payment, PaymentMethod, PaymentStatus, Ticket, TicketChannel, TicketType

# A Tuesday: not the default Halk Günü (Wednesday)
NOW = datetime(2026, 10, 13, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy issue BEGIN
    @event.listens_for(engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sweep_factory(db, session_factory):
    """
    Session factory for jobs that open their own sessions.

    All sessions share the one in-memory connection, so the test session's open
    read transaction is ended before another session begins.
    """

    def _factory():
        db.commit()
        return session_factory()

    return _factory


@pytest.fixture
def clock():
    return FrozenClock(NOW)


@pytest.fixture
def client(db, clock):
    def _get_db():
        yield db

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def layout(db):
    """A 3 x 5 hall: rows A-C, seats 1-5."""
    hall = Hall(name="Salon 1", capacity=15)
    layout = SeatLayout(hall=hall, version=1)
    for row in range(1, 4):
        for col in range(1, 6):
            layout.seats.append(Seat(row=row, col=col, label=seat_label(row, col)))
    db.add(hall)
    db.add(layout)
    db.commit()
    return layout


@pytest.fixture
def seats(db, layout):
    return db.query(Seat).filter(Seat.seat_layout_id == layout.id).order_by(Seat.row, Seat.col).all()


@pytest.fixture
def make_screening(db, layout):
    movie = Movie(title="Kış Uykusu", duration_minutes=196)
    db.add(movie)
    db.commit()

    def _make(start_in=timedelta(days=1), **fields):
        screening = Screening(
            movie_id=movie.id,
            hall_id=layout.hall_id,
            seat_layout_id=layout.id,
            start_at=NOW + start_in,
            duration_minutes=movie.duration_minutes,
            **fields,
        )
        db.add(screening)
        db.commit()
        return screening

    return _make


@pytest.fixture
def screening(make_screening):
    return make_screening()


@pytest.fixture
def make_member(db):
    counter = {"n": 0}

    def _make(vip=False, approved=False, credit=None):
        counter["n"] += 1
        member = Member(
            full_name=f"Üye {counter['n']}",
            email=f"member{counter['n']}@example.com",
            vip_status=vip,
        )
        if approved:
            member.approvals.append(MemberApproval(approved=True))
        if credit is not None:
            member.credits.append(MemberCredit(amount=Decimal(credit), description="Top-up"))
        db.add(member)
        db.commit()
        return member

    return _make


@pytest.fixture
def set_setting(db):
    def _set(key, value):
        row = db.query(Setting).filter(Setting.key == key).first()
        if row is None:
            db.add(Setting(key=key, value=str(value)))
        else:
            row.value = str(value)
        db.commit()

    return _set


@pytest.fixture
def sell_seat(db):
    """Persist a ticket directly, bypassing the sale service."""
    counter = {"n": 0}

    def _sell(screening, seat, price=Decimal("100.00"), member=None, method=PaymentMethod.CASH, sold_at=NOW):
        counter["n"] += 1
        payment = Payment(
            member_id=member.id if member else None,
            amount=price,
            method=method,
            status=PaymentStatus.SUCCEEDED,
            external_reference=f"TEST_{counter['n']}",
        )
        db.add(payment)
        db.flush()
        ticket = Ticket(
            screening_id=screening.id,
            seat_id=seat.id,
            payment_id=payment.id,
            type=TicketType.FULL,
            channel=TicketChannel.BOX_OFFICE,
            price=price,
            ticket_code=f"TS{counter['n']:02d}-00AA",
            sold_at=sold_at,
        )
        db.add(ticket)
        db.commit()
        return ticket

    return _sell

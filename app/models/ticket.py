import uuid
import enum
from sqlalchemy import Column, String, DECIMAL, ForeignKey, Text, UniqueConstraint, Uuid, Enum as SAEnum
from sqlalchemy.orm import relationship
from app.db.session import Base
from app.db.types import UTCDateTime, utcnow

class TicketType(str, enum.Enum):
    FULL = "Full"
    STUDENT = "Student"
    VIP = "VIP"
    VIP_GUEST = "VIPGuest"

class TicketChannel(str, enum.Enum):
    ONLINE = "Online"
    BOX_OFFICE = "BoxOffice"
    MOBILE = "Mobile"

class PaymentMethod(str, enum.Enum):
    CASH = "Cash"
    CREDIT_CARD = "CreditCard"
    BANK_TRANSFER = "BankTransfer"
    MEMBER_CREDIT = "MemberCredit"

class PaymentStatus(str, enum.Enum):
    PENDING = "Pending"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    # Gateway timed out; a late capture is voided, the sale is not retried under the same key
    UNKNOWN = "Unknown"


def _enum(cls):
    return SAEnum(cls, native_enum=False, values_callable=lambda e: [m.value for m in e])

class Payment(Base):
    __tablename__ = "payments"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    member_id = Column(Uuid, ForeignKey("members.id"), nullable=True, index=True)
    amount = Column(DECIMAL(10, 2), nullable=False)
    method = Column(_enum(PaymentMethod), nullable=False)
    status = Column(_enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    external_reference = Column(String(100), nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    tickets = relationship("Ticket", back_populates="payment")

class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        UniqueConstraint("screening_id", "seat_id", name="uq_tickets_screening_seat"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    screening_id = Column(Uuid, ForeignKey("screenings.id"), nullable=False, index=True)
    seat_id = Column(Uuid, ForeignKey("seats.id"), nullable=False)
    payment_id = Column(Uuid, ForeignKey("payments.id"), nullable=False, index=True)
    type = Column(_enum(TicketType), nullable=False)
    channel = Column(_enum(TicketChannel), nullable=False)
    price = Column(DECIMAL(10, 2), nullable=False)
    ticket_code = Column(String(9), unique=True, nullable=False, index=True)
    applied_pricing_json = Column(Text, nullable=True)
    sold_at = Column(UTCDateTime, nullable=False, default=utcnow, index=True)

    screening = relationship("Screening")
    seat = relationship("Seat")
    payment = relationship("Payment", back_populates="tickets")

from app.models.hall import Hall, SeatLayout
from app.models.seat import Seat
from app.models.screening import Movie, Screening
from app.models.member import Member, MemberApproval, MemberCredit
from app.models.seat_hold import SeatHold
from app.models.reservation import Reservation, ReservationStatus
from app.models.ticket import Ticket, Payment, TicketType, TicketChannel, PaymentMethod, PaymentStatus
from app.models.setting import Setting
from app.models.idempotency import IdempotencyRecord

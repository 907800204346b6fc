from app.db.session import Base
from app.models.hall import Hall, SeatLayout
from app.models.seat import Seat
from app.models.screening import Movie, Screening
from app.models.member import Member, MemberApproval, MemberCredit
from app.models.seat_hold import SeatHold
from app.models.reservation import Reservation
from app.models.ticket import Ticket, Payment
from app.models.setting import Setting
from app.models.idempotency import IdempotencyRecord

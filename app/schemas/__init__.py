from app.schemas.common import ErrorResponse, SeatsUnavailableError
from app.schemas.seat import SeatHold, SeatHoldRequest, SeatHoldResponse, SeatMapResponse, SeatStatus
from app.schemas.reservation import ReservationCreate, ReservationResponse, ReservationSeat
from app.schemas.pricing import AppliedRule, PriceQuoteItem, PriceQuoteItemRequest, PriceQuoteRequest, PriceQuoteResponse
from app.schemas.ticket import SellTicketItem, SellTicketRequest, SellTicketResponse, SoldTicket, TicketDetail

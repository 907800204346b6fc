from uuid import UUID
from typing import Optional

from fastapi import APIRouter, Depends, Header, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock, get_optional_user_id, get_payment_gateway
from app.core.clock import Clock
from app.models.ticket import PaymentStatus
from app.schemas.common import ErrorResponse
from app.schemas.ticket import SellTicketRequest, SellTicketResponse, TicketDetail
from app.services.payments import PaymentGateway
from app.services import ticket_sales

router = APIRouter(prefix="/tickets", tags=["Tickets"])


# ---------------------------------------------------------------------------
# POST /tickets: sell from a reservation or directly at the box office
# ---------------------------------------------------------------------------


@router.post(
    "/",
    response_model=SellTicketResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        402: {"model": SellTicketResponse},
        409: {"model": ErrorResponse},
        504: {"model": SellTicketResponse},
    },
)
def sell_tickets(
    data: SellTicketRequest,
    idempotency_key: Optional[str] = Header(None, max_length=128),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    gateway: Optional[PaymentGateway] = Depends(get_payment_gateway),
    user_id: Optional[UUID] = Depends(get_optional_user_id),
):
    """
    Sell tickets.

    **Reservation-based**: pass `reservation_id` (a reservation or its group).
    **Direct**: pass `items`; BoxOffice sales may override other clients' holds.

    A declined payment returns 402 with the quote totals and no tickets; a
    gateway timeout returns 504 and the idempotency key cannot be reused.
    Send an `Idempotency-Key` header to make retries safe.
    """
    if idempotency_key and not data.idempotency_key:
        data = data.model_copy(update={"idempotency_key": idempotency_key})
    result = ticket_sales.sell_tickets(db, data, clock=clock, gateway=gateway, user_id=user_id)
    failure_status = {
        PaymentStatus.FAILED: status.HTTP_402_PAYMENT_REQUIRED,
        PaymentStatus.UNKNOWN: status.HTTP_504_GATEWAY_TIMEOUT,
    }
    if result.payment_status in failure_status:
        return JSONResponse(
            status_code=failure_status[result.payment_status],
            content=result.model_dump(mode="json"),
        )
    return result


@router.get("/{ticket_id}", response_model=TicketDetail)
def get_ticket(ticket_id: UUID, db: Session = Depends(get_db)):
    return ticket_sales.get_ticket(db, ticket_id)

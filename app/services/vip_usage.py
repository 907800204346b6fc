from datetime import datetime
from uuid import UUID

from sqlalchemy.orm import Session

from app.models.ticket import Payment, PaymentMethod, PaymentStatus, Ticket


def get_vip_free_ticket_count_this_month(db: Session, member_id: UUID, now: datetime) -> int:
    """
    Free tickets a member has received since the 1st of the current UTC month.

    A free ticket is one sold at price 0 on a succeeded payment of the member
    that was not settled from member credit.
    """
    month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    return (
        db.query(Ticket)
        .join(Payment, Ticket.payment_id == Payment.id)
        .filter(
            Payment.member_id == member_id,
            Payment.status == PaymentStatus.SUCCEEDED,
            Payment.method != PaymentMethod.MEMBER_CREDIT,
            Ticket.price == 0,
            Ticket.sold_at >= month_start,
        )
        .count()
    )

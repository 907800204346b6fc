import random
import string
from typing import Optional, Set

from sqlalchemy.orm import Session

from app.core.exceptions import TicketCodeExhaustedError
from app.models.ticket import Ticket

MAX_ATTEMPTS = 10


def generate_ticket_code() -> str:
    """Short human-shareable code such as 'AB12-34CD'."""
    letters, digits = string.ascii_uppercase, string.digits
    return (
        "".join(random.choices(letters, k=2))
        + "".join(random.choices(digits, k=2))
        + "-"
        + "".join(random.choices(digits, k=2))
        + "".join(random.choices(letters, k=2))
    )


def unique_ticket_code(db: Session, issued: Optional[Set[str]] = None) -> str:
    """
    A code not used by any persisted ticket nor by `issued` (codes handed out
    earlier in the same, not yet flushed, sale).
    """
    issued = issued if issued is not None else set()
    for _ in range(MAX_ATTEMPTS):
        code = generate_ticket_code()
        if code in issued:
            continue
        if not db.query(Ticket.id).filter(Ticket.ticket_code == code).first():
            issued.add(code)
            return code
    raise TicketCodeExhaustedError(
        f"Could not generate a unique ticket code after {MAX_ATTEMPTS} attempts"
    )

import logging
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.services.reservations import expire_reservations
from app.services.seat_holds import cleanup_expired_holds

logger = logging.getLogger(__name__)


def drain_expired_holds(
    session_factory: Callable[[], Session],
    batch_size: int = 100,
    clock: Clock = system_clock,
) -> int:
    """
    Delete expired seat holds batch by batch until a batch comes back short.

    A failing batch is logged and ends this run; the next run picks up the
    remainder.
    """
    total = 0
    while True:
        db = session_factory()
        try:
            count = cleanup_expired_holds(db, batch_size=batch_size, clock=clock)
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Expired hold cleanup batch failed after %d deletion(s)", total)
            break
        finally:
            db.close()
        total += count
        if count < batch_size:
            break
    if total:
        logger.info("Deleted %d expired seat hold(s).", total)
    return total


def run_reservation_expiry(session_factory: Callable[[], Session], clock: Clock = system_clock) -> int:
    db = session_factory()
    try:
        return expire_reservations(db, clock=clock)
    finally:
        db.close()

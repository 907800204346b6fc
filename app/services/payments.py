"""
Payment gateway.

`PaymentGateway` is the seam a real PSP client plugs into; `StubPaymentGateway`
settles locally so the box office and tests can run without one.
"""
import logging
import random
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from functools import partial
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.models.member import MemberCredit
from app.models.ticket import PaymentMethod

logger = logging.getLogger(__name__)

_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="payment")


@dataclass
class PaymentResult:
    is_success: bool
    transaction_id: Optional[str] = None
    error_message: Optional[str] = None
    timed_out: bool = False


class PaymentGateway:
    # Local gateways run on the caller's thread and session; remote ones get a deadline
    settles_locally = False

    def authorize_and_capture(
        self,
        amount: Decimal,
        method: PaymentMethod,
        member_id: Optional[UUID],
        metadata: Dict[str, Any],
    ) -> PaymentResult:
        raise NotImplementedError

    def void(self, transaction_id: str) -> bool:
        raise NotImplementedError


class StubPaymentGateway(PaymentGateway):
    """
    Approves everything except:
      - metadata["simulate_failure"] truthy
      - MemberCredit without a member, or with a balance below the amount
    """

    settles_locally = True

    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    def _credit_balance(self, member_id: UUID) -> Decimal:
        total = (
            self.db.query(func.coalesce(func.sum(MemberCredit.amount), 0))
            .filter(MemberCredit.member_id == member_id)
            .scalar()
        )
        return Decimal(total)

    def authorize_and_capture(self, amount, method, member_id, metadata):
        if metadata.get("simulate_failure"):
            return PaymentResult(False, error_message="Payment declined by issuer")
        if method == PaymentMethod.MEMBER_CREDIT:
            if member_id is None:
                return PaymentResult(False, error_message="Member credit requires a member")
            balance = self._credit_balance(member_id)
            if balance < amount:
                return PaymentResult(
                    False, error_message=f"Insufficient member credit: balance {balance}, required {amount}"
                )
        stamp = self.clock.now().strftime("%Y%m%d%H%M%S")
        return PaymentResult(True, transaction_id=f"CC_{stamp}_{random.randint(1000, 9999)}")

    def void(self, transaction_id):
        logger.info("Voided stub payment %s", transaction_id)
        return True


def _void_late_capture(gateway: PaymentGateway, future) -> None:
    """Done-callback for a gateway call that outlived its deadline."""
    if future.cancelled():
        return
    try:
        result = future.result()
    except Exception:
        logger.exception("Timed-out payment call failed")
        return
    if not result.is_success:
        return
    try:
        voided = gateway.void(result.transaction_id)
    except Exception:
        logger.exception(
            "Void of late payment %s failed; manual reconciliation required", result.transaction_id
        )
        return
    if voided:
        logger.warning("Voided payment %s captured after the timeout", result.transaction_id)
    else:
        logger.error(
            "Gateway refused to void late payment %s; manual reconciliation required",
            result.transaction_id,
        )


def authorize_with_timeout(
    gateway: PaymentGateway,
    amount: Decimal,
    method: PaymentMethod,
    member_id: Optional[UUID],
    metadata: Dict[str, Any],
    timeout: Optional[float] = None,
) -> PaymentResult:
    """
    Runs the gateway call with a deadline.

    A timeout is an unknown outcome, not a decline: the call may still capture.
    The result carries `timed_out=True` and any capture that lands later is
    voided from the worker thread.
    """
    if gateway.settles_locally:
        return gateway.authorize_and_capture(amount, method, member_id, metadata)

    timeout = settings.PAYMENT_TIMEOUT_SECONDS if timeout is None else timeout
    future = _executor.submit(gateway.authorize_and_capture, amount, method, member_id, metadata)
    try:
        return future.result(timeout=timeout)
    except FutureTimeoutError:
        future.cancel()
        logger.error("Payment gateway timed out after %.2fs", timeout)
        future.add_done_callback(partial(_void_late_capture, gateway))
        return PaymentResult(False, error_message="Payment gateway timed out", timed_out=True)

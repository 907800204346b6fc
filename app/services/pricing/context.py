from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional
from uuid import UUID

from app.models.ticket import TicketType

CENT = Decimal("0.01")


def money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricingItem:
    """One priced unit; quote items with quantity N become N of these."""
    seat_id: Optional[UUID]
    ticket_type: TicketType
    is_vip_guest: bool = False

    @property
    def counts_as_vip_guest(self) -> bool:
        return self.is_vip_guest or self.ticket_type == TicketType.VIP_GUEST


@dataclass
class PricingContext:
    """
    Per-quote state. Built fresh by calculate_quote and discarded with it;
    the two counters advance while the quote walks its items.
    """
    base_price: Decimal
    is_vip_member: bool
    is_halk_gunu: bool
    is_first_weekday_show: bool
    vip_free_tickets_used_this_month: int = 0
    total_vip_guest_items: int = 0
    current_vip_guest_index: int = 0

    @property
    def has_used_monthly_free(self) -> bool:
        return self.vip_free_tickets_used_this_month > 0

import logging
from decimal import Decimal
from typing import List, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.models.member import Member
from app.models.screening import Screening
from app.models.ticket import TicketType
from app.schemas.pricing import (
    AppliedRule,
    PriceQuoteItem,
    PriceQuoteItemRequest,
    PriceQuoteResponse,
)
from app.services.pricing.context import PricingContext, PricingItem, money
from app.services.pricing.rules import (
    DEFAULT_RULES,
    VIP_ADDITIONAL_HALKGUNU,
    VIP_MONTHLY_FREE,
    PricingRule,
)
from app.services.settings_reader import SettingsReader
from app.services.vip_usage import get_vip_free_ticket_count_this_month

logger = logging.getLogger(__name__)

BASE_PRICE_CODE = "BASE_PRICE"
BASE_PRICE_TITLE = "Normal Fiyat"
DEFAULT_BASE_PRICE = Decimal("100.00")

_DAY_NAMES = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


def resolve_base_price(db: Session, screening: Screening) -> Decimal:
    if screening.price_override is not None:
        return money(Decimal(screening.price_override))
    configured = SettingsReader(db).get_decimal("BaseTicketPrice")
    return money(configured if configured is not None else DEFAULT_BASE_PRICE)


def _is_halk_gunu(db: Session, screening: Screening, now) -> bool:
    if screening.is_special_day:
        return True
    day = SettingsReader(db).get_halk_gunu_day()
    return bool(day) and day.strip().lower() == _DAY_NAMES[now.weekday()].lower()


def _build_context(db: Session, screening: Screening, member: Optional[Member], items, now) -> PricingContext:
    is_vip_member = member is not None and bool(member.vip_status) and member.is_approved
    used = 0
    if member is not None and member.is_active_vip:
        used = get_vip_free_ticket_count_this_month(db, member.id, now)
    return PricingContext(
        base_price=resolve_base_price(db, screening),
        is_vip_member=is_vip_member,
        is_halk_gunu=_is_halk_gunu(db, screening, now),
        is_first_weekday_show=bool(screening.is_first_show_weekday),
        vip_free_tickets_used_this_month=used,
        total_vip_guest_items=sum(
            1 for i in items if i.is_vip_guest or i.ticket_type == TicketType.VIP_GUEST
        ),
    )


def _base_price_rule(base_price: Decimal) -> AppliedRule:
    return AppliedRule(
        code=BASE_PRICE_CODE,
        title=BASE_PRICE_TITLE,
        amount_off=Decimal("0.00"),
        final_price=base_price,
        details="No discount applied",
    )


def compose(rules: Sequence[PricingRule], ctx: PricingContext, item: PricingItem) -> AppliedRule:
    """
    Pick the rule for one unit.

    VIP_MONTHLY_FREE beats everything, then VIP_ADDITIONAL_HALKGUNU; otherwise
    the largest amount off wins, the earlier rule keeping ties.
    """
    base_price = ctx.base_price
    applicable = [r for r in rules if r.is_applicable(ctx, item)]

    by_code = {r.code: r for r in applicable}
    for override in (VIP_MONTHLY_FREE, VIP_ADDITIONAL_HALKGUNU):
        if override in by_code:
            return by_code[override].calculate_discount(ctx, item, base_price)

    # A rule must take something off to beat the base price
    best = _base_price_rule(base_price)
    for rule in applicable:
        candidate = rule.calculate_discount(ctx, item, base_price)
        if candidate.amount_off > best.amount_off:
            best = candidate
    return best


def calculate_quote(
    db: Session,
    screening_id: UUID,
    items: List[PriceQuoteItemRequest],
    member_id: Optional[UUID] = None,
    clock: Clock = system_clock,
    rules: Optional[Sequence[PricingRule]] = None,
) -> PriceQuoteResponse:
    if not items:
        raise ValidationError("At least one item is required for a price quote")
    screening = db.query(Screening).filter(Screening.id == screening_id).first()
    if not screening:
        raise ValidationError("Screening not found")

    member = None
    if member_id is not None:
        member = db.query(Member).filter(Member.id == member_id).first()
        if member is None:
            logger.info("Quoting member %s as anonymous: member not found", member_id)

    now = clock.now()
    ordered_rules = sorted(rules or DEFAULT_RULES, key=lambda r: r.execution_order)
    ctx = _build_context(db, screening, member, items, now)

    quoted: List[PriceQuoteItem] = []
    vip_guest_counter = 0
    for request_item in items:
        if request_item.is_vip_guest or request_item.ticket_type == TicketType.VIP_GUEST:
            ctx.current_vip_guest_index = vip_guest_counter
            vip_guest_counter += 1

        unit = PricingItem(
            seat_id=request_item.seat_id,
            ticket_type=request_item.ticket_type,
            is_vip_guest=request_item.is_vip_guest,
        )
        for _ in range(request_item.quantity):
            applied = compose(ordered_rules, ctx, unit)
            if applied.code == VIP_MONTHLY_FREE:
                ctx.vip_free_tickets_used_this_month += 1
            quoted.append(
                PriceQuoteItem(
                    seat_id=unit.seat_id,
                    ticket_type=unit.ticket_type,
                    is_vip_guest=unit.is_vip_guest,
                    quantity=1,
                    base_price=ctx.base_price,
                    final_price=applied.final_price,
                    applied_rule=applied,
                )
            )

    return PriceQuoteResponse(currency=settings.CURRENCY, items=quoted)

"""
Discount rules.

Each rule carries its own execution_order; the engine sorts by it and picks
VIP_MONTHLY_FREE and VIP_ADDITIONAL_HALKGUNU by code before comparing the rest.
"""
from decimal import Decimal
from typing import Tuple

from app.models.ticket import TicketType
from app.schemas.pricing import AppliedRule
from app.services.pricing.context import PricingContext, PricingItem, money

VIP_MONTHLY_FREE = "VIP_MONTHLY_FREE"
VIP_ADDITIONAL_HALKGUNU = "VIP_ADDITIONAL_HALKGUNU"
HALK_GUNU_50 = "HALK_GUNU_50"
FIRST_SHOW_50 = "FIRST_SHOW_50"
STUDENT_40 = "STUDENT_40"
VIP_GUEST_20 = "VIP_GUEST_20"

MAX_DISCOUNTED_VIP_GUESTS = 2


class PricingRule:
    code: str
    title: str
    execution_order: int
    percent_off: Decimal
    details: str = ""

    def is_applicable(self, ctx: PricingContext, item: PricingItem) -> bool:
        raise NotImplementedError

    def calculate_discount(self, ctx: PricingContext, item: PricingItem, base_price: Decimal) -> AppliedRule:
        amount_off = money(base_price * self.percent_off)
        return AppliedRule(
            code=self.code,
            title=self.title,
            amount_off=amount_off,
            final_price=money(base_price - amount_off),
            details=self.details,
        )


class VipMonthlyFreeRule(PricingRule):
    code = VIP_MONTHLY_FREE
    title = "VIP Aylık Ücretsiz Bilet"
    execution_order = 1
    percent_off = Decimal("1")
    details = "First ticket of the month is free for VIP members"

    def is_applicable(self, ctx, item):
        return ctx.is_vip_member and not ctx.has_used_monthly_free and not item.is_vip_guest


class VipAdditionalHalkGunuRule(PricingRule):
    code = VIP_ADDITIONAL_HALKGUNU
    title = "VIP Ek Film Halk Günü Fiyatı"
    execution_order = 5
    percent_off = Decimal("0.50")
    details = "Additional VIP tickets are sold at the Halk Günü price"

    def is_applicable(self, ctx, item):
        return (
            ctx.is_vip_member
            and ctx.has_used_monthly_free
            and item.ticket_type == TicketType.VIP
            and not item.is_vip_guest
        )


class HalkGunuRule(PricingRule):
    code = HALK_GUNU_50
    title = "Halk Günü %50 İndirim"
    execution_order = 10
    percent_off = Decimal("0.50")
    details = "50% off on Halk Günü"

    def is_applicable(self, ctx, item):
        return ctx.is_halk_gunu


class FirstShowRule(PricingRule):
    code = FIRST_SHOW_50
    title = "Hafta İçi İlk Seans %50 İndirim"
    execution_order = 11
    percent_off = Decimal("0.50")
    details = "50% off the first weekday show"

    def is_applicable(self, ctx, item):
        return ctx.is_first_weekday_show


class StudentRule(PricingRule):
    code = STUDENT_40
    title = "Öğrenci %40 İndirim"
    execution_order = 20
    percent_off = Decimal("0.40")
    details = "40% student discount"

    def is_applicable(self, ctx, item):
        return item.ticket_type == TicketType.STUDENT


class VipGuestRule(PricingRule):
    code = VIP_GUEST_20
    title = "VIP Misafir %20 İndirim"
    execution_order = 21
    percent_off = Decimal("0.20")
    details = f"20% off for up to {MAX_DISCOUNTED_VIP_GUESTS} guests of a VIP member"

    def is_applicable(self, ctx, item):
        return (
            ctx.is_vip_member
            and item.counts_as_vip_guest
            and ctx.current_vip_guest_index < MAX_DISCOUNTED_VIP_GUESTS
        )


DEFAULT_RULES: Tuple[PricingRule, ...] = (
    VipMonthlyFreeRule(),
    VipAdditionalHalkGunuRule(),
    HalkGunuRule(),
    FirstShowRule(),
    StudentRule(),
    VipGuestRule(),
)

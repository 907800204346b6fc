from typing import Annotated, List, Optional
from pydantic import BaseModel, Field, UUID4, computed_field
from decimal import Decimal

from app.models.ticket import TicketType


# --- Quote request (POST /pricing/quote) ---

class PriceQuoteItemRequest(BaseModel):
    seat_id: Optional[UUID4] = None
    ticket_type: TicketType = TicketType.FULL
    quantity: Annotated[int, Field(ge=1, le=10)] = 1
    is_vip_guest: bool = False


class PriceQuoteRequest(BaseModel):
    screening_id: UUID4
    member_id: Optional[UUID4] = None
    items: Annotated[List[PriceQuoteItemRequest], Field(min_length=1, max_length=50)]


# --- Quote response ---

class AppliedRule(BaseModel):
    code: str
    title: str
    amount_off: Decimal
    final_price: Decimal
    details: str = ""


class PriceQuoteItem(BaseModel):
    seat_id: Optional[UUID4] = None
    ticket_type: TicketType
    is_vip_guest: bool = False
    quantity: int = 1
    base_price: Decimal
    final_price: Decimal
    applied_rule: AppliedRule

    @computed_field
    @property
    def total_discount(self) -> Decimal:
        return self.base_price - self.final_price


class PriceQuoteResponse(BaseModel):
    currency: str = "TRY"
    items: List[PriceQuoteItem]

    @computed_field
    @property
    def total_before(self) -> Decimal:
        return sum((i.base_price for i in self.items), Decimal("0.00"))

    @computed_field
    @property
    def total_after(self) -> Decimal:
        return sum((i.final_price for i in self.items), Decimal("0.00"))

    @computed_field
    @property
    def total_discount(self) -> Decimal:
        return self.total_before - self.total_after

    @computed_field
    @property
    def applied_rules_summary(self) -> List[str]:
        titles: List[str] = []
        for item in self.items:
            if item.applied_rule.title not in titles:
                titles.append(item.applied_rule.title)
        return titles

    @computed_field
    @property
    def has_vip_benefits(self) -> bool:
        return any(i.applied_rule.code.startswith("VIP_") for i in self.items)

    @computed_field
    @property
    def has_discounts(self) -> bool:
        return self.total_discount > 0


class BasePriceResponse(BaseModel):
    screening_id: UUID4
    base_price: Decimal
    currency: str

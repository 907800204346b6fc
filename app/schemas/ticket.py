from typing import Annotated, Any, Dict, List, Optional
from pydantic import BaseModel, Field, UUID4, field_validator, model_validator
from decimal import Decimal
from datetime import datetime

from app.models.ticket import PaymentMethod, PaymentStatus, TicketChannel, TicketType
from app.schemas.pricing import AppliedRule


# --- Sell (POST /tickets) ---

class SellTicketItem(BaseModel):
    seat_id: UUID4
    ticket_type: TicketType = TicketType.FULL
    is_vip_guest: bool = False

    @model_validator(mode="after")
    def vip_guest_flag_matches_type(self):
        if self.is_vip_guest and self.ticket_type != TicketType.VIP_GUEST:
            raise ValueError("is_vip_guest is only allowed for VIPGuest tickets")
        return self


class SellTicketRequest(BaseModel):
    screening_id: UUID4
    reservation_id: Optional[UUID4] = None
    items: Optional[List[SellTicketItem]] = None
    member_id: Optional[UUID4] = None
    client_token: Annotated[Optional[str], Field(max_length=64)] = None
    channel: TicketChannel = TicketChannel.ONLINE
    payment_method: PaymentMethod = PaymentMethod.CREDIT_CARD
    payment_metadata: Dict[str, Any] = {}
    idempotency_key: Annotated[Optional[str], Field(max_length=128)] = None

    @field_validator("client_token", "idempotency_key", mode="before")
    @classmethod
    def parse_empty_str_to_none(cls, v):
        if v == "":
            return None
        return v


class SoldTicket(BaseModel):
    ticket_id: UUID4
    ticket_code: str
    seat_id: UUID4
    seat_label: str
    ticket_type: TicketType
    final_price: Decimal
    applied_rule: AppliedRule


class SellTicketResponse(BaseModel):
    payment_status: PaymentStatus
    currency: str
    total_before: Decimal
    total_after: Decimal
    total_discount: Decimal
    items: List[SoldTicket] = []
    payment_reference: Optional[str] = None
    payment_error: Optional[str] = None


# --- Ticket lookup (GET /tickets/{id}) ---

class TicketDetail(BaseModel):
    id: UUID4
    ticket_code: str
    screening_id: UUID4
    seat_id: UUID4
    seat_label: str
    type: TicketType
    channel: TicketChannel
    price: Decimal
    payment_id: UUID4
    sold_at: datetime
    applied_pricing: Optional[Dict[str, Any]] = None

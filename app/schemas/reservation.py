from typing import Annotated, Optional, List
from pydantic import BaseModel, Field, UUID4, field_validator
from datetime import datetime

from app.models.reservation import ReservationStatus


class ReservationCreate(BaseModel):
    screening_id: UUID4
    seat_ids: Annotated[List[UUID4], Field(min_length=1, max_length=10)]
    client_token: Annotated[str, Field(min_length=1, max_length=64)]
    member_id: Optional[UUID4] = None

    @field_validator("seat_ids")
    @classmethod
    def no_duplicate_seats(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Duplicate seats are not allowed")
        return v


class ReservationSeat(BaseModel):
    id: UUID4
    seat_id: UUID4
    row: int
    col: int
    label: str
    status: ReservationStatus
    expires_at: datetime


class ReservationResponse(BaseModel):
    """A group of reservation rows created by one request."""
    reservation_id: UUID4
    screening_id: UUID4
    member_id: Optional[UUID4] = None
    expires_at: datetime
    seats: List[ReservationSeat]

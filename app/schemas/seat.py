from typing import Annotated, Optional, List
from pydantic import BaseModel, Field, UUID4, field_validator
from datetime import datetime


# --- Seat map (GET /screenings/{id}/seats) ---

class SeatStatus(BaseModel):
    seat_id: UUID4
    row: int
    col: int
    label: str
    status: str  # available, held, reserved, sold
    held_until: Optional[datetime] = None


class SeatMapResponse(BaseModel):
    screening_id: UUID4
    start_at: datetime
    seats: List[SeatStatus]


# --- Seat holds (POST /holds) ---

class SeatHoldRequest(BaseModel):
    screening_id: UUID4
    seat_ids: Annotated[List[UUID4], Field(min_length=1, max_length=10)]
    client_token: Annotated[str, Field(min_length=1, max_length=64)]
    ttl_seconds: Annotated[Optional[int], Field(ge=1, le=3600)] = None

    @field_validator("seat_ids")
    @classmethod
    def no_duplicate_seats(cls, v):
        if len(set(v)) != len(v):
            raise ValueError("Duplicate seats are not allowed")
        return v


class SeatHoldTokenRequest(BaseModel):
    client_token: Annotated[str, Field(min_length=1, max_length=64)]


class SeatHold(BaseModel):
    id: UUID4
    screening_id: UUID4
    seat_id: UUID4
    created_at: datetime
    last_heartbeat_at: datetime
    expires_at: datetime

    class Config:
        from_attributes = True


class SeatHoldResponse(BaseModel):
    holds: List[SeatHold]
    expires_at: datetime

"""
Domain errors raised by the services.

The API layer maps each class to an HTTP status in app.main; services never
raise HTTPException themselves so they stay usable from the background jobs.
"""
from typing import Iterable, List, Optional
from uuid import UUID


class SinemaError(Exception):
    status_code = 500
    error = "internal_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(SinemaError):
    status_code = 400
    error = "validation_error"


class UnauthorizedError(SinemaError):
    status_code = 403
    error = "unauthorized"


class NotFoundError(SinemaError):
    status_code = 404
    error = "not_found"


class ConflictError(SinemaError):
    status_code = 409
    error = "conflict"

    def __init__(self, message: str, seat_ids: Optional[Iterable[UUID]] = None):
        super().__init__(message)
        self.seat_ids: List[UUID] = list(seat_ids or [])


class HoldExpiredError(ConflictError):
    error = "hold_expired"


class PolicyError(ConflictError):
    status_code = 422
    error = "policy_violation"


class TicketCodeExhaustedError(SinemaError):
    error = "ticket_code_exhausted"

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models.setting import Setting

logger = logging.getLogger(__name__)

# Setting key -> attribute on app.core.config.Settings used when no row exists
FALLBACKS = {
    "HalkGunu": "HALK_GUNU",
    "BaseTicketPrice": "BASE_TICKET_PRICE",
    "VipAdvanceBookingDays": "VIP_ADVANCE_BOOKING_DAYS",
    "RegularAdvanceBookingDays": "REGULAR_ADVANCE_BOOKING_DAYS",
    "SeatHold:DefaultTtlSeconds": "SEAT_HOLD_DEFAULT_TTL_SECONDS",
    "SeatHold:HeartbeatExtendSeconds": "SEAT_HOLD_HEARTBEAT_EXTEND_SECONDS",
    "SeatHold:MaxExtendMinutes": "SEAT_HOLD_MAX_EXTEND_MINUTES",
}


class SettingsReader:
    """Reads a setting from the `settings` table, falling back to app config."""

    def __init__(self, db: Session):
        self.db = db

    def get_str(self, key: str) -> Optional[str]:
        row = self.db.query(Setting).filter(Setting.key == key).first()
        if row is not None and row.value.strip():
            return row.value.strip()
        attr = FALLBACKS.get(key)
        if attr is None:
            return None
        value = getattr(settings, attr, None)
        return None if value is None else str(value)

    def get_int(self, key: str) -> Optional[int]:
        raw = self.get_str(key)
        if raw is None:
            return None
        try:
            return int(raw)
        except ValueError:
            logger.warning("Ignoring non-integer value %r for setting %s", raw, key)
            return None

    def get_decimal(self, key: str) -> Optional[Decimal]:
        raw = self.get_str(key)
        if raw is None:
            return None
        try:
            return Decimal(raw)
        except InvalidOperation:
            logger.warning("Ignoring non-decimal value %r for setting %s", raw, key)
            return None

    def get_halk_gunu_day(self) -> Optional[str]:
        return self.get_str("HalkGunu")

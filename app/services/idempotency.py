"""
Idempotency keys for money-moving requests.

A request first claims its key by inserting a `pending` row; the primary key
on `idempotency_records.key` means only one concurrent caller wins the claim.
The winner later stores the response, or releases the claim if it failed.
"""
import logging
from datetime import timedelta
from typing import Optional, Type, TypeVar

from pydantic import BaseModel
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, system_clock
from app.core.config import settings
from app.core.exceptions import ConflictError
from app.models.idempotency import IdempotencyRecord

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

PENDING = "pending"
COMPLETED = "completed"


class IdempotencyStore:
    def __init__(self, db: Session, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    def _live_record(self, key: str) -> Optional[IdempotencyRecord]:
        record = self.db.query(IdempotencyRecord).filter(IdempotencyRecord.key == key).first()
        if record is not None and record.expires_at <= self.clock.now():
            self.db.delete(record)
            self.db.commit()
            return None
        return record

    def get(self, key: str, model: Type[T]) -> Optional[T]:
        record = self._live_record(key)
        if record is None or record.status != COMPLETED:
            return None
        return model.model_validate_json(record.response_json)

    def claim(self, key: str, model: Type[T]) -> Optional[T]:
        """
        Reserve `key` for this request.

        Returns the cached response if another request already completed under
        this key; raises ConflictError if one is still running.
        """
        cached = self.get(key, model)
        if cached is not None:
            return cached
        now = self.clock.now()
        try:
            # Core insert: a loser must hit the primary key, not the identity map
            self.db.execute(
                insert(IdempotencyRecord).values(
                    key=key,
                    status=PENDING,
                    created_at=now,
                    expires_at=now + timedelta(minutes=settings.IDEMPOTENCY_TTL_MINUTES),
                )
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            cached = self.get(key, model)
            if cached is not None:
                return cached
            raise ConflictError("A request with this idempotency key is already in progress")
        return None

    def store(self, key: str, value: BaseModel) -> None:
        record = self.db.query(IdempotencyRecord).filter(IdempotencyRecord.key == key).first()
        if record is None:
            now = self.clock.now()
            record = IdempotencyRecord(
                key=key,
                created_at=now,
                expires_at=now + timedelta(minutes=settings.IDEMPOTENCY_TTL_MINUTES),
            )
            self.db.add(record)
        record.status = COMPLETED
        record.response_json = value.model_dump_json()
        self.db.commit()

    def release(self, key: str) -> None:
        self.db.rollback()
        deleted = (
            self.db.query(IdempotencyRecord)
            .filter(IdempotencyRecord.key == key, IdempotencyRecord.status == PENDING)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        if deleted:
            logger.info("Released idempotency key %s", key)

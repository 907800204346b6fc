from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.api.deps import get_clock
from app.core.clock import Clock
from app.core.config import settings
from app.models.screening import Screening
from app.schemas.pricing import BasePriceResponse, PriceQuoteRequest, PriceQuoteResponse
from app.services.pricing import calculate_quote, resolve_base_price

router = APIRouter(prefix="/pricing", tags=["Pricing"])


@router.post("/quote", response_model=PriceQuoteResponse)
def quote(
    data: PriceQuoteRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Price a basket without reserving anything. Unknown members are quoted as anonymous."""
    return calculate_quote(db, data.screening_id, data.items, member_id=data.member_id, clock=clock)


@router.get("/base-price/{screening_id}", response_model=BasePriceResponse)
def base_price(screening_id: UUID, db: Session = Depends(get_db)):
    screening = db.query(Screening).filter(Screening.id == screening_id).first()
    if not screening:
        raise HTTPException(status_code=404, detail="Screening not found")
    return BasePriceResponse(
        screening_id=screening.id,
        base_price=resolve_base_price(db, screening),
        currency=settings.CURRENCY,
    )

from fastapi import APIRouter

# Public: seat selection
from app.api.v1.public.screenings import router as screenings_router
from app.api.v1.public.holds import router as holds_router

# Public: booking and sales
from app.api.v1.public.reservations import router as reservations_router
from app.api.v1.public.pricing import router as pricing_router
from app.api.v1.public.tickets import router as tickets_router

# Admin
from app.api.v1.admin.maintenance import router as maintenance_router

api_router = APIRouter()

# --- Public: seat selection ---
api_router.include_router(screenings_router)
api_router.include_router(holds_router)

# --- Public: booking and sales ---
api_router.include_router(reservations_router)
api_router.include_router(pricing_router)
api_router.include_router(tickets_router)

# --- Admin ---
api_router.include_router(maintenance_router)

import asyncio
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from app.db.init_db import create_database
from app.db.base import Base
from app.db.session import engine, SessionLocal
from app.core.config import settings
from app.core.exceptions import ConflictError, SinemaError
from app.api.v1.router import api_router
from app.schemas.common import ErrorResponse, SeatsUnavailableError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


async def _hold_cleanup_loop() -> None:
    """Background task: delete expired seat holds every HOLD_CLEANUP_INTERVAL_SECONDS."""
    from app.utils.sweeps import drain_expired_holds

    while True:
        try:
            await asyncio.to_thread(
                drain_expired_holds, SessionLocal, settings.HOLD_CLEANUP_BATCH_SIZE
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during expired hold cleanup.")
        await asyncio.sleep(settings.HOLD_CLEANUP_INTERVAL_SECONDS)


async def _reservation_expiry_loop() -> None:
    """Background task: expire Pending reservations past their deadline."""
    from app.utils.sweeps import run_reservation_expiry

    while True:
        try:
            await asyncio.to_thread(run_reservation_expiry, SessionLocal)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during reservation expiry.")
        await asyncio.sleep(settings.RESERVATION_EXPIRY_INTERVAL_SECONDS)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: Ensure DB exists and create tables
    if settings.DATABASE_URL.startswith("postgresql"):
        create_database()
    Base.metadata.create_all(bind=engine)

    tasks = []
    if settings.ENABLE_BACKGROUND_JOBS:
        tasks.append(asyncio.create_task(_hold_cleanup_loop()))
        tasks.append(asyncio.create_task(_reservation_expiry_loop()))
    yield

    # Shutdown: cancel background tasks
    for task in tasks:
        task.cancel()
    for task in tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass


from fastapi.middleware.cors import CORSMiddleware

app = FastAPI(title=settings.PROJECT_NAME, lifespan=lifespan)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SinemaError)
async def handle_domain_error(request: Request, exc: SinemaError):
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.error, request.method, request.url.path, exc.message)
    if isinstance(exc, ConflictError) and exc.seat_ids:
        body = SeatsUnavailableError(
            error=exc.error,
            message=exc.message,
            unavailable_seat_ids=[str(s) for s in exc.seat_ids],
        )
    else:
        body = ErrorResponse(error=exc.error, message=exc.message)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())


app.include_router(api_router, prefix=settings.API_V1_STR)

@app.get("/")
def read_root():
    return {"Hello": "Sinema"}

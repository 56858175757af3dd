"""
AWB Sync - courier shipment backend
FastAPI application and lifespan wiring
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app import __version__
from app.api import health, awb, sync, postal_codes, companies
from app.config import get_settings
from app.models.base import init_db
from app.scheduler import start_scheduler, stop_scheduler
from app.utils.logger import log

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, then start the AWB sync scheduler when enabled"""
    log.info(f"Starting {settings.app_name} v{__version__} ({settings.environment})")

    try:
        init_db()
        log.info("Database ready")
    except Exception as e:
        log.error(f"Database initialization failed: {e}")

    scheduler_started = False
    if settings.enable_scheduler:
        try:
            start_scheduler()
            scheduler_started = True
        except Exception as e:
            log.error(f"Scheduler failed to start: {e}")

    yield

    if scheduler_started:
        stop_scheduler()
    log.info("AWB sync backend stopped")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="""
    Courier shipment backend for FanCourier

    - Creates exactly one AWB per order, per-company credentials
    - Reconciles AWB status with FanCourier tracking (manual, scheduled, per order)
    - Keeps an audit trail of every sync run
    - Fills missing postal codes from the FanCourier nomenclature
    """,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(awb.router)
app.include_router(sync.router)
app.include_router(postal_codes.router)
app.include_router(companies.router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug
    )

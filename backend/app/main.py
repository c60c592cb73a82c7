"""Donations -- FastAPI Application."""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from app.config import settings
from app.database import async_engine, create_all_tables
from app.errors import DonationServiceError, ReconciliationError

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting Donations API...")

    # Verify DB connection
    try:
        async with async_engine.begin() as conn:
            await conn.exec_driver_sql("SELECT 1")
        logger.info("Database connection verified")
    except Exception as e:
        logger.error(f"Database connection failed: {e}")

    if settings.AUTO_CREATE_TABLES:
        await create_all_tables()
        logger.info("Database tables ensured")

    logger.info("Donations API started successfully")
    yield

    await async_engine.dispose()
    logger.info("Donations API shut down")


app = FastAPI(
    title="Donations",
    description="Donation ledger and fundraising campaign management",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


@app.exception_handler(DonationServiceError)
async def service_error_handler(request: Request, exc: DonationServiceError):
    if isinstance(exc, ReconciliationError):
        logger.error(
            f"{request.method} {request.url.path}: funding reconciliation failed for "
            f"campaign {exc.campaign_id} (delta {exc.delta}): {exc.reason}"
        )
    else:
        logger.info(f"{request.method} {request.url.path}: {exc.status_code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# Import and register routers
from app.routes import admin, attachments, auth, campaigns, dashboard, donations

app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(donations.router)
app.include_router(campaigns.router)
app.include_router(attachments.router)
app.include_router(dashboard.router)


@app.get("/api/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "Donations API",
        "version": "1.0.0",
        "currency": settings.CURRENCY,
    }

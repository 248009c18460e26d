"""
Card Ledger - FastAPI Backend
Main application entry point with health check, error mapping and API routing.
"""

import asyncio
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

from config import settings, validate_security_settings
from database import engine, Base
import models  # noqa: F401
from routers import (
    health,
    members,
    ledger,
    stores,
    settlements,
    maintenance,
)
from services.errors import LedgerError
from services.maintenance import (
    DAILY_RESET_JOB,
    RETENTION_PURGE_JOB,
    run_daily_job_forever,
    run_daily_reset,
    run_retention_purge,
)


async def _cancel(task) -> None:
    if task is None:
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler for startup/shutdown."""
    # Startup
    print("🚀 Starting Card Ledger API...")
    validate_security_settings()
    if settings.AUTO_CREATE_DB_SCHEMA:
        try:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            print("🗄️ Database schema verified.")
        except Exception as e:
            print(f"⚠️ Database bootstrap skipped: {e}")
    if settings.RESET_STALE_LIMITS_ON_STARTUP:
        try:
            result = await run_daily_reset()
            if result.reset_count:
                print(f"♻️ Reset daily spend for {result.reset_count} stale accounts after startup.")
        except Exception as exc:
            print(f"⚠️ Startup daily-limit reset skipped: {exc}")
    reset_task = None
    purge_task = None
    if settings.MAINTENANCE_SCHEDULER_ENABLED:
        reset_task = asyncio.create_task(
            run_daily_job_forever(DAILY_RESET_JOB, settings.DAILY_RESET_TIME, run_daily_reset)
        )
        purge_task = asyncio.create_task(
            run_daily_job_forever(RETENTION_PURGE_JOB, settings.RETENTION_PURGE_TIME, run_retention_purge)
        )
        print(
            "📅 Maintenance loops enabled "
            f"(reset {settings.DAILY_RESET_TIME}, purge {settings.RETENTION_PURGE_TIME} "
            f"{settings.BUSINESS_TIMEZONE})."
        )
    yield
    # Shutdown
    await _cancel(reset_task)
    await _cancel(purge_task)
    print("👋 Shutting down API...")


app = FastAPI(
    title="Card Ledger API",
    description="Prepaid member cards, merchant debits, daily limits and store settlements",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LedgerError)
async def ledger_error_handler(request: Request, exc: LedgerError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(members.router, prefix="/members", tags=["Members"])
app.include_router(ledger.router, prefix="/ledger", tags=["Ledger"])
app.include_router(stores.router, prefix="/stores", tags=["Stores"])
app.include_router(settlements.router, prefix="/settlements", tags=["Settlements"])
app.include_router(maintenance.router, prefix="/maintenance", tags=["Maintenance"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "Card Ledger API",
        "version": "0.1.0",
        "status": "running"
    }

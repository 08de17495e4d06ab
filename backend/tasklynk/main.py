import logging
import sqlite3
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from tasklynk.config import settings
from tasklynk.database import SessionLocal, init_db
from tasklynk.errors import MarketplaceError
from tasklynk.routers import (
    analytics, attachments, auth, bids, catalog, invoices, jobs, messages,
    notifications, payment_requests, payments, users,
)
from tasklynk.services.email_service import mailer
from tasklynk.services.mpesa_service import mpesa_client
from tasklynk.services.scheduler import build_scheduler
from tasklynk.utils.filesystem import ensure_data_dirs

logger = logging.getLogger("tasklynk")

VERSION = "0.3.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ensure_data_dirs()
    init_db()

    conn = sqlite3.connect(str(settings.db_path))
    result = conn.execute("PRAGMA integrity_check").fetchone()
    conn.close()
    if result and result[0] == "ok":
        logger.info("Database integrity check passed.")
    else:
        logger.error("DATABASE INTEGRITY CHECK FAILED: %s", result)

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = build_scheduler(SessionLocal, mpesa_client, mailer)
        scheduler.start()
        logger.info("Background sweeps started.")
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


app = FastAPI(
    title="TaskLynk",
    description="Freelance writing marketplace: jobs, bids, payments and delivery",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:5173",
        "http://localhost:5173",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "code": exc.code})


@app.exception_handler(StaleDataError)
async def stale_data_handler(request: Request, exc: StaleDataError):
    logger.info("Concurrent update rejected on %s", request.url.path)
    return JSONResponse(
        status_code=409,
        content={"detail": "Record was modified by another request", "code": "VERSION_CONFLICT"},
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError):
    logger.info("Constraint violation on %s: %s", request.url.path, exc.orig)
    return JSONResponse(
        status_code=409,
        content={"detail": "Request conflicts with existing data", "code": "CONFLICT"},
    )


app.include_router(auth.router, prefix=settings.api_prefix)
app.include_router(users.router, prefix=settings.api_prefix)
app.include_router(jobs.router, prefix=settings.api_prefix)
app.include_router(bids.router, prefix=settings.api_prefix)
app.include_router(attachments.router, prefix=settings.api_prefix)
app.include_router(messages.router, prefix=settings.api_prefix)
app.include_router(messages.moderation_router, prefix=settings.api_prefix)
app.include_router(payments.router, prefix=settings.api_prefix)
app.include_router(payments.mpesa_router, prefix=settings.api_prefix)
app.include_router(payment_requests.router, prefix=settings.api_prefix)
app.include_router(invoices.router, prefix=settings.api_prefix)
app.include_router(notifications.router, prefix=settings.api_prefix)
app.include_router(analytics.router, prefix=settings.api_prefix)
app.include_router(catalog.router, prefix=settings.api_prefix)


@app.get("/health")
async def health():
    return {"status": "ok", "version": VERSION}

"""Main FastAPI application for PitchBook."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from slowapi.errors import RateLimitExceeded

from pitchbook.catalog import load_catalog
from pitchbook.config import (
    CURRENCY,
    PAYMENT_API_KEY,
    PAYMENT_API_URL,
    PAYMENT_HOLD_MINUTES,
    PAYMENT_TIMEOUT_SECONDS,
    PERSISTENCE_TIMEOUT_SECONDS,
    PITCHES_FILE,
    REAPER_INTERVAL,
)
from pitchbook.db import SqliteReservationStore
from pitchbook.rate_limit import limiter, rate_limit_exceeded_handler
from pitchbook.routers import bookings, health, pitches
from pitchbook.services import booking_service
from pitchbook.services.background import PendingPaymentReaper
from pitchbook.services.booking_service import BookingService
from pitchbook.services.payments import HttpPaymentGateway

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    store = SqliteReservationStore(timeout=PERSISTENCE_TIMEOUT_SECONDS)
    await store.init()

    for pitch in load_catalog(PITCHES_FILE):
        await store.upsert_resource(pitch)

    payments = None
    if PAYMENT_API_URL:
        payments = HttpPaymentGateway(
            PAYMENT_API_URL, api_key=PAYMENT_API_KEY, timeout=PAYMENT_TIMEOUT_SECONDS
        )
    else:
        logger.info("PAYMENT_API_URL not set; online bookings wait for payment callbacks")

    service = BookingService(
        store,
        payments=payments,
        # Looked up at startup so tests can pin the clock.
        clock=booking_service.venue_now,
        currency=CURRENCY,
        timeout=PERSISTENCE_TIMEOUT_SECONDS,
        payment_timeout=PAYMENT_TIMEOUT_SECONDS,
    )
    reaper = PendingPaymentReaper(
        service,
        store,
        hold=timedelta(minutes=PAYMENT_HOLD_MINUTES),
        interval=REAPER_INTERVAL,
    )
    await reaper.start()

    app.state.store = store
    app.state.booking_service = service
    app.state.reaper = reaper
    try:
        yield
    finally:
        await reaper.stop()
        if payments is not None:
            await payments.close()
        await store.close()


app = FastAPI(
    title="PitchBook API",
    description="Football pitch booking with conflict-free slot allocation",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

app.include_router(health.router)
app.include_router(pitches.router)
app.include_router(bookings.router)

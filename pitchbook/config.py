"""
Application configuration from environment variables.

All settings have sensible defaults for local development.
A .env file in the project root is loaded automatically (if present).
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env file before reading any env vars
load_dotenv(Path(__file__).resolve().parent.parent / ".env")

# ── Environment ───────────────────────────────────────────────────────────

ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")

# ── Paths ─────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"

# SQLite database file
DB_PATH: str = os.getenv("DB_PATH", str(DATA_DIR / "pitchbook.db"))

# YAML file with the pitch catalog, loaded into the store at startup.
PITCHES_FILE: str = os.getenv("PITCHES_FILE", str(PROJECT_ROOT / "pitches.example.yaml"))

# Upper bound (seconds) for any single persistence round-trip.
PERSISTENCE_TIMEOUT_SECONDS: float = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "5"))

# ── Booking rules ─────────────────────────────────────────────────────────

# Minimum lead time between "now" and a booking's start.
BOOKING_NOTICE_HOURS: float = float(os.getenv("BOOKING_NOTICE_HOURS", "24"))

# Lead time for moving an existing booking; may not exceed BOOKING_NOTICE_HOURS.
RESCHEDULE_NOTICE_HOURS: float = float(
    os.getenv("RESCHEDULE_NOTICE_HOURS", str(BOOKING_NOTICE_HOURS))
)

# How many days ahead a pitch can be booked.
BOOKING_HORIZON_DAYS: int = int(os.getenv("BOOKING_HORIZON_DAYS", "30"))

MAX_DURATION_HOURS: int = int(os.getenv("MAX_DURATION_HOURS", "3"))

# Operating hours used for pitches that don't declare their own.
DEFAULT_OPENS_AT: str = os.getenv("DEFAULT_OPENS_AT", "06:00")
DEFAULT_CLOSES_AT: str = os.getenv("DEFAULT_CLOSES_AT", "22:00")

CURRENCY: str = os.getenv("CURRENCY", "lkr")

# Booking dates and start times are wall-clock times at the venue.
VENUE_TIMEZONE: str = os.getenv("VENUE_TIMEZONE", "Asia/Colombo")

# ── Payments ──────────────────────────────────────────────────────────────

# Leave empty to run without a payment provider; online bookings then stay
# pending until POST /api/bookings/{id}/payment reports the outcome.
PAYMENT_API_URL: str = os.getenv("PAYMENT_API_URL", "")
PAYMENT_API_KEY: str = os.getenv("PAYMENT_API_KEY", "")
PAYMENT_TIMEOUT_SECONDS: float = float(os.getenv("PAYMENT_TIMEOUT_SECONDS", "30"))

# Shared secret the provider sends as "Authorization: Bearer ..." on
# POST /api/bookings/{id}/payment. Callbacks are refused while it is empty.
PAYMENT_CALLBACK_SECRET: str = os.getenv("PAYMENT_CALLBACK_SECRET", "")

# Pending (online) bookings older than this are cancelled by the reaper.
PAYMENT_HOLD_MINUTES: int = int(os.getenv("PAYMENT_HOLD_MINUTES", "30"))

# How often the reaper looks for abandoned payments (seconds).
REAPER_INTERVAL: float = float(os.getenv("REAPER_INTERVAL", "60"))

# ── Venue staff ───────────────────────────────────────────────────────────

# Bearer key for venue dashboard requests. Venue cancellations refund in
# full, so they are only accepted with this key. Empty disables staff access.
VENUE_API_KEY: str = os.getenv("VENUE_API_KEY", "")

# ── JWT ───────────────────────────────────────────────────────────────────

JWT_SECRET: str = os.getenv("JWT_SECRET", "dev-secret-change-me-in-production")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRY_DAYS: int = int(os.getenv("JWT_EXPIRY_DAYS", "7"))

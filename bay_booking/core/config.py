"""Runtime configuration loaded from environment variables."""

import os

from dotenv import load_dotenv

# Load environment variables from .env (for local development)
load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}.") from None


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./bay_booking.db")

# Scheduling grid and block composition.
SLOT_STEP_MIN = _env_int("SLOT_STEP_MIN", 30)
DEFAULT_SERVICE_DURATION_MIN = _env_int("DEFAULT_SERVICE_DURATION_MIN", 30)
DEFAULT_BUFFER_MIN = _env_int("DEFAULT_BUFFER_MIN", 15)
MAX_BUFFER_MIN = 120

PAYMENT_HOLD_MINUTES = _env_int("PAYMENT_HOLD_MINUTES", 10)
PAST_GRACE_SECONDS = _env_int("PAST_GRACE_SECONDS", 30)

MAX_BAY_NUMBER = _env_int("MAX_BAY_NUMBER", 20)

DEFAULT_DEPOSIT_RUB = _env_int("DEFAULT_DEPOSIT_RUB", 500)
MAX_AMOUNT_RUB = 1_000_000

# Booking blocks are always well under a day, so +-24h bounds every overlap query.
CONFLICT_WINDOW_HOURS = _env_int("CONFLICT_WINDOW_HOURS", 24)

HOUSEKEEPING_INTERVAL_SECONDS = _env_int("HOUSEKEEPING_INTERVAL_SECONDS", 60)
HOUSEKEEPING_ENABLED = _env_bool("HOUSEKEEPING_ENABLED", True)

MAX_NOTE_LENGTH = 500

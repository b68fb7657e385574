"""Simple runtime configuration for the DayGrid service.

Control flags are read from environment variables to allow toggling in
development or production without code changes.
"""
import os


def _trueish(v: str | None) -> bool:
    if not v:
        return False
    return v.lower() in ('1', 'true', 'yes', 'on')


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except (TypeError, ValueError):
        return default


# Async SQLAlchemy URL for the remote task table. Tests point this at a
# throwaway sqlite file before importing daygrid.db.
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite+aiosqlite:///./daygrid.db')

# SECRET_KEY signs access tokens and magic-link tokens. The fallback is only
# acceptable for tests; the app lifespan refuses to start with it.
SECRET_KEY_FALLBACK = 'CHANGE_ME_IN_ENV_FOR_TESTS'
SECRET_KEY = os.getenv('SECRET_KEY', SECRET_KEY_FALLBACK)

# When true, the app is considered to be running in development mode. The
# magic-link endpoint then echoes the sign-in token in its response so a
# local client can complete the login without a mailbox.
DEV_MODE = _trueish(os.getenv('DEV_MODE', '0'))

# Lifetime of the emailed sign-in token.
MAGIC_LINK_EXPIRE_MINUTES = _int_env('MAGIC_LINK_EXPIRE_MINUTES', 15)

# Server-side session lifetime and bearer token lifetime.
SESSION_EXPIRE_DAYS = _int_env('SESSION_EXPIRE_DAYS', 30)
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env('ACCESS_TOKEN_EXPIRE_MINUTES', 60 * 24)

# Base URL placed in front of the token in emailed links.
MAGIC_LINK_BASE_URL = os.getenv('MAGIC_LINK_BASE_URL', 'http://localhost:8000/auth/callback')

# Number of tasks a month-grid cell shows. Display-only; the store keeps
# every task regardless of this number.
CELL_TASK_LIMIT = _int_env('CELL_TASK_LIMIT', 15)

# Per-subscriber buffer for realtime change events. A subscriber that falls
# this far behind starts dropping events (it reloads on the next one anyway).
REALTIME_QUEUE_SIZE = _int_env('REALTIME_QUEUE_SIZE', 100)

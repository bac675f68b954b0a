# app/config.py
# Role: Runtime settings for the finance tracker.
#       Values come from the environment (optionally a .env file at the project root).

"""
Application settings.

All values are read once at import time. Tests and scripts that need other
values should set the environment before importing the app modules.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# Base directory of the project (one level above app/)
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def _env_truthy(name: str, default: str = "0") -> bool:
    v = os.getenv(name, default)
    return str(v).strip().lower() in ("1", "true", "yes", "y", "on")


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


# -------------------------------------------------------------------
# Database
# -------------------------------------------------------------------

DB_DIR = os.path.join(BASE_DIR, "database")
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(DB_DIR, 'finance.db')}")

# Echo SQL statements (debug only)
DATABASE_ECHO = _env_truthy("DATABASE_ECHO", "0")

# -------------------------------------------------------------------
# Caches (seconds)
# -------------------------------------------------------------------

# Conversion rates rarely change
CONVERSION_CACHE_TTL_SECONDS = _env_int("CONVERSION_CACHE_TTL_SECONDS", 15 * 60)
SPENDING_CACHE_TTL_SECONDS = _env_int("SPENDING_CACHE_TTL_SECONDS", 5 * 60)
INSIGHTS_CACHE_TTL_SECONDS = _env_int("INSIGHTS_CACHE_TTL_SECONDS", 5 * 60)

# -------------------------------------------------------------------
# Defaults
# -------------------------------------------------------------------

DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "SGD")
DEFAULT_STATEMENT_DAY = _env_int("DEFAULT_STATEMENT_DAY", 1)

# Single-user deployments use a fixed user id for ledger/insight rows
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "local")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

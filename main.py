# main.py
# Role: Application entry point for the finance tracker.
#       Initializes the FastAPI app, configures logging, creates database
#       tables, and registers all route modules.

"""
Main FastAPI app for the personal finance and rewards tracker.

Here we only:
- configure logging
- create the FastAPI app
- create DB tables
- map domain errors to HTTP responses
- include route modules
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from db import Base, engine
from app.config import LOG_LEVEL
from app.errors import FinanceTrackerError
from app.routes_root import router as root_router
from app.routes_dashboard import router as dashboard_router
from app.routes_transactions import router as transactions_router
from app.routes_rewards import router as rewards_router
from app.routes_conversion import router as conversion_router
from app.routes_points import router as points_router
from app.routes_insights import router as insights_router

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# -------------------------------------------------------------------
# App & DB setup
# -------------------------------------------------------------------

# Create database tables (only if they don't exist yet).
# This is safe to run on startup for SQLite and development usage.
Base.metadata.create_all(bind=engine)

# FastAPI application instance
app = FastAPI(title="Finance Tracker")


@app.exception_handler(FinanceTrackerError)
async def finance_tracker_error_handler(request: Request, exc: FinanceTrackerError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# -------------------------------------------------------------------
# Include routers
# -------------------------------------------------------------------

# Root / health
app.include_router(root_router)

# Monthly overview
app.include_router(dashboard_router)

# Transactions list, adding purchases, payment methods
app.include_router(transactions_router)

# Reward rules, calculation, card simulator
app.include_router(rewards_router)

# Reward currencies and conversion rates
app.include_router(conversion_router)

# Points balances, adjustments, redemptions, transfers
app.include_router(points_router)

# Spending insights
app.include_router(insights_router)

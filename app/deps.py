# app/deps.py
# Role: Shared application-level dependencies and globals.
#       Provides the standard SQLAlchemy database session dependency and the
#       process-wide service instances (each keeps its own in-memory cache).

"""
Shared dependencies and globals for the finance tracker app.
"""

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from db import SessionLocal
from app.services.bonus_tracker import BonusPointsTracker
from app.services.conversion import ConversionService
from app.services.insights import InsightService
from app.services.reward_calculator import RewardCalculator
from app.services.rule_repository import RuleRepository
from app.services.spending_tracker import MonthlySpendingTracker

# -------------------------------------------------------------------
# Database dependency
# -------------------------------------------------------------------

def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a database session and ensures it is closed.

    Typical usage in routes:
        db: Session = Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# -------------------------------------------------------------------
# Cached services
# -------------------------------------------------------------------

# One instance per process so their caches outlive a request.
# Tests swap these out through app.dependency_overrides.
conversion_service = ConversionService(SessionLocal)
spending_tracker = MonthlySpendingTracker(SessionLocal)
bonus_tracker = BonusPointsTracker(SessionLocal)
insight_service = InsightService(SessionLocal)


def get_conversion_service() -> ConversionService:
    return conversion_service


def get_spending_tracker() -> MonthlySpendingTracker:
    return spending_tracker


def get_bonus_tracker() -> BonusPointsTracker:
    return bonus_tracker


def get_insight_service() -> InsightService:
    return insight_service


def get_calculator(
    db: Session = Depends(get_db),
    tracker: BonusPointsTracker = Depends(get_bonus_tracker),
) -> RewardCalculator:
    """Rules are read through the request's session."""
    return RewardCalculator(RuleRepository(db), tracker)

# routes_insights.py
"""
Routes for spending insights and their per-user dismissals.
"""

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from models import PaymentMethod, Transaction
from app.config import DEFAULT_CURRENCY
from app.deps import get_calculator, get_db, get_insight_service
from app.schemas import InsightIn
from app.services.periods import get_month_range, previous_month

router = APIRouter(prefix="/insights")


@router.get("")
def list_insights(
    monthly_budget: float = Query(0.0, ge=0),
    currency: str = Query(DEFAULT_CURRENCY),
    category: List[str] = Query(default=[]),
    include_dismissed: bool = Query(False),
    max_results: int = Query(10, ge=1, le=50),
    db: Session = Depends(get_db),
    calculator=Depends(get_calculator),
    service=Depends(get_insight_service),
):
    """Triggered insights for this month (compared with last month), highest priority first."""
    # Three months of history: this month, last month and a baseline for anomalies
    today = date.today()
    history_month = previous_month(previous_month(f"{today.year:04d}-{today.month:02d}"))
    history_start, _, _ = get_month_range(history_month)
    transactions = (
        db.query(Transaction)
        .filter(Transaction.date >= history_start, Transaction.is_deleted.is_(False))
        .all()
    )
    payment_methods = db.query(PaymentMethod).filter(PaymentMethod.active.is_(True)).all()

    return service.evaluate_insights(
        transactions,
        monthly_budget=monthly_budget,
        currency=currency,
        payment_methods=payment_methods,
        include_dismissed=include_dismissed,
        max_results=max_results,
        categories=category or None,
        calculator=calculator,
    )


@router.post("", status_code=201)
def create_insight(payload: InsightIn, service=Depends(get_insight_service)):
    insight = service.create_insight(**payload.model_dump())
    return {"id": insight.id}


@router.post("/{insight_id}/dismiss", status_code=204)
def dismiss_insight(insight_id: int, service=Depends(get_insight_service)):
    service.dismiss_insight(insight_id)


@router.delete("/{insight_id}/dismiss", status_code=204)
def clear_dismissal(insight_id: int, service=Depends(get_insight_service)):
    service.clear_dismissal(insight_id)

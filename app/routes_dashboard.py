# app/routes_dashboard.py

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import func, case

from .deps import get_db
from app.config import DEFAULT_CURRENCY
from app.services.insights import transactions_frame
from app.services.periods import get_month_range
from app.schemas import TransactionOut
from models import Transaction

router = APIRouter()


@router.get("/dashboard")
def dashboard_summary(
    month: str | None = Query(None),
    currency: str = Query(DEFAULT_CURRENCY),
    db: Session = Depends(get_db),
):
    # Defaults to the previous month: [month_start, next_month_start)
    month_start, next_month_start, normalized_month = get_month_range(month)

    in_month = (
        Transaction.date >= month_start,
        Transaction.date < next_month_start,
        Transaction.is_deleted.is_(False),
    )

    tx_count_month = db.query(func.count(Transaction.id)).filter(*in_month).scalar() or 0

    # Positive amounts are spend, negative ones refunds
    expenses, refunds, reimbursed, points = (
        db.query(
            func.coalesce(func.sum(case((Transaction.amount > 0, Transaction.amount), else_=0.0)), 0.0),
            func.coalesce(func.sum(case((Transaction.amount < 0, -Transaction.amount), else_=0.0)), 0.0),
            func.coalesce(func.sum(Transaction.reimbursement_amount), 0.0),
            func.coalesce(func.sum(Transaction.reward_points), 0),
        )
        .filter(*in_month)
        .one()
    )
    expenses = float(expenses)
    refunds = float(refunds)
    reimbursed = float(reimbursed)

    # Spending by effective category (user override / MCC / merchant keywords)
    month_rows = db.query(Transaction).filter(*in_month).all()
    df = transactions_frame(month_rows, currency)
    spend = df[df["amount"] > 0]
    by_category = spend.groupby("category")["amount"].sum().sort_values(ascending=False)
    spending_by_category = [{"label": label, "value": float(value)} for label, value in by_category.items()]

    # 10 biggest transactions by absolute value in the month
    top_transactions = (
        db.query(Transaction)
        .filter(*in_month)
        .order_by(func.abs(Transaction.amount).desc(), Transaction.date.desc())
        .limit(10)
        .all()
    )

    return {
        "month": normalized_month,
        "month_label": month_start.strftime("%B %Y"),
        "month_start": month_start.isoformat(),
        "next_month_start": next_month_start.isoformat(),
        "tx_count_month": int(tx_count_month),
        "expenses": expenses,
        "refunds": refunds,
        "reimbursed": reimbursed,
        "net_spend": expenses - refunds - reimbursed,
        "points_earned": int(points),
        "spending_by_category": spending_by_category,
        "total_spent": float(spend["amount"].sum()),
        "top_transactions": [TransactionOut.model_validate(tx) for tx in top_transactions],
    }

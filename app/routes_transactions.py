# routes_transactions.py
"""
Routes for the transactions list, adding purchases (with reward points
computed on save) and the payment methods they are charged to.
"""

import logging
from datetime import date, timedelta
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from sqlalchemy import or_
from sqlalchemy import func, case

from models import PaymentMethod, Transaction
from app.deps import get_calculator, get_db, get_spending_tracker
from app.errors import NotFoundError
from app.schemas import PaymentMethodIn, PaymentMethodOut, TransactionIn, TransactionOut
from app.services.categorization import mcc_for_merchant
from app.services.periods import CALENDAR, STATEMENT, get_month_range
from app.services.reward_rules import CalculationInput

logger = logging.getLogger(__name__)

router = APIRouter()


# Convert amount filters safely
def parse_optional_float(value: str) -> float | None:
    value = value.strip()
    if value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _category_key():
    return func.coalesce(Transaction.user_category, Transaction.category)


# -------------------------------------------------------------------
# Transactions list
# -------------------------------------------------------------------

@router.get("/transactions")
def list_transactions(
    month: str | None = Query(None),
    start_date: date | None = Query(None),
    end_date: date | None = Query(None),
    search: str | None = Query(None),
    category: List[str] = Query(default=[]),
    card: List[int] = Query(default=[]),
    min_amount: str = Query(""),
    max_amount: str = Query(""),
    sort: str = Query("date"),
    dir: str = Query("desc"),
    db: Session = Depends(get_db),
):

    if start_date and end_date:
        range_start = start_date
        range_end_exclusive = end_date + timedelta(days=1)
        normalized_month = None
    else:
        range_start, range_end_exclusive, normalized_month = get_month_range(month)

    # Base query (NO order_by here)
    query = db.query(Transaction).filter(
        Transaction.date >= range_start,
        Transaction.date < range_end_exclusive,
        Transaction.is_deleted.is_(False),
    )

    # Search
    if search:
        pattern = f"%{search}%"
        query = query.filter(
            or_(
                Transaction.merchant_name.ilike(pattern),
                Transaction.notes.ilike(pattern),
            )
        )

    # Category filter (supports "None")
    if category:
        cat_conditions = []
        for cat in category:
            if cat == "None":
                cat_conditions.append(_category_key().is_(None))
            else:
                cat_conditions.append(_category_key() == cat)
        query = query.filter(or_(*cat_conditions))

    if card:
        query = query.filter(Transaction.payment_method_id.in_(card))

    # Amount parsing + filters
    min_amount_val = parse_optional_float(min_amount)
    max_amount_val = parse_optional_float(max_amount)

    if min_amount_val is not None:
        query = query.filter(Transaction.amount >= min_amount_val)

    if max_amount_val is not None:
        query = query.filter(Transaction.amount <= max_amount_val)

    # Totals for filtered view (before sorting)
    spend_sum, refund_sum, points_sum = db.query(
        func.coalesce(func.sum(case((Transaction.amount > 0, Transaction.amount), else_=0.0)), 0.0),
        func.coalesce(func.sum(case((Transaction.amount < 0, Transaction.amount), else_=0.0)), 0.0),
        func.coalesce(func.sum(Transaction.reward_points), 0),
    ).select_from(Transaction).filter(*query._where_criteria).one()

    # Sorting (single order_by applied once)
    sort_key = sort if sort in {"date", "amount", "points"} else "date"
    sort_dir = dir if dir in {"asc", "desc"} else "desc"
    sort_col = {
        "date": Transaction.date,
        "amount": Transaction.amount,
        "points": Transaction.reward_points,
    }[sort_key]
    query = query.order_by(sort_col.asc() if sort_dir == "asc" else sort_col.desc(), Transaction.id)

    transactions = query.all()

    return {
        "transactions": [TransactionOut.model_validate(tx) for tx in transactions],
        "month": normalized_month,
        "spend_sum": float(spend_sum),
        "refund_sum": float(refund_sum),
        "net_sum": float(spend_sum) + float(refund_sum),
        "points_sum": int(points_sum),
        "sort": sort_key,
        "dir": sort_dir,
    }


def _get_transaction(db: Session, transaction_id: int) -> Transaction:
    tx = db.get(Transaction, transaction_id)
    if tx is None or tx.is_deleted:
        raise NotFoundError(f"Transaction {transaction_id} not found")
    return tx


@router.get("/transactions/{transaction_id}", response_model=TransactionOut)
def get_transaction(transaction_id: int, db: Session = Depends(get_db)):
    return _get_transaction(db, transaction_id)


# -------------------------------------------------------------------
# Adding / removing transactions
# -------------------------------------------------------------------

def calculation_input_for(tx: Transaction, payment_method: PaymentMethod, monthly_spend: float | None) -> CalculationInput:
    return CalculationInput(
        amount=tx.amount,
        payment_method=payment_method,
        currency=tx.currency,
        mcc=tx.mcc_code,
        merchant_name=tx.merchant_name,
        transaction_type="refund" if tx.amount < 0 else "purchase",
        is_online=tx.is_online,
        is_contactless=tx.is_contactless,
        date=tx.date,
        monthly_spend=monthly_spend,
        converted_amount=tx.payment_amount,
        converted_currency=tx.payment_currency,
    )


@router.post("/transactions", response_model=TransactionOut, status_code=201)
def create_transaction(
    payload: TransactionIn,
    db: Session = Depends(get_db),
    calculator=Depends(get_calculator),
    spending_tracker=Depends(get_spending_tracker),
):
    """
    Saves a transaction. Charged to a card, its reward points are computed
    first and any capped bonus is added to the card's monthly usage.
    """
    tx = Transaction(**payload.model_dump())
    if not tx.mcc_code:
        tx.mcc_code = mcc_for_merchant(tx.merchant_name)

    payment_method = None
    calculation = data = None
    if tx.payment_method_id is not None:
        payment_method = db.get(PaymentMethod, tx.payment_method_id)
        if payment_method is None:
            raise NotFoundError(f"Payment method {tx.payment_method_id} not found")

        period_type = STATEMENT if payment_method.is_monthly_statement else CALENDAR
        monthly_spend = spending_tracker.get_monthly_spending(
            payment_method.id, period_type, tx.date, payment_method.statement_start_day
        )
        data = calculation_input_for(tx, payment_method, monthly_spend)
        calculation = calculator.calculate_rewards(data)

        tx.reward_points = calculation.total_points
        tx.base_points = calculation.base_points
        tx.bonus_points = calculation.bonus_points

    db.add(tx)
    db.commit()
    db.refresh(tx)

    if calculation is not None:
        calculator.record_bonus_usage(data, calculation)
        spending_tracker.update_monthly_spending(tx)
        logger.info(
            "Transaction %s on %s earned %s %s",
            tx.id, payment_method.name, calculation.total_points, calculation.points_currency,
        )

    return tx


@router.delete("/transactions/{transaction_id}", status_code=204)
def delete_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    spending_tracker=Depends(get_spending_tracker),
):
    """Soft delete; the row stays for history but leaves every total."""
    tx = _get_transaction(db, transaction_id)
    tx.is_deleted = True
    db.commit()
    if tx.payment_method_id is not None:
        spending_tracker.update_monthly_spending(tx)


# -------------------------------------------------------------------
# Payment methods
# -------------------------------------------------------------------

@router.get("/payment-methods", response_model=List[PaymentMethodOut])
def list_payment_methods(active_only: bool = Query(False), db: Session = Depends(get_db)):
    query = db.query(PaymentMethod)
    if active_only:
        query = query.filter(PaymentMethod.active.is_(True))
    return query.order_by(PaymentMethod.name).all()


@router.post("/payment-methods", response_model=PaymentMethodOut, status_code=201)
def create_payment_method(payload: PaymentMethodIn, db: Session = Depends(get_db)):
    payment_method = PaymentMethod(**payload.model_dump())
    db.add(payment_method)
    db.commit()
    db.refresh(payment_method)
    return payment_method

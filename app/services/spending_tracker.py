# app/services/spending_tracker.py
#
# Monthly Spending Tracker
# Sums a card's spend in the calendar month or statement cycle containing a
# date. Used for minimum-spend rules and spend-based bonus tiers.

import logging
import time
from datetime import date as date_type

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from app.config import SPENDING_CACHE_TTL_SECONDS
from app.services.periods import CALENDAR, period_year_month, spending_period_range
from models import Transaction

logger = logging.getLogger(__name__)


def _card_amount(tx) -> float:
    # Spend is counted in the card currency when the transaction was converted
    if getattr(tx, "payment_amount", None) is not None:
        return tx.payment_amount
    return tx.amount or 0.0


class MonthlySpendingTracker:
    def __init__(self, session_factory, ttl_seconds: int = SPENDING_CACHE_TTL_SECONDS):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        # key -> (value, stored_at)
        self._cache: dict[str, tuple[float, float]] = {}

    @staticmethod
    def _cache_key(payment_method_id, period_type, day, statement_day) -> str:
        year, month = period_year_month(day, period_type, statement_day)
        return f"{payment_method_id}-{period_type}-{year}-{month}-{statement_day}"

    def _cached(self, key: str):
        entry = self._cache.get(key)
        if entry is None:
            return None
        value, stored_at = entry
        if time.monotonic() - stored_at >= self.ttl_seconds:
            del self._cache[key]
            return None
        return value

    def get_monthly_spending(
        self,
        payment_method_id,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
    ) -> float:
        """Total spend in the period; 0 when the lookup fails."""
        day = day or date_type.today()
        key = self._cache_key(payment_method_id, period_type, day, statement_day)

        cached = self._cached(key)
        if cached is not None:
            return cached

        start, end = spending_period_range(day, period_type, statement_day)

        db = self.session_factory()
        try:
            total = (
                db.query(func.coalesce(func.sum(func.coalesce(Transaction.payment_amount, Transaction.amount)), 0.0))
                .filter(
                    Transaction.payment_method_id == payment_method_id,
                    Transaction.date >= start,
                    Transaction.date < end,
                    Transaction.is_deleted.is_(False),
                )
                .scalar()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching monthly spending for payment method %s", payment_method_id)
            return 0.0
        finally:
            db.close()

        total = float(total or 0.0)
        self._cache[key] = (total, time.monotonic())
        return total

    def calculate_from_transactions(
        self,
        transactions,
        payment_method_id,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
    ) -> float:
        """Same total computed over already-loaded transactions."""
        start, end = spending_period_range(day or date_type.today(), period_type, statement_day)
        return sum(
            _card_amount(tx)
            for tx in transactions
            if tx.payment_method_id == payment_method_id
            and not getattr(tx, "is_deleted", False)
            and start <= tx.date < end
        )

    def update_monthly_spending(self, transaction) -> None:
        """Invalidates cached totals after a transaction for the card changed."""
        self.clear_cache_for_payment_method(transaction.payment_method_id)

    def clear_cache_for_payment_method(self, payment_method_id) -> None:
        prefix = f"{payment_method_id}-"
        for key in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[key]

    def clear_cache(self) -> None:
        self._cache.clear()

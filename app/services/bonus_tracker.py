# app/services/bonus_tracker.py
#
# Bonus Points Tracker
# Keeps the running total of bonus points (or bonus-eligible spend) used per
# rule / cap group, card and spending period, so monthly caps can be applied.

import logging
from datetime import date as date_type

from sqlalchemy.exc import SQLAlchemyError

from app.config import DEFAULT_USER_ID
from app.services.periods import CALENDAR, period_year_month
from models import BonusPointsTracking

logger = logging.getLogger(__name__)

BONUS_POINTS = "bonus_points"
SPEND_AMOUNT = "spend_amount"


def tracking_id(rule_id: str, cap_group_id: str | None = None, cap_type: str = BONUS_POINTS) -> str:
    """
    Rules sharing a cap group share one counter. Spend caps are counted
    separately from point caps under "<id>:spend".
    """
    base = cap_group_id or rule_id
    return f"{base}:spend" if cap_type == SPEND_AMOUNT else base


class BonusPointsTracker:
    def __init__(self, session_factory, user_id: str = DEFAULT_USER_ID):
        self.session_factory = session_factory
        self.user_id = user_id
        self._cache: dict[tuple, float] = {}

    def _period(self, period_type, day, statement_day):
        period_type = period_type or CALENDAR
        year, month = period_year_month(day or date_type.today(), period_type, statement_day)
        return period_type, year, month

    def _query(self, db, track_id, payment_method_id, period_type, year, month, statement_day):
        return db.query(BonusPointsTracking).filter(
            BonusPointsTracking.user_id == self.user_id,
            BonusPointsTracking.rule_id == track_id,
            BonusPointsTracking.payment_method_id == payment_method_id,
            BonusPointsTracking.period_type == period_type,
            BonusPointsTracking.period_year == year,
            BonusPointsTracking.period_month == month,
            BonusPointsTracking.statement_day == statement_day,
        )

    def get_used_bonus_points(
        self,
        rule_id: str,
        payment_method_id,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
        cap_group_id: str | None = None,
        cap_type: str = BONUS_POINTS,
    ) -> float:
        """Used value for the period containing `day`; 0 when unknown or on DB errors."""
        track_id = tracking_id(rule_id, cap_group_id, cap_type)
        period_type, year, month = self._period(period_type, day, statement_day)
        key = (track_id, payment_method_id, period_type, year, month, statement_day)

        if key in self._cache:
            return self._cache[key]

        db = self.session_factory()
        try:
            row = self._query(db, track_id, payment_method_id, period_type, year, month, statement_day).first()
        except SQLAlchemyError:
            logger.exception("Error loading bonus usage for %s", track_id)
            return 0.0
        finally:
            db.close()

        used = row.used_bonus_points if row else 0.0
        self._cache[key] = used
        return used

    def _store(self, track_id, payment_method_id, period_type, year, month, statement_day, value):
        db = self.session_factory()
        try:
            row = self._query(db, track_id, payment_method_id, period_type, year, month, statement_day).first()
            if row is None:
                row = BonusPointsTracking(
                    user_id=self.user_id,
                    rule_id=track_id,
                    payment_method_id=payment_method_id,
                    period_type=period_type,
                    period_year=year,
                    period_month=month,
                    statement_day=statement_day,
                )
                db.add(row)
            row.used_bonus_points = value
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Error storing bonus usage for %s", track_id)
            return False
        finally:
            db.close()

        self._cache[(track_id, payment_method_id, period_type, year, month, statement_day)] = value
        return True

    def track_bonus_points_usage(
        self,
        rule_id: str,
        payment_method_id,
        value: float,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
        cap_group_id: str | None = None,
        cap_type: str = BONUS_POINTS,
    ) -> float | None:
        """Adds `value` to the period's counter; returns the new total (None if not stored)."""
        if value <= 0:
            return None

        current = self.get_used_bonus_points(
            rule_id, payment_method_id, period_type, day, statement_day, cap_group_id, cap_type
        )
        track_id = tracking_id(rule_id, cap_group_id, cap_type)
        period_type, year, month = self._period(period_type, day, statement_day)

        new_usage = current + value
        if not self._store(track_id, payment_method_id, period_type, year, month, statement_day, new_usage):
            return None

        logger.debug("Tracked %s %s for %s, total %s", value, cap_type, track_id, new_usage)
        return new_usage

    def decrement_bonus_points_usage(
        self,
        rule_id: str,
        payment_method_id,
        value: float,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
        cap_group_id: str | None = None,
        cap_type: str = BONUS_POINTS,
    ) -> float | None:
        """Reverses usage (deleted / edited transactions). Never goes below 0."""
        if value <= 0:
            return None

        current = self.get_used_bonus_points(
            rule_id, payment_method_id, period_type, day, statement_day, cap_group_id, cap_type
        )
        track_id = tracking_id(rule_id, cap_group_id, cap_type)
        period_type, year, month = self._period(period_type, day, statement_day)

        new_usage = max(0.0, current - value)
        if not self._store(track_id, payment_method_id, period_type, year, month, statement_day, new_usage):
            return None
        return new_usage

    def get_remaining_bonus_points(
        self,
        rule_id: str,
        payment_method_id,
        monthly_cap: float,
        period_type: str = CALENDAR,
        day: date_type | None = None,
        statement_day: int = 1,
        cap_group_id: str | None = None,
        cap_type: str = BONUS_POINTS,
    ) -> float:
        used = self.get_used_bonus_points(
            rule_id, payment_method_id, period_type, day, statement_day, cap_group_id, cap_type
        )
        return max(0.0, monthly_cap - used)

    def clear_cache(self) -> None:
        self._cache.clear()

    def clear_cache_for_payment_method(self, payment_method_id) -> None:
        for key in [k for k in self._cache if k[1] == payment_method_id]:
            del self._cache[key]

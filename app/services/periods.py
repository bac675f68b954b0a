# app/services/periods.py
#
# Period Helpers
# Month ranges for reports, and calendar / statement-cycle ranges used by
# monthly spend tracking and bonus caps.

import calendar
from datetime import date

CALENDAR = "calendar"
STATEMENT = "statement"
STATEMENT_MONTH = "statement_month"


# ---- Month ranges (reports) ----

def _previous_month_from_today():
    today = date.today()
    if today.month == 1:
        return today.year - 1, 12
    return today.year, today.month - 1


def _shift_month(year: int, month: int, delta: int):
    index = year * 12 + (month - 1) + delta
    return index // 12, index % 12 + 1


def get_month_range(month_str: str | None):
    """
    month_str: 'YYYY-MM' or None.
    Returns (start_date, end_date_exclusive, normalized_month_str).
    If month_str is None or invalid, uses PREVIOUS month.
    """
    year = month = None
    if month_str:
        try:
            year_str, month_only_str = month_str.split("-")
            year = int(year_str)
            month = int(month_only_str)
            if not (1 <= month <= 12):
                year = month = None
        except ValueError:
            year = month = None

    if year is None:
        year, month = _previous_month_from_today()

    start_date = date(year, month, 1)
    next_year, next_month = _shift_month(year, month, 1)
    end_date_exclusive = date(next_year, next_month, 1)

    return start_date, end_date_exclusive, f"{year:04d}-{month:02d}"


def previous_month(month_str: str):
    """'2024-03' -> '2024-02'."""
    year, month = (int(x) for x in month_str.split("-"))
    year, month = _shift_month(year, month, -1)
    return f"{year:04d}-{month:02d}"


# ---- Spending periods ----

def _clamped(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(max(day, 1), last_day))


def is_statement_period(period_type: str | None) -> bool:
    return period_type in (STATEMENT, STATEMENT_MONTH)


def period_year_month(day: date, period_type: str | None = CALENDAR, statement_day: int = 1):
    """
    (year, month) the spending period containing `day` is filed under.

    Statement periods belong to the month they start in: with a statement
    day of 15, 2024-03-10 falls in the period that started 2024-02-15.
    A statement day past the end of the month starts on its last day.
    """
    if is_statement_period(period_type) and day.day < min(statement_day, days_in_month(day)):
        return _shift_month(day.year, day.month, -1)
    return day.year, day.month


def spending_period_range(day: date, period_type: str | None = CALENDAR, statement_day: int = 1):
    """
    Returns (start_date, end_date_exclusive) of the spending period that
    contains `day`.
    """
    year, month = period_year_month(day, period_type, statement_day)
    next_year, next_month = _shift_month(year, month, 1)

    if is_statement_period(period_type):
        return _clamped(year, month, statement_day), _clamped(next_year, next_month, statement_day)

    return date(year, month, 1), date(next_year, next_month, 1)


def days_in_month(day: date) -> int:
    return calendar.monthrange(day.year, day.month)[1]

# app/services/insights.py
#
# Insights
# Insight templates are rows of (condition type, parameters, message template,
# priority). Each condition type is an evaluator over a shared spending
# context built with pandas; evaluators return (triggered, data). Turning
# `data` into a user-facing message is left to the client.

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date as date_type, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
import pandas as pd
from sqlalchemy.exc import SQLAlchemyError

from app.config import DEFAULT_CURRENCY, DEFAULT_USER_ID, INSIGHTS_CACHE_TTL_SECONDS
from app.errors import InsightNotFoundError, StorageError
from app.services.card_optimization import find_card_mismatch
from app.services.categorization import (
    BEHAVIORAL_CATEGORIES,
    SPENDING_TIERS,
    behavioral_category,
    effective_category,
    spending_tier,
)
from app.services.periods import days_in_month, get_month_range, previous_month
from models import Insight, InsightDismissal

logger = logging.getLogger(__name__)

EvaluationResult = Tuple[bool, Dict[str, Any]]

FRAME_COLUMNS = [
    "id", "date", "merchant", "amount", "category", "is_contactless", "is_online",
    "reward_points", "currency", "payment_currency", "hour",
]


# -------------------------------------------------------------------
# Context
# -------------------------------------------------------------------

def display_amount(tx, currency: str) -> float:
    """Amount of a transaction in the display currency, when known."""
    if tx.currency == currency or tx.payment_amount is None:
        return float(tx.amount or 0.0)
    if tx.payment_currency == currency:
        return float(tx.payment_amount)
    return float(tx.amount or 0.0)


def transactions_frame(transactions, currency: str) -> pd.DataFrame:
    rows = [
        {
            "id": tx.id,
            "date": tx.date,
            "merchant": tx.merchant_name or "",
            "amount": display_amount(tx, currency),
            "category": effective_category(tx),
            "is_contactless": bool(tx.is_contactless),
            "is_online": bool(tx.is_online),
            "reward_points": tx.reward_points or 0,
            "currency": tx.currency,
            "payment_currency": tx.payment_currency or tx.currency,
            "hour": tx.created_at.hour if tx.created_at else np.nan,
        }
        for tx in transactions
        if not tx.is_deleted
    ]
    df = pd.DataFrame(rows, columns=FRAME_COLUMNS)
    df["date"] = pd.to_datetime(df["date"])
    df["amount"] = df["amount"].astype(float)
    df["tier"] = df["category"].map(spending_tier)
    df["behavior"] = df["category"].map(behavioral_category)
    return df


def _totals(df: pd.DataFrame, column: str, keys=()) -> Dict[str, float]:
    totals = {k: 0.0 for k in keys}
    for key, value in df.groupby(column)["amount"].sum().items():
        totals[key] = float(value)
    return totals


@dataclass
class InsightContext:
    transactions: pd.DataFrame
    current: pd.DataFrame
    previous: pd.DataFrame
    today: date_type
    monthly_budget: float = 0.0
    currency: str = DEFAULT_CURRENCY
    total_spent: float = 0.0
    previous_month_total: float = 0.0
    category_totals: Dict[str, float] = field(default_factory=dict)
    tier_totals: Dict[str, float] = field(default_factory=dict)
    behavior_totals: Dict[str, float] = field(default_factory=dict)
    merchant_totals: Dict[str, Dict[str, float]] = field(default_factory=dict)
    average_transaction: float = 0.0
    day_of_month: int = 1
    days_in_month: int = 30
    days_remaining: int = 29

    # Used by the card mismatch check
    current_transactions: list = field(default_factory=list)
    payment_methods: list = field(default_factory=list)
    calculator: Any = None

    @classmethod
    def build(
        cls,
        transactions,
        monthly_budget: float = 0.0,
        currency: str = DEFAULT_CURRENCY,
        payment_methods=(),
        calculator=None,
        today: date_type | None = None,
    ) -> "InsightContext":
        today = today or date_type.today()
        month = f"{today.year:04d}-{today.month:02d}"
        month_start, month_end, _ = get_month_range(month)
        prev_start, prev_end, _ = get_month_range(previous_month(month))

        transactions = [tx for tx in transactions if not tx.is_deleted]
        df = transactions_frame(transactions, currency)
        in_month = (df["date"] >= pd.Timestamp(month_start)) & (df["date"] < pd.Timestamp(month_end))
        in_prev = (df["date"] >= pd.Timestamp(prev_start)) & (df["date"] < pd.Timestamp(prev_end))
        current = df[in_month]
        previous = df[in_prev]

        merchant_totals = {
            name: {"total": float(row["sum"]), "count": int(row["count"])}
            for name, row in current.groupby("merchant")["amount"].agg(["sum", "count"]).iterrows()
        }

        total_spent = float(current["amount"].sum())
        n_days = days_in_month(today)

        return cls(
            transactions=df,
            current=current,
            previous=previous,
            today=today,
            monthly_budget=monthly_budget or 0.0,
            currency=currency,
            total_spent=total_spent,
            previous_month_total=float(previous["amount"].sum()),
            category_totals=_totals(current, "category"),
            tier_totals=_totals(current, "tier", SPENDING_TIERS),
            behavior_totals=_totals(current, "behavior", BEHAVIORAL_CATEGORIES),
            merchant_totals=merchant_totals,
            average_transaction=total_spent / len(current) if len(current) else 0.0,
            day_of_month=today.day,
            days_in_month=n_days,
            days_remaining=n_days - today.day,
            current_transactions=[tx for tx in transactions if month_start <= tx.date < month_end],
            payment_methods=list(payment_methods),
            calculator=calculator,
        )


# -------------------------------------------------------------------
# Evaluators
# -------------------------------------------------------------------

def compare_values(value: float, threshold: float, operator: str = ">") -> bool:
    if operator == ">=":
        return value >= threshold
    if operator == "<":
        return value < threshold
    if operator == "<=":
        return value <= threshold
    if operator in ("=", "=="):
        return value == threshold
    return value > threshold


def _r2(value: float) -> float:
    return round(float(value) * 100) / 100


def _matching_merchants(df: pd.DataFrame, patterns) -> pd.DataFrame:
    if df.empty:
        return df
    lowered = [str(p).lower() for p in patterns]
    mask = df["merchant"].str.lower().apply(lambda name: any(p in name for p in lowered))
    return df[mask.astype(bool)]


def evaluate_category_ratio(ctx: InsightContext, params: dict) -> EvaluationResult:
    category = params.get("category")
    threshold = params.get("threshold", 0)
    total = ctx.category_totals.get(category, 0.0)
    ratio = total / ctx.total_spent if ctx.total_spent > 0 else 0.0

    return compare_values(ratio, threshold, params.get("operator", ">")), {
        "category": category,
        "amount": total,
        "percentage": round(ratio * 100),
        "threshold": round(threshold * 100),
    }


def evaluate_category_amount(ctx: InsightContext, params: dict) -> EvaluationResult:
    merchants_like = params.get("merchants_like")
    category = params.get("category")

    total, count = 0.0, 0
    if merchants_like:
        matched = _matching_merchants(ctx.current, merchants_like)
        total, count = float(matched["amount"].sum()), len(matched)
    elif category:
        total = ctx.category_totals.get(category, 0.0)
        count = int((ctx.current["category"] == category).sum())

    return total >= params.get("threshold", 0), {
        "amount": total,
        "count": count,
        "yearly_projection": total * 12,
        "savings_estimate": round(total * 0.5),
    }


def evaluate_category_comparison(ctx: InsightContext, params: dict) -> EvaluationResult:
    """
    Compares two category groups, e.g. groceries (A) against dining out (B),
    projecting what eating out for every meal would cost per week.
    """
    categories_a = params.get("categories_a") or []
    categories_b = params.get("categories_b") or []
    meals_per_week = params.get("meals_per_week", 7)
    min_transactions = params.get("min_transactions", 3)

    group_a = ctx.current[ctx.current["category"].isin(categories_a)]
    group_b = ctx.current[ctx.current["category"].isin(categories_b)]
    total_a, count_a = float(group_a["amount"].sum()), len(group_a)
    total_b, count_b = float(group_b["amount"].sum()), len(group_b)

    days_in_period = max(1, ctx.today.day)
    weeks_in_period = days_in_period / 7
    weekly_a = total_a / weeks_in_period
    avg_meal_cost = total_b / count_b if count_b else 0.0
    projected_weekly_dining = avg_meal_cost * meals_per_week
    weekly_savings = projected_weekly_dining - weekly_a

    return count_a >= min_transactions or count_b >= min_transactions, {
        "total_a": total_a,
        "total_b": total_b,
        "count_a": count_a,
        "count_b": count_b,
        "weekly_a": _r2(weekly_a),
        "weekly_b": _r2(total_b / weeks_in_period),
        "avg_meal_cost": _r2(avg_meal_cost),
        "projected_weekly_dining": _r2(projected_weekly_dining),
        "label_a": params.get("label_a", "Category A"),
        "label_b": params.get("label_b", "Category B"),
        "days_tracked": days_in_period,
        "meals_per_week": meals_per_week,
        "potential_savings": round(weekly_savings * weeks_in_period),
        "weekly_savings": _r2(weekly_savings),
        "ratio": _r2(total_b / total_a) if total_a > 0 else 0,
    }


def evaluate_tier_ratio(ctx: InsightContext, params: dict) -> EvaluationResult:
    tier = params.get("tier")
    behavior = params.get("behavior")
    threshold = params.get("threshold", 0)
    trend = params.get("trend")

    current_value = previous_value = 0.0
    if tier:
        current_value = ctx.tier_totals.get(tier, 0.0) / (ctx.total_spent or 1)
        if trend and len(ctx.previous):
            prev_tier_total = float(ctx.previous.loc[ctx.previous["tier"] == tier, "amount"].sum())
            previous_value = prev_tier_total / (ctx.previous_month_total or 1)
    elif behavior:
        current_value = ctx.behavior_totals.get(behavior, 0.0) / (ctx.total_spent or 1)

    change_amount = 0.0
    if trend:
        change = (current_value - previous_value) / previous_value if previous_value > 0 else 0.0
        if trend == "down":
            triggered = change <= -threshold
            change_amount = abs(ctx.tier_totals.get(tier or "", 0.0) - ctx.previous_month_total * previous_value)
        else:
            triggered = change >= threshold
    else:
        triggered = current_value >= threshold

    return triggered, {
        "tier": tier,
        "behavior": behavior,
        "percentage": round(current_value * 100),
        "amount": change_amount,
    }


def _meets_direction(change: float, direction, threshold) -> bool:
    if direction == "down":
        return change <= -(threshold or 0)
    return change >= (threshold or 0)


def evaluate_spending_trend(ctx: InsightContext, params: dict) -> EvaluationResult:
    direction = params.get("direction")
    threshold = params.get("threshold")

    if params.get("consecutive_over_budget"):
        # Only the current month is checked
        over = ctx.monthly_budget > 0 and ctx.total_spent > ctx.monthly_budget
        return over, {"months": params["consecutive_over_budget"]}

    if params.get("by_category"):
        prev_totals = _totals(ctx.previous, "category")
        best = None
        for category, current_amount in ctx.category_totals.items():
            prev_amount = prev_totals.get(category, 0.0)
            if prev_amount == 0:
                continue
            change = (current_amount - prev_amount) / prev_amount
            if _meets_direction(change, direction, threshold):
                if best is None or abs(change) > abs(best[1]):
                    best = (category, change, current_amount, prev_amount)

        if best is None:
            return False, {}
        category, change, current_amount, prev_amount = best
        return True, {
            "category": category,
            "percentage": round(abs(change) * 100),
            "amount": abs(current_amount - prev_amount),
        }

    prev_total = ctx.previous_month_total
    if prev_total == 0:
        return False, {}

    change = (ctx.total_spent - prev_total) / prev_total
    return _meets_direction(change, direction, threshold), {
        "percentage": round(abs(change) * 100),
        "amount": abs(ctx.total_spent - prev_total),
        "last_month_total": prev_total,
    }


def evaluate_budget_status(ctx: InsightContext, params: dict) -> EvaluationResult:
    status = params.get("status")
    threshold = params.get("threshold", 0) or 0

    if ctx.monthly_budget <= 0:
        # "near" doubles as the "set a budget" nudge
        return status == "near", {"status_message": "Set a budget to track your spending"}

    ratio = ctx.total_spent / ctx.monthly_budget
    remaining = ctx.monthly_budget - ctx.total_spent
    triggered = False
    message = ""

    if status == "over":
        triggered = ratio > 1 + threshold
        message = "You've exceeded your budget"
    elif status == "near":
        triggered = (threshold or 0.9) <= ratio <= 1
        message = "You're approaching your budget limit"
    elif status == "under":
        triggered = ratio <= 1 - (threshold or 0.2)
        message = "Great job staying under budget!"
    elif status == "on_track":
        triggered = (params.get("threshold_min") or 0.5) <= ratio <= (params.get("threshold_max") or 0.8)
        message = "You're on track with your budget"

    return triggered, {
        "percentage": round(ratio * 100),
        "remaining": max(0.0, remaining),
        "overage_amount": max(0.0, -remaining),
        "overage_percentage": max(0, round((ratio - 1) * 100)),
        "surplus_amount": max(0.0, remaining),
        "days_remaining": ctx.days_remaining,
        "status_message": message,
    }


def evaluate_transaction_pattern(ctx: InsightContext, params: dict) -> EvaluationResult:
    """
    Several independent patterns; when more than one is configured the last
    one checked decides `triggered`.
    """
    df = ctx.current
    if params.get("category"):
        df = df[df["category"] == params["category"]]

    triggered = False
    data: Dict[str, Any] = {}
    min_count = params.get("min_count")

    # Many small purchases
    if params.get("amount_max") is not None and min_count is not None:
        small = df[df["amount"] <= params["amount_max"]]
        triggered = len(small) >= min_count
        data["count"] = len(small)
        data["amount"] = float(small["amount"].sum())

    # Late night purchases (window wraps midnight)
    if params.get("hour_start") is not None and params.get("hour_end") is not None:
        late = df[(df["hour"] >= params["hour_start"]) | (df["hour"] <= params["hour_end"])]
        triggered = len(late) >= (min_count or 5)
        data["count"] = len(late)

    # Weekend vs weekday daily average
    if params.get("weekend_vs_weekday_ratio") is not None:
        days = pd.date_range(ctx.today.replace(day=1), ctx.today, freq="D")
        weekend_days = int((days.dayofweek >= 5).sum())
        weekday_days = len(days) - weekend_days

        is_weekend = df["date"].dt.dayofweek >= 5
        weekend_total = float(df.loc[is_weekend, "amount"].sum())
        weekday_total = float(df.loc[~is_weekend, "amount"].sum())

        avg_weekend = weekend_total / weekend_days if weekend_days else 0.0
        avg_weekday = weekday_total / weekday_days if weekday_days else 0.0
        ratio = avg_weekend / avg_weekday if avg_weekday > 0 else 0.0

        triggered = ratio >= params["weekend_vs_weekday_ratio"]
        data["percentage"] = round((ratio - 1) * 100)
        data["weekend_amount"] = _r2(avg_weekend)
        data["weekday_amount"] = _r2(avg_weekday)

    # Unusually large purchase
    if params.get("amount_vs_average_ratio") is not None and ctx.average_transaction:
        large = df[df["amount"] >= ctx.average_transaction * params["amount_vs_average_ratio"]]
        if len(large):
            largest = large.sort_values("amount", ascending=False).iloc[0]
            triggered = True
            data["amount"] = float(largest["amount"])
            data["merchant"] = largest["merchant"]
            data["multiplier"] = round(largest["amount"] / ctx.average_transaction)
            data["transactionId"] = int(largest["id"])

    # In-store purchases without tapping
    if params.get("contactless") is not None and params.get("in_store") is not None:
        matched = df[
            (df["is_contactless"] == params["contactless"])
            & (df["is_online"] != params["in_store"])
        ]
        triggered = len(matched) >= (min_count or 10)
        data["count"] = len(matched)

    return triggered, data


def evaluate_merchant_pattern(ctx: InsightContext, params: dict) -> EvaluationResult:
    triggered = False
    data: Dict[str, Any] = {}
    min_count = params.get("min_count")

    merchants_like = params.get("merchants_like")
    if isinstance(merchants_like, list):
        matched = _matching_merchants(ctx.current, merchants_like)
        total = float(matched["amount"].sum())
        triggered = len(matched) >= (min_count or 1)
        data.update(count=len(matched), amount=total, savings_estimate=round(total * 0.4))

    if params.get("single_merchant_ratio") is not None and ctx.merchant_totals:
        top_merchant, top = max(ctx.merchant_totals.items(), key=lambda kv: kv[1]["total"])
        ratio = top["total"] / (ctx.total_spent or 1)
        triggered = ratio >= params["single_merchant_ratio"] and top["total"] >= (params.get("min_amount") or 0)
        data.update(merchant=top_merchant, amount=top["total"], percentage=round(ratio * 100))

    if params.get("new_merchants") and len(ctx.previous):
        known = set(ctx.previous["merchant"])
        new_count = int((~ctx.current["merchant"].isin(known)).sum())
        triggered = new_count >= (min_count or 10)
        data["count"] = new_count

    if params.get("recurring"):
        recurring = {m: t for m, t in ctx.merchant_totals.items() if t["count"] >= 2}
        triggered = len(recurring) >= (min_count or 5)
        data["count"] = len(recurring)
        data["amount"] = sum(t["total"] / (t["count"] or 1) for t in recurring.values())

    return triggered, data


def evaluate_merchant_anomaly(ctx: InsightContext, params: dict) -> EvaluationResult:
    """A recent purchase well above the merchant's usual amount."""
    lookback_days = params.get("lookback_days", 7)
    min_history = params.get("min_history", 3)
    threshold_multiplier = params.get("threshold_multiplier", 1.5)

    today = pd.Timestamp(ctx.today)
    df = ctx.transactions
    recent = df[(df["date"] >= today - pd.Timedelta(days=lookback_days)) & (df["date"] <= today)]
    # Baseline always excludes the last 7 days
    history = df[df["date"] < today - pd.Timedelta(days=7)]
    if recent.empty or history.empty:
        return False, {}

    # Population std (ddof=0)
    stats = history.groupby("merchant")["amount"].agg(
        avg="mean", std=lambda s: float(np.std(s.to_numpy())), count="count"
    )
    stats = stats[stats["count"] >= min_history]

    for _, tx in recent.sort_values("amount", ascending=False).iterrows():
        if tx["merchant"] not in stats.index:
            continue
        avg = float(stats.at[tx["merchant"], "avg"])
        std = float(stats.at[tx["merchant"], "std"])
        if tx["amount"] > avg + std * threshold_multiplier and avg > 0:
            return True, {
                "amount": float(tx["amount"]),
                "merchant": tx["merchant"],
                "multiplier": round(tx["amount"] / avg, 1),
                "transactionId": int(tx["id"]),
                "merchant_avg": _r2(avg),
            }

    return False, {}


def evaluate_reward_optimization(ctx: InsightContext, params: dict) -> EvaluationResult:
    kind = params.get("optimization_type")
    min_amount = params.get("min_amount")

    if kind == "category_mismatch":
        if ctx.calculator is None:
            return False, {}
        mismatch = find_card_mismatch(
            ctx.current_transactions, ctx.payment_methods, ctx.calculator,
            params.get("min_points_lost") or 100,
        )
        if mismatch is None:
            return False, {}
        return True, {
            "card_used": mismatch.current_card,
            "better_card": mismatch.better_card,
            "category": mismatch.category,
            "amount": mismatch.amount,
            "points_lost": mismatch.points_lost,
            "multiplier": mismatch.multiplier,
        }

    if kind == "fcf_fees":
        foreign = ctx.current[ctx.current["currency"] != ctx.current["payment_currency"]]
        total = float(foreign["amount"].sum())
        return total >= (min_amount or 100), {
            "amount": total,
            "fee_percentage": 3.5,
            "savings": round(total * 0.035),
        }

    if kind == "zero_earn":
        zero = ctx.current[ctx.current["reward_points"] == 0]
        total = float(zero["amount"].sum())
        return total >= (min_amount or 200), {
            "amount": total,
            "category": "Various",
            "points_missed": round(total * 4),
        }

    return False, {}


def evaluate_savings_rate(ctx: InsightContext, params: dict) -> EvaluationResult:
    # No income data: budget * 1.25 stands in for income
    income = ctx.monthly_budget * 1.25 if ctx.monthly_budget > 0 else 0.0
    savings = max(0.0, income - ctx.total_spent)
    rate = savings / income if income > 0 else 0.0

    return compare_values(rate, params.get("threshold", 0), params.get("operator", "<")), {
        "percentage": round(rate * 100),
        "amount": savings,
        "shortfall": max(0.0, income * 0.2 - savings),
        "emergency_fund_target": ctx.total_spent * (params.get("emergency_months") or 3),
        "current_savings": savings,
        "recommended_amount": round(income * 0.2),
    }


def evaluate_milestone(ctx: InsightContext, params: dict) -> EvaluationResult:
    kind = params.get("type")

    if kind == "tracking_streak" and params.get("days"):
        unique_days = int(ctx.transactions["date"].dt.date.nunique())
        return unique_days >= params["days"], {"days": unique_days}

    if kind == "under_budget_streak":
        under = ctx.monthly_budget > 0 and ctx.total_spent <= ctx.monthly_budget
        return under, {"months": params.get("months") or 1}

    if kind == "points_record":
        points = int(ctx.current["reward_points"].sum())
        return points > 0, {"points": points}

    return False, {}


def evaluate_time_based(ctx: InsightContext, params: dict) -> EvaluationResult:
    data: Dict[str, Any] = {
        "days": ctx.days_remaining,
        "remaining": max(0.0, ctx.monthly_budget - ctx.total_spent),
        "last_month_total": ctx.previous_month_total,
        "amount": ctx.total_spent,
        "percentage": round(ctx.total_spent / ctx.monthly_budget * 100) if ctx.monthly_budget else 0,
    }

    triggered = False
    if params.get("day_of_month") is not None:
        triggered = ctx.day_of_month == params["day_of_month"]
    elif params.get("day_of_month_min") is not None:
        triggered = ctx.day_of_month >= params["day_of_month_min"]
    elif isinstance(params.get("day_of_month_range"), list):
        low, high = params["day_of_month_range"][:2]
        triggered = low <= ctx.day_of_month <= high
        if triggered:
            ratio = ctx.total_spent / ctx.monthly_budget if ctx.monthly_budget else 0
            if ratio < 0.4:
                data["status_message"] = "You're well under pace - great job!"
            elif ratio < 0.6:
                data["status_message"] = "You're right on track."
            else:
                data["status_message"] = "Consider slowing down spending."

    return triggered, data


EVALUATORS: Dict[str, Callable[[InsightContext, dict], EvaluationResult]] = {
    "category_ratio": evaluate_category_ratio,
    "category_amount": evaluate_category_amount,
    "category_comparison": evaluate_category_comparison,
    "tier_ratio": evaluate_tier_ratio,
    "spending_trend": evaluate_spending_trend,
    "budget_status": evaluate_budget_status,
    "transaction_pattern": evaluate_transaction_pattern,
    "merchant_pattern": evaluate_merchant_pattern,
    "merchant_anomaly": evaluate_merchant_anomaly,
    "reward_optimization": evaluate_reward_optimization,
    "savings_rate": evaluate_savings_rate,
    "milestone": evaluate_milestone,
    "time_based": evaluate_time_based,
}


def _plain(value):
    # numpy scalars -> Python numbers for JSON responses
    if isinstance(value, np.generic):
        value = value.item()
    if isinstance(value, float) and math.isnan(value):
        return None
    return value


# -------------------------------------------------------------------
# Service
# -------------------------------------------------------------------

class InsightService:
    """
    Active insight templates (cached with a TTL) plus the user's dismissals.
    """

    def __init__(self, session_factory, user_id: str = DEFAULT_USER_ID, calculator=None,
                 ttl_seconds: int = INSIGHTS_CACHE_TTL_SECONDS):
        self.session_factory = session_factory
        self.user_id = user_id
        self.calculator = calculator
        self.ttl_seconds = ttl_seconds
        self._insights: List[Insight] = []
        self._last_fetch = 0.0

    def load_insights(self) -> List[Insight]:
        if self._insights and time.monotonic() - self._last_fetch < self.ttl_seconds:
            return self._insights

        db = self.session_factory()
        try:
            rows = (
                db.query(Insight)
                .filter(Insight.is_active.is_(True))
                .order_by(Insight.priority.desc(), Insight.id)
                .all()
            )
        except SQLAlchemyError:
            logger.exception("Error loading insights; using cached list")
            return self._insights
        finally:
            db.close()

        self._insights = rows
        self._last_fetch = time.monotonic()
        return rows

    def clear_cache(self) -> None:
        self._insights = []
        self._last_fetch = 0.0

    def create_insight(self, **fields) -> Insight:
        db = self.session_factory()
        try:
            insight = Insight(**fields)
            db.add(insight)
            db.commit()
            db.refresh(insight)
        finally:
            db.close()
        self.clear_cache()
        return insight

    def load_dismissals(self) -> set:
        db = self.session_factory()
        try:
            rows = db.query(InsightDismissal.insight_id).filter(InsightDismissal.user_id == self.user_id).all()
        except SQLAlchemyError:
            logger.exception("Error loading insight dismissals")
            return set()
        finally:
            db.close()
        return {r[0] for r in rows}

    def dismiss_insight(self, insight_id: int) -> None:
        db = self.session_factory()
        try:
            if db.get(Insight, insight_id) is None:
                raise InsightNotFoundError(f"Insight {insight_id} not found")
            row = (
                db.query(InsightDismissal)
                .filter(InsightDismissal.user_id == self.user_id, InsightDismissal.insight_id == insight_id)
                .first()
            )
            if row is None:
                db.add(InsightDismissal(user_id=self.user_id, insight_id=insight_id))
            else:
                row.dismissed_at = datetime.utcnow()
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Error dismissing insight %s", insight_id)
            raise StorageError(f"Could not dismiss insight {insight_id}") from exc
        finally:
            db.close()

    def clear_dismissal(self, insight_id: int) -> None:
        db = self.session_factory()
        try:
            db.query(InsightDismissal).filter(
                InsightDismissal.user_id == self.user_id,
                InsightDismissal.insight_id == insight_id,
            ).delete(synchronize_session=False)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Error clearing dismissal for insight %s", insight_id)
            raise StorageError(f"Could not clear the dismissal of insight {insight_id}") from exc
        finally:
            db.close()

    def evaluate_insights(
        self,
        transactions,
        monthly_budget: float = 0.0,
        currency: str = DEFAULT_CURRENCY,
        payment_methods=(),
        include_dismissed: bool = False,
        max_results: int = 10,
        categories: Optional[List[str]] = None,
        today: date_type | None = None,
        calculator=None,
    ) -> List[dict]:
        """Triggered insights with their data, highest priority first."""
        insights = self.load_insights()
        dismissed = self.load_dismissals()
        ctx = InsightContext.build(
            transactions, monthly_budget, currency, payment_methods, calculator or self.calculator, today
        )

        results = []
        for insight in insights:
            if not include_dismissed and insight.id in dismissed:
                continue
            if categories and insight.category not in categories:
                continue

            evaluator = EVALUATORS.get(insight.condition_type)
            if evaluator is None:
                continue

            try:
                triggered, data = evaluator(ctx, insight.condition_params or {})
            except (TypeError, ValueError, KeyError):
                logger.exception("Insight %s (%s) has bad parameters", insight.id, insight.condition_type)
                continue

            if not triggered:
                continue

            data = {k: _plain(v) for k, v in data.items()}
            results.append(
                {
                    "insight_id": insight.id,
                    "category": insight.category,
                    "title": insight.title,
                    "message_template": insight.message_template,
                    "icon": insight.icon,
                    "severity": insight.severity,
                    "action_text": insight.action_text,
                    "action_type": insight.action_type,
                    "action_target": str(data["transactionId"]) if data.get("transactionId") else insight.action_target,
                    "priority": insight.priority,
                    "is_dismissible": insight.is_dismissible,
                    "dismissed": insight.id in dismissed,
                    "data": data,
                }
            )

        results.sort(key=lambda r: r["priority"], reverse=True)
        return results[:max_results]

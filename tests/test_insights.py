"""Tests for insight evaluators and the insight service."""

from datetime import date, datetime
from types import SimpleNamespace

import pytest

from app.errors import InsightNotFoundError, StorageError
from app.services.insights import (
    InsightContext,
    InsightService,
    display_amount,
    evaluate_budget_status,
    evaluate_category_amount,
    evaluate_category_comparison,
    evaluate_category_ratio,
    evaluate_merchant_anomaly,
    evaluate_merchant_pattern,
    evaluate_milestone,
    evaluate_reward_optimization,
    evaluate_spending_trend,
    evaluate_tier_ratio,
    evaluate_time_based,
    evaluate_transaction_pattern,
    transactions_frame,
)

TODAY = date(2024, 3, 20)


def _tx(tx_id, day, merchant, amount, mcc=None, **fields):
    defaults = dict(
        id=tx_id,
        date=day,
        merchant_name=merchant,
        amount=amount,
        mcc_code=mcc,
        currency="SGD",
        payment_amount=None,
        payment_currency=None,
        user_category=None,
        category=None,
        is_contactless=False,
        is_online=False,
        reward_points=int(amount),
        created_at=datetime.combine(day, datetime.min.time()).replace(hour=12),
        is_deleted=False,
        payment_method=None,
    )
    defaults.update(fields)
    return SimpleNamespace(**defaults)


@pytest.fixture
def march():
    """400 spent this month (300 of it on coffee), 200 last month."""
    return [
        _tx(1, date(2024, 3, 2), "NTUC FairPrice", 100.0, "5411"),
        _tx(2, date(2024, 3, 5), "Starbucks", 160.0, "5814"),
        _tx(3, date(2024, 3, 9), "Starbucks", 140.0, "5814"),
        _tx(4, date(2024, 2, 10), "NTUC FairPrice", 200.0, "5411"),
        _tx(5, date(2024, 3, 11), "Deleted Shop", 999.0, "5999", is_deleted=True),
    ]


def _ctx(transactions, budget=0.0, **kwargs) -> InsightContext:
    return InsightContext.build(transactions, monthly_budget=budget, today=TODAY, **kwargs)


class TestContext:
    """Tests for the shared spending context."""

    def test_totals(self, march) -> None:
        ctx = _ctx(march)

        assert ctx.total_spent == 400.0
        assert ctx.previous_month_total == 200.0
        assert ctx.category_totals == {"Groceries": 100.0, "Food & Drinks": 300.0}
        assert ctx.tier_totals["Essentials"] == 100.0
        assert ctx.tier_totals["Lifestyle"] == 300.0
        assert ctx.tier_totals["Other"] == 0.0
        assert ctx.merchant_totals["Starbucks"] == {"total": 300.0, "count": 2}
        assert ctx.days_remaining == 11
        assert len(ctx.current_transactions) == 3

    def test_empty_history(self) -> None:
        """No transactions still gives a usable context."""
        ctx = _ctx([])

        assert ctx.total_spent == 0.0
        assert ctx.average_transaction == 0.0
        assert evaluate_merchant_anomaly(ctx, {}) == (False, {})
        assert evaluate_category_amount(ctx, {"merchants_like": ["grab"], "threshold": 50}) == (
            False,
            {"amount": 0.0, "count": 0, "yearly_projection": 0.0, "savings_estimate": 0},
        )

    def test_display_amount(self) -> None:
        """Foreign purchases use the billed amount when it is in the display currency."""
        foreign = _tx(1, TODAY, "Amazon US", 100.0, currency="USD", payment_amount=135.0, payment_currency="SGD")
        unknown = _tx(2, TODAY, "Amazon JP", 5000.0, currency="JPY", payment_amount=45.0, payment_currency="USD")

        assert display_amount(foreign, "SGD") == 135.0
        assert display_amount(unknown, "SGD") == 5000.0
        assert transactions_frame([foreign], "SGD")["amount"].tolist() == [135.0]


class TestCategoryEvaluators:
    def test_category_ratio(self, march) -> None:
        triggered, data = evaluate_category_ratio(_ctx(march), {"category": "Food & Drinks", "threshold": 0.5})

        assert triggered
        assert data["percentage"] == 75
        assert data["threshold"] == 50
        assert data["amount"] == 300.0

    def test_category_ratio_operator(self, march) -> None:
        triggered, _ = evaluate_category_ratio(
            _ctx(march), {"category": "Groceries", "threshold": 0.3, "operator": "<"}
        )
        assert triggered

    def test_category_comparison(self, march) -> None:
        """Average dining cost is projected over a week of meals."""
        triggered, data = evaluate_category_comparison(
            _ctx(march),
            {"categories_a": ["Groceries"], "categories_b": ["Food & Drinks"], "min_transactions": 2},
        )

        assert triggered
        assert data["count_b"] == 2
        assert data["avg_meal_cost"] == 150.0
        assert data["projected_weekly_dining"] == 1050.0
        assert data["days_tracked"] == 20
        assert data["ratio"] == 3.0

    def test_tier_ratio(self, march) -> None:
        triggered, data = evaluate_tier_ratio(_ctx(march), {"tier": "Lifestyle", "threshold": 0.6})
        assert triggered
        assert data["percentage"] == 75

        triggered, data = evaluate_tier_ratio(_ctx(march), {"behavior": "Convenience", "threshold": 0.8})
        assert not triggered
        assert data["percentage"] == 75


class TestTrendAndBudget:
    """Tests for month-over-month and budget evaluators."""

    def test_spending_trend_up(self, march) -> None:
        triggered, data = evaluate_spending_trend(_ctx(march), {"direction": "up", "threshold": 0.2})

        assert triggered
        assert data["percentage"] == 100
        assert data["amount"] == 200.0
        assert data["last_month_total"] == 200.0

    def test_spending_trend_without_last_month(self) -> None:
        ctx = _ctx([_tx(1, date(2024, 3, 2), "Shop", 50.0)])
        assert evaluate_spending_trend(ctx, {"direction": "up", "threshold": 0.1}) == (False, {})

    def test_spending_trend_by_category(self, march) -> None:
        """The category with the largest qualifying change is reported."""
        triggered, data = evaluate_spending_trend(
            _ctx(march), {"by_category": True, "direction": "down", "threshold": 0.3}
        )

        assert triggered
        assert data == {"category": "Groceries", "percentage": 50, "amount": 100.0}

    def test_over_budget(self, march) -> None:
        triggered, data = evaluate_budget_status(_ctx(march, budget=300.0), {"status": "over"})

        assert triggered
        assert data["percentage"] == 133
        assert data["overage_amount"] == 100.0
        assert data["overage_percentage"] == 33
        assert data["remaining"] == 0.0
        assert data["days_remaining"] == 11

    def test_near_and_under_budget(self, march) -> None:
        near, _ = evaluate_budget_status(_ctx(march, budget=420.0), {"status": "near"})
        under, data = evaluate_budget_status(_ctx(march, budget=1000.0), {"status": "under"})

        assert near
        assert under
        assert data["surplus_amount"] == 600.0

    def test_no_budget_nudges(self, march) -> None:
        """Without a budget only the 'near' template fires, as a nudge to set one."""
        assert evaluate_budget_status(_ctx(march), {"status": "near"})[0]
        assert not evaluate_budget_status(_ctx(march), {"status": "over"})[0]


class TestPatterns:
    """Tests for transaction and merchant patterns."""

    def test_large_purchase(self, march) -> None:
        triggered, data = evaluate_transaction_pattern(_ctx(march), {"amount_vs_average_ratio": 1.1})

        assert triggered
        assert data["transactionId"] == 2
        assert data["merchant"] == "Starbucks"
        assert data["amount"] == 160.0

    def test_many_small_purchases(self) -> None:
        txs = [_tx(i, date(2024, 3, i), "Kopi Stall", 3.5) for i in range(1, 7)]
        triggered, data = evaluate_transaction_pattern(_ctx(txs), {"amount_max": 5, "min_count": 5})

        assert triggered
        assert data["count"] == 6
        assert data["amount"] == 21.0

    def test_late_night(self) -> None:
        """The hour window wraps around midnight."""
        txs = [
            _tx(1, date(2024, 3, 1), "Grab", 20.0, created_at=datetime(2024, 3, 1, 23, 30)),
            _tx(2, date(2024, 3, 2), "Grab", 20.0, created_at=datetime(2024, 3, 2, 2, 10)),
            _tx(3, date(2024, 3, 3), "Grab", 20.0, created_at=datetime(2024, 3, 3, 14, 0)),
        ]
        triggered, data = evaluate_transaction_pattern(_ctx(txs), {"hour_start": 22, "hour_end": 4, "min_count": 2})

        assert triggered
        assert data["count"] == 2

    def test_recurring_merchants(self, march) -> None:
        triggered, data = evaluate_merchant_pattern(_ctx(march), {"recurring": True, "min_count": 1})

        assert triggered
        assert data["count"] == 1
        assert data["amount"] == 150.0

    def test_single_merchant_dominates(self, march) -> None:
        triggered, data = evaluate_merchant_pattern(_ctx(march), {"single_merchant_ratio": 0.5})

        assert triggered
        assert data["merchant"] == "Starbucks"
        assert data["percentage"] == 75

    def test_merchants_like(self, march) -> None:
        triggered, data = evaluate_merchant_pattern(_ctx(march), {"merchants_like": ["starbucks"], "min_count": 2})

        assert triggered
        assert data["savings_estimate"] == 120


class TestMerchantAnomaly:
    def _history(self):
        return [
            _tx(1, date(2024, 2, 1), "Cold Storage", 40.0),
            _tx(2, date(2024, 2, 8), "Cold Storage", 50.0),
            _tx(3, date(2024, 2, 15), "Cold Storage", 60.0),
            _tx(4, date(2024, 2, 20), "Bakery", 10.0),
            _tx(5, date(2024, 2, 27), "Bakery", 10.0),
        ]

    def test_spike_against_merchant_average(self) -> None:
        txs = self._history() + [_tx(9, date(2024, 3, 18), "Cold Storage", 150.0)]
        triggered, data = evaluate_merchant_anomaly(_ctx(txs), {})

        assert triggered
        assert data["transactionId"] == 9
        assert data["multiplier"] == 3.0
        assert data["merchant_avg"] == 50.0

    def test_needs_enough_history(self) -> None:
        """Merchants seen fewer than min_history times are ignored."""
        txs = self._history() + [_tx(9, date(2024, 3, 18), "Bakery", 80.0)]
        assert evaluate_merchant_anomaly(_ctx(txs), {}) == (False, {})

    def test_normal_purchase(self) -> None:
        txs = self._history() + [_tx(9, date(2024, 3, 18), "Cold Storage", 55.0)]
        assert not evaluate_merchant_anomaly(_ctx(txs), {"threshold_multiplier": 1.5})[0]


class TestRewardsAndMilestones:
    def test_zero_earn(self) -> None:
        txs = [_tx(1, date(2024, 3, 3), "Town Council", 250.0, reward_points=0)]
        triggered, data = evaluate_reward_optimization(_ctx(txs), {"optimization_type": "zero_earn"})

        assert triggered
        assert data["points_missed"] == 1000

    def test_foreign_currency_fees(self) -> None:
        txs = [_tx(1, date(2024, 3, 3), "Hotel Tokyo", 120.0, currency="JPY", payment_currency="SGD")]
        triggered, data = evaluate_reward_optimization(_ctx(txs), {"optimization_type": "fcf_fees", "min_amount": 100})

        assert triggered
        assert data["savings"] == 4

    def test_mismatch_needs_calculator(self, march) -> None:
        assert evaluate_reward_optimization(_ctx(march), {"optimization_type": "category_mismatch"}) == (False, {})

    def test_milestones(self, march) -> None:
        ctx = _ctx(march)

        assert evaluate_milestone(ctx, {"type": "points_record"}) == (True, {"points": 400})
        assert evaluate_milestone(ctx, {"type": "tracking_streak", "days": 4}) == (True, {"days": 4})
        assert not evaluate_milestone(ctx, {"type": "tracking_streak", "days": 30})[0]

    def test_time_based(self, march) -> None:
        triggered, data = evaluate_time_based(_ctx(march, budget=1000.0), {"day_of_month_range": [15, 25]})

        assert triggered
        assert data["status_message"] == "You're right on track."
        assert data["remaining"] == 600.0


class TestInsightService:
    """Tests for loading, dismissing and evaluating insight templates."""

    @pytest.fixture
    def service(self, session_factory) -> InsightService:
        service = InsightService(session_factory)
        service.create_insight(
            category="spending", title="Coffee heavy", message_template="{percentage}% on coffee",
            condition_type="category_ratio",
            condition_params={"category": "Food & Drinks", "threshold": 0.5}, priority=80,
        )
        service.create_insight(
            category="budget", title="Over budget", message_template="Over by {overage_amount}",
            condition_type="budget_status", condition_params={"status": "over"}, priority=90,
        )
        service.create_insight(
            category="spending", title="Big purchase", message_template="{merchant}",
            condition_type="transaction_pattern", condition_params={"amount_vs_average_ratio": 1.1},
            action_target="transactions", priority=70,
        )
        service.create_insight(
            category="spending", title="Broken", message_template="-",
            condition_type="category_ratio", condition_params={"category": "Travel", "threshold": "abc"},
            priority=100,
        )
        service.create_insight(
            category="spending", title="Inactive", message_template="-",
            condition_type="category_ratio", condition_params={"threshold": 0}, is_active=False,
        )
        return service

    def test_triggered_in_priority_order(self, service, march) -> None:
        results = service.evaluate_insights(march, monthly_budget=300.0, today=TODAY)

        assert [r["title"] for r in results] == ["Over budget", "Coffee heavy", "Big purchase"]
        assert results[1]["data"]["percentage"] == 75
        assert results[2]["action_target"] == "2"

    def test_dismissed_insights(self, service, march) -> None:
        coffee = next(i for i in service.load_insights() if i.title == "Coffee heavy")
        service.dismiss_insight(coffee.id)
        service.dismiss_insight(coffee.id)  # dismissing twice is fine

        visible = service.evaluate_insights(march, monthly_budget=300.0, today=TODAY)
        everything = service.evaluate_insights(march, monthly_budget=300.0, today=TODAY, include_dismissed=True)

        assert "Coffee heavy" not in [r["title"] for r in visible]
        assert next(r for r in everything if r["title"] == "Coffee heavy")["dismissed"] is True

        service.clear_dismissal(coffee.id)
        assert service.load_dismissals() == set()

    def test_filters_and_limits(self, service, march) -> None:
        budget_only = service.evaluate_insights(march, monthly_budget=300.0, today=TODAY, categories=["budget"])
        top_one = service.evaluate_insights(march, monthly_budget=300.0, today=TODAY, max_results=1)

        assert [r["title"] for r in budget_only] == ["Over budget"]
        assert [r["title"] for r in top_one] == ["Over budget"]

    def test_dismiss_unknown(self, service) -> None:
        with pytest.raises(InsightNotFoundError):
            service.dismiss_insight(12345)

    def test_failed_write_raises(self, service, failing_session_factory) -> None:
        """A dismissal that cannot be committed is reported, not dropped."""
        coffee = next(i for i in service.load_insights() if i.title == "Coffee heavy")
        broken = InsightService(failing_session_factory)

        with pytest.raises(StorageError):
            broken.dismiss_insight(coffee.id)
        with pytest.raises(StorageError):
            broken.clear_dismissal(coffee.id)
        assert service.load_dismissals() == set()

    def test_only_active_insights_are_loaded(self, service) -> None:
        assert "Inactive" not in [i.title for i in service.load_insights()]

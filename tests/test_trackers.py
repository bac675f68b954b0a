"""Tests for the monthly spending and bonus points trackers."""

from datetime import date
from types import SimpleNamespace

from app.services.bonus_tracker import SPEND_AMOUNT, BonusPointsTracker, tracking_id
from app.services.reward_calculator import RewardCalculator
from app.services.reward_rules import CalculationInput
from app.services.rule_repository import RuleRepository
from app.services.spending_tracker import MonthlySpendingTracker
from models import BonusPointsTracking


class TestMonthlySpendingTracker:
    """Tests for period spend totals."""

    def test_calendar_month_total(self, session_factory, card, add_transaction) -> None:
        """Only the card's non-deleted spend in the month is counted."""
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 1), amount=100.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 31), amount=50.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 4, 1), amount=999.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 10), amount=500.0, is_deleted=True)
        add_transaction(date=date(2024, 3, 10), amount=70.0)

        tracker = MonthlySpendingTracker(session_factory)
        assert tracker.get_monthly_spending(card.id, "calendar", date(2024, 3, 15)) == 150.0

    def test_card_currency_amount_preferred(self, session_factory, card, add_transaction) -> None:
        """Foreign purchases count with the amount billed to the card."""
        add_transaction(
            payment_method_id=card.id, date=date(2024, 3, 5), amount=100.0, currency="USD", payment_amount=135.0
        )

        tracker = MonthlySpendingTracker(session_factory)
        assert tracker.get_monthly_spending(card.id, "calendar", date(2024, 3, 5)) == 135.0

    def test_statement_period(self, session_factory, card, add_transaction) -> None:
        add_transaction(payment_method_id=card.id, date=date(2024, 2, 20), amount=40.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 14), amount=60.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 15), amount=1000.0)

        tracker = MonthlySpendingTracker(session_factory)
        assert tracker.get_monthly_spending(card.id, "statement", date(2024, 3, 1), statement_day=15) == 100.0

    def test_statement_day_past_month_end(self, session_factory, card, add_transaction) -> None:
        """A statement day of 31 opens February's cycle on the 29th."""
        add_transaction(payment_method_id=card.id, date=date(2024, 2, 28), amount=10.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 2, 29), amount=100.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 30), amount=5.0)

        tracker = MonthlySpendingTracker(session_factory)
        assert tracker.get_monthly_spending(card.id, "statement", date(2024, 2, 29), statement_day=31) == 105.0
        assert tracker.get_monthly_spending(card.id, "statement", date(2024, 2, 28), statement_day=31) == 10.0

    def test_refunds_reduce_spend(self, session_factory, card, add_transaction) -> None:
        """The total is net of refunds on the card."""
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 2), amount=300.0)
        add_transaction(payment_method_id=card.id, date=date(2024, 3, 9), amount=-50.0)

        tracker = MonthlySpendingTracker(session_factory)
        assert tracker.get_monthly_spending(card.id, "calendar", date(2024, 3, 15)) == 250.0

    def test_cache_and_invalidation(self, session_factory, card, add_transaction) -> None:
        """Totals are cached until the card's cache is cleared."""
        tracker = MonthlySpendingTracker(session_factory)
        day = date(2024, 3, 10)
        assert tracker.get_monthly_spending(card.id, "calendar", day) == 0.0

        tx = add_transaction(payment_method_id=card.id, date=day, amount=25.0)
        assert tracker.get_monthly_spending(card.id, "calendar", day) == 0.0

        tracker.update_monthly_spending(tx)
        assert tracker.get_monthly_spending(card.id, "calendar", day) == 25.0

    def test_expired_cache_entry(self, session_factory, card, add_transaction) -> None:
        tracker = MonthlySpendingTracker(session_factory, ttl_seconds=0)
        day = date(2024, 3, 10)
        tracker.get_monthly_spending(card.id, "calendar", day)
        add_transaction(payment_method_id=card.id, date=day, amount=25.0)

        assert tracker.get_monthly_spending(card.id, "calendar", day) == 25.0

    def test_calculate_from_transactions(self) -> None:
        """Loaded transactions give the same total without a query."""
        txs = [
            SimpleNamespace(payment_method_id=1, date=date(2024, 3, 2), amount=10.0, payment_amount=None, is_deleted=False),
            SimpleNamespace(payment_method_id=1, date=date(2024, 3, 3), amount=10.0, payment_amount=12.0, is_deleted=False),
            SimpleNamespace(payment_method_id=1, date=date(2024, 3, 4), amount=99.0, payment_amount=None, is_deleted=True),
            SimpleNamespace(payment_method_id=2, date=date(2024, 3, 4), amount=99.0, payment_amount=None, is_deleted=False),
        ]
        tracker = MonthlySpendingTracker(session_factory=None)
        assert tracker.calculate_from_transactions(txs, 1, "calendar", date(2024, 3, 20)) == 22.0


class TestBonusPointsTracker:
    """Tests for cap usage counters."""

    def test_tracking_ids(self) -> None:
        """Cap groups share a counter and spend caps are kept apart."""
        assert tracking_id("rule-1") == "rule-1"
        assert tracking_id("rule-1", "dining-group") == "dining-group"
        assert tracking_id("rule-1", None, SPEND_AMOUNT) == "rule-1:spend"

    def test_track_and_read(self, session_factory, card) -> None:
        tracker = BonusPointsTracker(session_factory)
        day = date(2024, 3, 10)

        assert tracker.get_used_bonus_points("rule-1", card.id, "calendar", day) == 0.0
        assert tracker.track_bonus_points_usage("rule-1", card.id, 120, "calendar", day) == 120
        assert tracker.track_bonus_points_usage("rule-1", card.id, 30, "calendar", day) == 150

        # a fresh tracker reads the stored counter
        assert BonusPointsTracker(session_factory).get_used_bonus_points("rule-1", card.id, "calendar", day) == 150
        assert tracker.get_used_bonus_points("rule-1", card.id, "calendar", date(2024, 4, 1)) == 0.0

    def test_zero_usage_is_ignored(self, session_factory, card) -> None:
        tracker = BonusPointsTracker(session_factory)
        assert tracker.track_bonus_points_usage("rule-1", card.id, 0) is None

        with session_factory() as session:
            assert session.query(BonusPointsTracking).count() == 0

    def test_shared_cap_group(self, session_factory, card) -> None:
        """Rules in one cap group draw from the same counter."""
        tracker = BonusPointsTracker(session_factory)
        day = date(2024, 3, 10)

        tracker.track_bonus_points_usage("dining", card.id, 400, "calendar", day, cap_group_id="group")
        tracker.track_bonus_points_usage("online", card.id, 100, "calendar", day, cap_group_id="group")

        assert tracker.get_used_bonus_points("online", card.id, "calendar", day, cap_group_id="group") == 500
        assert tracker.get_remaining_bonus_points("dining", card.id, 600, "calendar", day, cap_group_id="group") == 100

    def test_statement_periods_are_separate(self, session_factory, card) -> None:
        tracker = BonusPointsTracker(session_factory)
        tracker.track_bonus_points_usage("rule-1", card.id, 100, "statement", date(2024, 3, 10), statement_day=15)

        assert tracker.get_used_bonus_points("rule-1", card.id, "statement", date(2024, 2, 20), statement_day=15) == 100
        assert tracker.get_used_bonus_points("rule-1", card.id, "statement", date(2024, 3, 20), statement_day=15) == 0

    def test_month_end_usage_stays_in_its_period(self, session_factory, card) -> None:
        """Usage on Feb 29 with a statement day of 31 is filed under February."""
        tracker = BonusPointsTracker(session_factory)
        tracker.track_bonus_points_usage("rule-1", card.id, 80, "statement", date(2024, 2, 29), statement_day=31)

        assert tracker.get_used_bonus_points("rule-1", card.id, "statement", date(2024, 3, 15), statement_day=31) == 80
        assert tracker.get_used_bonus_points("rule-1", card.id, "statement", date(2024, 2, 28), statement_day=31) == 0

    def test_decrement_never_below_zero(self, session_factory, card) -> None:
        tracker = BonusPointsTracker(session_factory)
        day = date(2024, 3, 10)
        tracker.track_bonus_points_usage("rule-1", card.id, 50, "calendar", day)

        assert tracker.decrement_bonus_points_usage("rule-1", card.id, 20, "calendar", day) == 30
        assert tracker.decrement_bonus_points_usage("rule-1", card.id, 100, "calendar", day) == 0.0


class TestCapsAcrossTransactions:
    def test_recorded_usage_limits_later_purchases(self, db, session_factory, card, add_rule) -> None:
        """Bonus recorded for one purchase shrinks what the next one can earn."""
        add_rule(card.card_type_id, name="Online", bonus_multiplier=9, monthly_cap=150)
        tracker = BonusPointsTracker(session_factory)
        calc = RewardCalculator(RuleRepository(db), tracker)

        first_input = CalculationInput(amount=10, payment_method=card, date=date.today())
        first = calc.calculate_rewards(first_input)
        calc.record_bonus_usage(first_input, first)

        second = calc.calculate_rewards(CalculationInput(amount=10, payment_method=card, date=date.today()))

        assert first.bonus_points == 90
        assert second.bonus_points == 60
        assert second.remaining_monthly_bonus_points == 0

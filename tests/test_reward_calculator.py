"""Tests for the reward calculator."""

from datetime import date, datetime, timedelta

import pytest

from app.services.reward_calculator import (
    CAP_REACHED_MESSAGE,
    NO_APPLICABLE_RULES_MESSAGE,
    NO_RULES_MESSAGE,
    RewardCalculator,
    evaluate_condition,
    round_amount,
    round_points,
    standard_points,
)
from app.services.reward_rules import (
    BonusTier,
    CalculationInput,
    RewardConfig,
    RewardRule,
    RuleCondition,
)

CARD_TYPE = "dbs-woman's-world-card"


class FakeRepository:
    def __init__(self, rules):
        self.rules = rules

    def get_rules_for_card_type(self, card_type_id):
        return [r for r in self.rules if r.card_type_id == card_type_id]


class FakeTracker:
    """Fixed usage per cap type."""

    def __init__(self, **used):
        self.used = used

    def get_used_bonus_points(self, rule_id, payment_method_id, period_type, day, statement_day, cap_group_id, cap_type):
        return self.used.get(cap_type, 0.0)


def _rule(name="Base", priority=0, conditions=None, **reward) -> RewardRule:
    return RewardRule(
        id=name.lower().replace(" ", "-"),
        card_type_id=CARD_TYPE,
        name=name,
        priority=priority,
        conditions=conditions or [],
        reward=RewardConfig(**reward),
    )


def _calc(*rules) -> RewardCalculator:
    return RewardCalculator(FakeRepository(list(rules)))


@pytest.fixture
def purchase(make_card):
    def _input(amount=20.0, **fields) -> CalculationInput:
        fields.setdefault("date", date.today())
        return CalculationInput(amount=amount, payment_method=make_card(), **fields)

    return _input


class TestRounding:
    """Tests for amount and points rounding."""

    def test_round_amount(self) -> None:
        assert round_amount(23.7, "floor") == 23
        assert round_amount(23.2, "ceiling") == 24
        assert round_amount(2.5, "nearest") == 3
        assert round_amount(23.7, "floor5") == 20
        assert round_amount(23.7, "none") == 23.7

    def test_round_points(self) -> None:
        """Half values round up and unknown strategies floor."""
        assert round_points(0.5, "nearest") == 1
        assert round_points(1.1, "ceiling") == 2
        assert round_points(1.9, "floor") == 1
        assert round_points(1.9, None) == 1

    def test_standard_points_with_blocks(self) -> None:
        """Points are earned per block of spend."""
        assert standard_points(23.0, 1, "floor", 5, "floor5") == 4
        assert standard_points(12.5, 4, "nearest", 1, "floor") == 48


class TestConditions:
    """Tests for individual condition types."""

    def test_mcc(self, purchase) -> None:
        include = RuleCondition(type="mcc", operation="include", values=["5411", 5812])
        exclude = RuleCondition(type="mcc", operation="exclude", values=["5411"])

        assert evaluate_condition(include, purchase(mcc="5812"))
        assert not evaluate_condition(include, purchase(mcc="5999"))
        assert not evaluate_condition(exclude, purchase(mcc="5411"))

    def test_missing_mcc(self, purchase) -> None:
        """Without an MCC only exclusions pass."""
        assert not evaluate_condition(RuleCondition(type="mcc", operation="include", values=["5411"]), purchase())
        assert evaluate_condition(RuleCondition(type="mcc", operation="exclude", values=["5411"]), purchase())

    def test_merchant(self, purchase) -> None:
        """Merchant matching is case-insensitive; equals needs the full name."""
        contains = RuleCondition(type="merchant", operation="include", values=["Grab"])
        equals = RuleCondition(type="merchant", operation="equals", values=["grab"])

        assert evaluate_condition(contains, purchase(merchant_name="GRABFOOD SG"))
        assert not evaluate_condition(equals, purchase(merchant_name="GRABFOOD SG"))
        assert evaluate_condition(equals, purchase(merchant_name="Grab"))

    def test_transaction_type(self, purchase) -> None:
        online = RuleCondition(type="transaction_type", operation="include", values=["online"])
        in_store = RuleCondition(type="transaction_type", operation="include", values=["in_store"])
        contactless = RuleCondition(type="transaction_type", operation="include", values=["contactless"])

        assert evaluate_condition(online, purchase(is_online=True))
        assert not evaluate_condition(online, purchase())
        assert evaluate_condition(in_store, purchase())
        assert evaluate_condition(contactless, purchase(is_contactless=True))

    def test_currency(self, purchase) -> None:
        """Foreign currency rules compare upper-cased codes."""
        foreign = RuleCondition(type="currency", operation="exclude", values=["sgd"])

        assert evaluate_condition(foreign, purchase(currency="USD"))
        assert not evaluate_condition(foreign, purchase(currency="SGD"))

    def test_amount(self, purchase) -> None:
        in_range = RuleCondition(type="amount", operation="range", values=[10, "50"])
        above = RuleCondition(type="amount", operation="greater_than", values=[100])

        assert evaluate_condition(in_range, purchase(amount=10))
        assert not evaluate_condition(in_range, purchase(amount=50.01))
        assert not evaluate_condition(above, purchase(amount=100))
        assert evaluate_condition(above, purchase(amount=80, converted_amount=120))

    def test_compound(self, purchase) -> None:
        """Compound conditions nest any/all groups."""
        dining_or_online = RuleCondition(
            type="compound",
            operation="any",
            sub_conditions=[
                RuleCondition(type="mcc", operation="include", values=["5812"]),
                RuleCondition(type="transaction_type", operation="include", values=["online"]),
            ],
        )
        both = RuleCondition(type="compound", operation="all", sub_conditions=dining_or_online.sub_conditions)

        assert evaluate_condition(dining_or_online, purchase(is_online=True))
        assert not evaluate_condition(both, purchase(is_online=True))
        assert evaluate_condition(both, purchase(is_online=True, mcc="5812"))

    def test_category_does_not_restrict(self, purchase) -> None:
        assert evaluate_condition(RuleCondition(type="category", operation="include", values=["Travel"]), purchase())


class TestCalculateRewards:
    """Tests for rule selection and point calculation."""

    def test_no_rules(self, purchase) -> None:
        """Cards without rules earn nothing and say so."""
        result = _calc().calculate_rewards(purchase())

        assert result.total_points == 0
        assert result.points_currency == "DBS Points"
        assert result.messages == [NO_RULES_MESSAGE]

    def test_standard_rule(self, purchase) -> None:
        """Amount is floored before the multiplier is applied."""
        result = _calc(_rule(points_currency="DBS Points")).calculate_rewards(purchase(amount=12.7))

        assert result.base_points == 12
        assert result.bonus_points == 0
        assert result.total_points == 12
        assert result.applied_rule.name == "Base"
        assert result.points_currency == "DBS Points"

    def test_highest_priority_applicable_rule_wins(self, purchase) -> None:
        """A matching bonus rule beats the base rule; otherwise the base rule applies."""
        calc = _calc(
            _rule("Base"),
            _rule(
                "Groceries",
                priority=10,
                conditions=[RuleCondition(type="mcc", operation="include", values=["5411"])],
                bonus_multiplier=9,
            ),
        )

        groceries = calc.calculate_rewards(purchase(mcc="5411"))
        dining = calc.calculate_rewards(purchase(mcc="5812"))

        assert (groceries.base_points, groceries.bonus_points) == (20, 180)
        assert groceries.applied_rule.name == "Groceries"
        assert dining.total_points == 20
        assert dining.applied_rule.name == "Base"

    def test_no_applicable_rules(self, purchase) -> None:
        calc = _calc(_rule(conditions=[RuleCondition(type="mcc", operation="include", values=["5411"])]))
        result = calc.calculate_rewards(purchase(mcc="5812"))

        assert result.total_points == 0
        assert result.messages == [NO_APPLICABLE_RULES_MESSAGE]

    def test_disabled_and_expired_rules_are_skipped(self, purchase) -> None:
        disabled = _rule("Disabled", priority=10, bonus_multiplier=9)
        disabled.enabled = False
        expired = _rule("Expired", priority=5, bonus_multiplier=4)
        expired.valid_until = datetime.now() - timedelta(days=30)

        result = _calc(_rule(), disabled, expired).calculate_rewards(purchase())
        assert result.applied_rule.name == "Base"

    def test_converted_amount_is_used(self, purchase) -> None:
        """Points are earned on the amount billed in the card currency."""
        result = _calc(_rule()).calculate_rewards(purchase(amount=80, currency="USD", converted_amount=108.4))
        assert result.total_points == 108

    def test_flat_rate_and_direct(self, purchase) -> None:
        flat = _calc(_rule(calculation_method="flat_rate", base_multiplier=5)).calculate_rewards(purchase(amount=999))
        direct = _calc(_rule(calculation_method="direct", points_rounding_strategy="floor")).calculate_rewards(
            purchase(amount=42.9)
        )

        assert flat.total_points == 5
        assert direct.total_points == 42

    def test_tiered(self, purchase) -> None:
        """The first tier by priority whose bounds match is used."""
        calc = _calc(
            _rule(
                calculation_method="tiered",
                bonus_tiers=[
                    BonusTier(multiplier=1, priority=1, name="Everything else"),
                    BonusTier(multiplier=4, min_amount=100, priority=0, name="Big ticket"),
                ],
            )
        )

        big = calc.calculate_rewards(purchase(amount=150))
        small = calc.calculate_rewards(purchase(amount=50))

        assert (big.base_points, big.bonus_points) == (0, 600)
        assert big.applied_tier.name == "Big ticket"
        assert small.bonus_points == 50
        assert small.applied_tier.name == "Everything else"

    def test_tier_by_monthly_spend(self, purchase) -> None:
        calc = _calc(
            _rule(
                calculation_method="tiered",
                bonus_tiers=[BonusTier(multiplier=3, min_spend=500)],
            )
        )

        assert calc.calculate_rewards(purchase(amount=10, monthly_spend=600)).bonus_points == 30
        assert calc.calculate_rewards(purchase(amount=10, monthly_spend=100)).bonus_points == 0


class TestMonthlyLimits:
    """Tests for minimum spend and monthly caps."""

    def test_minimum_spend_not_met(self, purchase) -> None:
        """An unmet minimum spend falls back to the next rule."""
        calc = _calc(_rule("Base"), _rule("Bonus", priority=10, bonus_multiplier=9, monthly_min_spend=800))
        result = calc.calculate_rewards(purchase(monthly_spend=300))

        assert result.applied_rule.name == "Base"
        assert result.min_spend_met is False
        assert "Monthly minimum spend of 800 not met" in result.messages

    def test_minimum_spend_met(self, purchase) -> None:
        calc = _calc(_rule("Base"), _rule("Bonus", priority=10, bonus_multiplier=9, monthly_min_spend=800))
        result = calc.calculate_rewards(purchase(monthly_spend=900))

        assert result.applied_rule.name == "Bonus"
        assert result.min_spend_met is True

    def test_points_cap_partially_used(self, purchase) -> None:
        """Bonus is limited to what is left of the cap."""
        calc = _calc(_rule(bonus_multiplier=9, monthly_cap=100))
        result = calc.calculate_rewards(purchase(used_bonus_points=50))

        assert result.base_points == 20
        assert result.bonus_points == 50
        assert result.remaining_monthly_bonus_points == 0
        assert "Bonus points capped at 50 due to monthly limit" in result.messages

    def test_points_cap_reached(self, purchase) -> None:
        calc = _calc(_rule(bonus_multiplier=9, monthly_cap=100))
        result = calc.calculate_rewards(purchase(used_bonus_points=100))

        assert result.bonus_points == 0
        assert result.total_points == 20
        assert CAP_REACHED_MESSAGE in result.messages

    def test_points_cap_not_hit(self, purchase) -> None:
        calc = _calc(_rule(bonus_multiplier=9, monthly_cap=1000))
        result = calc.calculate_rewards(purchase(used_bonus_points=0))

        assert result.bonus_points == 180
        assert result.remaining_monthly_bonus_points == 820
        assert result.messages == []

    def test_spend_cap(self, purchase) -> None:
        """Spend caps give the bonus only on spend still under the cap."""
        rule = _rule(bonus_multiplier=9, monthly_cap=1000, monthly_cap_type="spend_amount")
        calc = RewardCalculator(FakeRepository([rule]), FakeTracker(spend_amount=990))
        result = calc.calculate_rewards(purchase(amount=20, used_bonus_points=5000))

        assert result.base_points == 20
        assert result.bonus_points == 90
        assert result.remaining_monthly_bonus_points == 0
        assert "Bonus applied to 10 of spend due to monthly limit" in result.messages

    def test_used_bonus_points_do_not_count_as_spend(self, purchase) -> None:
        calc = _calc(_rule(bonus_multiplier=9, monthly_cap=1000, monthly_cap_type="spend_amount"))
        result = calc.calculate_rewards(purchase(amount=20, used_bonus_points=990))

        assert result.bonus_points == 180
        assert result.remaining_monthly_bonus_points == 980
        assert result.messages == []


class TestSimulateRewards:
    def test_simulate_is_a_purchase_today(self, make_card) -> None:
        calc = _calc(
            _rule("Base"),
            _rule(
                "Online",
                priority=1,
                conditions=[RuleCondition(type="transaction_type", operation="include", values=["online"])],
                bonus_multiplier=9,
            ),
        )

        online = calc.simulate_rewards(make_card(), 10, is_online=True)
        offline = calc.simulate_rewards(make_card(), 10)

        assert online.total_points == 100
        assert offline.total_points == 10

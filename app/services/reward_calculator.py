# app/services/reward_calculator.py
#
# Reward Calculator
# Computes base and bonus points for one transaction from the rules of the
# card it was paid with.

import logging
import math
from datetime import date as date_type

from app.services.bonus_tracker import BONUS_POINTS, SPEND_AMOUNT
from app.services.periods import CALENDAR
from app.services.reward_rules import (
    BonusTier,
    CalculationInput,
    CalculationResult,
    RewardRule,
    RuleCondition,
    card_type_id_for,
    normalize_condition,
)

logger = logging.getLogger(__name__)

NO_RULES_MESSAGE = "No reward rules found for this payment method"
NO_APPLICABLE_RULES_MESSAGE = "No applicable reward rules found for this transaction"
NO_RULE_APPLIED_MESSAGE = "No applicable reward rules applied"
CAP_REACHED_MESSAGE = "Monthly bonus points cap reached"


# ---- Rounding ----

def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def round_amount(amount: float, strategy: str | None) -> float:
    if strategy == "floor":
        return math.floor(amount)
    if strategy == "ceiling":
        return math.ceil(amount)
    if strategy == "nearest":
        return _round_half_up(amount)
    if strategy == "floor5":
        return math.floor(amount / 5) * 5
    # "none"
    return amount


def round_points(points: float, strategy: str | None) -> int:
    if strategy == "ceiling":
        return math.ceil(points)
    if strategy == "nearest":
        return _round_half_up(points)
    return math.floor(points)


def standard_points(
    amount: float,
    multiplier: float,
    points_rounding: str = "floor",
    block_size: float = 1.0,
    amount_rounding: str = "none",
) -> int:
    """round_points(round_amount(amount) / block_size * multiplier)"""
    rounded = round_amount(amount, amount_rounding)
    return round_points(rounded / (block_size or 1.0) * multiplier, points_rounding)


def tiered_points(amount: float, tiers: list[BonusTier], monthly_spend: float | None):
    """First tier (lowest priority value first) whose bounds match. Returns (points, tier)."""
    for tier in sorted(tiers, key=lambda t: t.priority or 0):
        if tier.min_amount is not None and amount < tier.min_amount:
            continue
        if tier.max_amount is not None and amount > tier.max_amount:
            continue
        if tier.min_spend is not None and monthly_spend is not None and monthly_spend < tier.min_spend:
            continue
        if tier.max_spend is not None and monthly_spend is not None and monthly_spend > tier.max_spend:
            continue
        return standard_points(amount, tier.multiplier), tier
    return 0, None


# ---- Conditions ----

def _matches_transaction_type(kind: str, data: CalculationInput) -> bool:
    if kind == "online":
        return data.is_online is True
    if kind == "contactless":
        return data.is_contactless is True
    if kind == "in_store":
        return data.is_online is False
    return data.transaction_type == kind


def _in_list(operation: str, values: list, matches) -> bool:
    if operation == "include":
        return any(matches(v) for v in values)
    if operation == "exclude":
        return not any(matches(v) for v in values)
    if operation == "equals":
        return bool(values) and matches(values[0])
    return True


def _as_float(value):
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(condition: RuleCondition, data: CalculationInput) -> bool:
    condition = normalize_condition(condition)
    kind = condition.type
    operation = condition.operation

    if kind == "mcc":
        if not data.mcc:
            return operation == "exclude"
        values = [str(v) for v in condition.values]
        return _in_list(operation, values, lambda v: v == str(data.mcc))

    if kind == "merchant":
        if not data.merchant_name:
            return operation == "exclude"
        merchant = data.merchant_name.lower()
        values = [str(v).lower() for v in condition.values]
        if operation == "equals":
            return bool(values) and merchant == values[0]
        return _in_list(operation, values, lambda v: v in merchant)

    if kind == "transaction_type":
        values = [str(v) for v in condition.values]
        return _in_list(operation, values, lambda v: _matches_transaction_type(v, data))

    if kind == "currency":
        currency = (data.currency or "").upper()
        values = [str(v).upper() for v in condition.values]
        return _in_list(operation, values, lambda v: v == currency)

    if kind == "amount":
        return _evaluate_amount(operation, condition.values, data.calculation_amount)

    if kind == "compound":
        subs = condition.sub_conditions
        if not subs:
            return True
        if operation == "all":
            return all(evaluate_condition(s, data) for s in subs)
        if operation == "any":
            return any(evaluate_condition(s, data) for s in subs)
        return True

    # "category" and unknown types do not restrict
    return True


def _evaluate_amount(operation: str, values: list, amount: float) -> bool:
    numbers = [n for n in (_as_float(v) for v in values) if n is not None]
    if not numbers:
        return True
    if operation == "greater_than":
        return amount > numbers[0]
    if operation == "less_than":
        return amount < numbers[0]
    if operation == "equals":
        return amount == numbers[0]
    if operation == "range" and len(numbers) >= 2:
        return numbers[0] <= amount <= numbers[1]
    return True


def evaluate_conditions(conditions: list[RuleCondition], data: CalculationInput) -> bool:
    """All conditions must pass; no conditions means the rule always applies."""
    return all(evaluate_condition(c, data) for c in conditions or [])


# ---- Calculator ----

class RewardCalculator:
    """
    calculate_rewards() picks the highest-priority applicable rule of the
    card and returns base/bonus points. Usage for monthly caps comes from
    `input.used_bonus_points` when given, else from the bonus tracker.
    """

    def __init__(self, rule_repository, bonus_tracker=None):
        self.rule_repository = rule_repository
        self.bonus_tracker = bonus_tracker

    def _empty_result(self, data: CalculationInput, message: str) -> CalculationResult:
        points_currency = getattr(data.payment_method, "points_currency", None) or "points"
        return CalculationResult(points_currency=points_currency, messages=[message])

    def calculate_rewards(self, data: CalculationInput) -> CalculationResult:
        card_type_id = card_type_id_for(data.payment_method)
        amount = data.calculation_amount

        rules = self.rule_repository.get_rules_for_card_type(card_type_id)
        if not rules:
            logger.info("No reward rules found for %s", card_type_id)
            return self._empty_result(data, NO_RULES_MESSAGE)

        day = data.date or date_type.today()
        applicable = [
            r for r in rules
            if r.enabled and r.is_valid_on(day) and evaluate_conditions(r.conditions, data)
        ]
        if not applicable:
            return self._empty_result(data, NO_APPLICABLE_RULES_MESSAGE)

        messages: list[str] = []
        min_spend_met = True

        # sorted() is stable: equal priorities keep repository order
        for rule in sorted(applicable, key=lambda r: r.priority, reverse=True):
            reward = rule.reward

            if reward.monthly_min_spend and data.monthly_spend and data.monthly_spend < reward.monthly_min_spend:
                min_spend_met = False
                messages.append(f"Monthly minimum spend of {_fmt(reward.monthly_min_spend)} not met")
                continue

            result = self._apply_rule(rule, data, amount, messages)
            result.min_spend_met = min_spend_met
            logger.debug(
                "Applied rule %s (%s) to %s: base=%s bonus=%s",
                rule.name, rule.id, card_type_id, result.base_points, result.bonus_points,
            )
            return result

        result = self._empty_result(data, NO_RULE_APPLIED_MESSAGE)
        result.min_spend_met = min_spend_met
        result.messages = messages + result.messages
        return result

    def _apply_rule(self, rule: RewardRule, data: CalculationInput, amount: float, messages: list[str]):
        reward = rule.reward
        base_points = 0
        bonus_points = 0
        applied_tier = None

        method = reward.calculation_method
        if method == "standard":
            base_points = standard_points(
                amount, reward.base_multiplier, reward.points_rounding_strategy,
                reward.block_size, reward.amount_rounding_strategy,
            )
        elif method == "tiered":
            bonus_points, applied_tier = tiered_points(amount, reward.bonus_tiers, data.monthly_spend)
        elif method == "flat_rate":
            base_points = round_points(reward.base_multiplier, reward.points_rounding_strategy)
        elif method == "direct":
            base_points = round_points(amount, reward.points_rounding_strategy)
        else:
            logger.warning("Unknown calculation method %s on rule %s", method, rule.id)

        remaining = None
        if reward.monthly_cap is not None and reward.monthly_cap_type == SPEND_AMOUNT:
            bonus_points, remaining = self._spend_capped_bonus(rule, data, amount, bonus_points, messages)
        else:
            if reward.bonus_multiplier > 0:
                bonus_points += standard_points(
                    amount, reward.bonus_multiplier, reward.points_rounding_strategy,
                    reward.block_size, reward.amount_rounding_strategy,
                )
            if reward.monthly_cap is not None:
                bonus_points, remaining = self._points_capped_bonus(rule, data, amount, bonus_points, messages)

        base_points = max(0, int(base_points))
        bonus_points = max(0, int(bonus_points))

        return CalculationResult(
            total_points=base_points + bonus_points,
            base_points=base_points,
            bonus_points=bonus_points,
            points_currency=reward.points_currency,
            remaining_monthly_bonus_points=remaining,
            applied_rule=rule,
            applied_tier=applied_tier,
            messages=messages,
        )

    def _used(self, rule: RewardRule, data: CalculationInput, cap_type: str) -> float:
        # A caller-supplied figure is bonus points, never spend
        if cap_type == BONUS_POINTS and data.used_bonus_points is not None:
            return data.used_bonus_points

        payment_method_id = getattr(data.payment_method, "id", None)
        if self.bonus_tracker is None or not rule.id or payment_method_id is None:
            return 0.0

        return self.bonus_tracker.get_used_bonus_points(
            rule.id,
            payment_method_id,
            rule.reward.monthly_spend_period_type or CALENDAR,
            data.date or date_type.today(),
            getattr(data.payment_method, "statement_start_day", None) or 1,
            rule.reward.cap_group_id,
            cap_type,
        )

    def _points_capped_bonus(self, rule, data, amount, bonus_points, messages):
        reward = rule.reward
        available = max(0.0, reward.monthly_cap - self._used(rule, data, BONUS_POINTS))

        uncapped = math.floor(round_amount(amount, reward.amount_rounding_strategy) * reward.bonus_multiplier)
        capped = min(bonus_points, available)

        if available <= 0:
            messages.append(CAP_REACHED_MESSAGE)
        elif capped < uncapped:
            messages.append(f"Bonus points capped at {int(capped)} due to monthly limit")

        return capped, available - capped

    def _spend_capped_bonus(self, rule, data, amount, bonus_points, messages):
        """Bonus multiplier applies only to the part of the spend still under the cap."""
        reward = rule.reward
        available_spend = max(0.0, reward.monthly_cap - self._used(rule, data, SPEND_AMOUNT))
        eligible = min(max(amount, 0.0), available_spend)

        if reward.bonus_multiplier > 0 and eligible > 0:
            bonus_points += standard_points(
                eligible, reward.bonus_multiplier, reward.points_rounding_strategy,
                reward.block_size, reward.amount_rounding_strategy,
            )

        if available_spend <= 0:
            messages.append("Monthly bonus spend cap reached")
        elif eligible < amount:
            messages.append(f"Bonus applied to {_fmt(eligible)} of spend due to monthly limit")

        return bonus_points, available_spend - eligible

    def record_bonus_usage(self, data: CalculationInput, result: CalculationResult) -> None:
        """Adds a saved transaction's capped bonus to the tracker."""
        rule = result.applied_rule
        payment_method_id = getattr(data.payment_method, "id", None)
        if self.bonus_tracker is None or rule is None or rule.reward.monthly_cap is None or payment_method_id is None:
            return

        cap_type = rule.reward.monthly_cap_type
        if cap_type == SPEND_AMOUNT:
            value = max(data.calculation_amount, 0.0)
        else:
            value = result.bonus_points

        self.bonus_tracker.track_bonus_points_usage(
            rule.id,
            payment_method_id,
            value,
            rule.reward.monthly_spend_period_type or CALENDAR,
            data.date or date_type.today(),
            getattr(data.payment_method, "statement_start_day", None) or 1,
            rule.reward.cap_group_id,
            cap_type,
        )

    def simulate_rewards(
        self,
        payment_method,
        amount: float,
        mcc: str | None = None,
        merchant_name: str | None = None,
        currency: str = "SGD",
        is_online: bool = False,
        is_contactless: bool = False,
        monthly_spend: float | None = None,
        converted_amount: float | None = None,
    ) -> CalculationResult:
        """A purchase made today."""
        return self.calculate_rewards(
            CalculationInput(
                amount=amount,
                payment_method=payment_method,
                currency=currency,
                mcc=mcc,
                merchant_name=merchant_name,
                transaction_type="purchase",
                is_online=is_online,
                is_contactless=is_contactless,
                date=date_type.today(),
                monthly_spend=monthly_spend,
                converted_amount=converted_amount,
            )
        )

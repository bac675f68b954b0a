# app/services/reward_rules.py
#
# Reward Rule Types
# Typed representation of reward rules plus the mapping to/from the
# reward_rules table (conditions and bonus tiers are stored as JSON text).

import json
import logging
import re
import uuid
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any, List, Optional

from app.errors import InvalidCardTypeError

logger = logging.getLogger(__name__)

CONDITION_TYPES = ("mcc", "transaction_type", "currency", "merchant", "amount", "compound", "category")
CONDITION_OPERATIONS = ("include", "exclude", "equals", "greater_than", "less_than", "range", "any", "all")
CALCULATION_METHODS = ("standard", "tiered", "flat_rate", "direct")
POINTS_ROUNDING = ("floor", "ceiling", "nearest")
AMOUNT_ROUNDING = ("floor", "ceiling", "nearest", "floor5", "none")
CAP_TYPES = ("bonus_points", "spend_amount")
PERIOD_TYPES = ("calendar", "statement", "statement_month")
TRANSACTION_TYPES = ("purchase", "refund", "adjustment", "online", "contactless", "in_store")


@dataclass
class RuleCondition:
    type: str
    operation: str
    values: List[Any] = field(default_factory=list)
    display_name: Optional[str] = None
    sub_conditions: List["RuleCondition"] = field(default_factory=list)


@dataclass
class BonusTier:
    multiplier: float
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    min_spend: Optional[float] = None
    max_spend: Optional[float] = None
    name: Optional[str] = None
    description: Optional[str] = None
    priority: int = 0


@dataclass
class RewardConfig:
    calculation_method: str = "standard"
    base_multiplier: float = 1.0
    bonus_multiplier: float = 0.0
    points_rounding_strategy: str = "nearest"
    amount_rounding_strategy: str = "floor"
    block_size: float = 1.0
    bonus_tiers: List[BonusTier] = field(default_factory=list)
    monthly_cap: Optional[float] = None
    monthly_cap_type: str = "bonus_points"
    monthly_min_spend: Optional[float] = None
    monthly_spend_period_type: Optional[str] = None
    points_currency: str = "points"
    cap_group_id: Optional[str] = None


@dataclass
class RewardRule:
    id: str
    card_type_id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: List[RuleCondition] = field(default_factory=list)
    reward: RewardConfig = field(default_factory=RewardConfig)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_valid_on(self, day) -> bool:
        """True when `day` falls inside the optional validity window."""
        if day is None:
            return True
        moment = day if isinstance(day, datetime) else datetime.combine(day, datetime.min.time())
        if self.valid_from and moment < self.valid_from:
            return False
        if self.valid_until and moment > self.valid_until:
            return False
        return True


@dataclass
class CalculationInput:
    """
    One transaction to evaluate against a card's rules.

    `payment_method` is any object with `issuer` and `name` (an ORM
    PaymentMethod in practice). `converted_amount` is the amount billed in
    the card currency; when set it is the amount rewards are computed on.
    """

    amount: float
    payment_method: Any
    currency: str = "SGD"
    mcc: Optional[str] = None
    merchant_name: Optional[str] = None
    transaction_type: str = "purchase"
    is_online: bool = False
    is_contactless: bool = False
    date: Optional[date] = None
    monthly_spend: Optional[float] = None
    used_bonus_points: Optional[float] = None
    converted_amount: Optional[float] = None
    converted_currency: Optional[str] = None

    @property
    def calculation_amount(self) -> float:
        if self.converted_amount is not None:
            return self.converted_amount
        return self.amount


@dataclass
class CalculationResult:
    total_points: int = 0
    base_points: int = 0
    bonus_points: int = 0
    points_currency: str = "points"
    remaining_monthly_bonus_points: Optional[float] = None
    min_spend_met: bool = True
    applied_rule: Optional[RewardRule] = None
    applied_tier: Optional[BonusTier] = None
    messages: List[str] = field(default_factory=list)


# ---- Card type ids ----

def _normalize_part(value: str) -> str:
    return re.sub(r"\s+", "-", value.strip().lower())


def generate_card_type_id(issuer: str, name: str) -> str:
    """
    "American Express", "Gold Card" -> "american-express-gold-card".
    """
    if not issuer or not name:
        raise InvalidCardTypeError("Both issuer and name are required to generate a card type ID")
    return f"{_normalize_part(issuer)}-{_normalize_part(name)}"


def card_type_id_for(payment_method) -> str:
    """Card type id of a payment method; tolerates a missing issuer."""
    issuer = getattr(payment_method, "issuer", "") or ""
    name = getattr(payment_method, "name", "") or ""
    if issuer and name:
        return generate_card_type_id(issuer, name)
    return _normalize_part(issuer or name)


def is_valid_card_type_id(card_type_id) -> bool:
    if not card_type_id or not isinstance(card_type_id, str):
        return False
    if "-" not in card_type_id or card_type_id != card_type_id.lower():
        return False
    if card_type_id.startswith("-") or card_type_id.endswith("-") or "--" in card_type_id:
        return False
    return bool(card_type_id.strip())


# ---- JSON <-> dataclasses ----

def _pick(d: dict, snake: str, camel: str, default=None):
    if snake in d:
        return d[snake]
    return d.get(camel, default)


def normalize_condition(condition: RuleCondition) -> RuleCondition:
    """
    Legacy "online" conditions become transaction_type conditions:
    equals ["true"] -> include online, equals ["false"] -> exclude online.
    """
    if condition.type != "online":
        return condition

    if condition.operation == "equals" and condition.values:
        flag = str(condition.values[0]).lower()
        if flag == "true":
            return RuleCondition(type="transaction_type", operation="include", values=["online"])
        if flag == "false":
            return RuleCondition(type="transaction_type", operation="exclude", values=["online"])

    condition.type = "transaction_type"
    return condition


def condition_from_dict(d: dict) -> RuleCondition:
    subs = _pick(d, "sub_conditions", "subConditions") or []
    condition = RuleCondition(
        type=d.get("type", ""),
        operation=d.get("operation", "include"),
        values=list(d.get("values") or []),
        display_name=_pick(d, "display_name", "displayName"),
        sub_conditions=[condition_from_dict(s) for s in subs],
    )
    return normalize_condition(condition)


def condition_to_dict(condition: RuleCondition) -> dict:
    d = {
        "type": condition.type,
        "operation": condition.operation,
        "values": list(condition.values),
    }
    if condition.display_name:
        d["display_name"] = condition.display_name
    if condition.sub_conditions:
        d["sub_conditions"] = [condition_to_dict(s) for s in condition.sub_conditions]
    return d


def tier_from_dict(d: dict) -> BonusTier:
    return BonusTier(
        multiplier=float(d.get("multiplier") or 0),
        min_amount=_pick(d, "min_amount", "minAmount"),
        max_amount=_pick(d, "max_amount", "maxAmount"),
        min_spend=_pick(d, "min_spend", "minSpend"),
        max_spend=_pick(d, "max_spend", "maxSpend"),
        name=d.get("name"),
        description=d.get("description"),
        priority=int(d.get("priority") or 0),
    )


def _parse_json_list(raw, what: str, rule_id) -> list:
    if raw is None or raw == "":
        return []
    if isinstance(raw, list):
        return raw
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Unparseable %s on reward rule %s; using []", what, rule_id)
        return []
    return parsed if isinstance(parsed, list) else []


def _or_default(value, default):
    return default if value is None else value


def rule_from_row(row) -> RewardRule:
    """ORM RewardRule -> dataclass, filling defaults for missing columns."""
    conditions = [condition_from_dict(c) for c in _parse_json_list(row.conditions, "conditions", row.id)]
    tiers = [tier_from_dict(t) for t in _parse_json_list(row.bonus_tiers, "bonus tiers", row.id)]

    reward = RewardConfig(
        calculation_method=row.calculation_method or "standard",
        base_multiplier=_or_default(row.base_multiplier, 1.0),
        bonus_multiplier=_or_default(row.bonus_multiplier, 0.0),
        points_rounding_strategy=row.points_rounding_strategy or "nearest",
        amount_rounding_strategy=row.amount_rounding_strategy or "floor",
        block_size=row.block_size or 1.0,
        bonus_tiers=tiers,
        monthly_cap=row.monthly_cap,
        monthly_cap_type=row.monthly_cap_type or "bonus_points",
        monthly_min_spend=row.monthly_min_spend,
        monthly_spend_period_type=row.monthly_spend_period_type,
        points_currency=row.points_currency or "points",
        cap_group_id=row.cap_group_id,
    )

    return RewardRule(
        id=row.id,
        card_type_id=row.card_type_id,
        name=row.name,
        description=row.description or "",
        enabled=_or_default(row.enabled, True),
        priority=row.priority or 0,
        conditions=conditions,
        reward=reward,
        valid_from=row.valid_from,
        valid_until=row.valid_until,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def rule_to_row(rule: RewardRule) -> dict:
    """Dataclass -> column values for the reward_rules table."""
    reward = rule.reward
    return {
        "id": rule.id or str(uuid.uuid4()),
        "card_type_id": rule.card_type_id,
        "name": rule.name,
        "description": rule.description,
        "enabled": rule.enabled,
        "priority": rule.priority,
        "conditions": json.dumps([condition_to_dict(c) for c in rule.conditions]),
        "bonus_tiers": json.dumps([asdict(t) for t in reward.bonus_tiers]),
        "calculation_method": reward.calculation_method,
        "base_multiplier": reward.base_multiplier,
        "bonus_multiplier": reward.bonus_multiplier,
        "points_rounding_strategy": reward.points_rounding_strategy,
        "amount_rounding_strategy": reward.amount_rounding_strategy,
        "block_size": reward.block_size,
        "monthly_cap": reward.monthly_cap,
        "monthly_cap_type": reward.monthly_cap_type,
        "monthly_min_spend": reward.monthly_min_spend,
        "monthly_spend_period_type": reward.monthly_spend_period_type,
        "points_currency": reward.points_currency,
        "cap_group_id": reward.cap_group_id,
        "valid_from": rule.valid_from,
        "valid_until": rule.valid_until,
    }

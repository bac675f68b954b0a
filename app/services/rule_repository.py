# app/services/rule_repository.py
#
# Reward Rule Repository
# Loads and stores reward rules for a card type. Rows are mapped to the
# dataclasses in reward_rules.py.

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.errors import InvalidCardTypeError, InvalidRuleError, RuleNotFoundError
from app.services.reward_rules import (
    AMOUNT_ROUNDING,
    CALCULATION_METHODS,
    CAP_TYPES,
    PERIOD_TYPES,
    POINTS_ROUNDING,
    RewardRule,
    is_valid_card_type_id,
    rule_from_row,
    rule_to_row,
)
from models import RewardRule as RewardRuleRow

logger = logging.getLogger(__name__)


def validate_rule(rule: RewardRule) -> None:
    """Raises InvalidRuleError / InvalidCardTypeError for malformed rules."""
    if not is_valid_card_type_id(rule.card_type_id):
        raise InvalidCardTypeError(f"Invalid card type id: {rule.card_type_id!r}")
    if not rule.name or not rule.name.strip():
        raise InvalidRuleError("Rule name is required")

    reward = rule.reward
    if reward.calculation_method not in CALCULATION_METHODS:
        raise InvalidRuleError(f"Unknown calculation method: {reward.calculation_method}")
    if reward.points_rounding_strategy not in POINTS_ROUNDING:
        raise InvalidRuleError(f"Unknown points rounding strategy: {reward.points_rounding_strategy}")
    if reward.amount_rounding_strategy not in AMOUNT_ROUNDING:
        raise InvalidRuleError(f"Unknown amount rounding strategy: {reward.amount_rounding_strategy}")
    if reward.block_size <= 0:
        raise InvalidRuleError("Block size must be greater than 0")
    if reward.monthly_cap is not None and reward.monthly_cap < 0:
        raise InvalidRuleError("Monthly cap must not be negative")
    if reward.monthly_cap_type not in CAP_TYPES:
        raise InvalidRuleError(f"Unknown monthly cap type: {reward.monthly_cap_type}")
    if reward.monthly_spend_period_type and reward.monthly_spend_period_type not in PERIOD_TYPES:
        raise InvalidRuleError(f"Unknown spend period type: {reward.monthly_spend_period_type}")
    if rule.valid_from and rule.valid_until and rule.valid_from > rule.valid_until:
        raise InvalidRuleError("valid_from must be before valid_until")


class RuleRepository:
    """
    Reward rules keyed by card type id.

    In read-only mode writes are skipped (create returns an unsaved copy),
    which lets the simulator run against production rules safely.
    """

    def __init__(self, db: Session, read_only: bool = False):
        self.db = db
        self.read_only = read_only

    def set_read_only(self, read_only: bool) -> None:
        self.read_only = read_only

    def get_rules_for_card_type(self, card_type_id: str) -> List[RewardRule]:
        try:
            rows = (
                self.db.query(RewardRuleRow)
                .filter(RewardRuleRow.card_type_id == card_type_id)
                .all()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching rules for %s", card_type_id)
            return []
        return [rule_from_row(r) for r in rows]

    def get_rule(self, rule_id: str) -> RewardRule:
        row = self.db.get(RewardRuleRow, rule_id)
        if row is None:
            raise RuleNotFoundError(f"Reward rule {rule_id} not found")
        return rule_from_row(row)

    def create_rule(self, rule: RewardRule) -> RewardRule:
        validate_rule(rule)
        now = datetime.utcnow()
        new_rule = replace(rule, id=str(uuid.uuid4()), created_at=now, updated_at=now)

        if self.read_only:
            logger.info("Read-only mode: skipping rule creation")
            return new_rule

        row = RewardRuleRow(**rule_to_row(new_rule), created_at=now, updated_at=now)
        self.db.add(row)
        self.db.commit()
        logger.info("Rule created: %s", new_rule.id)
        return new_rule

    def update_rule(self, rule: RewardRule) -> None:
        if self.read_only:
            logger.info("Read-only mode: skipping rule update")
            return

        validate_rule(rule)
        row = self.db.get(RewardRuleRow, rule.id)
        if row is None:
            raise RuleNotFoundError(f"Reward rule {rule.id} not found")

        for key, value in rule_to_row(rule).items():
            setattr(row, key, value)
        row.updated_at = datetime.utcnow()
        self.db.commit()
        logger.info("Rule updated: %s", rule.id)

    def delete_rule(self, rule_id: str) -> None:
        if self.read_only:
            logger.info("Read-only mode: skipping rule deletion")
            return

        row = self.db.get(RewardRuleRow, rule_id)
        if row is None:
            raise RuleNotFoundError(f"Reward rule {rule_id} not found")
        self.db.delete(row)
        self.db.commit()
        logger.info("Rule deleted: %s", rule_id)

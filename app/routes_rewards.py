# routes_rewards.py
"""
Routes for reward rules, single-card point calculations and the card
simulator ("which card should I use for this purchase?").
"""

import asyncio
from dataclasses import asdict
from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from models import PaymentMethod
from app.deps import get_calculator, get_conversion_service, get_db, get_spending_tracker
from app.errors import NotFoundError
from app.schemas import CalculateIn, RewardRuleIn, SimulateIn
from app.services.reward_rules import (
    CalculationInput,
    RewardConfig,
    RewardRule,
    condition_from_dict,
    condition_to_dict,
    tier_from_dict,
)
from app.services.rule_repository import RuleRepository
from app.services.simulator import CardSimulator, SimulationInput

router = APIRouter(prefix="/rewards")


# -------------------------------------------------------------------
# Serialization helpers
# -------------------------------------------------------------------

def rule_to_json(rule: RewardRule) -> dict:
    reward = asdict(rule.reward)
    return {
        "id": rule.id,
        "card_type_id": rule.card_type_id,
        "name": rule.name,
        "description": rule.description,
        "enabled": rule.enabled,
        "priority": rule.priority,
        "conditions": [condition_to_dict(c) for c in rule.conditions],
        "reward": reward,
        "valid_from": rule.valid_from,
        "valid_until": rule.valid_until,
        "created_at": rule.created_at,
        "updated_at": rule.updated_at,
    }


def rule_from_payload(payload: RewardRuleIn, rule_id: str = "") -> RewardRule:
    reward = payload.reward.model_dump()
    reward["bonus_tiers"] = [tier_from_dict(t) for t in reward["bonus_tiers"]]
    return RewardRule(
        id=rule_id,
        card_type_id=payload.card_type_id,
        name=payload.name,
        description=payload.description,
        enabled=payload.enabled,
        priority=payload.priority,
        conditions=[condition_from_dict(c.model_dump()) for c in payload.conditions],
        reward=RewardConfig(**reward),
        valid_from=payload.valid_from,
        valid_until=payload.valid_until,
    )


def calculation_to_json(result) -> dict:
    return {
        "total_points": result.total_points,
        "base_points": result.base_points,
        "bonus_points": result.bonus_points,
        "points_currency": result.points_currency,
        "remaining_monthly_bonus_points": result.remaining_monthly_bonus_points,
        "min_spend_met": result.min_spend_met,
        "applied_rule_id": result.applied_rule.id if result.applied_rule else None,
        "applied_rule_name": result.applied_rule.name if result.applied_rule else None,
        "applied_tier": asdict(result.applied_tier) if result.applied_tier else None,
        "messages": list(result.messages),
    }


def _payment_method(db: Session, payment_method_id: int) -> PaymentMethod:
    payment_method = db.get(PaymentMethod, payment_method_id)
    if payment_method is None:
        raise NotFoundError(f"Payment method {payment_method_id} not found")
    return payment_method


# -------------------------------------------------------------------
# Rules CRUD
# -------------------------------------------------------------------

@router.get("/rules")
def list_rules(card_type_id: str = Query(...), db: Session = Depends(get_db)):
    rules = RuleRepository(db).get_rules_for_card_type(card_type_id)
    rules.sort(key=lambda r: r.priority, reverse=True)
    return [rule_to_json(r) for r in rules]


@router.get("/rules/{rule_id}")
def get_rule(rule_id: str, db: Session = Depends(get_db)):
    return rule_to_json(RuleRepository(db).get_rule(rule_id))


@router.post("/rules", status_code=201)
def create_rule(payload: RewardRuleIn, db: Session = Depends(get_db)):
    return rule_to_json(RuleRepository(db).create_rule(rule_from_payload(payload)))


@router.put("/rules/{rule_id}")
def update_rule(rule_id: str, payload: RewardRuleIn, db: Session = Depends(get_db)):
    repository = RuleRepository(db)
    existing = repository.get_rule(rule_id)
    rule = rule_from_payload(payload, rule_id)
    rule.created_at = existing.created_at
    repository.update_rule(rule)
    return rule_to_json(repository.get_rule(rule_id))


@router.delete("/rules/{rule_id}", status_code=204)
def delete_rule(rule_id: str, db: Session = Depends(get_db)):
    RuleRepository(db).delete_rule(rule_id)


# -------------------------------------------------------------------
# Calculation & simulation
# -------------------------------------------------------------------

@router.post("/calculate")
def calculate(payload: CalculateIn, db: Session = Depends(get_db), calculator=Depends(get_calculator)):
    payment_method = _payment_method(db, payload.payment_method_id)
    fields = payload.model_dump(exclude={"payment_method_id"})
    result = calculator.calculate_rewards(CalculationInput(payment_method=payment_method, **fields))
    return calculation_to_json(result)


@router.post("/simulate")
def simulate(
    payload: SimulateIn,
    db: Session = Depends(get_db),
    calculator=Depends(get_calculator),
    conversion_service=Depends(get_conversion_service),
    spending_tracker=Depends(get_spending_tracker),
):
    """
    Every active card, ranked by miles in the target currency. Rule and rate
    lookups block, so this runs in the threadpool with its own event loop.
    """
    data = SimulationInput(
        **payload.model_dump(exclude={"date", "target_currency_id"}),
        date=payload.date or date.today(),
    )
    payment_methods = db.query(PaymentMethod).filter(PaymentMethod.active.is_(True)).all()

    simulator = CardSimulator(calculator, conversion_service, spending_tracker)
    results = asyncio.run(simulator.simulate_all_cards(data, payment_methods, payload.target_currency_id))

    return [
        {
            "rank": r.rank,
            "payment_method_id": r.payment_method.id,
            "payment_method_name": r.payment_method.name,
            "calculation": calculation_to_json(r.calculation),
            "converted_miles": r.converted_miles,
            "conversion_rate": r.conversion_rate,
            "error": r.error,
        }
        for r in results
    ]

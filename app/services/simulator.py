# app/services/simulator.py
#
# Card Simulator
# Runs the reward calculation for one purchase on every active card, converts
# each card's points into a target currency (usually airline miles) and
# ranks the cards by the converted value.

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date as date_type
from types import SimpleNamespace
from typing import Any, List, Optional

from app.services.periods import CALENDAR
from app.services.reward_rules import CalculationInput, CalculationResult

logger = logging.getLogger(__name__)

CALCULATION_FAILED_MESSAGE = "Calculation failed for this card"

# Points program shown for cards without a configured one
ISSUER_POINTS_CURRENCY = {
    "dbs": "DBS Points",
    "citi": "Citi ThankYou Points",
    "citibank": "Citi ThankYou Points",
    "uob": "UNI$",
    "ocbc": "OCBC$",
    "hsbc": "HSBC Rewards Points",
    "amex": "Membership Rewards Points (CA)",
    "american express": "Membership Rewards Points (CA)",
    "rbc": "RBC Avion Points",
    "td": "Aeroplan Points",
    "scotiabank": "Scene+ Points",
}


def points_currency_for(payment_method) -> Optional[str]:
    if getattr(payment_method, "points_currency", None):
        return payment_method.points_currency
    issuer = (getattr(payment_method, "issuer", "") or "").strip().lower()
    return ISSUER_POINTS_CURRENCY.get(issuer)


@dataclass
class SimulationInput:
    amount: float
    currency: str = "SGD"
    merchant_name: str = ""
    merchant_address: Optional[str] = None
    mcc: Optional[str] = None
    is_online: bool = False
    is_contactless: bool = False
    converted_amount: Optional[float] = None
    converted_currency: Optional[str] = None
    date: date_type = field(default_factory=date_type.today)


@dataclass
class CardCalculationResult:
    payment_method: Any
    calculation: CalculationResult
    converted_miles: Optional[float] = None
    conversion_rate: Optional[float] = None
    rank: int = 0
    error: Optional[str] = None


def _name_key(result: CardCalculationResult) -> str:
    return (getattr(result.payment_method, "name", "") or "").casefold()


def rank_results(results: List[CardCalculationResult]) -> List[CardCalculationResult]:
    """
    Converted cards first (most miles first, ties by card name), then cards
    without a conversion by name, then failed cards by name. Ranks start at 1.
    """
    converted = [r for r in results if r.error is None and r.converted_miles is not None]
    unconverted = [r for r in results if r.error is None and r.converted_miles is None]
    failed = [r for r in results if r.error is not None]

    converted.sort(key=lambda r: (-r.converted_miles, _name_key(r)))
    unconverted.sort(key=_name_key)
    failed.sort(key=_name_key)

    ranked = converted + unconverted + failed
    for index, result in enumerate(ranked):
        result.rank = index + 1
    return ranked


class CardSimulator:
    def __init__(self, calculator, conversion_service, spending_tracker):
        self.calculator = calculator
        self.conversion_service = conversion_service
        self.spending_tracker = spending_tracker

    def get_monthly_spending(self, payment_method_id, day: date_type) -> float:
        # Simulations always use the calendar month
        try:
            return self.spending_tracker.get_monthly_spending(payment_method_id, CALENDAR, day, 1)
        except Exception:
            logger.exception("Error getting monthly spending for payment method %s", payment_method_id)
            return 0.0

    def _reward_currency_id(self, payment_method):
        if getattr(payment_method, "reward_currency_id", None):
            return payment_method.reward_currency_id
        currency = self.conversion_service.get_reward_currency_by_issuer(payment_method.issuer)
        return currency.id if currency else None

    async def simulate_single_card(self, data: SimulationInput, payment_method, target_currency_id) -> CardCalculationResult:
        monthly_spend = self.get_monthly_spending(payment_method.id, data.date)
        reward_currency_id = self._reward_currency_id(payment_method)

        card = SimpleNamespace(
            id=payment_method.id,
            issuer=payment_method.issuer,
            name=payment_method.name,
            points_currency=points_currency_for(payment_method),
            statement_start_day=getattr(payment_method, "statement_start_day", 1),
        )

        calculation = self.calculator.calculate_rewards(
            CalculationInput(
                amount=data.amount,
                payment_method=card,
                currency=data.currency,
                mcc=data.mcc,
                merchant_name=data.merchant_name,
                transaction_type="purchase",
                is_online=data.is_online,
                is_contactless=data.is_contactless,
                date=data.date,
                monthly_spend=monthly_spend,
                converted_amount=data.converted_amount,
                converted_currency=data.converted_currency,
            )
        )

        miles = rate = None
        if reward_currency_id and target_currency_id:
            miles, rate = self.conversion_service.convert_to_miles(
                calculation.total_points, reward_currency_id, target_currency_id
            )
        else:
            logger.debug(
                "Cannot convert %s: reward currency %s, target %s",
                payment_method.name, reward_currency_id, target_currency_id,
            )

        return CardCalculationResult(
            payment_method=payment_method,
            calculation=calculation,
            converted_miles=miles,
            conversion_rate=rate,
        )

    async def simulate_all_cards(self, data: SimulationInput, payment_methods, target_currency_id) -> List[CardCalculationResult]:
        """One calculation per active card; a failing card does not abort the batch."""
        active = [pm for pm in payment_methods if pm.active]

        outcomes = await asyncio.gather(
            *(self.simulate_single_card(data, pm, target_currency_id) for pm in active),
            return_exceptions=True,
        )

        results = []
        for payment_method, outcome in zip(active, outcomes):
            if isinstance(outcome, Exception):
                logger.error("Error calculating rewards for %s: %s", payment_method.name, outcome)
                results.append(
                    CardCalculationResult(
                        payment_method=payment_method,
                        calculation=CalculationResult(
                            points_currency=getattr(payment_method, "points_currency", None) or "points",
                            messages=[CALCULATION_FAILED_MESSAGE],
                        ),
                        error=str(outcome) or "Unknown error",
                    )
                )
            else:
                results.append(outcome)

        return rank_results(results)

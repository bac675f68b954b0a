# app/services/card_optimization.py
#
# Card Optimization
# Finds purchases where another card in the wallet, earning the same points
# currency, would have earned noticeably more points.

import logging
from dataclasses import dataclass
from types import SimpleNamespace

from app.services.categorization import effective_category
from app.services.reward_rules import CalculationInput

logger = logging.getLogger(__name__)

CREDIT_CARD_TYPES = ("credit", "credit_card")


@dataclass
class CardMismatch:
    current_card: str
    better_card: str
    category: str
    amount: float
    points_lost: int
    multiplier: float
    transaction_id: int | None = None


def _is_credit_card(payment_method) -> bool:
    return payment_method is not None and payment_method.type in CREDIT_CARD_TYPES


def find_card_mismatch(transactions, payment_methods, calculator, min_points_lost: int = 100):
    """
    Biggest points gap over `transactions`, or None.

    Each credit card purchase is re-evaluated on every other active credit
    card with the same points currency. Cards whose calculation fails are
    skipped.
    """
    active_cards = [pm for pm in payment_methods if pm.active and _is_credit_card(pm)]
    if len(active_cards) < 2:
        return None

    best = None
    for tx in transactions:
        current_card = tx.payment_method
        if not _is_credit_card(current_card) or (tx.amount or 0) <= 0:
            continue

        actual_points = tx.reward_points or 0
        category = effective_category(tx)

        for alt in active_cards:
            if alt.id == current_card.id or alt.points_currency != current_card.points_currency:
                continue

            data = CalculationInput(
                amount=tx.amount,
                payment_method=SimpleNamespace(
                    id=alt.id,
                    issuer=alt.issuer,
                    name=alt.name,
                    points_currency=alt.points_currency,
                    statement_start_day=alt.statement_start_day,
                ),
                currency=tx.currency,
                mcc=tx.mcc_code,
                merchant_name=tx.merchant_name or "",
                transaction_type="purchase",
                is_online=bool(tx.is_online),
                is_contactless=bool(tx.is_contactless),
                date=tx.date,
                converted_amount=tx.payment_amount,
                converted_currency=tx.payment_currency,
            )
            try:
                alt_points = calculator.calculate_rewards(data).total_points
            except Exception:
                logger.warning("Card mismatch: calculation failed for %s", alt.name, exc_info=True)
                continue

            points_diff = alt_points - actual_points
            if points_diff < min_points_lost:
                continue

            if best is None or points_diff > best.points_lost:
                multiplier = round(alt_points / actual_points, 1) if actual_points > 0 else alt_points
                best = CardMismatch(
                    current_card=current_card.name,
                    better_card=alt.name,
                    category=category,
                    amount=tx.amount,
                    points_lost=points_diff,
                    multiplier=multiplier,
                    transaction_id=tx.id,
                )

    return best

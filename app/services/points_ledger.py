# app/services/points_ledger.py
#
# Points Ledger
# Per-user balances of each reward currency. A balance is a user-entered
# starting balance plus everything that happened since: points earned on
# card transactions after the balance date, manual adjustments, redemptions
# and transfers between programs. Every write re-derives the stored
# current_balance of the currencies it touches.

import logging
from datetime import date as date_type, datetime, time as time_type
from typing import Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.config import DEFAULT_USER_ID
from app.errors import InvalidLedgerEntryError, LedgerEntryNotFoundError
from models import (
    PaymentMethod,
    PointsAdjustment,
    PointsBalance,
    PointsRedemption,
    PointsTransfer,
    Transaction,
)

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPES = ("starting_balance", "bonus", "correction", "expired", "promotional", "other")
REDEMPTION_TYPES = (
    "flight", "hotel", "merchandise", "cash_back", "statement_credit", "transfer_out", "other",
)
CABIN_CLASSES = ("economy", "premium_economy", "business", "first")
ACTIVITY_TYPES = ("adjustment", "redemption", "transfer")

# Cents-per-point ratings (lower bounds)
CPP_THRESHOLDS = {"excellent": 2.0, "great": 1.5, "good": 1.0}


def calculate_cpp(points_redeemed: float, cash_value: float) -> float:
    """Cents per point, 0 when either side is missing."""
    if not points_redeemed or not cash_value or points_redeemed <= 0 or cash_value <= 0:
        return 0.0
    return round(cash_value / points_redeemed * 100 * 100) / 100


def cpp_rating(cpp: float) -> str:
    for rating, threshold in CPP_THRESHOLDS.items():
        if cpp >= threshold:
            return rating
    return "poor"


def _apply(row, fields: dict, allowed: Iterable[str]) -> None:
    for name in allowed:
        if name in fields:
            setattr(row, name, fields[name])


class PointsLedger:
    def __init__(self, db: Session, user_id: str = DEFAULT_USER_ID, today: date_type | None = None):
        self.db = db
        self.user_id = user_id
        self._today = today

    @property
    def today(self) -> date_type:
        return self._today or date_type.today()

    def _end_of_today(self) -> datetime:
        return datetime.combine(self.today, time_type.max)

    # -------------------------------------------------------------------
    # Balances
    # -------------------------------------------------------------------

    def get_balances(self) -> List[PointsBalance]:
        return (
            self.db.query(PointsBalance)
            .filter(PointsBalance.user_id == self.user_id)
            .order_by(PointsBalance.reward_currency_id, PointsBalance.payment_method_id)
            .all()
        )

    def get_balance(self, reward_currency_id: int, payment_method_id: int | None = None) -> Optional[PointsBalance]:
        """Card-specific balance when payment_method_id is given, else the pooled one."""
        q = self.db.query(PointsBalance).filter(
            PointsBalance.user_id == self.user_id,
            PointsBalance.reward_currency_id == reward_currency_id,
        )
        if payment_method_id is None:
            q = q.filter(PointsBalance.payment_method_id.is_(None))
        else:
            q = q.filter(PointsBalance.payment_method_id == payment_method_id)
        return q.first()

    def _earned_since(self, reward_currency_id: int, since: date_type | None, payment_method_id: int | None) -> float:
        q = (
            self.db.query(func.coalesce(func.sum(Transaction.reward_points), 0))
            .join(PaymentMethod, Transaction.payment_method_id == PaymentMethod.id)
            .filter(
                PaymentMethod.reward_currency_id == reward_currency_id,
                Transaction.is_deleted.is_(False),
            )
        )
        if payment_method_id is not None:
            q = q.filter(PaymentMethod.id == payment_method_id)
        if since is not None:
            # Strictly after the balance date; that day is in the starting balance
            q = q.filter(Transaction.date > since)
        return float(q.scalar() or 0)

    def _sum(self, column, *criteria) -> float:
        return float(self.db.query(func.coalesce(func.sum(column), 0)).filter(*criteria).scalar() or 0)

    def calculate_balance_breakdown(self, reward_currency_id: int, payment_method_id: int | None = None) -> dict:
        """
        current = starting + earned + adjustments - redemptions
                  - transfers out + transfers in

        Only adjustments dated today or earlier count; later ones are pending.
        """
        balance = self.get_balance(reward_currency_id, payment_method_id)
        starting = balance.starting_balance if balance else 0.0
        balance_date = balance.balance_date if balance else None

        earned = self._earned_since(reward_currency_id, balance_date, payment_method_id)
        adjustments = self._sum(
            PointsAdjustment.amount,
            PointsAdjustment.user_id == self.user_id,
            PointsAdjustment.reward_currency_id == reward_currency_id,
            PointsAdjustment.is_deleted.is_(False),
            PointsAdjustment.adjustment_date <= self._end_of_today(),
        )
        redemptions = self._sum(
            PointsRedemption.points_redeemed,
            PointsRedemption.user_id == self.user_id,
            PointsRedemption.reward_currency_id == reward_currency_id,
            PointsRedemption.is_deleted.is_(False),
        )
        transfers_out = self._sum(
            PointsTransfer.source_amount,
            PointsTransfer.user_id == self.user_id,
            PointsTransfer.source_currency_id == reward_currency_id,
            PointsTransfer.is_deleted.is_(False),
        )
        transfers_in = self._sum(
            PointsTransfer.destination_amount,
            PointsTransfer.user_id == self.user_id,
            PointsTransfer.destination_currency_id == reward_currency_id,
            PointsTransfer.is_deleted.is_(False),
        )

        return {
            "starting_balance": starting,
            "earned_from_transactions": earned,
            "adjustments": adjustments,
            "redemptions": redemptions,
            "transfers_out": transfers_out,
            "transfers_in": transfers_in,
            "current_balance": starting + earned + adjustments - redemptions - transfers_out + transfers_in,
        }

    def set_starting_balance(
        self,
        reward_currency_id: int,
        starting_balance: float,
        payment_method_id: int | None = None,
        balance_date: date_type | None = None,
        expiry_date: date_type | None = None,
        notes: str | None = None,
    ) -> PointsBalance:
        balance = self.get_balance(reward_currency_id, payment_method_id)
        if balance is None:
            balance = PointsBalance(
                user_id=self.user_id,
                reward_currency_id=reward_currency_id,
                payment_method_id=payment_method_id,
            )
            self.db.add(balance)

        balance.starting_balance = starting_balance
        balance.balance_date = balance_date
        balance.expiry_date = expiry_date
        balance.notes = notes
        self.db.flush()

        breakdown = self.calculate_balance_breakdown(reward_currency_id, payment_method_id)
        balance.current_balance = breakdown["current_balance"]
        balance.last_calculated_at = datetime.utcnow()

        self.db.commit()
        self.db.refresh(balance)
        return balance

    def recalculate_balance(self, reward_currency_id: int) -> List[PointsBalance]:
        """Refresh every stored balance (pooled and per card) of a currency."""
        balances = (
            self.db.query(PointsBalance)
            .filter(
                PointsBalance.user_id == self.user_id,
                PointsBalance.reward_currency_id == reward_currency_id,
            )
            .all()
        )
        for balance in balances:
            breakdown = self.calculate_balance_breakdown(reward_currency_id, balance.payment_method_id)
            balance.current_balance = breakdown["current_balance"]
            balance.last_calculated_at = datetime.utcnow()
        self.db.commit()
        return balances

    # -------------------------------------------------------------------
    # Adjustments
    # -------------------------------------------------------------------

    @staticmethod
    def _validate_adjustment(amount, adjustment_type, description) -> None:
        if amount is None or amount == 0:
            raise InvalidLedgerEntryError("Adjustment amount must be non-zero")
        if adjustment_type not in ADJUSTMENT_TYPES:
            raise InvalidLedgerEntryError(f"Unknown adjustment type: {adjustment_type}")
        if not (description or "").strip():
            raise InvalidLedgerEntryError("Adjustment description is required")

    def get_adjustments(self, reward_currency_id: int | None = None) -> List[PointsAdjustment]:
        q = self.db.query(PointsAdjustment).filter(
            PointsAdjustment.user_id == self.user_id,
            PointsAdjustment.is_deleted.is_(False),
        )
        if reward_currency_id is not None:
            q = q.filter(PointsAdjustment.reward_currency_id == reward_currency_id)
        return q.order_by(PointsAdjustment.adjustment_date.desc()).all()

    def get_pending_adjustments(self, reward_currency_id: int | None = None) -> List[PointsAdjustment]:
        """Adjustments dated after today, soonest first."""
        q = self.db.query(PointsAdjustment).filter(
            PointsAdjustment.user_id == self.user_id,
            PointsAdjustment.is_deleted.is_(False),
            PointsAdjustment.adjustment_date > self._end_of_today(),
        )
        if reward_currency_id is not None:
            q = q.filter(PointsAdjustment.reward_currency_id == reward_currency_id)
        return q.order_by(PointsAdjustment.adjustment_date.asc()).all()

    def add_adjustment(
        self,
        reward_currency_id: int,
        amount: float,
        adjustment_type: str,
        description: str,
        reference_number: str | None = None,
        adjustment_date: datetime | None = None,
    ) -> PointsAdjustment:
        self._validate_adjustment(amount, adjustment_type, description)
        row = PointsAdjustment(
            user_id=self.user_id,
            reward_currency_id=reward_currency_id,
            amount=amount,
            adjustment_type=adjustment_type,
            description=description,
            reference_number=reference_number,
            adjustment_date=adjustment_date or datetime.utcnow(),
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        self.recalculate_balance(reward_currency_id)
        return row

    def _get_owned(self, model, entry_id: int):
        row = self.db.get(model, entry_id)
        if row is None or row.user_id != self.user_id or row.is_deleted:
            raise LedgerEntryNotFoundError(f"{model.__name__} {entry_id} not found")
        return row

    def update_adjustment(self, adjustment_id: int, **fields) -> PointsAdjustment:
        row = self._get_owned(PointsAdjustment, adjustment_id)
        old_currency = row.reward_currency_id

        self._validate_adjustment(
            fields.get("amount", row.amount),
            fields.get("adjustment_type", row.adjustment_type),
            fields.get("description", row.description),
        )
        _apply(row, fields, (
            "reward_currency_id", "amount", "adjustment_type", "description",
            "reference_number", "adjustment_date",
        ))
        self.db.commit()
        self.db.refresh(row)

        self.recalculate_balance(row.reward_currency_id)
        if old_currency != row.reward_currency_id:
            self.recalculate_balance(old_currency)
        return row

    def delete_adjustment(self, adjustment_id: int) -> None:
        row = self._get_owned(PointsAdjustment, adjustment_id)
        row.is_deleted = True
        row.deleted_at = datetime.utcnow()
        self.db.commit()
        self.recalculate_balance(row.reward_currency_id)

    # -------------------------------------------------------------------
    # Redemptions
    # -------------------------------------------------------------------

    @staticmethod
    def _validate_redemption(points_redeemed, redemption_type, description, cabin_class=None) -> None:
        if points_redeemed is None or points_redeemed <= 0:
            raise InvalidLedgerEntryError("Points redeemed must be positive")
        if redemption_type not in REDEMPTION_TYPES:
            raise InvalidLedgerEntryError(f"Unknown redemption type: {redemption_type}")
        if not (description or "").strip():
            raise InvalidLedgerEntryError("Redemption description is required")
        if cabin_class is not None and cabin_class not in CABIN_CLASSES:
            raise InvalidLedgerEntryError(f"Unknown cabin class: {cabin_class}")

    def get_redemptions(self, reward_currency_id: int | None = None) -> List[PointsRedemption]:
        q = self.db.query(PointsRedemption).filter(
            PointsRedemption.user_id == self.user_id,
            PointsRedemption.is_deleted.is_(False),
        )
        if reward_currency_id is not None:
            q = q.filter(PointsRedemption.reward_currency_id == reward_currency_id)
        return q.order_by(PointsRedemption.redemption_date.desc()).all()

    def add_redemption(
        self,
        reward_currency_id: int,
        points_redeemed: float,
        redemption_type: str,
        description: str,
        **details,
    ) -> PointsRedemption:
        self._validate_redemption(points_redeemed, redemption_type, description, details.get("cabin_class"))
        row = PointsRedemption(
            user_id=self.user_id,
            reward_currency_id=reward_currency_id,
            points_redeemed=points_redeemed,
            redemption_type=redemption_type,
            description=description,
            flight_route=details.get("flight_route"),
            cabin_class=details.get("cabin_class"),
            airline=details.get("airline"),
            booking_reference=details.get("booking_reference"),
            passengers=details.get("passengers") or 1,
            cash_value=details.get("cash_value"),
            cash_value_currency=details.get("cash_value_currency") or "USD",
            redemption_date=details.get("redemption_date") or datetime.utcnow(),
            travel_date=details.get("travel_date"),
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        self.recalculate_balance(reward_currency_id)
        return row

    def update_redemption(self, redemption_id: int, **fields) -> PointsRedemption:
        row = self._get_owned(PointsRedemption, redemption_id)
        old_currency = row.reward_currency_id

        self._validate_redemption(
            fields.get("points_redeemed", row.points_redeemed),
            fields.get("redemption_type", row.redemption_type),
            fields.get("description", row.description),
            fields.get("cabin_class", row.cabin_class),
        )
        _apply(row, fields, (
            "reward_currency_id", "points_redeemed", "redemption_type", "description",
            "flight_route", "cabin_class", "airline", "booking_reference", "passengers",
            "cash_value", "cash_value_currency", "redemption_date", "travel_date",
        ))
        self.db.commit()
        self.db.refresh(row)

        self.recalculate_balance(row.reward_currency_id)
        if old_currency != row.reward_currency_id:
            self.recalculate_balance(old_currency)
        return row

    def delete_redemption(self, redemption_id: int) -> None:
        row = self._get_owned(PointsRedemption, redemption_id)
        row.is_deleted = True
        row.deleted_at = datetime.utcnow()
        self.db.commit()
        self.recalculate_balance(row.reward_currency_id)

    # -------------------------------------------------------------------
    # Transfers
    # -------------------------------------------------------------------

    @staticmethod
    def _validate_transfer(source_id, source_amount, destination_id, destination_amount, conversion_rate) -> None:
        if source_id == destination_id:
            raise InvalidLedgerEntryError("Source and destination currencies must differ")
        if source_amount is None or source_amount <= 0:
            raise InvalidLedgerEntryError("Source amount must be positive")
        if destination_amount is None or destination_amount <= 0:
            raise InvalidLedgerEntryError("Destination amount must be positive")
        if conversion_rate is None or conversion_rate <= 0:
            raise InvalidLedgerEntryError("Conversion rate must be positive")

    def get_transfers(self, reward_currency_id: int | None = None) -> List[PointsTransfer]:
        """Transfers touching a currency on either side."""
        q = self.db.query(PointsTransfer).filter(
            PointsTransfer.user_id == self.user_id,
            PointsTransfer.is_deleted.is_(False),
        )
        if reward_currency_id is not None:
            q = q.filter(
                (PointsTransfer.source_currency_id == reward_currency_id)
                | (PointsTransfer.destination_currency_id == reward_currency_id)
            )
        return q.order_by(PointsTransfer.transfer_date.desc()).all()

    def add_transfer(
        self,
        source_currency_id: int,
        source_amount: float,
        destination_currency_id: int,
        destination_amount: float,
        conversion_rate: float | None = None,
        **details,
    ) -> PointsTransfer:
        if conversion_rate is None and source_amount:
            conversion_rate = destination_amount / source_amount
        self._validate_transfer(
            source_currency_id, source_amount, destination_currency_id, destination_amount, conversion_rate
        )
        row = PointsTransfer(
            user_id=self.user_id,
            source_currency_id=source_currency_id,
            source_amount=source_amount,
            destination_currency_id=destination_currency_id,
            destination_amount=destination_amount,
            conversion_rate=conversion_rate,
            transfer_bonus_rate=details.get("transfer_bonus_rate"),
            transfer_fee=details.get("transfer_fee") or 0.0,
            transfer_fee_currency=details.get("transfer_fee_currency"),
            reference_number=details.get("reference_number"),
            notes=details.get("notes"),
            transfer_date=details.get("transfer_date") or datetime.utcnow(),
        )
        self.db.add(row)
        self.db.commit()
        self.db.refresh(row)

        self.recalculate_balance(source_currency_id)
        self.recalculate_balance(destination_currency_id)
        return row

    def update_transfer(self, transfer_id: int, **fields) -> PointsTransfer:
        row = self._get_owned(PointsTransfer, transfer_id)
        touched = {row.source_currency_id, row.destination_currency_id}

        self._validate_transfer(
            fields.get("source_currency_id", row.source_currency_id),
            fields.get("source_amount", row.source_amount),
            fields.get("destination_currency_id", row.destination_currency_id),
            fields.get("destination_amount", row.destination_amount),
            fields.get("conversion_rate", row.conversion_rate),
        )
        _apply(row, fields, (
            "source_currency_id", "source_amount", "destination_currency_id", "destination_amount",
            "conversion_rate", "transfer_bonus_rate", "transfer_fee", "transfer_fee_currency",
            "reference_number", "notes", "transfer_date",
        ))
        self.db.commit()
        self.db.refresh(row)

        touched |= {row.source_currency_id, row.destination_currency_id}
        for currency_id in sorted(touched):
            self.recalculate_balance(currency_id)
        return row

    def delete_transfer(self, transfer_id: int) -> None:
        row = self._get_owned(PointsTransfer, transfer_id)
        row.is_deleted = True
        row.deleted_at = datetime.utcnow()
        self.db.commit()
        self.recalculate_balance(row.source_currency_id)
        self.recalculate_balance(row.destination_currency_id)

    # -------------------------------------------------------------------
    # Activity & CPP
    # -------------------------------------------------------------------

    def get_activity_feed(
        self,
        types: Iterable[str] | None = None,
        reward_currency_id: int | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        offset: int = 0,
        limit: int = 50,
    ) -> List[dict]:
        """Adjustments, redemptions and transfers merged, newest first."""
        types = set(types or ACTIVITY_TYPES)
        sources = []
        if "adjustment" in types:
            sources.append(("adjustment", self.get_adjustments(reward_currency_id), "adjustment_date"))
        if "redemption" in types:
            sources.append(("redemption", self.get_redemptions(reward_currency_id), "redemption_date"))
        if "transfer" in types:
            sources.append(("transfer", self.get_transfers(reward_currency_id), "transfer_date"))

        items = []
        for kind, rows, date_attr in sources:
            for row in rows:
                when = getattr(row, date_attr)
                if start is not None and when < start:
                    continue
                if end is not None and when > end:
                    continue
                items.append({"type": kind, "date": when, "data": row})

        items.sort(key=lambda item: item["date"], reverse=True)
        return items[offset:offset + limit]

    def calculate_cpp(self, points_redeemed: float, cash_value: float) -> float:
        return calculate_cpp(points_redeemed, cash_value)

    def get_average_cpp(self, reward_currency_id: int | None = None) -> float:
        values = [r.cpp for r in self.get_redemptions(reward_currency_id) if r.cpp]
        if not values:
            return 0.0
        return round(sum(values) / len(values) * 100) / 100

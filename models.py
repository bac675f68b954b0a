# models.py
# Role: SQLAlchemy ORM models for the finance tracker domain.
#       Transactions and payment methods, reward currencies and conversion rates,
#       reward rules with their cap tracking, insight templates, and the points ledger.

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from db import Base


class Transaction(Base):
    """
    ORM model representing a single purchase event.

    Amounts are positive for spend and negative for refunds. `amount` is in the
    transaction currency; `payment_amount` is the amount billed in the card's
    currency (used for reward calculation when present).
    """

    __tablename__ = "transactions"

    # Primary key
    id = Column(Integer, primary_key=True, index=True)

    # Date of the purchase
    date = Column(Date, nullable=False, index=True)

    # Merchant as entered / printed on the statement
    merchant_name = Column(String, nullable=False)

    # Merchant Category Code, e.g. "5411"
    mcc_code = Column(String(4), nullable=True)

    is_online = Column(Boolean, nullable=False, default=False)
    is_contactless = Column(Boolean, nullable=False, default=False)

    # Amount in the transaction currency
    amount = Column(Float, nullable=False)
    currency = Column(String(3), nullable=False, default="SGD")

    # Amount billed in the card currency (foreign currency purchases)
    payment_amount = Column(Float, nullable=True)
    payment_currency = Column(String(3), nullable=True)

    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=True, index=True)

    # Points earned (non-negative integers)
    reward_points = Column(Integer, nullable=False, default=0)
    base_points = Column(Integer, nullable=False, default=0)
    bonus_points = Column(Integer, nullable=False, default=0)

    # Part of the amount paid back by someone else
    reimbursement_amount = Column(Float, nullable=False, default=0.0)

    # Legacy/derived category and the user's explicit override
    category = Column(String, nullable=True)
    user_category = Column(String, nullable=True)

    # Optional free-text notes
    notes = Column(Text, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    payment_method = relationship("PaymentMethod", back_populates="transactions")

    @property
    def net_amount(self) -> float:
        return (self.amount or 0.0) - (self.reimbursement_amount or 0.0)


class PaymentMethod(Base):
    """A card or account the user pays with."""

    __tablename__ = "payment_methods"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    issuer = Column(String, nullable=False, default="")

    # "credit_card", "debit_card", "cash", ...
    type = Column(String, nullable=False, default="credit_card")
    currency = Column(String(3), nullable=False, default="SGD")

    reward_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=True)

    # Display name of the points program (legacy, used when no reward currency is linked)
    points_currency = Column(String, nullable=True)

    # Statement cycle start day (1-31)
    statement_start_day = Column(Integer, nullable=False, default=1)
    is_monthly_statement = Column(Boolean, nullable=False, default=False)

    active = Column(Boolean, nullable=False, default=True)

    reward_currency = relationship("RewardCurrency")
    transactions = relationship("Transaction", back_populates="payment_method")

    @property
    def card_type_id(self) -> str:
        # Imported here to keep models free of service imports at module load
        from app.services.reward_rules import card_type_id_for

        return card_type_id_for(self)


class RewardCurrency(Base):
    """
    A points program. Transferrable currencies are bank points; the rest are
    endpoints such as airline miles.
    """

    __tablename__ = "reward_currencies"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String, nullable=False, unique=True)
    display_name = Column(String, nullable=False)
    issuer = Column(String, nullable=True)
    is_transferrable = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ConversionRate(Base):
    """Directed edge source currency -> target currency with a positive multiplier."""

    __tablename__ = "conversion_rates"
    __table_args__ = (
        UniqueConstraint("reward_currency_id", "target_currency_id", name="uq_conversion_pair"),
        CheckConstraint("conversion_rate > 0", name="ck_conversion_rate_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    reward_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)
    target_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)
    conversion_rate = Column(Float, nullable=False)
    minimum_transfer = Column(Float, nullable=True)
    transfer_increment = Column(Float, nullable=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class RewardRule(Base):
    """
    Persisted reward rule. Conditions and bonus tiers are stored as JSON text;
    see app/services/reward_rules.py for the typed representation.
    """

    __tablename__ = "reward_rules"

    id = Column(String(36), primary_key=True)
    card_type_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    enabled = Column(Boolean, nullable=False, default=True)
    priority = Column(Integer, nullable=False, default=0)

    conditions = Column(Text, nullable=False, default="[]")
    bonus_tiers = Column(Text, nullable=False, default="[]")

    calculation_method = Column(String, nullable=False, default="standard")
    base_multiplier = Column(Float, nullable=False, default=1.0)
    bonus_multiplier = Column(Float, nullable=False, default=0.0)
    points_rounding_strategy = Column(String, nullable=False, default="nearest")
    amount_rounding_strategy = Column(String, nullable=False, default="floor")
    block_size = Column(Float, nullable=False, default=1.0)

    monthly_cap = Column(Float, nullable=True)
    monthly_cap_type = Column(String, nullable=True)
    monthly_min_spend = Column(Float, nullable=True)
    monthly_spend_period_type = Column(String, nullable=True)
    points_currency = Column(String, nullable=False, default="points")
    cap_group_id = Column(String, nullable=True)

    valid_from = Column(DateTime, nullable=True)
    valid_until = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class BonusPointsTracking(Base):
    """Bonus points (or bonus-eligible spend) consumed per rule, card and period."""

    __tablename__ = "bonus_points_tracking"
    __table_args__ = (
        UniqueConstraint(
            "user_id",
            "rule_id",
            "payment_method_id",
            "period_type",
            "period_year",
            "period_month",
            "statement_day",
            name="uq_bonus_points_period",
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)

    # Rule id or cap group id; spend caps are tracked as "<id>:spend"
    rule_id = Column(String, nullable=False)
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=False)
    period_type = Column(String, nullable=False)
    period_year = Column(Integer, nullable=False)
    period_month = Column(Integer, nullable=False)
    statement_day = Column(Integer, nullable=False, default=1)
    used_bonus_points = Column(Float, nullable=False, default=0.0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class Insight(Base):
    """Insight template: a named condition with parameters and a message template."""

    __tablename__ = "insights"

    id = Column(Integer, primary_key=True, index=True)
    category = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message_template = Column(Text, nullable=False)
    icon = Column(String, nullable=True)
    severity = Column(String, nullable=False, default="info")
    condition_type = Column(String, nullable=False)
    condition_params = Column(JSON, nullable=False, default=dict)
    action_text = Column(String, nullable=True)
    action_type = Column(String, nullable=True)
    action_target = Column(String, nullable=True)
    priority = Column(Integer, nullable=False, default=50)
    is_active = Column(Boolean, nullable=False, default=True)
    is_dismissible = Column(Boolean, nullable=False, default=True)
    cooldown_days = Column(Integer, nullable=True, default=7)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)


class InsightDismissal(Base):
    __tablename__ = "insight_dismissals"
    __table_args__ = (UniqueConstraint("user_id", "insight_id", name="uq_insight_dismissal"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    insight_id = Column(Integer, ForeignKey("insights.id"), nullable=False)
    dismissed_at = Column(DateTime, nullable=False, default=datetime.utcnow)


# -------------------------------------------------------------------
# Points ledger
# -------------------------------------------------------------------

class PointsBalance(Base):
    """
    Starting balance per reward currency (optionally per card).

    `current_balance` is a cached value; the real balance is always derived
    from the ledger (see app/services/points_ledger.py).
    """

    __tablename__ = "points_balances"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    reward_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)

    # NULL = pooled balance for the whole currency
    payment_method_id = Column(Integer, ForeignKey("payment_methods.id"), nullable=True)

    starting_balance = Column(Float, nullable=False, default=0.0)
    current_balance = Column(Float, nullable=False, default=0.0)

    # Transactions after this date count as earned on top of the starting balance
    balance_date = Column(Date, nullable=True)
    expiry_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)

    last_calculated_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    reward_currency = relationship("RewardCurrency")


class PointsAdjustment(Base):
    __tablename__ = "points_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    reward_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)

    # Positive for additions, negative for deductions
    amount = Column(Float, nullable=False)

    # bonus / correction / expired / promotional / other
    adjustment_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    reference_number = Column(String, nullable=True)

    # Future-dated adjustments are pending and excluded from the balance
    adjustment_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class PointsRedemption(Base):
    __tablename__ = "points_redemptions"
    __table_args__ = (CheckConstraint("points_redeemed > 0", name="ck_points_redeemed_positive"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)
    reward_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)

    points_redeemed = Column(Float, nullable=False)

    # flight / hotel / merchandise / cash_back / statement_credit / transfer_out / other
    redemption_type = Column(String, nullable=False)
    description = Column(Text, nullable=False)

    flight_route = Column(String, nullable=True)
    cabin_class = Column(String, nullable=True)
    airline = Column(String, nullable=True)
    booking_reference = Column(String, nullable=True)
    passengers = Column(Integer, nullable=True, default=1)

    cash_value = Column(Float, nullable=True)
    cash_value_currency = Column(String(3), nullable=True, default="USD")

    redemption_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    travel_date = Column(DateTime, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    @property
    def cpp(self) -> float | None:
        """Cents per point, rounded to 2 decimals."""
        if self.points_redeemed and self.cash_value and self.points_redeemed > 0 and self.cash_value > 0:
            return round(self.cash_value / self.points_redeemed * 100, 2)
        return None


class PointsTransfer(Base):
    __tablename__ = "points_transfers"
    __table_args__ = (
        CheckConstraint("source_amount > 0", name="ck_transfer_source_positive"),
        CheckConstraint("destination_amount > 0", name="ck_transfer_destination_positive"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False)

    source_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)
    source_amount = Column(Float, nullable=False)
    destination_currency_id = Column(Integer, ForeignKey("reward_currencies.id"), nullable=False)
    destination_amount = Column(Float, nullable=False)

    # Snapshot of the rate at transfer time
    conversion_rate = Column(Float, nullable=False)
    transfer_bonus_rate = Column(Float, nullable=True)
    transfer_fee = Column(Float, nullable=True, default=0.0)
    transfer_fee_currency = Column(String(3), nullable=True)
    reference_number = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    transfer_date = Column(DateTime, nullable=False, default=datetime.utcnow)

    is_deleted = Column(Boolean, nullable=False, default=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

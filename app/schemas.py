# app/schemas.py
# Role: Pydantic request/response bodies for the JSON API.

from datetime import date as date_type, datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.config import DEFAULT_CURRENCY


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# -------------------------------------------------------------------
# Cards & transactions
# -------------------------------------------------------------------

class PaymentMethodIn(BaseModel):
    name: str
    issuer: str = ""
    type: str = "credit_card"
    currency: str = DEFAULT_CURRENCY
    reward_currency_id: Optional[int] = None
    points_currency: Optional[str] = None
    statement_start_day: int = Field(1, ge=1, le=31)
    is_monthly_statement: bool = False
    active: bool = True


class PaymentMethodOut(ORMModel):
    id: int
    name: str
    issuer: str
    type: str
    currency: str
    reward_currency_id: Optional[int] = None
    points_currency: Optional[str] = None
    statement_start_day: int
    is_monthly_statement: bool
    active: bool
    card_type_id: str


class TransactionIn(BaseModel):
    date: date_type
    merchant_name: str
    amount: float
    currency: str = DEFAULT_CURRENCY
    payment_method_id: Optional[int] = None
    payment_amount: Optional[float] = None
    payment_currency: Optional[str] = None
    mcc_code: Optional[str] = None
    is_online: bool = False
    is_contactless: bool = False
    reimbursement_amount: float = 0.0
    category: Optional[str] = None
    user_category: Optional[str] = None
    notes: Optional[str] = None


class TransactionOut(ORMModel):
    id: int
    date: date_type
    merchant_name: str
    mcc_code: Optional[str] = None
    amount: float
    currency: str
    payment_amount: Optional[float] = None
    payment_currency: Optional[str] = None
    payment_method_id: Optional[int] = None
    reward_points: int
    base_points: int
    bonus_points: int
    reimbursement_amount: float
    net_amount: float
    category: Optional[str] = None
    user_category: Optional[str] = None
    notes: Optional[str] = None


# -------------------------------------------------------------------
# Rewards
# -------------------------------------------------------------------

class ConditionIn(BaseModel):
    type: str
    operation: str = "include"
    values: List[Any] = []
    display_name: Optional[str] = None
    sub_conditions: List["ConditionIn"] = []


class BonusTierIn(BaseModel):
    multiplier: float
    min_amount: Optional[float] = None
    max_amount: Optional[float] = None
    min_spend: Optional[float] = None
    max_spend: Optional[float] = None
    name: Optional[str] = None
    description: Optional[str] = None
    priority: int = 0


class RewardConfigIn(BaseModel):
    calculation_method: str = "standard"
    base_multiplier: float = 1.0
    bonus_multiplier: float = 0.0
    points_rounding_strategy: str = "nearest"
    amount_rounding_strategy: str = "floor"
    block_size: float = 1.0
    bonus_tiers: List[BonusTierIn] = []
    monthly_cap: Optional[float] = None
    monthly_cap_type: str = "bonus_points"
    monthly_min_spend: Optional[float] = None
    monthly_spend_period_type: Optional[str] = None
    points_currency: str = "points"
    cap_group_id: Optional[str] = None


class RewardRuleIn(BaseModel):
    card_type_id: str
    name: str
    description: str = ""
    enabled: bool = True
    priority: int = 0
    conditions: List[ConditionIn] = []
    reward: RewardConfigIn = RewardConfigIn()
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None


class CalculateIn(BaseModel):
    payment_method_id: int
    amount: float
    currency: str = DEFAULT_CURRENCY
    mcc: Optional[str] = None
    merchant_name: Optional[str] = None
    transaction_type: str = "purchase"
    is_online: bool = False
    is_contactless: bool = False
    date: Optional[date_type] = None
    monthly_spend: Optional[float] = None
    used_bonus_points: Optional[float] = None
    converted_amount: Optional[float] = None
    converted_currency: Optional[str] = None


class SimulateIn(BaseModel):
    amount: float = Field(..., gt=0)
    currency: str = DEFAULT_CURRENCY
    merchant_name: str = ""
    merchant_address: Optional[str] = None
    mcc: Optional[str] = None
    is_online: bool = False
    is_contactless: bool = False
    converted_amount: Optional[float] = None
    converted_currency: Optional[str] = None
    date: Optional[date_type] = None
    target_currency_id: Optional[int] = None


# -------------------------------------------------------------------
# Conversion
# -------------------------------------------------------------------

class RewardCurrencyIn(BaseModel):
    code: str
    display_name: str
    issuer: Optional[str] = None
    is_transferrable: bool = True


class RewardCurrencyOut(ORMModel):
    id: int
    code: str
    display_name: str
    issuer: Optional[str] = None
    is_transferrable: bool


class ConversionRateIn(BaseModel):
    source_currency_id: int
    target_currency_id: int
    rate: float
    minimum_transfer: Optional[float] = None
    transfer_increment: Optional[float] = None


class ConversionRateOut(ORMModel):
    id: int
    reward_currency_id: int
    target_currency_id: int
    conversion_rate: float
    minimum_transfer: Optional[float] = None
    transfer_increment: Optional[float] = None


# -------------------------------------------------------------------
# Points ledger
# -------------------------------------------------------------------

class StartingBalanceIn(BaseModel):
    reward_currency_id: int
    starting_balance: float
    payment_method_id: Optional[int] = None
    balance_date: Optional[date_type] = None
    expiry_date: Optional[date_type] = None
    notes: Optional[str] = None


class PointsBalanceOut(ORMModel):
    id: int
    reward_currency_id: int
    payment_method_id: Optional[int] = None
    starting_balance: float
    current_balance: float
    balance_date: Optional[date_type] = None
    expiry_date: Optional[date_type] = None
    notes: Optional[str] = None
    last_calculated_at: Optional[datetime] = None


class AdjustmentIn(BaseModel):
    reward_currency_id: int
    amount: float
    adjustment_type: str
    description: str
    reference_number: Optional[str] = None
    adjustment_date: Optional[datetime] = None


class AdjustmentUpdate(BaseModel):
    reward_currency_id: Optional[int] = None
    amount: Optional[float] = None
    adjustment_type: Optional[str] = None
    description: Optional[str] = None
    reference_number: Optional[str] = None
    adjustment_date: Optional[datetime] = None


class AdjustmentOut(ORMModel):
    id: int
    reward_currency_id: int
    amount: float
    adjustment_type: str
    description: str
    reference_number: Optional[str] = None
    adjustment_date: datetime


class RedemptionIn(BaseModel):
    reward_currency_id: int
    points_redeemed: float
    redemption_type: str
    description: str
    flight_route: Optional[str] = None
    cabin_class: Optional[str] = None
    airline: Optional[str] = None
    booking_reference: Optional[str] = None
    passengers: Optional[int] = None
    cash_value: Optional[float] = None
    cash_value_currency: Optional[str] = None
    redemption_date: Optional[datetime] = None
    travel_date: Optional[datetime] = None


class RedemptionUpdate(BaseModel):
    reward_currency_id: Optional[int] = None
    points_redeemed: Optional[float] = None
    redemption_type: Optional[str] = None
    description: Optional[str] = None
    flight_route: Optional[str] = None
    cabin_class: Optional[str] = None
    airline: Optional[str] = None
    booking_reference: Optional[str] = None
    passengers: Optional[int] = None
    cash_value: Optional[float] = None
    cash_value_currency: Optional[str] = None
    redemption_date: Optional[datetime] = None
    travel_date: Optional[datetime] = None


class RedemptionOut(ORMModel):
    id: int
    reward_currency_id: int
    points_redeemed: float
    redemption_type: str
    description: str
    flight_route: Optional[str] = None
    cabin_class: Optional[str] = None
    airline: Optional[str] = None
    cash_value: Optional[float] = None
    cash_value_currency: Optional[str] = None
    redemption_date: datetime
    cpp: Optional[float] = None


class TransferIn(BaseModel):
    source_currency_id: int
    source_amount: float
    destination_currency_id: int
    destination_amount: float
    conversion_rate: Optional[float] = None
    transfer_bonus_rate: Optional[float] = None
    transfer_fee: Optional[float] = None
    transfer_fee_currency: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    transfer_date: Optional[datetime] = None


class TransferUpdate(BaseModel):
    source_currency_id: Optional[int] = None
    source_amount: Optional[float] = None
    destination_currency_id: Optional[int] = None
    destination_amount: Optional[float] = None
    conversion_rate: Optional[float] = None
    transfer_bonus_rate: Optional[float] = None
    transfer_fee: Optional[float] = None
    transfer_fee_currency: Optional[str] = None
    reference_number: Optional[str] = None
    notes: Optional[str] = None
    transfer_date: Optional[datetime] = None


class TransferOut(ORMModel):
    id: int
    source_currency_id: int
    source_amount: float
    destination_currency_id: int
    destination_amount: float
    conversion_rate: float
    transfer_fee: Optional[float] = None
    transfer_date: datetime


# -------------------------------------------------------------------
# Insights
# -------------------------------------------------------------------

class InsightIn(BaseModel):
    category: str
    title: str
    message_template: str
    condition_type: str
    condition_params: dict = {}
    icon: Optional[str] = None
    severity: str = "info"
    action_text: Optional[str] = None
    action_type: Optional[str] = None
    action_target: Optional[str] = None
    priority: int = 50
    is_active: bool = True
    is_dismissible: bool = True
    cooldown_days: Optional[int] = 7

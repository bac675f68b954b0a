# routes_points.py
"""
Routes for the points ledger: balances, adjustments, redemptions, transfers
and the combined activity feed.
"""

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.deps import get_db
from app.schemas import (
    AdjustmentIn,
    AdjustmentOut,
    AdjustmentUpdate,
    PointsBalanceOut,
    RedemptionIn,
    RedemptionOut,
    RedemptionUpdate,
    StartingBalanceIn,
    TransferIn,
    TransferOut,
    TransferUpdate,
)
from app.services.points_ledger import ACTIVITY_TYPES, PointsLedger, calculate_cpp, cpp_rating

router = APIRouter(prefix="/points")


def get_ledger(db: Session = Depends(get_db)) -> PointsLedger:
    return PointsLedger(db)


# -------------------------------------------------------------------
# Balances
# -------------------------------------------------------------------

@router.get("/balances", response_model=List[PointsBalanceOut])
def list_balances(ledger: PointsLedger = Depends(get_ledger)):
    return ledger.get_balances()


@router.put("/balances", response_model=PointsBalanceOut)
def set_starting_balance(payload: StartingBalanceIn, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.set_starting_balance(**payload.model_dump())


@router.get("/balances/{reward_currency_id}/breakdown")
def balance_breakdown(
    reward_currency_id: int,
    payment_method_id: int | None = Query(None),
    ledger: PointsLedger = Depends(get_ledger),
):
    return ledger.calculate_balance_breakdown(reward_currency_id, payment_method_id)


@router.post("/balances/{reward_currency_id}/recalculate", response_model=List[PointsBalanceOut])
def recalculate_balance(reward_currency_id: int, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.recalculate_balance(reward_currency_id)


# -------------------------------------------------------------------
# Adjustments
# -------------------------------------------------------------------

@router.get("/adjustments", response_model=List[AdjustmentOut])
def list_adjustments(
    reward_currency_id: int | None = Query(None),
    pending: bool = Query(False),
    ledger: PointsLedger = Depends(get_ledger),
):
    if pending:
        return ledger.get_pending_adjustments(reward_currency_id)
    return ledger.get_adjustments(reward_currency_id)


@router.post("/adjustments", response_model=AdjustmentOut, status_code=201)
def add_adjustment(payload: AdjustmentIn, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.add_adjustment(**payload.model_dump())


@router.patch("/adjustments/{adjustment_id}", response_model=AdjustmentOut)
def update_adjustment(adjustment_id: int, payload: AdjustmentUpdate, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.update_adjustment(adjustment_id, **payload.model_dump(exclude_unset=True))


@router.delete("/adjustments/{adjustment_id}", status_code=204)
def delete_adjustment(adjustment_id: int, ledger: PointsLedger = Depends(get_ledger)):
    ledger.delete_adjustment(adjustment_id)


# -------------------------------------------------------------------
# Redemptions
# -------------------------------------------------------------------

@router.get("/redemptions", response_model=List[RedemptionOut])
def list_redemptions(reward_currency_id: int | None = Query(None), ledger: PointsLedger = Depends(get_ledger)):
    return ledger.get_redemptions(reward_currency_id)


@router.post("/redemptions", response_model=RedemptionOut, status_code=201)
def add_redemption(payload: RedemptionIn, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.add_redemption(**payload.model_dump())


@router.patch("/redemptions/{redemption_id}", response_model=RedemptionOut)
def update_redemption(redemption_id: int, payload: RedemptionUpdate, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.update_redemption(redemption_id, **payload.model_dump(exclude_unset=True))


@router.delete("/redemptions/{redemption_id}", status_code=204)
def delete_redemption(redemption_id: int, ledger: PointsLedger = Depends(get_ledger)):
    ledger.delete_redemption(redemption_id)


# -------------------------------------------------------------------
# Transfers
# -------------------------------------------------------------------

@router.get("/transfers", response_model=List[TransferOut])
def list_transfers(reward_currency_id: int | None = Query(None), ledger: PointsLedger = Depends(get_ledger)):
    return ledger.get_transfers(reward_currency_id)


@router.post("/transfers", response_model=TransferOut, status_code=201)
def add_transfer(payload: TransferIn, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.add_transfer(**payload.model_dump())


@router.patch("/transfers/{transfer_id}", response_model=TransferOut)
def update_transfer(transfer_id: int, payload: TransferUpdate, ledger: PointsLedger = Depends(get_ledger)):
    return ledger.update_transfer(transfer_id, **payload.model_dump(exclude_unset=True))


@router.delete("/transfers/{transfer_id}", status_code=204)
def delete_transfer(transfer_id: int, ledger: PointsLedger = Depends(get_ledger)):
    ledger.delete_transfer(transfer_id)


# -------------------------------------------------------------------
# Activity & CPP
# -------------------------------------------------------------------

_ACTIVITY_SCHEMAS = {
    "adjustment": AdjustmentOut,
    "redemption": RedemptionOut,
    "transfer": TransferOut,
}


@router.get("/activity")
def activity_feed(
    types: List[str] = Query(default=list(ACTIVITY_TYPES)),
    reward_currency_id: int | None = Query(None),
    start: datetime | None = Query(None),
    end: datetime | None = Query(None),
    offset: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    ledger: PointsLedger = Depends(get_ledger),
):
    items = ledger.get_activity_feed(types, reward_currency_id, start, end, offset, limit)
    return [
        {
            "type": item["type"],
            "date": item["date"],
            "data": _ACTIVITY_SCHEMAS[item["type"]].model_validate(item["data"]),
        }
        for item in items
    ]


@router.get("/cpp")
def cpp(
    points_redeemed: float | None = Query(None),
    cash_value: float | None = Query(None),
    reward_currency_id: int | None = Query(None),
    ledger: PointsLedger = Depends(get_ledger),
):
    """One redemption's cents per point when both values are given, else the average."""
    if points_redeemed is not None and cash_value is not None:
        value = calculate_cpp(points_redeemed, cash_value)
    else:
        value = ledger.get_average_cpp(reward_currency_id)
    return {"cpp": value, "rating": cpp_rating(value)}

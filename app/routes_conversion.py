# routes_conversion.py
"""
Routes for reward currencies and the conversion rates between them.
"""

from typing import List

from fastapi import APIRouter, Depends, Query

from app.deps import get_conversion_service
from app.errors import NotFoundError
from app.schemas import ConversionRateIn, ConversionRateOut, RewardCurrencyIn, RewardCurrencyOut

router = APIRouter(prefix="/conversion")


# -------------------------------------------------------------------
# Currencies
# -------------------------------------------------------------------

@router.get("/currencies", response_model=List[RewardCurrencyOut])
def list_currencies(
    kind: str = Query("all", pattern="^(all|transferrable|destination)$"),
    service=Depends(get_conversion_service),
):
    if kind == "transferrable":
        return service.get_transferrable_currencies()
    if kind == "destination":
        return service.get_destination_currencies()
    return service.get_reward_currencies()


@router.get("/currencies/{currency_id}", response_model=RewardCurrencyOut)
def get_currency(currency_id: int, service=Depends(get_conversion_service)):
    currency = service.get_reward_currency_by_id(currency_id)
    if currency is None:
        raise NotFoundError(f"Reward currency {currency_id} not found")
    return currency


@router.post("/currencies", response_model=RewardCurrencyOut, status_code=201)
def create_currency(payload: RewardCurrencyIn, service=Depends(get_conversion_service)):
    return service.create_reward_currency(**payload.model_dump())


@router.delete("/currencies/{currency_id}", status_code=204)
def delete_currency(currency_id: int, service=Depends(get_conversion_service)):
    service.delete_reward_currency(currency_id)


# -------------------------------------------------------------------
# Rates
# -------------------------------------------------------------------

@router.get("/rates", response_model=List[ConversionRateOut])
def list_rates(source_currency_id: int | None = Query(None), service=Depends(get_conversion_service)):
    if source_currency_id is not None:
        return service.get_conversion_rates_for_source(source_currency_id)
    return service.get_all_conversion_rates()


@router.get("/convert")
def convert(
    points: float = Query(...),
    source_currency_id: int = Query(...),
    target_currency_id: int = Query(...),
    service=Depends(get_conversion_service),
):
    miles, rate = service.convert_to_miles(points, source_currency_id, target_currency_id)
    return {"points": points, "miles": miles, "rate": rate}


@router.put("/rates", status_code=204)
def upsert_rate(payload: ConversionRateIn, service=Depends(get_conversion_service)):
    if payload.minimum_transfer is None and payload.transfer_increment is None:
        service.upsert_conversion_rate(payload.source_currency_id, payload.target_currency_id, payload.rate)
    else:
        service.batch_upsert_conversion_rates([payload.model_dump()])


@router.put("/rates/batch", status_code=204)
def batch_upsert_rates(payload: List[ConversionRateIn], service=Depends(get_conversion_service)):
    service.batch_upsert_conversion_rates([p.model_dump() for p in payload])


@router.delete("/rates", status_code=204)
def delete_rate(
    source_currency_id: int = Query(...),
    target_currency_id: int | None = Query(None),
    service=Depends(get_conversion_service),
):
    """Without a target every rate of the source currency is removed."""
    if target_currency_id is None:
        service.delete_conversion_rates_for_source(source_currency_id)
    else:
        service.delete_conversion_rate(source_currency_id, target_currency_id)

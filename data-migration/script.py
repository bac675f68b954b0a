"""
This script seeds reward currencies and the conversion rates between them
from two CSV tables into the database.

  reward_currencies.csv  code, display_name, issuer, is_transferrable
  conversion_rates.csv   source_code, target_code, rate,
                         minimum_transfer, transfer_increment

Currencies are upserted by code. Rates go through ConversionService, so they
are validated (positive rate and transfer limits) before anything is written.

Purpose:
- Load bank points -> airline miles rates published by the issuers
- Serve as a repeatable seed step during development
"""


from __future__ import annotations

from pathlib import Path
import pandas as pd

from db import SessionLocal, engine, Base
from models import RewardCurrency
from app.services.conversion import ConversionService


SEED_DIR = Path("data-migration/seed")

TRUTHY = {"1", "true", "yes", "y"}


def _none_if_nan(x):
    if pd.isna(x):
        return None
    s = str(x).strip()
    return None if s == "" or s.lower() == "nan" else s


def _float_or_none(x):
    s = _none_if_nan(x)
    return None if s is None else float(s.replace(",", "."))


def _read(path: Path, required: set[str]) -> pd.DataFrame:
    df = pd.read_csv(path)

    # normalize headers
    df.columns = df.columns.str.strip().str.lower()

    missing = required - set(df.columns)
    if missing:
        raise ValueError(f"{path.name}: missing required columns: {sorted(missing)}")

    # drop fully empty rows
    return df.dropna(how="all").copy()


def import_reward_currencies(path: Path) -> dict[str, int]:
    """Upserts currencies by code; returns code -> id."""
    df = _read(path, {"code", "display_name"})
    if "issuer" not in df.columns:
        df["issuer"] = None
    if "is_transferrable" not in df.columns:
        df["is_transferrable"] = "true"

    session = SessionLocal()
    try:
        for row in df.itertuples(index=False):
            code = _none_if_nan(row.code)
            if code is None:
                continue

            currency = session.query(RewardCurrency).filter(RewardCurrency.code == code).first()
            if currency is None:
                currency = RewardCurrency(code=code)
                session.add(currency)

            currency.display_name = _none_if_nan(row.display_name) or code
            currency.issuer = _none_if_nan(row.issuer)
            currency.is_transferrable = str(row.is_transferrable).strip().lower() in TRUTHY

        session.commit()
        ids = {c.code: c.id for c in session.query(RewardCurrency).all()}
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()

    print(f"Imported {len(df)} reward currencies from {path.name}")
    return ids


def import_conversion_rates(path: Path, currency_ids: dict[str, int]) -> int:
    df = _read(path, {"source_code", "target_code", "rate"})
    for column in ("minimum_transfer", "transfer_increment"):
        if column not in df.columns:
            df[column] = None

    updates = []
    for row in df.itertuples(index=False):
        source, target = _none_if_nan(row.source_code), _none_if_nan(row.target_code)
        if source not in currency_ids or target not in currency_ids:
            raise ValueError(f"{path.name}: unknown currency in {source} -> {target}")

        updates.append(
            {
                "source_currency_id": currency_ids[source],
                "target_currency_id": currency_ids[target],
                "rate": _float_or_none(row.rate),
                "minimum_transfer": _float_or_none(row.minimum_transfer),
                "transfer_increment": _float_or_none(row.transfer_increment),
            }
        )

    ConversionService(SessionLocal).batch_upsert_conversion_rates(updates)
    print(f"Imported {len(updates)} conversion rates from {path.name}")
    return len(updates)


def seed(folder: Path = SEED_DIR):
    folder = Path(folder)
    currencies_csv = folder / "reward_currencies.csv"
    rates_csv = folder / "conversion_rates.csv"
    if not currencies_csv.exists():
        raise FileNotFoundError(f"No reward_currencies.csv in: {folder.resolve()}")

    Base.metadata.create_all(bind=engine)

    currency_ids = import_reward_currencies(currencies_csv)
    if rates_csv.exists():
        import_conversion_rates(rates_csv, currency_ids)

    print("\nDONE.")


if __name__ == "__main__":
    seed()

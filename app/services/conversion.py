# app/services/conversion.py
#
# Conversion Service
# Reward currencies and the directed conversion-rate graph between them
# (bank points -> airline miles). Rate lookups go through an in-process cache
# with a fixed TTL; any write clears the whole cache.

import logging
import time
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.config import CONVERSION_CACHE_TTL_SECONDS
from app.errors import InvalidConversionRateError, NotFoundError, ReferencedRowError, is_foreign_key_violation
from models import ConversionRate, RewardCurrency

logger = logging.getLogger(__name__)

# Cached marker for "no rate for this pair"
_MISSING = 0.0


class ConversionService:
    def __init__(self, session_factory, ttl_seconds: int = CONVERSION_CACHE_TTL_SECONDS):
        self.session_factory = session_factory
        self.ttl_seconds = ttl_seconds
        self._rates: dict[str, float] = {}
        self._cache_timestamp = 0.0

    # ---- cache ----

    @staticmethod
    def _cache_key(source_id, target_id) -> str:
        return f"id:{source_id}:{target_id}"

    def _cache_valid(self) -> bool:
        return time.monotonic() - self._cache_timestamp < self.ttl_seconds

    def _remember(self, key: str, rate: float) -> None:
        if not self._cache_valid():
            self._rates.clear()
            self._cache_timestamp = time.monotonic()
        self._rates[key] = rate

    def clear_cache(self) -> None:
        self._rates.clear()
        self._cache_timestamp = 0.0

    # ---- currencies ----

    def _currencies(self, *criteria) -> List[RewardCurrency]:
        db = self.session_factory()
        try:
            return (
                db.query(RewardCurrency)
                .filter(*criteria)
                .order_by(RewardCurrency.display_name)
                .all()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching reward currencies")
            return []
        finally:
            db.close()

    def get_reward_currencies(self) -> List[RewardCurrency]:
        return self._currencies()

    def get_transferrable_currencies(self) -> List[RewardCurrency]:
        return self._currencies(RewardCurrency.is_transferrable.is_(True))

    def get_destination_currencies(self) -> List[RewardCurrency]:
        """Non-transferrable endpoints (airline / hotel programs)."""
        return self._currencies(RewardCurrency.is_transferrable.is_(False))

    def get_reward_currency_by_id(self, currency_id) -> Optional[RewardCurrency]:
        db = self.session_factory()
        try:
            return db.get(RewardCurrency, currency_id)
        except SQLAlchemyError:
            logger.exception("Error fetching reward currency %s", currency_id)
            return None
        finally:
            db.close()

    def get_destination_currency_by_id(self, currency_id) -> Optional[RewardCurrency]:
        currency = self.get_reward_currency_by_id(currency_id)
        if currency is None or currency.is_transferrable:
            return None
        return currency

    def get_reward_currency_by_issuer(self, issuer: str) -> Optional[RewardCurrency]:
        if not issuer:
            return None
        db = self.session_factory()
        try:
            return (
                db.query(RewardCurrency)
                .filter(RewardCurrency.issuer.ilike(issuer))
                .order_by(RewardCurrency.id)
                .first()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching reward currency for issuer %s", issuer)
            return None
        finally:
            db.close()

    def create_reward_currency(self, code: str, display_name: str, issuer: str | None = None, is_transferrable: bool = True):
        db = self.session_factory()
        try:
            currency = RewardCurrency(
                code=code, display_name=display_name, issuer=issuer, is_transferrable=is_transferrable
            )
            db.add(currency)
            db.commit()
            db.refresh(currency)
            return currency
        finally:
            db.close()

    def delete_reward_currency(self, currency_id) -> None:
        db = self.session_factory()
        try:
            currency = db.get(RewardCurrency, currency_id)
            if currency is None:
                raise NotFoundError(f"Reward currency {currency_id} not found")
            db.delete(currency)
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            if is_foreign_key_violation(exc):
                raise ReferencedRowError(
                    "Reward currency is still used by cards, conversion rates or balances"
                ) from exc
            raise
        finally:
            db.close()
        self.clear_cache()

    # ---- rates ----

    def get_conversion_rate(self, source_id, target_id) -> Optional[float]:
        """Rate source -> target, or None when the pair has no rate."""
        if source_id == target_id:
            return 1.0

        key = self._cache_key(source_id, target_id)
        if self._cache_valid() and key in self._rates:
            cached = self._rates[key]
            return None if cached == _MISSING else cached

        db = self.session_factory()
        try:
            row = (
                db.query(ConversionRate)
                .filter(
                    ConversionRate.reward_currency_id == source_id,
                    ConversionRate.target_currency_id == target_id,
                )
                .first()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching conversion rate %s -> %s", source_id, target_id)
            return None
        finally:
            db.close()

        if row is None:
            self._remember(key, _MISSING)
            return None

        self._remember(key, row.conversion_rate)
        return row.conversion_rate

    def convert_to_miles(self, points: float, source_id, target_id):
        """Returns (miles, rate); (None, None) when no rate exists."""
        rate = self.get_conversion_rate(source_id, target_id)
        if rate is None:
            return None, None
        return points * rate, rate

    def get_all_conversion_rates(self) -> List[ConversionRate]:
        db = self.session_factory()
        try:
            return (
                db.query(ConversionRate)
                .filter(
                    ConversionRate.reward_currency_id.isnot(None),
                    ConversionRate.target_currency_id.isnot(None),
                )
                .all()
            )
        except SQLAlchemyError:
            logger.exception("Error fetching conversion rates")
            return []
        finally:
            db.close()

    def get_conversion_rates_for_source(self, source_id) -> List[ConversionRate]:
        return [r for r in self.get_all_conversion_rates() if r.reward_currency_id == source_id]

    @staticmethod
    def _upsert(db, source_id, target_id, rate, minimum_transfer=None, transfer_increment=None, partial=False):
        row = (
            db.query(ConversionRate)
            .filter(
                ConversionRate.reward_currency_id == source_id,
                ConversionRate.target_currency_id == target_id,
            )
            .first()
        )
        if row is None:
            row = ConversionRate(reward_currency_id=source_id, target_currency_id=target_id)
            db.add(row)
        row.conversion_rate = rate
        if not partial:
            row.minimum_transfer = minimum_transfer
            row.transfer_increment = transfer_increment
        return row

    def upsert_conversion_rate(self, source_id, target_id, rate: float) -> None:
        """Insert or update one pair; transfer limits of an existing row are kept."""
        if rate is None or rate <= 0:
            raise InvalidConversionRateError("Conversion rate must be a positive number")

        db = self.session_factory()
        try:
            self._upsert(db, source_id, target_id, rate, partial=True)
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to upsert conversion rate %s -> %s", source_id, target_id)
            raise
        finally:
            db.close()
        self.clear_cache()

    def batch_upsert_conversion_rates(self, updates: Iterable[dict]) -> None:
        """
        updates: dicts with source_currency_id, target_currency_id, rate and
        optional minimum_transfer / transfer_increment. All are validated
        before anything is written; the batch is one transaction.
        """
        updates = list(updates)
        for update in updates:
            if update.get("rate") is None or update["rate"] <= 0:
                raise InvalidConversionRateError("All conversion rates must be positive numbers")
            minimum = update.get("minimum_transfer")
            if minimum is not None and minimum <= 0:
                raise InvalidConversionRateError("Minimum transfer must be a positive number")
            increment = update.get("transfer_increment")
            if increment is not None and increment <= 0:
                raise InvalidConversionRateError("Transfer increment must be a positive number")

        db = self.session_factory()
        try:
            for update in updates:
                self._upsert(
                    db,
                    update["source_currency_id"],
                    update["target_currency_id"],
                    update["rate"],
                    update.get("minimum_transfer"),
                    update.get("transfer_increment"),
                )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to batch upsert conversion rates")
            raise
        finally:
            db.close()
        self.clear_cache()

    def delete_conversion_rate(self, source_id, target_id) -> None:
        db = self.session_factory()
        try:
            db.query(ConversionRate).filter(
                ConversionRate.reward_currency_id == source_id,
                ConversionRate.target_currency_id == target_id,
            ).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
        self.clear_cache()

    def delete_conversion_rates_for_source(self, source_id) -> None:
        db = self.session_factory()
        try:
            db.query(ConversionRate).filter(
                ConversionRate.reward_currency_id == source_id,
            ).delete(synchronize_session=False)
            db.commit()
        finally:
            db.close()
        self.clear_cache()

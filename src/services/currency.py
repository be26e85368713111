"""
Currency normalization with a two-tier rate cache.

Lookup order for every key: in-process tier, then the database tier, then
the external provider. If the provider fails, the bundled USD table is
served instead and written to both tiers like a live answer, so an outage
costs one failed call per TTL window rather than one per request.

Results carry an is_estimated flag whenever the static table was involved.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from functools import lru_cache
from typing import Awaitable, Callable, Dict, Mapping, Optional

from sqlalchemy import delete
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.models import CurrencyCacheEntry, User
from src.services.commission import quantize_money
from src.services.errors import (
    ExternalUnavailableError,
    UnsupportedCurrencyError,
    ValidationError,
)
from src.services.fallback_rates import FALLBACK_BASE, USD_RATES, rebase
from src.services.rate_source import ExchangeRateClient

logger = logging.getLogger(__name__)

ONE = Decimal("1")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def normalize_code(code) -> str:
    """Upper-case a currency code and check it looks like ISO 4217."""
    if not isinstance(code, str):
        raise ValidationError(f"Invalid currency code: {code!r}", field="currency")
    code = code.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValidationError(f"Invalid currency code: {code!r}", field="currency")
    return code


@dataclass(frozen=True)
class CacheEntry:
    payload: dict
    fetched_at: datetime
    is_fallback: bool = False

    def is_fresh(self, ttl: timedelta, now: Optional[datetime] = None) -> bool:
        now = now or _utcnow()
        return now - _aware(self.fetched_at) < ttl


@dataclass(frozen=True)
class ExchangeRateSet:
    """Units of each currency per 1 `base`."""

    base: str
    rates: Mapping[str, Decimal]
    fetched_at: datetime
    is_fallback: bool = False

    def to_entry(self) -> CacheEntry:
        return CacheEntry(
            payload={
                "base": self.base,
                "rates": {code: str(rate) for code, rate in self.rates.items()},
            },
            fetched_at=self.fetched_at,
            is_fallback=self.is_fallback,
        )

    @classmethod
    def from_entry(cls, base: str, entry: CacheEntry) -> "ExchangeRateSet":
        return cls(
            base=base,
            rates={code: Decimal(rate) for code, rate in entry.payload["rates"].items()},
            fetched_at=_aware(entry.fetched_at),
            is_fallback=entry.is_fallback,
        )


@dataclass(frozen=True)
class ConversionResult:
    amount: Decimal
    from_currency: str
    to_currency: str
    is_estimated: bool = False

    def to_entry(self, fetched_at: datetime) -> CacheEntry:
        return CacheEntry(
            payload={
                "amount": str(self.amount),
                "from": self.from_currency,
                "to": self.to_currency,
                "is_estimated": self.is_estimated,
            },
            fetched_at=fetched_at,
            is_fallback=self.is_estimated,
        )

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "ConversionResult":
        payload = entry.payload
        return cls(
            amount=Decimal(payload["amount"]),
            from_currency=payload["from"],
            to_currency=payload["to"],
            is_estimated=bool(payload.get("is_estimated", entry.is_fallback)),
        )


@dataclass(frozen=True)
class RateQuote:
    """Multiplier from one currency to another."""

    factor: Decimal
    is_estimated: bool = False


class MemoryCacheTier:
    """
    Near tier: an in-process dict.

    Writers build a new dict and swap the reference, so readers never see a
    dict being mutated.
    """

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}

    async def get(self, key: str) -> Optional[CacheEntry]:
        return self._entries.get(key)

    async def set(self, key: str, entry: CacheEntry) -> None:
        entries = dict(self._entries)
        entries[key] = entry
        self._entries = entries

    async def purge_older_than(self, cutoff: datetime) -> int:
        entries = {
            key: entry for key, entry in self._entries.items()
            if _aware(entry.fetched_at) > cutoff
        }
        purged = len(self._entries) - len(entries)
        self._entries = entries
        return purged

    def clear(self) -> None:
        self._entries = {}

    def __len__(self) -> int:
        return len(self._entries)


class DurableCacheTier:
    """Far tier: the currency_cache table, one short session per operation."""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        if session_factory is None:
            from src.db.session import AsyncSessionLocal
            session_factory = AsyncSessionLocal
        self._session_factory = session_factory

    async def get(self, key: str) -> Optional[CacheEntry]:
        async with self._session_factory() as db:
            row = await db.get(CurrencyCacheEntry, key)
            if not row:
                return None
            return CacheEntry(
                payload=row.payload,
                fetched_at=_aware(row.fetched_at),
                is_fallback=row.is_fallback,
            )

    async def set(self, key: str, entry: CacheEntry) -> None:
        async with self._session_factory() as db:
            await db.merge(
                CurrencyCacheEntry(
                    cache_key=key,
                    payload=entry.payload,
                    fetched_at=entry.fetched_at,
                    is_fallback=entry.is_fallback,
                )
            )
            await db.commit()

    async def purge_older_than(self, cutoff: datetime) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(CurrencyCacheEntry).where(CurrencyCacheEntry.fetched_at <= cutoff)
            )
            await db.commit()
            return result.rowcount or 0


class TieredCache:
    """
    One cache interface over a near and a far tier.

    Fresh far hits are promoted into the near tier. A failing far tier is
    logged and treated as a miss; it never fails the lookup.
    """

    def __init__(self, near: MemoryCacheTier, far: Optional[DurableCacheTier], ttl: timedelta):
        self.near = near
        self.far = far
        self.ttl = ttl

    async def get(self, key: str) -> Optional[CacheEntry]:
        now = _utcnow()
        entry = await self.near.get(key)
        if entry and entry.is_fresh(self.ttl, now):
            return entry

        if self.far is None:
            return None
        try:
            entry = await self.far.get(key)
        except SQLAlchemyError as e:
            logger.warning(f"Durable rate cache read failed for {key}: {e}")
            return None

        if entry and entry.is_fresh(self.ttl, now):
            await self.near.set(key, entry)
            return entry
        return None

    async def set(self, key: str, entry: CacheEntry) -> None:
        await self.near.set(key, entry)
        if self.far is None:
            return
        try:
            await self.far.set(key, entry)
        except SQLAlchemyError as e:
            logger.warning(f"Durable rate cache write failed for {key}: {e}")

    async def purge_expired(self) -> int:
        """Drop expired entries from both tiers. Returns how many were removed."""
        cutoff = _utcnow() - self.ttl
        purged = await self.near.purge_older_than(cutoff)
        if self.far is None:
            return purged
        try:
            purged += await self.far.purge_older_than(cutoff)
        except SQLAlchemyError as e:
            logger.warning(f"Durable rate cache purge failed: {e}")
        return purged


@dataclass
class CurrencyNormalizer:
    """
    Rates, conversions and pair quotes for any supported currency.

    Never raises ExternalUnavailableError. Unknown currency codes raise
    UnsupportedCurrencyError.
    """

    source: ExchangeRateClient = field(default_factory=ExchangeRateClient)
    cache: Optional[TieredCache] = None
    _inflight: Dict[str, "asyncio.Task"] = field(default_factory=dict, init=False, repr=False)

    def __post_init__(self):
        if self.cache is None:
            self.cache = TieredCache(
                near=MemoryCacheTier(),
                far=DurableCacheTier(),
                ttl=timedelta(days=settings.exchange_cache_ttl_days),
            )

    async def _coalesced(self, key: str, fetch: Callable[[], Awaitable]):
        """Run at most one fetch per key; concurrent callers await the same task."""
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(fetch())
            self._inflight[key] = task
            task.add_done_callback(lambda _: self._inflight.pop(key, None))
        # A cancelled caller must not cancel the fetch other callers wait on
        return await asyncio.shield(task)

    async def rates(self, base: str) -> ExchangeRateSet:
        base = normalize_code(base)
        key = f"rates:{base}"

        entry = await self.cache.get(key)
        if entry:
            return ExchangeRateSet.from_entry(base, entry)
        return await self._coalesced(key, lambda: self._load_rates(base))

    async def _load_rates(self, base: str) -> ExchangeRateSet:
        key = f"rates:{base}"
        entry = await self.cache.get(key)
        if entry:
            return ExchangeRateSet.from_entry(base, entry)

        try:
            table = await self.source.fetch_rates(base)
            rate_set = ExchangeRateSet(base=base, rates=table, fetched_at=_utcnow())
        except ExternalUnavailableError as e:
            rate_set = self._fallback_rates(base)
            logger.warning(f"Exchange rates for {base} unavailable ({e}), using bundled table")

        await self.cache.set(key, rate_set.to_entry())
        return rate_set

    def _fallback_rates(self, base: str) -> ExchangeRateSet:
        if base not in USD_RATES:
            raise UnsupportedCurrencyError(f"Unsupported currency: {base}", field="currency")
        return ExchangeRateSet(
            base=base,
            rates=rebase(base),
            fetched_at=_utcnow(),
            is_fallback=True,
        )

    async def refresh(self, base: str) -> ExchangeRateSet:
        """
        Fetch a live table now, ignoring the cache.

        If the provider is down, an existing cached table is kept; the
        bundled table is only written when nothing is cached.
        """
        base = normalize_code(base)
        key = f"rates:{base}"
        try:
            table = await self.source.fetch_rates(base)
        except ExternalUnavailableError as e:
            logger.warning(f"Rate refresh for {base} failed: {e}")
            return await self.rates(base)

        rate_set = ExchangeRateSet(base=base, rates=table, fetched_at=_utcnow())
        await self.cache.set(key, rate_set.to_entry())
        return rate_set

    async def convert(self, amount, from_currency: str, to_currency: str = "USD") -> ConversionResult:
        """
        Convert an amount, rounded half-up to cents.

        Same inputs within the TTL return the cached result unchanged.
        """
        try:
            amount = amount if isinstance(amount, Decimal) else Decimal(str(amount))
        except (InvalidOperation, ValueError, TypeError) as e:
            raise ValidationError(f"amount must be a number, got: {amount!r}", field="amount") from e
        if not amount.is_finite():
            raise ValidationError(f"amount must be a finite number, got: {amount!r}", field="amount")

        from_currency = normalize_code(from_currency)
        to_currency = normalize_code(to_currency)
        if from_currency == to_currency:
            return ConversionResult(quantize_money(amount), from_currency, to_currency)

        key = f"convert:{amount.normalize():f}:{from_currency}:{to_currency}"
        entry = await self.cache.get(key)
        if entry:
            return ConversionResult.from_entry(entry)
        return await self._coalesced(
            key, lambda: self._load_conversion(key, amount, from_currency, to_currency)
        )

    async def _load_conversion(
        self, key: str, amount: Decimal, from_currency: str, to_currency: str
    ) -> ConversionResult:
        entry = await self.cache.get(key)
        if entry:
            return ConversionResult.from_entry(entry)

        try:
            converted = await self.source.convert(amount, from_currency, to_currency)
            if not converted.is_finite():
                raise ExternalUnavailableError("Conversion API returned a non-finite result")
            result = ConversionResult(quantize_money(converted), from_currency, to_currency)
        except ExternalUnavailableError as e:
            logger.info(f"Direct conversion {from_currency}->{to_currency} failed ({e}), deriving via {FALLBACK_BASE}")
            quote = await self._cross_rate(from_currency, to_currency)
            result = ConversionResult(
                quantize_money(amount * quote.factor),
                from_currency,
                to_currency,
                is_estimated=quote.is_estimated,
            )

        await self.cache.set(key, result.to_entry(_utcnow()))
        return result

    async def rate(self, from_currency: str, to_currency: str) -> RateQuote:
        """Multiplier from one currency to another, derived through USD."""
        from_currency = normalize_code(from_currency)
        to_currency = normalize_code(to_currency)
        if from_currency == to_currency:
            return RateQuote(factor=ONE)
        return await self._cross_rate(from_currency, to_currency)

    async def _cross_rate(self, from_currency: str, to_currency: str) -> RateQuote:
        usd = await self.rates(FALLBACK_BASE)
        from_rate, from_estimated = self._usd_rate(usd, from_currency)
        to_rate, to_estimated = self._usd_rate(usd, to_currency)
        return RateQuote(
            factor=to_rate / from_rate,
            is_estimated=usd.is_fallback or from_estimated or to_estimated,
        )

    @staticmethod
    def _usd_rate(usd: ExchangeRateSet, code: str):
        rate = usd.rates.get(code)
        if rate is not None and rate > 0:
            return rate, False
        # Live table lacks the code: the bundled one may still have it
        if code in USD_RATES:
            return USD_RATES[code], True
        raise UnsupportedCurrencyError(f"Unsupported currency: {code}", field="currency")

    async def purge_expired(self) -> int:
        return await self.cache.purge_expired()


@lru_cache()
def get_currency_normalizer() -> CurrencyNormalizer:
    """Process-wide normalizer so the near tier is shared."""
    return CurrencyNormalizer()


async def get_user_base_currency(db: AsyncSession, user_id: Optional[int]) -> str:
    """User's preferred display currency, or the configured default."""
    if user_id is None:
        return settings.default_currency
    user = await db.get(User, user_id)
    if not user or not user.preferred_currency:
        return settings.default_currency
    return user.preferred_currency.upper()

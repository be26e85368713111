"""
Approved-only revenue and commission totals in a target currency.

Only approved conversions are ever summed. Amounts are grouped by source
currency first, so the normalizer is asked once per currency pair rather
than once per record.
"""

import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.models import ConversionRecord, ConversionStatus
from src.services.commission import quantize_money
from src.services.conversion_store import list_records
from src.services.currency import CurrencyNormalizer, RateQuote, normalize_code
from src.services.errors import UnsupportedCurrencyError, ValidationError
from src.services.fallback_rates import is_supported

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


@dataclass(frozen=True)
class Totals:
    revenue: Decimal
    commission: Decimal
    currency: str
    count: int
    is_estimated: bool = False

    def to_dict(self) -> dict:
        return {
            "revenue": str(self.revenue),
            "commission": str(self.commission),
            "currency": self.currency,
            "count": self.count,
            "is_estimated": self.is_estimated,
        }


@dataclass
class _Bucket:
    revenue: Decimal = ZERO
    commission: Decimal = ZERO
    count: int = 0


async def compute_totals(
    records: Iterable[ConversionRecord],
    target_currency: str,
    normalizer: CurrencyNormalizer,
    concurrency: Optional[int] = None,
) -> Totals:
    """
    Sum approved revenue and commission, converted into target_currency.

    Pair lookups run concurrently, bounded by `concurrency`. A pair whose
    lookup fails contributes its unconverted sums and marks the totals as
    estimated instead of failing the whole report.

    Raises:
        UnsupportedCurrencyError: unknown target currency
    """
    target = normalize_code(target_currency)
    if not is_supported(target):
        raise UnsupportedCurrencyError(f"Unsupported currency: {target}", field="currency")

    buckets: Dict[str, _Bucket] = defaultdict(_Bucket)
    for record in records:
        if record.status != ConversionStatus.APPROVED:
            continue
        bucket = buckets[(record.currency or settings.default_currency).upper()]
        bucket.revenue += Decimal(record.revenue_amount)
        bucket.commission += Decimal(record.commission_amount)
        bucket.count += 1

    if not buckets:
        return Totals(revenue=quantize_money(ZERO), commission=quantize_money(ZERO), currency=target, count=0)

    semaphore = asyncio.Semaphore(concurrency or settings.aggregation_concurrency)

    async def quote(source: str) -> Optional[RateQuote]:
        async with semaphore:
            try:
                return await normalizer.rate(source, target)
            except ValidationError:
                raise
            except Exception as e:
                logger.warning(f"Rate {source}->{target} failed, summing unconverted: {e}")
                return None

    sources = list(buckets)
    quotes = await asyncio.gather(*(quote(source) for source in sources))

    revenue = ZERO
    commission = ZERO
    count = 0
    estimated = False
    for source, rate_quote in zip(sources, quotes):
        bucket = buckets[source]
        count += bucket.count
        if rate_quote is None:
            revenue += bucket.revenue
            commission += bucket.commission
            estimated = True
            continue
        revenue += bucket.revenue * rate_quote.factor
        commission += bucket.commission * rate_quote.factor
        estimated = estimated or rate_quote.is_estimated

    return Totals(
        revenue=quantize_money(revenue),
        commission=quantize_money(commission),
        currency=target,
        count=count,
        is_estimated=estimated,
    )


async def approved_totals(
    db: AsyncSession,
    normalizer: CurrencyNormalizer,
    target_currency: str,
    rep_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Totals:
    """Load approved conversions (optionally per rep and date range) and total them."""
    records = await list_records(
        db,
        statuses=[ConversionStatus.APPROVED],
        rep_id=rep_id,
        start_date=start_date,
        end_date=end_date,
    )
    return await compute_totals(records, target_currency, normalizer)

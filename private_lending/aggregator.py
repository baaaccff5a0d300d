"""
Loan Aggregator Module

Portfolio totals for the dashboard: principal still outstanding and
principal recovered, expressed in the reporting currency.
"""

import asyncio
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Tuple

from .currency import ConversionResult, CurrencyNormalizer, RateSource, quantize_amount
from .loans import Loan, LoanStatus, OUTSTANDING_STATUSES
from .logging_config import get_logger

logger = get_logger("lending.aggregator")

ZERO = Decimal('0')


@dataclass
class CurrencyBucket:
    """Nominal sums for one currency"""
    currency: str
    active_sum: Decimal = ZERO
    paid_sum: Decimal = ZERO


@dataclass
class PortfolioTotals:
    """Dashboard totals in the reporting currency"""
    outstanding: Decimal
    recovered: Decimal
    currency: str
    estimated: bool = False
    estimated_currencies: List[str] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return self.outstanding + self.recovered

    def to_dict(self) -> dict:
        """Amounts rounded to the reporting currency's display precision"""
        return {
            'outstanding': str(quantize_amount(self.outstanding, self.currency)),
            'recovered': str(quantize_amount(self.recovered, self.currency)),
            'total': str(quantize_amount(self.total, self.currency)),
            'currency': self.currency,
            'estimated': self.estimated,
            'estimated_currencies': self.estimated_currencies
        }


def bucket_by_currency(loans: Iterable[Loan]) -> Dict[str, CurrencyBucket]:
    """
    Sum nominal principal per currency.

    Outstanding statuses go to the active sum, paid loans to the paid sum;
    loans still awaiting the borrower's signature are not counted.
    """
    buckets: Dict[str, CurrencyBucket] = {}
    for loan in loans:
        bucket = buckets.get(loan.currency)
        if bucket is None:
            bucket = buckets[loan.currency] = CurrencyBucket(loan.currency)
        if loan.status in OUTSTANDING_STATUSES:
            bucket.active_sum += loan.amount
        elif loan.status == LoanStatus.PAID:
            bucket.paid_sum += loan.amount
    return buckets


class LoanAggregator:
    """Converts per-currency buckets concurrently and reports totals atomically"""

    def __init__(self, normalizer: CurrencyNormalizer):
        self.normalizer = normalizer

    async def aggregate(self, loans: Iterable[Loan]) -> PortfolioTotals:
        """
        Compute outstanding and recovered principal in the reporting currency.

        Every conversion is awaited before totals are built, so callers never
        see a partial result.
        """
        buckets = bucket_by_currency(loans)

        jobs: List[Tuple[str, str, Decimal]] = []
        for bucket in buckets.values():
            if bucket.active_sum > 0:
                jobs.append(('outstanding', bucket.currency, bucket.active_sum))
            if bucket.paid_sum > 0:
                jobs.append(('recovered', bucket.currency, bucket.paid_sum))

        results = await asyncio.gather(
            *(self.normalizer.to_reporting_currency(amount, currency) for _, currency, amount in jobs),
            return_exceptions=True
        )

        sums = defaultdict(lambda: ZERO)
        estimated_currencies = set()
        for (slot, currency, amount), result in zip(jobs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.error(f"Conversion of {amount} {currency} failed, counting at 1.0: {result}")
                result = ConversionResult(amount, self.normalizer.reporting_currency, RateSource.UNKNOWN)
            sums[slot] += result.amount
            if result.estimated:
                estimated_currencies.add(currency)

        return PortfolioTotals(
            outstanding=sums['outstanding'],
            recovered=sums['recovered'],
            currency=self.normalizer.reporting_currency,
            estimated=bool(estimated_currencies),
            estimated_currencies=sorted(estimated_currencies)
        )

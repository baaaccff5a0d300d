"""
Currency Normalizer Module

Converts sums in arbitrary currencies to the reporting currency through an
external rate service, degrading to a static table of approximate rates when
the service is unreachable. NEVER uses float for monetary values.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, getcontext
from dataclasses import dataclass
from typing import Dict, Optional
import re

import httpx

from .exceptions import ExternalServiceUnavailable, InvalidInputError
from .logging_config import get_logger

# Set global decimal context for financial precision
getcontext().prec = 28

logger = get_logger("lending.currency")

# Approximate EUR value of one unit, not live
DEFAULT_FALLBACK_RATES: Dict[str, Decimal] = {
    "USD": Decimal("0.92"),
    "XAF": Decimal("0.0015"),
    "CAD": Decimal("0.68"),
    "CHF": Decimal("1.04"),
    "GBP": Decimal("1.17"),
}

# Zero-decimal currencies; everything else rounds to cents
CURRENCY_PRECISION: Dict[str, int] = {
    "JPY": 0,
    "XAF": 0,
    "XOF": 0,
}


class RateSource:
    """Where a converted amount came from"""
    IDENTITY = "identity"
    LIVE = "live"
    FALLBACK = "fallback"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ConversionResult:
    """Converted amount in the reporting currency"""
    amount: Decimal
    currency: str
    rate_source: str

    @property
    def estimated(self) -> bool:
        """True when the amount comes from the static table or the identity guess"""
        return self.rate_source in (RateSource.FALLBACK, RateSource.UNKNOWN)


def normalize_currency_code(code: str) -> str:
    """Upper-case and strip a currency code; unknown codes are allowed"""
    if not code or not isinstance(code, str) or not code.strip():
        raise InvalidInputError("Currency code must be a non-empty string")
    return code.strip().upper()


class CurrencyNormalizer:
    """Best-effort conversion to the reporting currency"""

    def __init__(
        self,
        reporting_currency: str = "EUR",
        base_url: str = "https://api.frankfurter.app",
        timeout: float = 3.0,
        fallback_rates: Optional[Dict[str, Decimal]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.reporting_currency = normalize_currency_code(reporting_currency)
        self.base_url = base_url.rstrip("/") if base_url else ""
        self.timeout = timeout
        self.fallback_rates = {
            code.upper(): Decimal(str(rate))
            for code, rate in (fallback_rates if fallback_rates is not None else DEFAULT_FALLBACK_RATES).items()
        }
        self._transport = transport

    @property
    def enabled(self) -> bool:
        """Whether live lookups are attempted at all"""
        return bool(self.base_url)

    async def to_reporting_currency(self, amount: Decimal, from_currency: str) -> ConversionResult:
        """
        Convert an amount to the reporting currency.

        Never raises: any failure of the rate service resolves to the static
        table, and an unknown code resolves to a 1.0 rate flagged as unknown.
        """
        if not isinstance(amount, Decimal):
            amount = Decimal(str(amount))
        code = (from_currency or "").strip().upper()

        if code == self.reporting_currency:
            return ConversionResult(amount, self.reporting_currency, RateSource.IDENTITY)

        if self.enabled:
            try:
                converted = await self._fetch_conversion(amount, code)
                return ConversionResult(converted, self.reporting_currency, RateSource.LIVE)
            except ExternalServiceUnavailable as e:
                logger.warning(f"Rate lookup {code}->{self.reporting_currency} failed, using static table: {e}")

        return self.fallback_convert(amount, code)

    def fallback_convert(self, amount: Decimal, from_currency: str) -> ConversionResult:
        """Convert with the static table of approximate rates only"""
        code = (from_currency or "").strip().upper()
        if code == self.reporting_currency:
            return ConversionResult(amount, self.reporting_currency, RateSource.IDENTITY)

        rate = self.fallback_rates.get(code)
        if rate is None:
            logger.warning(
                f"No rate known for {code or '<empty>'}; counting {amount} at 1.0 as a degraded estimate"
            )
            return ConversionResult(amount, self.reporting_currency, RateSource.UNKNOWN)

        return ConversionResult(amount * rate, self.reporting_currency, RateSource.FALLBACK)

    async def _fetch_conversion(self, amount: Decimal, from_currency: str) -> Decimal:
        params = {
            "amount": str(amount),
            "from": from_currency,
            "to": self.reporting_currency
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.get(f"{self.base_url}/latest", params=params)
        except httpx.HTTPError as e:
            raise ExternalServiceUnavailable(f"Rate service unreachable: {e}") from e

        if response.status_code != 200:
            raise ExternalServiceUnavailable(f"Rate service returned {response.status_code}")

        try:
            value = response.json()["rates"][self.reporting_currency]
        except (ValueError, KeyError, TypeError) as e:
            raise ExternalServiceUnavailable(f"Malformed rate response: {e}") from e

        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ExternalServiceUnavailable(f"Malformed rate value: {value!r}")
        try:
            converted = Decimal(str(value))
        except InvalidOperation as e:
            raise ExternalServiceUnavailable(f"Malformed rate value: {value!r}") from e
        if not converted.is_finite():
            raise ExternalServiceUnavailable(f"Malformed rate value: {value!r}")
        return converted


def decimal_from_string(value: str) -> Decimal:
    """
    Safely convert string to Decimal, handling common formats

    Args:
        value: String representation of number ("1 000,50 €", "1,000.50")

    Returns:
        Decimal value

    Raises:
        InvalidInputError: If string cannot be converted to valid Decimal
    """
    if not value or not isinstance(value, str):
        raise InvalidInputError("Value must be a non-empty string")

    # Remove currency symbols and whitespace
    clean_value = re.sub(r'[^\d.,\-+]', '', value.strip())

    if ',' in clean_value and '.' in clean_value:
        # Both comma and dot - assume comma is thousands separator
        clean_value = clean_value.replace(',', '')
    elif ',' in clean_value and clean_value.count(',') == 1:
        parts = clean_value.split(',')
        if len(parts[1]) <= 2:  # Decimal separator (European format)
            clean_value = clean_value.replace(',', '.')
        else:
            clean_value = clean_value.replace(',', '')

    try:
        result = Decimal(clean_value)
    except InvalidOperation:
        raise InvalidInputError(f"Cannot convert '{value}' to Decimal")
    if not result.is_finite():
        raise InvalidInputError(f"Cannot convert '{value}' to Decimal")
    return result


def quantize_amount(value: Decimal, currency: str) -> Decimal:
    """Round to the currency's display precision"""
    precision = CURRENCY_PRECISION.get(currency.upper(), 2)
    return value.quantize(Decimal('0.1') ** precision, rounding=ROUND_HALF_UP)

"""
Currency normalization for monetary payload fields.

Amounts are stored in the tenant's base currency, rounded to cents. A user
who says "$120" gets the value converted before it reaches the ledger.
"""

from __future__ import annotations

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Mapping

from .exceptions import CurrencyConversionError
from .models import TransactionPayload

logger = logging.getLogger(__name__)

MONETARY_FIELDS: tuple[str, ...] = ("cost", "selling", "amount")

CENT = Decimal("0.01")

CURRENCY_SYMBOLS: dict[str, str] = {
    "GBP": "£",
    "USD": "$",
    "EUR": "€",
}

# (value, from_currency) → value in the base currency
Converter = Callable[[Decimal, str], Decimal]


def round_cents(value: Decimal | float | int) -> Decimal:
    """Round half away from zero to two decimal places."""
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def currency_symbol(code: str | None) -> str:
    if not code:
        return CURRENCY_SYMBOLS["GBP"]
    return CURRENCY_SYMBOLS.get(code.upper(), f"{code.upper()} ")


def normalize(
    payload: TransactionPayload,
    detected_currency: str | None,
    base_currency: str,
    converter: Converter | None = None,
) -> TransactionPayload:
    """Convert and round every monetary field present in ``payload``.

    Args:
        payload: Classifier output; never mutated.
        detected_currency: ISO code the user spoke in, or None for base.
        base_currency: The tenant's ledger currency.
        converter: Called only when the two currencies differ.

    Returns:
        A copy with converted, rounded money fields and ``currency`` set to
        the base currency.

    Raises:
        CurrencyConversionError: Conversion was needed but no converter was
            given, or the converter could not price the currency.
    """
    base = base_currency.upper()
    detected = (detected_currency or base).upper()

    updates: dict[str, object] = {}
    for field_name in MONETARY_FIELDS:
        value = getattr(payload, field_name)
        if value is None:
            continue
        if detected != base:
            if converter is None:
                raise CurrencyConversionError(
                    f"No converter available for {detected} → {base}",
                    details={"from": detected, "to": base},
                )
            converted = converter(Decimal(value), detected)
            logger.info("Converted %s %s %s → %s %s", field_name, value, detected, converted, base)
            value = converted
        updates[field_name] = round_cents(value)

    updates["currency"] = base
    return payload.model_copy(update=updates)


class RateTableConverter:
    """Converts through a rate table quoted against one reference currency.

    ``rates[code]`` is how many units of ``code`` one unit of the reference
    currency buys, so ``value / rates[from] * rates[base]`` prices ``value``
    in the base currency whatever the reference currency is.
    """

    def __init__(self, rates: Mapping[str, Decimal | float | str], base_currency: str = "GBP"):
        self.rates = {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}
        self.base_currency = base_currency.upper()

    def rate(self, from_currency: str, to_currency: str) -> Decimal:
        source = from_currency.upper()
        target = to_currency.upper()
        if source == target:
            return Decimal(1)
        missing = [code for code in (source, target) if code not in self.rates]
        if missing or self.rates[source] == 0:
            raise CurrencyConversionError(
                f"No exchange rate for {source} → {target}",
                details={"from": source, "to": target, "missing": missing},
            )
        return self.rates[target] / self.rates[source]

    def __call__(self, value: Decimal, from_currency: str) -> Decimal:
        return Decimal(value) * self.rate(from_currency, self.base_currency)

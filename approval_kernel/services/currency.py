"""
Module: approval_kernel.services.currency
Responsibility: Fixed-rate ``CurrencyConverter`` collaborator.  Rates are
    units of the base currency per unit of foreign currency.
Architecture position: Kernel > Services.  Live rate feeds sit behind the
    same protocol; the engine itself never converts.

Failure modes:
    - ConversionFailedError when either currency has no rate.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import ROUND_HALF_UP, Decimal

from approval_kernel.exceptions import ConversionFailedError

_CENT = Decimal("0.01")


class StaticRateConverter:
    """Converts through the base currency; results are rounded to cents."""

    def __init__(self, rates: Mapping[str, Decimal | str], base_currency: str = "USD") -> None:
        self.base_currency = base_currency.upper()
        self._rates = {code.upper(): Decimal(str(rate)) for code, rate in rates.items()}
        self._rates[self.base_currency] = Decimal("1")

    def convert(self, amount: Decimal, from_currency: str, to_currency: str) -> Decimal:
        source, target = from_currency.upper(), to_currency.upper()
        if source == target:
            return amount
        for code in (source, target):
            if code not in self._rates:
                raise ConversionFailedError(source, target, f"no rate for {code}")
        in_base = amount * self._rates[source]
        return (in_base / self._rates[target]).quantize(_CENT, rounding=ROUND_HALF_UP)

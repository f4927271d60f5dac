"""
Currency Resolver

Finds the multiplier from the buy currency to the reference currency.
"""

from decimal import Decimal

from ..models import CalculationContext, CurrencyResolution


class CurrencyResolver:
    """Resolves the buy → reference exchange rate from a rate table."""

    def resolve(self, ctx: CalculationContext) -> CurrencyResolution:
        """
        Lookup order:
        1. Same currency → 1
        2. Pair key "{buy}_{reference}"
        3. Bare buy currency code (rate against the table's base)

        A missing or non-positive rate is not fatal: the rate falls back to 1
        and a missing_currency_rate advisory is recorded.
        """
        buy = ctx.snapshot.buy_currency
        reference = ctx.reference_currency
        rate = self.lookup(buy, reference, ctx.rates)

        if rate is None:
            ctx.advise(
                "missing_currency_rate",
                f"No exchange rate found for {buy} → {reference}, using 1",
            )
            return CurrencyResolution(rate=Decimal("1"), conversion_available=False)

        ctx.logger.debug(f"Exchange rate {buy} → {reference}: {rate}")
        return CurrencyResolution(rate=rate, conversion_available=True)

    @staticmethod
    def lookup(buy: str, reference: str, rates: dict[str, Decimal]) -> Decimal | None:
        """Return the applicable rate, or None when the table has none."""
        if not buy or not reference or buy == reference:
            return Decimal("1")

        for key in (f"{buy}_{reference}", buy):
            rate = rates.get(key)
            if rate is not None and rate > 0:
                return rate
        return None

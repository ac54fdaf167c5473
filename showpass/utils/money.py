"""
Money helpers: minor-unit conversion and amount breakdowns.

Amounts are ``Decimal`` in major units everywhere except at the final call
into a provider, where ``to_minor_units`` converts with round-half-up.
"""
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")

# ISO 4217 exponents that differ from 2
_CURRENCY_EXPONENTS = {"JPY": 0, "KRW": 0, "VND": 0, "BHD": 3, "KWD": 3, "OMR": 3}


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        # go through repr so 29.99 stays 29.99
        return Decimal(repr(value))
    return Decimal(value)


def quantize(value: Number, exponent: int = 2) -> Decimal:
    return to_decimal(value).quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)


def currency_exponent(currency: Optional[str]) -> int:
    return _CURRENCY_EXPONENTS.get((currency or "").upper(), 2)


def to_minor_units(amount: Number, currency: str = "INR") -> int:
    exponent = currency_exponent(currency)
    scaled = to_decimal(amount).scaleb(exponent)
    return int(scaled.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str = "INR") -> Decimal:
    exponent = currency_exponent(currency)
    return Decimal(int(amount)).scaleb(-exponent).quantize(Decimal(1).scaleb(-exponent))


@dataclass(frozen=True)
class TaxPolicy:
    """Fee and tax rates applied to a sale. Stored on each booking for audit."""

    fee_percent: Decimal = Decimal("0")
    tax_percent: Decimal = Decimal("0")
    name: str = "custom"

    @classmethod
    def no_tax(cls) -> "TaxPolicy":
        return cls(Decimal("0"), Decimal("0"), "none")

    @classmethod
    def from_settings(cls) -> "TaxPolicy":
        from showpass.core.config import settings

        return cls(settings.BOOKING_FEE_PERCENT, settings.TAX_RATE_PERCENT, "default")

    def as_dict(self) -> dict:
        return {"name": self.name, "feePercent": str(self.fee_percent), "taxPercent": str(self.tax_percent)}


@dataclass(frozen=True)
class AmountBreakdown:
    base: Decimal
    fees: Decimal
    tax: Decimal
    discount: Decimal
    final: Decimal

    def as_dict(self) -> dict:
        return {k: str(v) for k, v in asdict(self).items()}


def compute_breakdown(base: Number, policy: TaxPolicy, discount: Number = 0) -> AmountBreakdown:
    """fees = base * fee%; tax = (base + fees - discount) * tax%; final = base + fees + tax - discount."""
    base = quantize(base)
    discount = quantize(discount)
    if discount < 0:
        raise ValueError("discount cannot be negative")
    fees = quantize(base * to_decimal(policy.fee_percent) / 100)
    if discount > base + fees:
        discount = base + fees
    taxable = base + fees - discount
    tax = quantize(taxable * to_decimal(policy.tax_percent) / 100)
    final = quantize(taxable + tax)
    return AmountBreakdown(base=base, fees=fees, tax=tax, discount=discount, final=final)

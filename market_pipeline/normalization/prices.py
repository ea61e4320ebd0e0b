"""
Price Normalization

Every price stored in the fact tables is an integer in the minor unit of its
currency (cents, pence). Providers disagree on what they send:

- StockX and eBay report MAJOR units, as numbers or strings ("145.00" is $145.00).
- Alias reports MINOR units as strings ("14500" is $145.00).

Each provider has exactly one convention. Applying the wrong one is off by 100x.
"""

from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Optional, Union

RawPrice = Union[int, float, str, Decimal, None]

_HUNDRED = Decimal(100)
_ONE = Decimal(1)


class PriceConvention(str, Enum):
    """How a provider encodes prices"""
    MAJOR_UNITS = "major_units"
    MINOR_UNITS = "minor_units"


PROVIDER_PRICE_CONVENTIONS = {
    "stockx": PriceConvention.MAJOR_UNITS,
    "ebay": PriceConvention.MAJOR_UNITS,
    "alias": PriceConvention.MINOR_UNITS,
}


def _to_decimal(raw: RawPrice) -> Optional[Decimal]:
    """Coerce a raw value to a finite Decimal, or None"""
    if raw is None or isinstance(raw, bool):
        return None

    if isinstance(raw, Decimal):
        value = raw
    elif isinstance(raw, (int, float)):
        # str() keeps the shortest repr, so 74.1 stays 74.1 and not 74.0999...
        try:
            value = Decimal(str(raw))
        except InvalidOperation:
            return None
    elif isinstance(raw, str):
        text = raw.strip()
        if not text:
            return None
        try:
            value = Decimal(text)
        except InvalidOperation:
            return None
    else:
        return None

    if not value.is_finite():
        return None
    return value


def round_half_up(value: Union[int, float, Decimal]) -> int:
    """Round to the nearest integer, halves away from zero"""
    return int(Decimal(str(value)).quantize(_ONE, rounding=ROUND_HALF_UP))


def parse_major_unit_price(raw: RawPrice) -> Optional[int]:
    """
    Parse a major-unit price into integer minor units.

    Examples:
        parse_major_unit_price("74.00") -> 7400
        parse_major_unit_price(145) -> 14500
        parse_major_unit_price("") -> None
    """
    value = _to_decimal(raw)
    if value is None:
        return None
    try:
        return int((value * _HUNDRED).quantize(_ONE, rounding=ROUND_HALF_UP))
    except InvalidOperation:
        return None


def parse_minor_unit_price(raw: RawPrice) -> Optional[int]:
    """
    Parse a minor-unit price. No scaling is applied.

    Fractional input is truncated toward zero.

    Examples:
        parse_minor_unit_price("14500") -> 14500
        parse_minor_unit_price("abc") -> None
    """
    value = _to_decimal(raw)
    if value is None:
        return None
    return int(value.to_integral_value(rounding=ROUND_DOWN))


def parse_price(raw: RawPrice, convention: PriceConvention) -> Optional[int]:
    """Parse a raw price with an explicit convention"""
    if convention == PriceConvention.MAJOR_UNITS:
        return parse_major_unit_price(raw)
    if convention == PriceConvention.MINOR_UNITS:
        return parse_minor_unit_price(raw)
    raise ValueError(f"Unsupported price convention: {convention}")


def price_convention_for(provider: str) -> PriceConvention:
    """Look up the price convention a provider uses"""
    try:
        return PROVIDER_PRICE_CONVENTIONS[provider]
    except KeyError:
        raise ValueError(f"No price convention registered for provider: {provider}") from None


def parse_provider_price(raw: RawPrice, provider: str) -> Optional[int]:
    """Parse a raw price using the provider's own convention"""
    return parse_price(raw, price_convention_for(provider))

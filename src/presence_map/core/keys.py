"""
Location key derivation.

Users are aggregated by city when the geocoder knows one, otherwise by their
coordinates rounded onto a fixed grid so that floating-point jitter does not
split one place into several markers.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Optional, Tuple

# 2 decimal places is roughly a 1.1 km grid
DEFAULT_PRECISION = 2

_MAX_DOUBLE_DIGITS = 330


def round_coordinate(value: float, precision: int = DEFAULT_PRECISION) -> Decimal:
    """
    Round a coordinate component half away from zero.

    Rounding happens on the shortest decimal representation of the float, so
    0.125 becomes 0.13 even though the nearest binary double is slightly below
    0.125.

    Args:
        value: Latitude or longitude in decimal degrees
        precision: Number of decimal places to keep

    Returns:
        The rounded value as a Decimal
    """
    quantum = Decimal(1).scaleb(-precision)
    with localcontext() as ctx:
        # Wide enough for any finite double
        ctx.prec = _MAX_DOUBLE_DIGITS + precision
        return Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP)


def _format_component(value: float, precision: int) -> str:
    if not math.isfinite(value):
        return repr(float(value))

    rounded = round_coordinate(value, precision)
    if rounded.is_zero():
        return "0"

    return format(rounded.normalize(), "f")


def derive_location_key(
    lat: float,
    lng: float,
    city: Optional[str] = None,
    country: Optional[str] = None,
    precision: int = DEFAULT_PRECISION,
) -> Tuple[str, str]:
    """
    Derive the aggregation key and display label for a location.

    Args:
        lat: Latitude in decimal degrees
        lng: Longitude in decimal degrees
        city: Optional city name from the geocoder
        country: Optional country name or code
        precision: Decimal places kept for coordinate based keys

    Returns:
        (key, label) tuple

    Example:
        >>> derive_location_key(46.95, 7.45, city="Bern", country="CH")
        ('Bern, CH', 'Bern')
        >>> derive_location_key(46.9512, 7.4471)
        ('46.95,7.45', '46.95,7.45')
    """
    city = (city or "").strip()
    country = (country or "").strip()

    if city:
        key = f"{city}, {country}" if country else city
        return key, city

    key = f"{_format_component(lat, precision)},{_format_component(lng, precision)}"
    return key, key

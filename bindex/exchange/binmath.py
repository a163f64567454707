"""
Bin price and liquidity math.

Price convention: the pool's price is token A per token B and the pool
stores ``sqrt_price = sqrt(price)``. Inside the bin at tick ``t`` liquidity
follows the concentrated-liquidity curve between

    sqrt_lower(t) = 1.0001 ** (t * spacing / 2)
    sqrt_upper(t) = sqrt_lower(t + 1)

with reserves

    A = L * (sqrt_price - sqrt_lower)
    B = L * (1 / sqrt_price - 1 / sqrt_upper)

Selling A raises the price, selling B lowers it. Bins above the active tick
hold only B, bins below hold only A.
"""

from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, getcontext
from functools import lru_cache
from typing import Optional, Union

from ..constants import ONE, TICK_BASE

# Curve math on 18-decimal amounts needs high precision
getcontext().prec = 78

ZERO = Decimal(0)
_TICK_BASE = Decimal(TICK_BASE)
_ONE = Decimal(ONE)


# ---------------------------------------------------------------------------
# Tick bounds
# ---------------------------------------------------------------------------

@lru_cache(maxsize=4096)
def sqrt_lower(tick: int, tick_spacing: int) -> Decimal:
    """Lower sqrt-price bound of the bin at ``tick``."""
    return (_TICK_BASE ** (tick * tick_spacing)).sqrt()


def sqrt_upper(tick: int, tick_spacing: int) -> Decimal:
    """Upper sqrt-price bound of the bin at ``tick``."""
    return sqrt_lower(tick + 1, tick_spacing)


def tick_for_sqrt_price(sqrt_price: Decimal, tick_spacing: int) -> int:
    """Tick whose bin contains ``sqrt_price`` (lower bound inclusive)."""
    if sqrt_price <= 0:
        raise ValueError("sqrt price must be positive")
    estimate = (2 * sqrt_price.ln()) / (tick_spacing * _TICK_BASE.ln())
    tick = int(estimate.to_integral_value(rounding=ROUND_FLOOR))
    while sqrt_lower(tick + 1, tick_spacing) <= sqrt_price:
        tick += 1
    while sqrt_lower(tick, tick_spacing) > sqrt_price:
        tick -= 1
    return tick


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------

def liquidity_for_reserves(
    reserve_a: Union[int, Decimal],
    reserve_b: Union[int, Decimal],
    sqrt_price: Decimal,
    lower: Decimal,
    upper: Decimal,
) -> Decimal:
    """
    Largest L whose curve is covered by both reserves.

    A side whose price interval is empty (price at the bin edge) does not
    constrain L.
    """
    candidates = []
    if sqrt_price > lower:
        candidates.append(Decimal(reserve_a) / (sqrt_price - lower))
    if sqrt_price < upper:
        candidates.append(Decimal(reserve_b) / (1 / sqrt_price - 1 / upper))
    if not candidates:
        return ZERO
    return min(candidates)


def sqrt_price_for_reserves(
    reserve_a: Union[int, Decimal],
    reserve_b: Union[int, Decimal],
    lower: Decimal,
    upper: Decimal,
) -> Optional[Decimal]:
    """
    Sqrt price at which (reserve_a, reserve_b) sit exactly on one curve.

    Solves  (u - l) L^2 - (A + B l u) L - A B u = 0  for L, then
    sqrt_price = l + A / L. Returns None for an empty bin.
    """
    a = Decimal(reserve_a)
    b = Decimal(reserve_b)
    if a <= 0 and b <= 0:
        return None
    width = upper - lower
    linear = a + b * lower * upper
    discriminant = linear * linear + 4 * width * a * b * upper
    liquidity = (linear + discriminant.sqrt()) / (2 * width)
    sqrt_price = lower + a / liquidity
    return min(max(sqrt_price, lower), upper)


# ---------------------------------------------------------------------------
# Fixed-point helpers
# ---------------------------------------------------------------------------

def to_fixed(value: Union[int, str, Decimal]) -> int:
    """Decimal → 18-decimal fixed-point integer (floor)."""
    return int((Decimal(value) * _ONE).to_integral_value(rounding=ROUND_FLOOR))


def from_fixed(value: int) -> Decimal:
    """18-decimal fixed-point integer → Decimal."""
    return Decimal(value) / _ONE


def floor_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


def ceil_int(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)

"""
Bounded-amount calculations for ledger submissions.

Minimum acceptable outputs, transaction deadlines and the base-asset split
are computed on integer base units (the token's smallest unit) so that the
value submitted on-chain never passes through floating point.
"""

import math
from decimal import Decimal, InvalidOperation, ROUND_DOWN
from typing import Optional, Tuple, Union

from .exceptions import InvalidInputError

Numeric = Union[int, float, str, Decimal]

DEFAULT_SLIPPAGE_PCT = Decimal("0.5")
MIN_SLIPPAGE_PCT = Decimal("0.1")
MAX_SLIPPAGE_PCT = Decimal("5.0")
DEFAULT_DEADLINE_MINUTES = 30
MAX_DEADLINE_MINUTES = 60


def to_decimal(value: Numeric, field: str = "value") -> Decimal:
    """Convert a user-supplied number to Decimal without float artifacts."""
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be numeric, got bool", field, value)
    try:
        if isinstance(value, float):
            result = Decimal(str(value))
        else:
            result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field} is not a number: {value!r}", field, value)
    if not result.is_finite():
        raise InvalidInputError(f"{field} must be finite: {value!r}", field, value)
    return result


def min_output(desired: int, slippage_pct: Numeric) -> int:
    """
    Minimum acceptable output for a desired amount under a slippage tolerance.

    Computes ``desired * (100 - p) / 100`` exactly: the percentage is turned
    into an exact rational and the product is floor-divided, so the result is
    always strictly below ``desired`` for any ``p > 0``.

    Args:
        desired: Desired amount in integer base units
        slippage_pct: Tolerance in percent, 0 < p <= 100

    Returns:
        Minimum output in integer base units

    Raises:
        InvalidInputError: If p <= 0, p > 100 or desired <= 0
    """
    if isinstance(desired, bool) or not isinstance(desired, int):
        raise InvalidInputError(
            f"desired amount must be integer base units, got {desired!r}",
            "desired",
            desired,
        )
    if desired <= 0:
        raise InvalidInputError(
            f"desired amount must be positive, got {desired}", "desired", desired
        )

    pct = to_decimal(slippage_pct, "slippage_pct")
    if pct <= 0 or pct > 100:
        raise InvalidInputError(
            f"slippage must satisfy 0 < p <= 100, got {pct}", "slippage_pct", pct
        )

    num, den = pct.as_integer_ratio()
    return desired * (100 * den - num) // (100 * den)


def deadline(now_seconds: Numeric, window_minutes: Numeric = DEFAULT_DEADLINE_MINUTES) -> int:
    """
    Unix deadline ``now + window_minutes * 60`` for a transaction.

    Raises:
        InvalidInputError: If now is negative or the window is not positive
    """
    now = to_decimal(now_seconds, "now_seconds")
    window = to_decimal(window_minutes, "window_minutes")
    if now < 0:
        raise InvalidInputError(f"now must be >= 0, got {now}", "now_seconds", now)
    if window <= 0:
        raise InvalidInputError(
            f"deadline window must be positive, got {window}", "window_minutes", window
        )
    return int(now.to_integral_value(rounding=ROUND_DOWN)) + int(
        (window * 60).to_integral_value(rounding=ROUND_DOWN)
    )


def split_amount(units: int, ratio_a_pct: Numeric = 50) -> Tuple[int, int]:
    """
    Split base units between the two pool assets.

    The default is an exact 50/50 split; the two parts always sum to the
    input and differ by at most one unit.

    Args:
        units: Total amount in base units
        ratio_a_pct: Share for asset A in percent (0 < r < 100)

    Returns:
        Tuple of (units_for_a, units_for_b)
    """
    if isinstance(units, bool) or not isinstance(units, int) or units <= 0:
        raise InvalidInputError(f"amount must be positive base units, got {units!r}", "units", units)

    ratio = to_decimal(ratio_a_pct, "ratio_a_pct")
    if ratio <= 0 or ratio >= 100:
        raise InvalidInputError(
            f"split ratio must satisfy 0 < r < 100, got {ratio}", "ratio_a_pct", ratio
        )

    if ratio == 50:
        half_a = units // 2
    else:
        num, den = ratio.as_integer_ratio()
        half_a = units * num // (100 * den)
    return half_a, units - half_a


def to_base_units(amount: Numeric, decimals: int) -> int:
    """Convert a human amount to integer base units, rounding down."""
    value = to_decimal(amount, "amount")
    scaled = (value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(units: int, decimals: int) -> Decimal:
    """Convert integer base units to a human Decimal amount."""
    return Decimal(units) / (Decimal(10) ** decimals)


def validate_slippage(slippage_pct: Numeric) -> Decimal:
    """Check a user slippage setting against the supported operating range."""
    pct = to_decimal(slippage_pct, "slippage_pct")
    if pct < MIN_SLIPPAGE_PCT or pct > MAX_SLIPPAGE_PCT:
        raise InvalidInputError(
            f"slippage tolerance must be between {MIN_SLIPPAGE_PCT}% and "
            f"{MAX_SLIPPAGE_PCT}%, got {pct}%",
            "slippage_pct",
            pct,
        )
    return pct


def optimal_liquidity(
    amount_a: int, amount_b: int, reserve_a: int, reserve_b: int, total_supply: int
) -> Tuple[int, int, int]:
    """
    Router-style liquidity quote for depositing up to (amount_a, amount_b).

    Returns:
        (used_a, used_b, liquidity): the amounts the pool accepts at its
        current ratio and the LP tokens minted for them
    """
    if amount_a < 0 or amount_b < 0:
        raise InvalidInputError("liquidity amounts must be non-negative", "amount", (amount_a, amount_b))
    if total_supply == 0 or reserve_a == 0 or reserve_b == 0:
        return amount_a, amount_b, math.isqrt(amount_a * amount_b)

    optimal_b = amount_a * reserve_b // reserve_a
    if optimal_b <= amount_b:
        used_a, used_b = amount_a, optimal_b
    else:
        used_a, used_b = amount_b * reserve_a // reserve_b, amount_b
    liquidity = min(used_a * total_supply // reserve_a, used_b * total_supply // reserve_b)
    return used_a, used_b, liquidity


def pool_price(reserve_a: int, reserve_b: int, decimals_a: int, decimals_b: int) -> Optional[Decimal]:
    """Spot price of one unit of asset A in asset B, None for an empty pool."""
    if reserve_a <= 0 or reserve_b <= 0:
        return None
    return from_base_units(reserve_b, decimals_b) / from_base_units(reserve_a, decimals_a)

"""Tick, sqrt-price and USD price conversions.

Everything here is pure and total: bad inputs produce a clamped value or zero,
never an exception.
"""

import math
from typing import Tuple

MIN_TICK = -887272
MAX_TICK = 887272
MIN_PRICE = 1e-18
MAX_PRICE = 1e18
TICK_BASE = 1.0001
Q96 = 2**96
DEFAULT_DECIMAL_ADJUST = 1e12
MAX_TOKEN_DECIMALS = 77


def clamp_tick(tick: int, min_tick: int = MIN_TICK, max_tick: int = MAX_TICK) -> int:
    return max(min_tick, min(max_tick, int(tick)))


def calculate_decimal_adjust(price_usd: float, current_tick: int) -> float:
    if not math.isfinite(price_usd) or price_usd <= 0:
        return DEFAULT_DECIMAL_ADJUST
    adjust = price_usd * math.pow(TICK_BASE, clamp_tick(current_tick))
    return adjust if math.isfinite(adjust) else DEFAULT_DECIMAL_ADJUST


def price_from_tick(tick: int, decimal_adjust: float) -> float:
    price = decimal_adjust / math.pow(TICK_BASE, clamp_tick(tick))
    if not math.isfinite(price) or price > MAX_PRICE:
        return MAX_PRICE
    if price < MIN_PRICE:
        return MIN_PRICE
    return price


def tick_from_price(price: float, decimal_adjust: float) -> int:
    if not math.isfinite(price) or not math.isfinite(decimal_adjust):
        return 0
    if price <= 0 or decimal_adjust <= 0:
        return 0
    tick = round(math.log(decimal_adjust / price) / math.log(TICK_BASE))
    return clamp_tick(tick)


def price_ratio_from_sqrt_price_x96(sqrt_price_x96: int, decimals0: int, decimals1: int) -> float:
    """token1 per token0 in whole units from a Q64.96 sqrt price."""
    if sqrt_price_x96 <= 0:
        return 0.0
    try:
        ratio = (sqrt_price_x96 / Q96) ** 2 * math.pow(10, decimals0 - decimals1)
    except OverflowError:
        return 0.0
    return ratio if math.isfinite(ratio) else 0.0


def sqrt_price_at_tick(tick: int) -> float:
    return math.pow(TICK_BASE, clamp_tick(tick) / 2)


def _valid_decimals(decimals: int) -> bool:
    return isinstance(decimals, int) and 0 <= decimals <= MAX_TOKEN_DECIMALS


def _finite_amount(amount: float) -> float:
    if not math.isfinite(amount) or amount <= 0:
        return 0.0
    return amount


def token_deltas_for_segment(
    liquidity: int,
    tick_lower: int,
    tick_upper: int,
    token0_is_base: bool,
    decimals0: int,
    decimals1: int,
) -> Tuple[float, float]:
    """Return (base_amount, quote_amount) held by `liquidity` over a tick segment.

    amount0 = L * (1/sqrt(Pa) - 1/sqrt(Pb)), amount1 = L * (sqrt(Pb) - sqrt(Pa)),
    scaled to whole tokens.
    """
    if liquidity <= 0 or tick_lower == tick_upper:
        return 0.0, 0.0
    if not (_valid_decimals(decimals0) and _valid_decimals(decimals1)):
        return 0.0, 0.0
    if tick_lower > tick_upper:
        tick_lower, tick_upper = tick_upper, tick_lower

    sqrt_lower = sqrt_price_at_tick(tick_lower)
    sqrt_upper = sqrt_price_at_tick(tick_upper)
    if not (math.isfinite(sqrt_lower) and math.isfinite(sqrt_upper)):
        return 0.0, 0.0
    if sqrt_lower <= 0 or sqrt_upper <= 0:
        return 0.0, 0.0

    amount_liquidity = float(liquidity)
    amount0 = _finite_amount(
        amount_liquidity * (1 / sqrt_lower - 1 / sqrt_upper) / math.pow(10, decimals0)
    )
    amount1 = _finite_amount(
        amount_liquidity * (sqrt_upper - sqrt_lower) / math.pow(10, decimals1)
    )
    if token0_is_base:
        return amount0, amount1
    return amount1, amount0


def tick_spacing_for_fee(fee: int) -> int:
    if fee <= 100:
        return 1
    if fee <= 500:
        return 10
    if fee <= 3000:
        return 60
    if fee <= 10000:
        return 200
    return 60

import math
import re
import sys
from typing import Optional

from depthbook.config import AppConfig
from depthbook.detector import is_address, is_pool_id
from depthbook.errors import InvalidInput
from depthbook.types import DepthQuery

BASE58_POOL_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

MAX_PRICE_USD = 1e15
MAX_LEVELS = 1000
MAX_PRECISION = 1.0
MAX_TICK_SPACING = 32767


def parse_number(
    raw: Optional[str],
    field: str,
    minimum: float = 0.0,
    maximum: float = sys.float_info.max,
    default: float = 0.0,
    required: bool = False,
) -> float:
    if raw is None or raw == "":
        if required:
            raise InvalidInput(f"{field} is required", field=field)
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise InvalidInput(f"{field} is not a valid number", field=field) from exc
    if not math.isfinite(value):
        raise InvalidInput(f"{field} is not a valid number", field=field)
    if value < minimum:
        raise InvalidInput(f"{field} must be at least {minimum}", field=field)
    if value > maximum:
        raise InvalidInput(f"{field} must be at most {maximum}", field=field)
    return value


def parse_integer(
    raw: Optional[str],
    field: str,
    minimum: int = 0,
    maximum: int = sys.maxsize,
    default: int = 0,
    required: bool = False,
) -> int:
    if raw is None or raw == "":
        if required:
            raise InvalidInput(f"{field} is required", field=field)
        return default
    try:
        value = int(raw, 10)
    except ValueError as exc:
        raise InvalidInput(f"{field} is not a valid integer", field=field) from exc
    if value < minimum:
        raise InvalidInput(f"{field} must be at least {minimum}", field=field)
    if value > maximum:
        raise InvalidInput(f"{field} must be at most {maximum}", field=field)
    return value


def is_valid_pool_id(pool_id: str, alternate: bool = False) -> bool:
    if alternate:
        return bool(BASE58_POOL_PATTERN.match(pool_id))
    return is_address(pool_id) or is_pool_id(pool_id)


def validate_query(query: DepthQuery, config: AppConfig) -> None:
    """Reject malformed queries before anything touches the network."""
    chain = query.chain_id.lower()
    alternate = chain in config.alternate_chains
    if chain not in config.chains and not alternate:
        raise InvalidInput(f"Unknown chain: {query.chain_id}", field="chain_id")

    if not is_valid_pool_id(query.pool_id, alternate):
        raise InvalidInput(f"Invalid pool id: {query.pool_id}", field="pool_id")

    price = query.price_usd
    if isinstance(price, bool) or not isinstance(price, (int, float)) or not math.isfinite(price):
        raise InvalidInput("price_usd must be a finite number", field="price_usd")
    if price <= 0 or price > MAX_PRICE_USD:
        raise InvalidInput(f"price_usd must be in (0, {MAX_PRICE_USD:g}]", field="price_usd")

    if not isinstance(query.max_levels, int) or not 0 <= query.max_levels <= MAX_LEVELS:
        raise InvalidInput(f"max_levels must be an integer in [0, {MAX_LEVELS}]", field="max_levels")
    if not math.isfinite(query.precision) or not 0 <= query.precision <= MAX_PRECISION:
        raise InvalidInput(f"precision must be in [0, {MAX_PRECISION:g}]", field="precision")
    if not isinstance(query.tick_range, int) or query.tick_range < 0:
        raise InvalidInput("tick_range must be a non-negative integer", field="tick_range")
    if not isinstance(query.tick_spacing, int) or not 0 <= query.tick_spacing <= MAX_TICK_SPACING:
        raise InvalidInput(
            f"tick_spacing must be an integer in [0, {MAX_TICK_SPACING}]", field="tick_spacing"
        )

    for field in ("token0_address", "token1_address"):
        address = getattr(query, field)
        if address is not None and not is_address(address):
            raise InvalidInput(f"Invalid {field}: {address}", field=field)

    if not alternate and is_pool_id(query.pool_id):
        for field in ("token0_address", "token1_address"):
            if getattr(query, field) is None:
                raise InvalidInput(f"{field} is required for V4 pool ids", field=field)

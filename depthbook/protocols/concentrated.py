import logging
import math
from abc import abstractmethod
from typing import Dict, List, Optional, Tuple

from depthbook.bitmap import TickBitmapScanner
from depthbook.pricing import (
    MAX_TICK,
    MIN_TICK,
    calculate_decimal_adjust,
    price_from_tick,
    price_ratio_from_sqrt_price_x96,
    tick_from_price,
    token_deltas_for_segment,
)
from depthbook.protocols.base import DepthBuilder, TickDataSource, finalize_side
from depthbook.tick_loader import TickLiquidityLoader
from depthbook.types import ConcentratedSnapshot, DepthLevel, DepthQuery, DepthResult, Side, TickInfo

logger = logging.getLogger(__name__)

NOISE_FLOOR_USD = 0.01
BUCKET_NOISE_FLOOR_USD = 0.001
MAX_LEVEL_USD = 1e12
MAX_BUCKETS_PER_SEGMENT = 1000
EXTREME_TICK_SPAN = 50000


def bucket_edges(
    low: float,
    high: float,
    step: float,
    limit: int = MAX_BUCKETS_PER_SEGMENT,
    from_top: bool = False,
) -> List[float]:
    """Ascending edges splitting [low, high] on a grid of multiples of `step`.

    At most `limit` buckets are produced. They are taken from the bottom of the
    range, or from the top when `from_top` is set.
    """
    if step <= 0 or high <= low:
        return [low, high]
    if from_top:
        edges = [high]
        k = math.ceil(high / step) - 1
        while len(edges) <= limit:
            edge = k * step
            if edge <= low:
                edges.append(low)
                break
            edges.append(edge)
            k -= 1
        edges.reverse()
        return edges

    edges = [low]
    k = math.floor(low / step) + 1
    while len(edges) <= limit:
        edge = k * step
        if edge >= high:
            edges.append(high)
            break
        edges.append(edge)
        k += 1
    return edges


class TickDepthWalker:
    """Turns a concentrated-liquidity snapshot into bid and ask levels.

    Prices are anchored on the caller's USD price at the current tick. With
    token1 as base the base price falls as the tick rises, which is what
    price_from_tick describes directly; with token0 as base the tick is
    negated before conversion.
    """

    def __init__(
        self,
        snapshot: ConcentratedSnapshot,
        price_usd: float,
        token0_is_base: bool,
        precision: float = 0.0,
        max_levels: int = 0,
        liquidity_net_sign: int = 1,
    ):
        self.snapshot = snapshot
        self.price_usd = price_usd
        self.token0_is_base = token0_is_base
        self.precision = precision
        self.max_levels = max_levels
        self.liquidity_net_sign = liquidity_net_sign
        self._orientation = -1 if token0_is_base else 1
        self.decimal_adjust = calculate_decimal_adjust(
            price_usd, self._orientation * snapshot.current_tick
        )
        self.quote_usd = self._quote_usd_price()
        self._ticks = sorted(snapshot.ticks)

    def price_at(self, tick: int) -> float:
        return price_from_tick(self._orientation * tick, self.decimal_adjust)

    def tick_at(self, price: float) -> int:
        return self._orientation * tick_from_price(price, self.decimal_adjust)

    def _quote_usd_price(self) -> float:
        ratio = price_ratio_from_sqrt_price_x96(
            self.snapshot.sqrt_price_x96,
            self.snapshot.token0.decimals,
            self.snapshot.token1.decimals,
        )
        if ratio <= 0:
            return 0.0
        quote_per_base = ratio if self.token0_is_base else 1 / ratio
        quote_usd = self.price_usd / quote_per_base
        return quote_usd if math.isfinite(quote_usd) and quote_usd > 0 else 0.0

    def cross_tick(self, liquidity: int, liquidity_net: int, upward: bool) -> int:
        delta = self.liquidity_net_sign * liquidity_net
        return liquidity + delta if upward else liquidity - delta

    def walk(self, side: Side) -> List[DepthLevel]:
        current = self.snapshot.current_tick
        upward = (side is Side.ASK) == self.token0_is_base
        if upward:
            path = [tick for tick in self._ticks if tick > current]
        else:
            path = [tick for tick in reversed(self._ticks) if tick <= current]

        liquidity = self.snapshot.liquidity
        boundary = current
        levels: List[DepthLevel] = []
        for tick in path:
            if self.max_levels and len(levels) >= self.max_levels:
                break
            tick_lower, tick_upper = (boundary, tick) if upward else (tick, boundary)
            if liquidity > 0:
                levels.extend(self._segment_levels(side, tick_lower, tick_upper, liquidity))
            else:
                logger.debug("Skipping %s segment [%d, %d] with no liquidity", side.value, tick_lower, tick_upper)
            liquidity = self.cross_tick(liquidity, self.snapshot.ticks[tick].liquidity_net, upward)
            boundary = tick
        return finalize_side(levels, side, self.price_usd, self.max_levels)

    def bids(self) -> List[DepthLevel]:
        return self.walk(Side.BID)

    def asks(self) -> List[DepthLevel]:
        return self.walk(Side.ASK)

    def _segment_levels(
        self, side: Side, tick_lower: int, tick_upper: int, liquidity: int
    ) -> List[DepthLevel]:
        if tick_upper - tick_lower > EXTREME_TICK_SPAN:
            logger.debug("Extreme %s tick span [%d, %d]", side.value, tick_lower, tick_upper)
        edge_a = self.price_at(tick_lower)
        edge_b = self.price_at(tick_upper)
        price_low, price_high = min(edge_a, edge_b), max(edge_a, edge_b)

        if 0 < self.precision < price_high - price_low:
            return self._subdivide(side, tick_lower, tick_upper, liquidity, price_low, price_high)
        level = self._level(
            side, tick_lower, tick_upper, price_low, price_high, liquidity, NOISE_FLOOR_USD
        )
        return [level] if level is not None else []

    def _subdivide(
        self,
        side: Side,
        tick_lower: int,
        tick_upper: int,
        liquidity: int,
        price_low: float,
        price_high: float,
    ) -> List[DepthLevel]:
        # Buckets nearest the current price survive the per-segment cap.
        edges = bucket_edges(price_low, price_high, self.precision, from_top=side is Side.BID)
        levels: List[DepthLevel] = []
        for low, high in zip(edges, edges[1:]):
            first, second = sorted((self.tick_at(low), self.tick_at(high)))
            sub_lower = max(tick_lower, first)
            sub_upper = min(tick_upper, second)
            if sub_upper <= sub_lower:
                continue
            level = self._level(
                side, sub_lower, sub_upper, low, high, liquidity, BUCKET_NOISE_FLOOR_USD
            )
            if level is not None:
                levels.append(level)
        return levels

    def _level(
        self,
        side: Side,
        tick_lower: int,
        tick_upper: int,
        price_low: float,
        price_high: float,
        liquidity: int,
        noise_floor: float,
    ) -> Optional[DepthLevel]:
        base_amount, quote_amount = token_deltas_for_segment(
            liquidity,
            tick_lower,
            tick_upper,
            self.token0_is_base,
            self.snapshot.token0.decimals,
            self.snapshot.token1.decimals,
        )
        if side is Side.ASK:
            price = price_high
            liquidity_usd = base_amount * self.price_usd
        else:
            price = price_low
            if self.quote_usd > 0:
                liquidity_usd = quote_amount * self.quote_usd
            else:
                liquidity_usd = base_amount * price_low

        if not all(math.isfinite(v) for v in (price, base_amount, quote_amount, liquidity_usd)):
            return None
        if not noise_floor < liquidity_usd < MAX_LEVEL_USD:
            return None
        return DepthLevel(
            price=price,
            base_amount=base_amount,
            quote_amount=quote_amount,
            liquidity_usd=liquidity_usd,
            price_lower=price_low,
            price_upper=price_high,
            tick_lower=tick_lower,
            tick_upper=tick_upper,
            liquidity=liquidity,
        )


class ConcentratedDepthBuilder(DepthBuilder):
    """Shared scan, load and walk pipeline for tick-based pools."""

    MIN_TICK = MIN_TICK
    MAX_TICK = MAX_TICK
    # +1: liquidityNet is what gets added when the price moves up through a tick.
    LIQUIDITY_NET_SIGN: int

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.scanner = TickBitmapScanner(self.reader)
        self.loader = TickLiquidityLoader(self.reader)

    @abstractmethod
    async def fetch_snapshot(self, query: DepthQuery) -> ConcentratedSnapshot:
        ...

    def scan_bounds(self, current_tick: int, tick_range: int = 0) -> Tuple[int, int]:
        if tick_range > 0:
            return (
                max(self.MIN_TICK, current_tick - tick_range),
                min(self.MAX_TICK, current_tick + tick_range),
            )
        return self.MIN_TICK, self.MAX_TICK

    async def load_ticks(
        self, source: TickDataSource, tick_spacing: int, current_tick: int, tick_range: int
    ) -> Dict[int, TickInfo]:
        min_tick, max_tick = self.scan_bounds(current_tick, tick_range)
        ticks = await self.scanner.scan(source, tick_spacing, min_tick, max_tick)
        return await self.loader.load(source, ticks)

    async def build(self, query: DepthQuery) -> DepthResult:
        snapshot = await self.fetch_snapshot(query)
        token0, token1 = snapshot.token0, snapshot.token1
        token0_is_base = self.quote_strategy.token0_is_base(
            token0.symbol, token1.symbol, query.price_usd
        )
        walker = TickDepthWalker(
            snapshot,
            query.price_usd,
            token0_is_base,
            precision=query.precision,
            max_levels=query.max_levels,
            liquidity_net_sign=self.LIQUIDITY_NET_SIGN,
        )
        bids, asks = walker.bids(), walker.asks()
        logger.info(
            "%s %s/%s: %d ticks, %d bids, %d asks",
            self.pool_type.value,
            token0.symbol,
            token1.symbol,
            len(snapshot.ticks),
            len(bids),
            len(asks),
        )
        return self._result(bids, asks, query.price_usd, token0, token1, token0_is_base)

import asyncio
from typing import Optional, Tuple

from depthbook.abi_loader import load_method
from depthbook.errors import UpstreamUnavailable
from depthbook.protocols.base import TickDataSource
from depthbook.protocols.concentrated import ConcentratedDepthBuilder
from depthbook.types import (
    Call,
    CallResult,
    ConcentratedSnapshot,
    DepthQuery,
    PoolState,
    PoolType,
    TickInfo,
)

SLOT0 = load_method("uniswap_v3_pool", "slot0")
LIQUIDITY = load_method("uniswap_v3_pool", "liquidity")
TICK_SPACING = load_method("uniswap_v3_pool", "tickSpacing")
TOKEN0 = load_method("uniswap_v3_pool", "token0")
TOKEN1 = load_method("uniswap_v3_pool", "token1")
TICKS = load_method("uniswap_v3_pool", "ticks")
TICK_BITMAP = load_method("uniswap_v3_pool", "tickBitmap")


class V3TickSource(TickDataSource):
    """Tick bitmap and tick liquidity stored on the pool contract itself."""

    def __init__(self, pool_address: str):
        self.pool_address = pool_address

    def bitmap_call(self, word_pos: int) -> Call:
        return TICK_BITMAP.encode(self.pool_address, word_pos)

    def decode_bitmap(self, result: CallResult) -> Optional[int]:
        decoded = TICK_BITMAP.decode(result)
        return decoded[0] if decoded is not None else None

    def tick_call(self, tick: int) -> Call:
        return TICKS.encode(self.pool_address, tick)

    def decode_tick(self, result: CallResult) -> Optional[TickInfo]:
        decoded = TICKS.decode(result)
        if decoded is None:
            return None
        return TickInfo(liquidity_gross=decoded[0], liquidity_net=decoded[1])


class UniswapV3DepthBuilder(ConcentratedDepthBuilder):
    pool_type = PoolType.V3
    LIQUIDITY_NET_SIGN = 1

    async def fetch_pool_state(self, pool_address: str) -> Tuple[PoolState, str, str]:
        methods = (SLOT0, LIQUIDITY, TICK_SPACING, TOKEN0, TOKEN1)
        results = await self.reader.aggregate([method.encode(pool_address) for method in methods])
        decoded = [method.decode(result) for method, result in zip(methods, results)]
        if any(value is None for value in decoded):
            raise UpstreamUnavailable(f"Could not read V3 pool state for {pool_address}")

        slot0, (liquidity,), (tick_spacing,), (token0,), (token1,) = decoded
        state = PoolState(
            current_tick=slot0[1],
            sqrt_price_x96=slot0[0],
            liquidity=liquidity,
            tick_spacing=tick_spacing,
        )
        return state, token0, token1

    async def fetch_snapshot(self, query: DepthQuery) -> ConcentratedSnapshot:
        state, token0_address, token1_address = await self.fetch_pool_state(query.pool_id)
        source = V3TickSource(query.pool_id)
        tokens, ticks = await asyncio.gather(
            self.tokens.get_many([token0_address, token1_address]),
            self.load_ticks(source, state.tick_spacing, state.current_tick, query.tick_range),
        )
        return ConcentratedSnapshot(
            current_tick=state.current_tick,
            liquidity=state.liquidity,
            tick_spacing=state.tick_spacing,
            sqrt_price_x96=state.sqrt_price_x96,
            token0=tokens[0],
            token1=tokens[1],
            ticks=ticks,
        )

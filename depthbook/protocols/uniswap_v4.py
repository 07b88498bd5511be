import asyncio
import logging
from typing import Optional, Tuple

from depthbook.abi_loader import load_method
from depthbook.errors import InvalidInput, UnsupportedChainOrPoolType, UpstreamUnavailable
from depthbook.pricing import tick_spacing_for_fee
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

logger = logging.getLogger(__name__)

GET_SLOT0 = load_method("uniswap_v4_state_view", "getSlot0")
GET_LIQUIDITY = load_method("uniswap_v4_state_view", "getLiquidity")
GET_TICK_LIQUIDITY = load_method("uniswap_v4_state_view", "getTickLiquidity")
GET_TICK_BITMAP = load_method("uniswap_v4_state_view", "getTickBitmap")

V4_MIN_TICK = -887200
V4_MAX_TICK = 887200


def pool_id_bytes(pool_id: str) -> bytes:
    return bytes.fromhex(pool_id[2:] if pool_id.startswith("0x") else pool_id)


def sort_currencies(address_a: str, address_b: str) -> Tuple[str, str]:
    """Pool keys order their currencies by numeric address value."""
    first, second = sorted((address_a, address_b), key=lambda address: int(address, 16))
    return first, second


class V4TickSource(TickDataSource):
    """Tick state held by the singleton PoolManager, read through StateView."""

    def __init__(self, state_view: str, pool_id: str):
        self.state_view = state_view
        self.pool_id = pool_id_bytes(pool_id)

    def bitmap_call(self, word_pos: int) -> Call:
        return GET_TICK_BITMAP.encode(self.state_view, self.pool_id, word_pos)

    def decode_bitmap(self, result: CallResult) -> Optional[int]:
        decoded = GET_TICK_BITMAP.decode(result)
        return decoded[0] if decoded is not None else None

    def tick_call(self, tick: int) -> Call:
        return GET_TICK_LIQUIDITY.encode(self.state_view, self.pool_id, tick)

    def decode_tick(self, result: CallResult) -> Optional[TickInfo]:
        decoded = GET_TICK_LIQUIDITY.decode(result)
        if decoded is None:
            return None
        return TickInfo(liquidity_gross=decoded[0], liquidity_net=decoded[1])


class UniswapV4DepthBuilder(ConcentratedDepthBuilder):
    pool_type = PoolType.V4
    MIN_TICK = V4_MIN_TICK
    MAX_TICK = V4_MAX_TICK
    LIQUIDITY_NET_SIGN = 1

    @property
    def state_view(self) -> str:
        if not self.chain.v4_state_view:
            raise UnsupportedChainOrPoolType(
                f"No V4 StateView configured for chain {self.chain.name}", field="chain_id"
            )
        return self.chain.v4_state_view

    async def fetch_pool_state(self, pool_id: str) -> PoolState:
        raw_id = pool_id_bytes(pool_id)
        results = await self.reader.aggregate(
            [GET_SLOT0.encode(self.state_view, raw_id), GET_LIQUIDITY.encode(self.state_view, raw_id)]
        )
        slot0 = GET_SLOT0.decode(results[0])
        liquidity = GET_LIQUIDITY.decode(results[1])
        if slot0 is None or liquidity is None:
            raise UpstreamUnavailable(f"Could not read V4 pool state for {pool_id}")
        sqrt_price_x96, tick, _protocol_fee, lp_fee = slot0
        if sqrt_price_x96 == 0:
            raise UnsupportedChainOrPoolType(f"V4 pool {pool_id} is not initialized", field="pool_id")
        return PoolState(
            current_tick=tick,
            sqrt_price_x96=sqrt_price_x96,
            liquidity=liquidity[0],
            fee=lp_fee,
        )

    async def fetch_snapshot(self, query: DepthQuery) -> ConcentratedSnapshot:
        if not query.token0_address or not query.token1_address:
            field = "token0_address" if not query.token0_address else "token1_address"
            raise InvalidInput("V4 pools need both token addresses", field=field)
        state_view = self.state_view
        currency0, currency1 = sort_currencies(query.token0_address, query.token1_address)

        state, tokens = await asyncio.gather(
            self.fetch_pool_state(query.pool_id),
            self.tokens.get_many([currency0, currency1]),
        )
        state.tick_spacing = query.tick_spacing or tick_spacing_for_fee(state.fee)
        logger.debug("V4 pool %s... lpFee=%d tickSpacing=%d", query.pool_id[:10], state.fee, state.tick_spacing)

        source = V4TickSource(state_view, query.pool_id)
        ticks = await self.load_ticks(source, state.tick_spacing, state.current_tick, query.tick_range)
        return ConcentratedSnapshot(
            current_tick=state.current_tick,
            liquidity=state.liquidity,
            tick_spacing=state.tick_spacing,
            sqrt_price_x96=state.sqrt_price_x96,
            token0=tokens[0],
            token1=tokens[1],
            ticks=ticks,
        )

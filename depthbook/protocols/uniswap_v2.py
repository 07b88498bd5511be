import logging
import math
from typing import List, Tuple

from depthbook.abi_loader import load_method
from depthbook.errors import UpstreamUnavailable
from depthbook.protocols.base import DepthBuilder, finalize_side
from depthbook.types import DepthLevel, DepthQuery, DepthResult, PoolType, Side

logger = logging.getLogger(__name__)

TOKEN0 = load_method("uniswap_v2_pair", "token0")
TOKEN1 = load_method("uniswap_v2_pair", "token1")
GET_RESERVES = load_method("uniswap_v2_pair", "getReserves")


def _valid(*values: float) -> bool:
    return all(math.isfinite(value) and value > 0 for value in values)


def constant_product_levels(
    reserve_base: float,
    reserve_quote: float,
    price_usd: float,
    levels: int = 50,
    max_pct: float = 50.0,
) -> Tuple[List[DepthLevel], List[DepthLevel]]:
    """Synthetic (bids, asks) for an x*y=k pool, in whole-token reserves.

    Level i sits max_pct * (i/levels)**1.5 percent away from the current price;
    its amounts are the cumulative reserve change needed to move the pool there.
    """
    if not _valid(reserve_base, reserve_quote, price_usd) or levels <= 0:
        return [], []
    k = reserve_base * reserve_quote
    price = reserve_quote / reserve_base
    quote_usd = price_usd / price

    bids: List[DepthLevel] = []
    asks: List[DepthLevel] = []
    for i in range(1, levels + 1):
        pct = max_pct * math.pow(i / levels, 1.5)

        bid_ratio = 1 - pct / 100
        if bid_ratio > 0:
            target = price * bid_ratio
            base_in = math.sqrt(k / target) - reserve_base
            quote_out = reserve_quote - math.sqrt(k * target)
            liquidity_usd = quote_out * quote_usd
            if _valid(base_in, quote_out, liquidity_usd):
                bids.append(
                    DepthLevel(
                        price=price_usd * bid_ratio,
                        base_amount=base_in,
                        quote_amount=quote_out,
                        liquidity_usd=liquidity_usd,
                    )
                )

        ask_ratio = 1 + pct / 100
        target = price * ask_ratio
        base_out = reserve_base - math.sqrt(k / target)
        quote_in = math.sqrt(k * target) - reserve_quote
        liquidity_usd = base_out * price_usd
        if _valid(base_out, quote_in, liquidity_usd):
            asks.append(
                DepthLevel(
                    price=price_usd * ask_ratio,
                    base_amount=base_out,
                    quote_amount=quote_in,
                    liquidity_usd=liquidity_usd,
                )
            )
    return bids, asks


class UniswapV2DepthBuilder(DepthBuilder):
    pool_type = PoolType.V2

    def level_count(self, max_levels: int) -> int:
        if max_levels > 0:
            return min(max_levels, self.settings.v2_levels)
        return self.settings.v2_levels

    async def build(self, query: DepthQuery) -> DepthResult:
        pool = query.pool_id
        results = await self.reader.aggregate(
            [TOKEN0.encode(pool), TOKEN1.encode(pool), GET_RESERVES.encode(pool)]
        )
        token0_out, token1_out, reserves = (
            method.decode(result) for method, result in zip((TOKEN0, TOKEN1, GET_RESERVES), results)
        )
        if token0_out is None or token1_out is None or reserves is None:
            raise UpstreamUnavailable(f"Could not read V2 pair state for {pool}")

        token0, token1 = await self.tokens.get_many([token0_out[0], token1_out[0]])
        token0_is_base = self.quote_strategy.token0_is_base(
            token0.symbol, token1.symbol, query.price_usd
        )
        reserve0 = reserves[0] / math.pow(10, token0.decimals)
        reserve1 = reserves[1] / math.pow(10, token1.decimals)
        reserve_base, reserve_quote = (reserve0, reserve1) if token0_is_base else (reserve1, reserve0)

        bids, asks = constant_product_levels(
            reserve_base,
            reserve_quote,
            query.price_usd,
            levels=self.level_count(query.max_levels),
            max_pct=self.settings.v2_max_pct,
        )
        bids = finalize_side(bids, Side.BID, query.price_usd, query.max_levels)
        asks = finalize_side(asks, Side.ASK, query.price_usd, query.max_levels)
        logger.info(
            "v2 %s/%s: reserves %.6g/%.6g, %d bids, %d asks",
            token0.symbol,
            token1.symbol,
            reserve0,
            reserve1,
            len(bids),
            len(asks),
        )
        return self._result(bids, asks, query.price_usd, token0, token1, token0_is_base)

from abc import ABC, abstractmethod
from dataclasses import replace
from typing import List, Optional

from depthbook.config import ChainConfig, DepthSettings
from depthbook.multicall import ChainReader
from depthbook.quote import QuoteAssetStrategy
from depthbook.tokens import TokenRegistry
from depthbook.types import (
    Call,
    CallResult,
    DepthLevel,
    DepthQuery,
    DepthResult,
    PoolType,
    Side,
    TickInfo,
    TokenInfo,
)


class TickDataSource(ABC):
    """Where a concentrated pool keeps its tick bitmap and per-tick liquidity."""

    @abstractmethod
    def bitmap_call(self, word_pos: int) -> Call:
        ...

    @abstractmethod
    def decode_bitmap(self, result: CallResult) -> Optional[int]:
        ...

    @abstractmethod
    def tick_call(self, tick: int) -> Call:
        ...

    @abstractmethod
    def decode_tick(self, result: CallResult) -> Optional[TickInfo]:
        ...


class DepthBuilder(ABC):
    pool_type: PoolType

    def __init__(
        self,
        reader: ChainReader,
        tokens: TokenRegistry,
        chain: ChainConfig,
        settings: DepthSettings,
        quote_strategy: QuoteAssetStrategy,
    ):
        self.reader = reader
        self.tokens = tokens
        self.chain = chain
        self.settings = settings
        self.quote_strategy = quote_strategy

    @abstractmethod
    async def build(self, query: DepthQuery) -> DepthResult:
        ...

    def _result(
        self,
        bids: List[DepthLevel],
        asks: List[DepthLevel],
        price_usd: float,
        token0: TokenInfo,
        token1: TokenInfo,
        token0_is_base: bool,
    ) -> DepthResult:
        base, quote = (token0, token1) if token0_is_base else (token1, token0)
        return DepthResult(
            bids=bids,
            asks=asks,
            current_price=price_usd,
            base_symbol=base.symbol,
            quote_symbol=quote.symbol,
            base_decimals=base.decimals,
            quote_decimals=quote.decimals,
            pool_type=self.pool_type,
        )


def _pick(values, fn):
    present = [value for value in values if value is not None]
    return fn(present) if present else None


def merge_levels(first: DepthLevel, second: DepthLevel) -> DepthLevel:
    return replace(
        first,
        base_amount=first.base_amount + second.base_amount,
        quote_amount=first.quote_amount + second.quote_amount,
        liquidity_usd=first.liquidity_usd + second.liquidity_usd,
        price_lower=_pick((first.price_lower, second.price_lower), min),
        price_upper=_pick((first.price_upper, second.price_upper), max),
        tick_lower=_pick((first.tick_lower, second.tick_lower), min),
        tick_upper=_pick((first.tick_upper, second.tick_upper), max),
        liquidity=first.liquidity if first.liquidity == second.liquidity else None,
    )


def finalize_side(
    levels: List[DepthLevel], side: Side, current_price: float, max_levels: int = 0
) -> List[DepthLevel]:
    """Order a side best-first, merge levels sharing a price and apply the level cap.

    Bids never sit above the current price and asks never below it.
    """
    if side is Side.BID:
        kept = sorted(
            (level for level in levels if level.price <= current_price),
            key=lambda level: level.price,
            reverse=True,
        )
    else:
        kept = sorted(
            (level for level in levels if level.price >= current_price),
            key=lambda level: level.price,
        )
    merged: List[DepthLevel] = []
    for level in kept:
        if merged and merged[-1].price == level.price:
            merged[-1] = merge_levels(merged[-1], level)
        else:
            merged.append(level)
    if max_levels > 0:
        return merged[:max_levels]
    return merged

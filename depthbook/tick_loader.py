import logging
from typing import Dict, Sequence

from depthbook.multicall import ChainReader
from depthbook.protocols.base import TickDataSource
from depthbook.types import TickInfo

logger = logging.getLogger(__name__)


class TickLiquidityLoader:
    def __init__(self, reader: ChainReader):
        self.reader = reader

    async def load(self, source: TickDataSource, ticks: Sequence[int]) -> Dict[int, TickInfo]:
        if not ticks:
            return {}
        results = await self.reader.aggregate([source.tick_call(tick) for tick in ticks])
        tick_map: Dict[int, TickInfo] = {}
        for tick, result in zip(ticks, results):
            info = source.decode_tick(result)
            # A missing tick reads as "no liquidity change here".
            if info is not None:
                tick_map[tick] = info
        if len(tick_map) < len(ticks):
            logger.debug("Dropped %d ticks that failed to load", len(ticks) - len(tick_map))
        return tick_map

import logging
from typing import Iterator, List

from depthbook.multicall import ChainReader
from depthbook.protocols.base import TickDataSource

logger = logging.getLogger(__name__)

WORD_SIZE = 256


def word_positions(min_tick: int, max_tick: int, tick_spacing: int) -> range:
    ticks_per_word = tick_spacing * WORD_SIZE
    return range(min_tick // ticks_per_word, max_tick // ticks_per_word + 1)


def initialized_ticks_in_word(
    word_pos: int, bitmap: int, tick_spacing: int, min_tick: int, max_tick: int
) -> Iterator[int]:
    if bitmap == 0:
        return
    for bit_pos in range(WORD_SIZE):
        if (bitmap >> bit_pos) & 1 == 0:
            continue
        tick = (word_pos * WORD_SIZE + bit_pos) * tick_spacing
        if min_tick <= tick <= max_tick:
            yield tick


class TickBitmapScanner:
    def __init__(self, reader: ChainReader):
        self.reader = reader

    async def scan(
        self, source: TickDataSource, tick_spacing: int, min_tick: int, max_tick: int
    ) -> List[int]:
        if tick_spacing <= 0:
            raise ValueError(f"tick spacing must be positive, got {tick_spacing}")
        words = word_positions(min_tick, max_tick, tick_spacing)
        results = await self.reader.aggregate([source.bitmap_call(word) for word in words])

        ticks: List[int] = []
        for word_pos, result in zip(words, results):
            bitmap = source.decode_bitmap(result)
            if not bitmap:
                continue
            ticks.extend(
                initialized_ticks_in_word(word_pos, bitmap, tick_spacing, min_tick, max_tick)
            )
        ticks.sort()
        logger.debug("Scanned %d bitmap words, found %d initialized ticks", len(words), len(ticks))
        return ticks

"""Shared fixtures: an in-memory aggregator reader and pool installers."""

from typing import Dict, List, Optional, Tuple

import pytest
from eth_abi import encode

from depthbook.abi_loader import ContractMethod
from depthbook.multicall import ChainReader
from depthbook.protocols import uniswap_v2, uniswap_v3, uniswap_v4
from depthbook.tokens import DECIMALS, SYMBOL
from depthbook.types import Call, CallResult

POOL = "0x" + "ab" * 20
TOKEN_A = "0x" + "11" * 20
TOKEN_B = "0x" + "22" * 20
STATE_VIEW = "0x" + "cd" * 20
V4_POOL_ID = "0x" + "ef" * 32
Q96 = 2**96

# Two positions around tick 0: [-60, 60] and [-120, 120], 5000 each.
SYMMETRIC_TICKS = {-120: 5000, -60: 5000, 60: -5000, 120: -5000}


class FakeChainReader(ChainReader):
    """Answers encoded calls from a lookup table; unknown calls fail."""

    def __init__(self):
        self.responses: Dict[Tuple[str, bytes], CallResult] = {}
        self.aggregate_calls: List[List[Call]] = []
        self.fail_with: Optional[Exception] = None

    def respond(self, method: ContractMethod, target: str, *args, returns) -> None:
        data = encode(list(method.output_types), list(returns))
        self.respond_raw(method, target, *args, data=data)

    def respond_raw(self, method: ContractMethod, target: str, *args, data: bytes) -> None:
        call = method.encode(target, *args)
        self.responses[(call.target, call.call_data)] = CallResult(True, data)

    def revert(self, method: ContractMethod, target: str, *args) -> None:
        call = method.encode(target, *args)
        self.responses[(call.target, call.call_data)] = CallResult(False, b"")

    @property
    def total_calls(self) -> int:
        return sum(len(batch) for batch in self.aggregate_calls)

    async def aggregate(self, calls):
        self.aggregate_calls.append(list(calls))
        if self.fail_with is not None:
            raise self.fail_with
        missing = CallResult(False, b"")
        return [self.responses.get((call.target, call.call_data), missing) for call in calls]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def bitmap_words(ticks, tick_spacing: int) -> Dict[int, int]:
    words: Dict[int, int] = {}
    for tick in ticks:
        compressed = tick // tick_spacing
        word = compressed >> 8
        words[word] = words.get(word, 0) | (1 << (compressed & 0xFF))
    return words


def install_erc20(reader: FakeChainReader, address: str, symbol: str, decimals: int) -> None:
    reader.respond(DECIMALS, address, returns=[decimals])
    reader.respond(SYMBOL, address, returns=[symbol])


def install_v3_pool(
    reader: FakeChainReader,
    pool: str = POOL,
    token0: Tuple[str, str, int] = (TOKEN_A, "TKN", 0),
    token1: Tuple[str, str, int] = (TOKEN_B, "USDC", 0),
    tick: int = 0,
    sqrt_price_x96: int = Q96,
    liquidity: int = 10000,
    tick_spacing: int = 60,
    ticks: Optional[Dict[int, int]] = None,
) -> None:
    ticks = SYMMETRIC_TICKS if ticks is None else ticks
    reader.respond(uniswap_v3.SLOT0, pool, returns=[sqrt_price_x96, tick, 0, 1, 1, 0, True])
    reader.respond(uniswap_v3.LIQUIDITY, pool, returns=[liquidity])
    reader.respond(uniswap_v3.TICK_SPACING, pool, returns=[tick_spacing])
    reader.respond(uniswap_v3.TOKEN0, pool, returns=[token0[0]])
    reader.respond(uniswap_v3.TOKEN1, pool, returns=[token1[0]])
    for word, bitmap in bitmap_words(ticks, tick_spacing).items():
        reader.respond(uniswap_v3.TICK_BITMAP, pool, word, returns=[bitmap])
    for initialized, net in ticks.items():
        reader.respond(
            uniswap_v3.TICKS, pool, initialized, returns=[abs(net), net, 0, 0, 0, 0, 0, True]
        )
    install_erc20(reader, *token0)
    install_erc20(reader, *token1)


def install_v2_pool(
    reader: FakeChainReader,
    pool: str = POOL,
    token0: Tuple[str, str, int] = (TOKEN_A, "TKN", 18),
    token1: Tuple[str, str, int] = (TOKEN_B, "WETH", 18),
    reserves: Tuple[int, int] = (1_000_000 * 10**18, 500 * 10**18),
) -> None:
    reader.respond(uniswap_v2.TOKEN0, pool, returns=[token0[0]])
    reader.respond(uniswap_v2.TOKEN1, pool, returns=[token1[0]])
    reader.respond(uniswap_v2.GET_RESERVES, pool, returns=[reserves[0], reserves[1], 0])
    install_erc20(reader, *token0)
    install_erc20(reader, *token1)


def install_v4_pool(
    reader: FakeChainReader,
    state_view: str = STATE_VIEW,
    pool_id: str = V4_POOL_ID,
    tick: int = 0,
    sqrt_price_x96: int = Q96,
    liquidity: int = 10000,
    lp_fee: int = 3000,
    tick_spacing: int = 60,
    ticks: Optional[Dict[int, int]] = None,
) -> None:
    ticks = SYMMETRIC_TICKS if ticks is None else ticks
    raw_id = bytes.fromhex(pool_id[2:])
    reader.respond(
        uniswap_v4.GET_SLOT0, state_view, raw_id, returns=[sqrt_price_x96, tick, 0, lp_fee]
    )
    reader.respond(uniswap_v4.GET_LIQUIDITY, state_view, raw_id, returns=[liquidity])
    for word, bitmap in bitmap_words(ticks, tick_spacing).items():
        reader.respond(uniswap_v4.GET_TICK_BITMAP, state_view, raw_id, word, returns=[bitmap])
    for initialized, net in ticks.items():
        reader.respond(
            uniswap_v4.GET_TICK_LIQUIDITY, state_view, raw_id, initialized, returns=[abs(net), net]
        )


@pytest.fixture
def reader() -> FakeChainReader:
    return FakeChainReader()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()

"""V3 builder against an in-memory pool."""

import pytest

from depthbook.config import ChainConfig, DepthSettings
from depthbook.errors import UpstreamUnavailable
from depthbook.protocols import uniswap_v3
from depthbook.protocols.uniswap_v3 import UniswapV3DepthBuilder, V3TickSource
from depthbook.quote import QuoteAssetStrategy
from depthbook.tokens import TokenRegistry
from depthbook.types import CallResult, DepthQuery, PoolType

from conftest import POOL, install_v3_pool


def _builder(reader) -> UniswapV3DepthBuilder:
    return UniswapV3DepthBuilder(
        reader,
        TokenRegistry(reader),
        ChainConfig(name="base", rpc_urls=["http://localhost:8545"]),
        DepthSettings(),
        QuoteAssetStrategy(),
    )


@pytest.mark.asyncio
async def test_builds_depth_from_pool_state(reader):
    install_v3_pool(reader)
    result = await _builder(reader).build(DepthQuery("base", POOL, 1.0))

    assert result.pool_type == PoolType.V3
    assert result.base_symbol == "TKN"
    assert result.quote_symbol == "USDC"
    assert result.current_price == 1.0
    assert [a.liquidity for a in result.asks] == [10000, 5000]
    assert [b.liquidity for b in result.bids] == [10000, 5000]


@pytest.mark.asyncio
async def test_quote_token0_flips_orientation(reader):
    install_v3_pool(reader, token0=("0x" + "11" * 20, "WETH", 0), token1=("0x" + "22" * 20, "PEPE", 0))
    result = await _builder(reader).build(DepthQuery("base", POOL, 1.0))
    assert result.base_symbol == "PEPE"
    assert result.quote_symbol == "WETH"
    assert all(a.price >= 1.0 for a in result.asks)
    assert all(b.price <= 1.0 for b in result.bids)


@pytest.mark.asyncio
async def test_tick_range_narrows_the_scan(reader):
    install_v3_pool(reader)
    builder = _builder(reader)
    assert builder.scan_bounds(0, 0) == (builder.MIN_TICK, builder.MAX_TICK)
    assert builder.scan_bounds(0, 90) == (-90, 90)
    assert builder.scan_bounds(887000, 1000) == (886000, builder.MAX_TICK)

    result = await builder.build(DepthQuery("base", POOL, 1.0, tick_range=90))
    assert [(a.tick_lower, a.tick_upper) for a in result.asks] == [(0, 60)]


@pytest.mark.asyncio
async def test_state_reads_share_one_round_trip(reader):
    install_v3_pool(reader)
    await _builder(reader).build(DepthQuery("base", POOL, 1.0))
    first_batch = reader.aggregate_calls[0]
    assert len(first_batch) == 5


@pytest.mark.asyncio
async def test_failed_tick_reads_are_omitted(reader):
    install_v3_pool(reader)
    reader.revert(uniswap_v3.TICKS, POOL, 120)
    result = await _builder(reader).build(DepthQuery("base", POOL, 1.0))
    # Without tick 120 the walk ends at 60.
    assert [(a.tick_lower, a.tick_upper) for a in result.asks] == [(0, 60)]


@pytest.mark.asyncio
async def test_unreadable_pool_state_is_upstream_failure(reader):
    install_v3_pool(reader)
    reader.revert(uniswap_v3.LIQUIDITY, POOL)
    with pytest.raises(UpstreamUnavailable):
        await _builder(reader).build(DepthQuery("base", POOL, 1.0))


def test_tick_source_decodes_failures_as_none():
    source = V3TickSource(POOL)
    assert source.decode_bitmap(CallResult(False, b"")) is None
    assert source.decode_tick(CallResult(True, b"\x00" * 3)) is None

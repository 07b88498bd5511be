"""Input validation for depth queries and raw CLI arguments."""

import pytest

from depthbook.config import AppConfig, ChainConfig
from depthbook.errors import InvalidInput
from depthbook.types import DepthQuery
from depthbook.validation import parse_integer, parse_number, validate_query

from conftest import POOL, TOKEN_A, TOKEN_B, V4_POOL_ID

CONFIG = AppConfig(chains={"base": ChainConfig(name="base", rpc_urls=["http://localhost:8545"])})


def _field_of(query: DepthQuery) -> str:
    with pytest.raises(InvalidInput) as exc_info:
        validate_query(query, CONFIG)
    return exc_info.value.field


def test_valid_queries_pass():
    validate_query(DepthQuery("base", POOL, 1.0), CONFIG)
    validate_query(DepthQuery("BASE", POOL, 1.0, max_levels=1000, precision=1.0), CONFIG)
    validate_query(
        DepthQuery("base", V4_POOL_ID, 1.0, token0_address=TOKEN_A, token1_address=TOKEN_B), CONFIG
    )
    validate_query(DepthQuery("solana", "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2", 1.0), CONFIG)


@pytest.mark.parametrize(
    "query, field",
    [
        (DepthQuery("fantom", POOL, 1.0), "chain_id"),
        (DepthQuery("base", "0x1234", 1.0), "pool_id"),
        (DepthQuery("base", "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2", 1.0), "pool_id"),
        (DepthQuery("solana", POOL, 1.0), "pool_id"),
        (DepthQuery("base", POOL, 0.0), "price_usd"),
        (DepthQuery("base", POOL, -3.0), "price_usd"),
        (DepthQuery("base", POOL, float("inf")), "price_usd"),
        (DepthQuery("base", POOL, 1e16), "price_usd"),
        (DepthQuery("base", POOL, 1.0, max_levels=1001), "max_levels"),
        (DepthQuery("base", POOL, 1.0, max_levels=-1), "max_levels"),
        (DepthQuery("base", POOL, 1.0, precision=1.5), "precision"),
        (DepthQuery("base", POOL, 1.0, precision=float("nan")), "precision"),
        (DepthQuery("base", POOL, 1.0, tick_range=-5), "tick_range"),
        (DepthQuery("base", POOL, 1.0, tick_spacing=-1), "tick_spacing"),
        (DepthQuery("base", POOL, 1.0, token0_address="0xabc"), "token0_address"),
        (DepthQuery("base", V4_POOL_ID, 1.0, token1_address=TOKEN_B), "token0_address"),
        (DepthQuery("base", V4_POOL_ID, 1.0, token0_address=TOKEN_A), "token1_address"),
    ],
)
def test_invalid_fields_are_named(query, field):
    assert _field_of(query) == field


def test_error_payload():
    with pytest.raises(InvalidInput) as exc_info:
        validate_query(DepthQuery("base", POOL, 0.0), CONFIG)
    payload = exc_info.value.to_dict()
    assert payload["field"] == "price_usd"
    assert "price_usd" in payload["error"]
    assert exc_info.value.status == 400


class TestParsers:
    def test_parse_number(self):
        assert parse_number("1.25", "precision") == 1.25
        assert parse_number("", "precision", default=0.5) == 0.5
        assert parse_number(None, "precision") == 0.0

    @pytest.mark.parametrize("raw", ["abc", "nan", "inf", "-1", "2"])
    def test_parse_number_rejects(self, raw):
        with pytest.raises(InvalidInput) as exc_info:
            parse_number(raw, "precision", maximum=1.0)
        assert exc_info.value.field == "precision"

    def test_required_number(self):
        with pytest.raises(InvalidInput):
            parse_number("", "price_usd", required=True)

    def test_parse_integer(self):
        assert parse_integer("25", "max_levels", maximum=1000) == 25
        assert parse_integer("", "max_levels", default=7) == 7

    @pytest.mark.parametrize("raw", ["1.5", "ten", "-3", "1001"])
    def test_parse_integer_rejects(self, raw):
        with pytest.raises(InvalidInput):
            parse_integer(raw, "max_levels", maximum=1000)

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import List, Optional

from rich.console import Console

from depthbook.config import load_config
from depthbook.errors import DepthError
from depthbook.service import DepthService
from depthbook.types import DepthQuery
from depthbook.ui import render_depth, watch_depth
from depthbook.validation import MAX_LEVELS, MAX_PRECISION, parse_integer, parse_number

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Order-book depth for AMM liquidity pools")
    parser.add_argument("--chain", required=True, help="chain id, e.g. ethereum, base, bsc")
    parser.add_argument("--pool", required=True, help="pool address or 32-byte V4 pool id")
    parser.add_argument("--price-usd", required=True, help="USD price of the base token")
    parser.add_argument("--max-levels", default="", help="levels per side, 0 for all")
    parser.add_argument("--precision", default="", help="USD bucket width, 0 for native ticks")
    parser.add_argument("--token0", default=None, help="V4 only: first pool currency")
    parser.add_argument("--token1", default=None, help="V4 only: second pool currency")
    parser.add_argument("--tick-range", default="", help="scan current tick +/- range only")
    parser.add_argument("--tick-spacing", default="", help="V4 only: override fee-derived spacing")
    parser.add_argument("--dex-id", default="", help="dex identifier, part of the cache key")
    parser.add_argument("--json", action="store_true", help="print JSON instead of tables")
    parser.add_argument("--watch", default="", help="refresh every N seconds")
    return parser


def query_from_args(args: argparse.Namespace) -> DepthQuery:
    return DepthQuery(
        chain_id=args.chain.lower(),
        pool_id=args.pool,
        price_usd=parse_number(args.price_usd, "price_usd", required=True),
        max_levels=parse_integer(args.max_levels, "max_levels", maximum=MAX_LEVELS),
        precision=parse_number(args.precision, "precision", maximum=MAX_PRECISION),
        token0_address=args.token0,
        token1_address=args.token1,
        dex_id=args.dex_id,
        tick_range=parse_integer(args.tick_range, "tick_range"),
        tick_spacing=parse_integer(args.tick_spacing, "tick_spacing"),
    )


async def run(args: argparse.Namespace, console: Console) -> None:
    query = query_from_args(args)
    interval = parse_number(args.watch, "watch")
    service = DepthService(load_config())
    try:
        if interval > 0:
            await watch_depth(service, query, interval, console)
            return
        response = await service.get_depth(query)
        if args.json:
            print(json.dumps(response.to_dict(), indent=2))
        else:
            render_depth(response, console)
    finally:
        await service.close()


def main(argv: Optional[List[str]] = None) -> int:
    setup_logging()
    args = build_parser().parse_args(argv)
    try:
        asyncio.run(run(args, Console()))
    except DepthError as exc:
        logger.error("%s: %s", type(exc).__name__, exc.message)
        print(json.dumps(exc.to_dict()))
        return 1
    except KeyboardInterrupt:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

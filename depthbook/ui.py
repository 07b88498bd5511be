import asyncio
import logging
import time
from typing import List, Optional

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from depthbook.errors import DepthError
from depthbook.service import DepthService
from depthbook.types import DepthLevel, DepthQuery, DepthResponse

logger = logging.getLogger(__name__)

MAX_BAR = 60


def _bar(liquidity_usd: float, max_usd: float) -> str:
    if max_usd <= 0:
        return ""
    return "▮" * max(1, min(MAX_BAR, int(liquidity_usd / max_usd * MAX_BAR)))


def _format_price(price: float) -> str:
    if price >= 1:
        return f"{price:,.4f}"
    return f"{price:.6g}"


def build_side_table(title: str, levels: List[DepthLevel], base_symbol: str, style: str) -> Table:
    table = Table(title=title, expand=True, title_style=style)
    table.add_column("Price (USD)", justify="right")
    table.add_column(f"Amount ({base_symbol})", justify="right")
    table.add_column("USD Depth", justify="right")
    table.add_column("Cumulative", justify="right")
    table.add_column("Bar", style=style)
    max_usd = max((level.liquidity_usd for level in levels), default=0.0)
    cumulative = 0.0
    for level in levels:
        cumulative += level.liquidity_usd
        table.add_row(
            _format_price(level.price),
            f"{level.base_amount:,.4f}",
            f"{level.liquidity_usd:,.2f}",
            f"{cumulative:,.2f}",
            _bar(level.liquidity_usd, max_usd),
        )
    return table


def build_depth_view(response: DepthResponse) -> Group:
    result = response.data
    pair = f"{result.base_symbol}/{result.quote_symbol}"
    asks = build_side_table(f"Asks {pair}", result.asks, result.base_symbol, "red")
    bids = build_side_table(f"Bids {pair}", result.bids, result.base_symbol, "green")
    bids.caption = (
        f"Current Price: {_format_price(result.current_price)} | pool {result.pool_type.value} "
        f"| source {response.source} | age {response.age_ms:,.0f} ms "
        f"| {time.strftime('%Y-%m-%d %H:%M:%S')}"
    )
    return Group(asks, bids)


def build_error_panel(error: DepthError) -> Panel:
    body = error.message if not error.field else f"{error.message} (field: {error.field})"
    return Panel(body, title="Depth unavailable", border_style="red")


def render_depth(response: DepthResponse, console: Optional[Console] = None) -> None:
    (console or Console()).print(build_depth_view(response))


async def watch_depth(
    service: DepthService,
    query: DepthQuery,
    interval: float,
    console: Optional[Console] = None,
) -> None:
    with Live(console=console, refresh_per_second=2, screen=False) as live:
        while True:
            try:
                response = await service.get_depth(query)
                live.update(build_depth_view(response))
            except DepthError as exc:
                logger.warning("Depth refresh failed: %s", exc.message)
                live.update(build_error_panel(exc))
            await asyncio.sleep(interval)

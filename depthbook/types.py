from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Tuple


class PoolType(str, Enum):
    V2 = "v2"
    V3 = "v3"
    V4 = "v4"
    UNKNOWN = "unknown"


class Side(str, Enum):
    BID = "bid"
    ASK = "ask"


@dataclass(frozen=True)
class Call:
    target: str
    call_data: bytes


@dataclass(frozen=True)
class CallResult:
    success: bool
    return_data: bytes


@dataclass(frozen=True)
class TokenInfo:
    address: str
    symbol: str
    decimals: int


@dataclass(frozen=True)
class TickInfo:
    liquidity_gross: int
    liquidity_net: int


@dataclass(frozen=True)
class PoolReference:
    chain_id: str
    pool_id: str
    pool_type: PoolType


@dataclass
class PoolState:
    current_tick: Optional[int] = None
    sqrt_price_x96: Optional[int] = None
    liquidity: Optional[int] = None
    tick_spacing: Optional[int] = None
    fee: Optional[int] = None
    reserves: Optional[Tuple[int, int]] = None


@dataclass(frozen=True)
class DepthLevel:
    price: float
    base_amount: float
    quote_amount: float
    liquidity_usd: float
    price_lower: Optional[float] = None
    price_upper: Optional[float] = None
    tick_lower: Optional[int] = None
    tick_upper: Optional[int] = None
    liquidity: Optional[int] = None

    def to_dict(self) -> dict:
        data = {key: value for key, value in asdict(self).items() if value is not None}
        if self.liquidity is not None:
            data["liquidity"] = str(self.liquidity)
        return data


@dataclass(frozen=True)
class DepthResult:
    bids: List[DepthLevel]
    asks: List[DepthLevel]
    current_price: float
    base_symbol: str
    quote_symbol: str
    base_decimals: int
    quote_decimals: int
    pool_type: PoolType

    def to_dict(self) -> dict:
        return {
            "bids": [level.to_dict() for level in self.bids],
            "asks": [level.to_dict() for level in self.asks],
            "current_price": self.current_price,
            "base_symbol": self.base_symbol,
            "quote_symbol": self.quote_symbol,
            "base_decimals": self.base_decimals,
            "quote_decimals": self.quote_decimals,
            "pool_type": self.pool_type.value,
        }


@dataclass(frozen=True)
class DepthQuery:
    chain_id: str
    pool_id: str
    price_usd: float
    max_levels: int = 0
    precision: float = 0.0
    token0_address: Optional[str] = None
    token1_address: Optional[str] = None
    dex_id: str = ""
    tick_range: int = 0  # 0 scans the full protocol range
    tick_spacing: int = 0  # V4 only; 0 derives spacing from the LP fee

    @property
    def cache_key(self) -> tuple:
        return (
            self.chain_id.lower(),
            self.pool_id.lower(),
            self.max_levels,
            self.precision,
            self.dex_id,
            self.tick_range,
            self.tick_spacing,
        )


@dataclass(frozen=True)
class DepthResponse:
    data: DepthResult
    source: str  # cache, rpc, stale-cache, alternate
    age_ms: float = 0.0

    def to_dict(self) -> dict:
        return {"success": True, "data": self.data.to_dict(), "source": self.source}


@dataclass
class ConcentratedSnapshot:
    current_tick: int
    liquidity: int
    tick_spacing: int
    sqrt_price_x96: int
    token0: TokenInfo
    token1: TokenInfo
    ticks: Dict[int, TickInfo] = field(default_factory=dict)

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from depthbook.multicall import MULTICALL3_ADDRESS


@dataclass
class ChainConfig:
    name: str
    rpc_urls: List[str]
    multicall_address: str = MULTICALL3_ADDRESS
    v4_state_view: str | None = None
    native_symbol: str = "ETH"


@dataclass
class DepthSettings:
    cache_ttl: float = 2.0  # seconds
    stale_window: float = 60.0
    cache_capacity: int = 100
    request_timeout: float = 30.0
    multicall_batch_size: int = 500
    v2_levels: int = 50
    v2_max_pct: float = 50.0


@dataclass
class AppConfig:
    chains: Dict[str, ChainConfig]
    depth: DepthSettings = field(default_factory=DepthSettings)
    alternate_chains: List[str] = field(default_factory=lambda: ["solana"])


DEFAULT_CHAINS: Dict[str, dict] = {
    "ethereum": {
        "rpc_urls": [
            "https://eth.llamarpc.com",
            "https://rpc.ankr.com/eth",
            "https://ethereum.publicnode.com",
        ],
        "v4_state_view": "0x7fFE42C4a5DEeA5b0feC41C94C136Cf115597227",
    },
    "base": {
        "rpc_urls": [
            "https://base-rpc.publicnode.com",
            "https://mainnet.base.org",
            "https://rpc.ankr.com/base",
        ],
        "v4_state_view": "0xA3c0c9b65baD0b08107Aa264b0f3dB444b867A71",
    },
    "bsc": {
        "rpc_urls": [
            "https://bsc-dataseed1.binance.org",
            "https://bsc-dataseed2.binance.org",
            "https://rpc.ankr.com/bsc",
        ],
        "v4_state_view": "0xd13Dd3D6E93f276FAf608fC159f2f5f3eAD4B19C",
        "native_symbol": "BNB",
    },
    "arbitrum": {
        "rpc_urls": ["https://arb1.arbitrum.io/rpc", "https://rpc.ankr.com/arbitrum"],
        "v4_state_view": "0x76fd297e2D437cd7f76d50F01AfE6160f86e9990",
    },
    "polygon": {
        "rpc_urls": ["https://polygon-rpc.com", "https://rpc.ankr.com/polygon"],
        "v4_state_view": "0x002D8C2Cf8a27D3044A9d5bD7e9d7146f8012c56",
        "native_symbol": "POL",
    },
}

_CONFIG_PATH = Path(__file__).with_name("config.json")


def _load_config_from_file(path: Path) -> dict:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def _get_env_or_default(key: str, fallback: Optional[str]) -> Optional[str]:
    return os.getenv(key, fallback)


def _get_int_env(key: str, fallback: Optional[int], default: int) -> int:
    raw_value = os.getenv(key)
    if raw_value is not None:
        try:
            return int(raw_value)
        except ValueError:
            pass
    if fallback is not None:
        try:
            return int(fallback)
        except (TypeError, ValueError):
            pass
    return default


def _get_float_env(key: str, fallback: Optional[float], default: float) -> float:
    raw_value = os.getenv(key)
    if raw_value is not None:
        try:
            return float(raw_value)
        except ValueError:
            pass
    if fallback is not None:
        try:
            return float(fallback)
        except (TypeError, ValueError):
            pass
    return default


def _get_list_env(key: str, fallback: Optional[List[str]]) -> List[str]:
    raw_value = os.getenv(key)
    if raw_value:
        return [item.strip() for item in raw_value.split(",") if item.strip()]
    return list(fallback or [])


def _chain_config(name: str, data: dict) -> ChainConfig:
    prefix = name.upper()
    return ChainConfig(
        name=name,
        rpc_urls=_get_list_env(f"{prefix}_RPC_URLS", data.get("rpc_urls")),
        multicall_address=_get_env_or_default(
            "MULTICALL_ADDRESS", data.get("multicall_address", MULTICALL3_ADDRESS)
        ),
        v4_state_view=_get_env_or_default(f"{prefix}_V4_STATE_VIEW", data.get("v4_state_view")),
        native_symbol=data.get("native_symbol", "ETH"),
    )


def load_config(path: Optional[Path] = None) -> AppConfig:
    config_path = path or Path(_get_env_or_default("DEPTHBOOK_CONFIG", str(_CONFIG_PATH)))
    config_data = _load_config_from_file(config_path)

    chains_data = {name: dict(data) for name, data in DEFAULT_CHAINS.items()}
    for name, data in config_data.get("chains", {}).items():
        chains_data.setdefault(name, {}).update(data)
    depth_data = config_data.get("depth", {})

    chains = {name: _chain_config(name, data) for name, data in chains_data.items()}
    depth = DepthSettings(
        cache_ttl=_get_float_env("DEPTH_CACHE_TTL", depth_data.get("cache_ttl"), 2.0),
        stale_window=_get_float_env("DEPTH_STALE_WINDOW", depth_data.get("stale_window"), 60.0),
        cache_capacity=_get_int_env("DEPTH_CACHE_CAPACITY", depth_data.get("cache_capacity"), 100),
        request_timeout=_get_float_env("RPC_TIMEOUT", depth_data.get("request_timeout"), 30.0),
        multicall_batch_size=_get_int_env(
            "MULTICALL_BATCH_SIZE", depth_data.get("multicall_batch_size"), 500
        ),
        v2_levels=_get_int_env("V2_LEVELS", depth_data.get("v2_levels"), 50),
        v2_max_pct=_get_float_env("V2_MAX_PCT", depth_data.get("v2_max_pct"), 50.0),
    )
    alternate_chains = _get_list_env(
        "ALTERNATE_CHAINS", config_data.get("alternate_chains", ["solana"])
    )
    return AppConfig(chains=chains, depth=depth, alternate_chains=alternate_chains)

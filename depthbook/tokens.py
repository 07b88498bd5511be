import logging
from collections import OrderedDict
from typing import Dict, List, Optional, Sequence

from eth_abi import decode
from eth_abi.exceptions import DecodingError
from web3 import Web3

from depthbook.abi_loader import load_method
from depthbook.multicall import ChainReader
from depthbook.types import CallResult, TokenInfo

logger = logging.getLogger(__name__)

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_DECIMALS = 18
UNKNOWN_SYMBOL = "UNKNOWN"

DECIMALS = load_method("erc20", "decimals")
SYMBOL = load_method("erc20", "symbol")


def decode_symbol(result: CallResult) -> Optional[str]:
    decoded = SYMBOL.decode(result)
    if decoded is not None and decoded[0]:
        return decoded[0]
    # Some older tokens (MKR, SAI) return bytes32 instead of string.
    if not result.success or len(result.return_data) != 32:
        return None
    try:
        (raw,) = decode(["bytes32"], result.return_data)
    except DecodingError:
        return None
    symbol = raw.rstrip(b"\x00").decode("utf-8", errors="ignore")
    return symbol or None


class TokenRegistry:
    """ERC-20 decimals/symbol lookups for one chain, cached per instance.

    The cache keeps the most recently used `capacity` tokens.
    """

    def __init__(self, reader: ChainReader, native_symbol: str = "ETH", capacity: int = 1024):
        self.reader = reader
        self.native_symbol = native_symbol
        self.capacity = capacity
        self._cache: "OrderedDict[str, TokenInfo]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._cache)

    def _remember(self, key: str, info: TokenInfo) -> None:
        self._cache[key] = info
        self._cache.move_to_end(key)
        while len(self._cache) > self.capacity:
            self._cache.popitem(last=False)

    async def get_many(self, addresses: Sequence[str]) -> List[TokenInfo]:
        found: Dict[str, TokenInfo] = {}
        missing: List[str] = []
        for address in addresses:
            key = address.lower()
            if key == NATIVE_TOKEN_ADDRESS:
                found[key] = TokenInfo(NATIVE_TOKEN_ADDRESS, self.native_symbol, DEFAULT_DECIMALS)
            elif key in self._cache:
                self._cache.move_to_end(key)
                found[key] = self._cache[key]
            elif key not in missing:
                missing.append(key)

        if missing:
            calls = []
            for address in missing:
                calls.append(DECIMALS.encode(address))
                calls.append(SYMBOL.encode(address))
            results = await self.reader.aggregate(calls)
            for i, address in enumerate(missing):
                decimals = DECIMALS.decode(results[2 * i])
                symbol = decode_symbol(results[2 * i + 1])
                info = TokenInfo(
                    address=Web3.to_checksum_address(address),
                    symbol=symbol or UNKNOWN_SYMBOL,
                    decimals=decimals[0] if decimals is not None else DEFAULT_DECIMALS,
                )
                found[address] = info
                if decimals is None or symbol is None:
                    # Not cached so a later request can retry the lookup.
                    logger.warning("Incomplete token metadata for %s, using %s", address, info)
                else:
                    self._remember(address, info)

        return [found[a.lower()] for a in addresses]

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Sequence

import aiohttp
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.exceptions import ContractLogicError, Web3Exception

from depthbook.errors import UpstreamUnavailable
from depthbook.types import Call, CallResult

logger = logging.getLogger(__name__)

MULTICALL3_ADDRESS = "0xcA11bde05977b3631167028862bE2a173976CA11"

MULTICALL3_ABI = [
    {
        "inputs": [
            {
                "components": [
                    {"internalType": "address", "name": "target", "type": "address"},
                    {"internalType": "bool", "name": "allowFailure", "type": "bool"},
                    {"internalType": "bytes", "name": "callData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Call3[]",
                "name": "calls",
                "type": "tuple[]",
            }
        ],
        "name": "aggregate3",
        "outputs": [
            {
                "components": [
                    {"internalType": "bool", "name": "success", "type": "bool"},
                    {"internalType": "bytes", "name": "returnData", "type": "bytes"},
                ],
                "internalType": "struct Multicall3.Result[]",
                "name": "returnData",
                "type": "tuple[]",
            }
        ],
        "stateMutability": "payable",
        "type": "function",
    }
]

# Transport-level failures and JSON-RPC error responses (Web3RPCError, e.g. rate
# limits); these rotate the endpoint.
CONNECTION_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, Web3Exception)


class ChainReader(ABC):
    """Read-only access to one chain through an aggregator contract."""

    @abstractmethod
    async def aggregate(self, calls: Sequence[Call]) -> List[CallResult]:
        """Run every call, returning one result per call in input order.

        Individual call failures are reported in the result, never raised.
        """

    async def call(self, call: Call) -> CallResult:
        results = await self.aggregate([call])
        return results[0]

    async def close(self) -> None:
        """Release connections held by the reader."""


def _default_web3_factory(rpc_url: str, request_timeout: float) -> AsyncWeb3:
    provider = AsyncHTTPProvider(
        rpc_url, request_kwargs={"timeout": aiohttp.ClientTimeout(total=request_timeout)}
    )
    return AsyncWeb3(provider)


class BatchedChainReader(ChainReader):
    def __init__(
        self,
        rpc_urls: Sequence[str],
        multicall_address: str = MULTICALL3_ADDRESS,
        batch_size: int = 500,
        request_timeout: float = 30.0,
        web3_factory: Callable[[str, float], AsyncWeb3] | None = None,
    ):
        if not rpc_urls:
            raise ValueError("At least one RPC URL is required")
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        factory = web3_factory or _default_web3_factory
        self.rpc_urls = list(rpc_urls)
        self.multicall_address = Web3.to_checksum_address(multicall_address)
        self.batch_size = batch_size
        self._endpoints = [factory(url, request_timeout) for url in self.rpc_urls]
        self._index = 0

    @property
    def current_rpc_url(self) -> str:
        return self.rpc_urls[self._index]

    def _rotate(self) -> None:
        self._index = (self._index + 1) % len(self._endpoints)
        logger.warning("Rotated RPC endpoint to index %d: %s", self._index, self.current_rpc_url)

    async def _send(self, web3: AsyncWeb3, payload: list[tuple]) -> list[tuple]:
        contract = web3.eth.contract(address=self.multicall_address, abi=MULTICALL3_ABI)
        return await contract.functions.aggregate3(payload).call()

    async def close(self) -> None:
        for web3 in self._endpoints:
            await web3.provider.disconnect()

    def _batched_calls(self, calls: Sequence[Call]) -> Iterable[Sequence[Call]]:
        for i in range(0, len(calls), self.batch_size):
            yield calls[i : i + self.batch_size]

    async def aggregate(self, calls: Sequence[Call]) -> List[CallResult]:
        results: List[CallResult] = []
        for batch in self._batched_calls(calls):
            payload = [(call.target, True, call.call_data) for call in batch]
            rpc_url = self.current_rpc_url
            try:
                raw = await self._send(self._endpoints[self._index], payload)
            except ContractLogicError as exc:
                raise UpstreamUnavailable(f"aggregate3 reverted on {rpc_url}: {exc}") from exc
            except CONNECTION_ERRORS as exc:
                self._rotate()
                raise UpstreamUnavailable(f"RPC request to {rpc_url} failed: {exc}") from exc
            if len(raw) != len(batch):
                raise UpstreamUnavailable(
                    f"aggregate3 returned {len(raw)} results for {len(batch)} calls"
                )
            results.extend(CallResult(success=bool(ok), return_data=bytes(data)) for ok, data in raw)
        return results

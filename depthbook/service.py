import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, Mapping, Optional

from depthbook.cache import DepthCache, RequestCoalescer
from depthbook.config import AppConfig, ChainConfig
from depthbook.detector import PoolTypeDetector
from depthbook.errors import UnsupportedChainOrPoolType, UpstreamUnavailable
from depthbook.multicall import BatchedChainReader, ChainReader
from depthbook.protocols.base import DepthBuilder
from depthbook.protocols.uniswap_v2 import UniswapV2DepthBuilder
from depthbook.protocols.uniswap_v3 import UniswapV3DepthBuilder
from depthbook.protocols.uniswap_v4 import UniswapV4DepthBuilder
from depthbook.quote import QuoteAssetStrategy
from depthbook.tokens import TokenRegistry
from depthbook.types import DepthQuery, DepthResponse, DepthResult, PoolReference, PoolType
from depthbook.validation import validate_query

logger = logging.getLogger(__name__)


class AlternateDepthSource(ABC):
    """Depth estimator for pools this engine cannot read itself (e.g. Solana)."""

    @abstractmethod
    async def fetch_depth(self, query: DepthQuery) -> DepthResult:
        ...

    def supports(self, chain_id: str) -> bool:
        return True


class DepthService:
    def __init__(
        self,
        config: AppConfig,
        readers: Optional[Mapping[str, ChainReader]] = None,
        cache: Optional[DepthCache] = None,
        alternate: Optional[AlternateDepthSource] = None,
        quote_strategy: Optional[QuoteAssetStrategy] = None,
    ):
        settings = config.depth
        self.config = config
        self.readers: Dict[str, ChainReader] = dict(readers) if readers is not None else {}
        # An empty DepthCache is falsy, so test against None.
        if cache is None:
            cache = DepthCache(
                ttl=settings.cache_ttl,
                stale_window=settings.stale_window,
                capacity=settings.cache_capacity,
            )
        self.cache = cache
        self.coalescer = RequestCoalescer()
        self.alternate = alternate
        self.quote_strategy = (
            quote_strategy if quote_strategy is not None else QuoteAssetStrategy()
        )
        self._tokens: Dict[str, TokenRegistry] = {}

    def reader_for(self, chain: ChainConfig) -> ChainReader:
        reader = self.readers.get(chain.name)
        if reader is None:
            reader = BatchedChainReader(
                chain.rpc_urls,
                chain.multicall_address,
                batch_size=self.config.depth.multicall_batch_size,
                request_timeout=self.config.depth.request_timeout,
            )
            self.readers[chain.name] = reader
        return reader

    def tokens_for(self, chain: ChainConfig) -> TokenRegistry:
        registry = self._tokens.get(chain.name)
        if registry is None:
            registry = TokenRegistry(self.reader_for(chain), native_symbol=chain.native_symbol)
            self._tokens[chain.name] = registry
        return registry

    def _build_builder(self, pool: PoolReference, chain: ChainConfig) -> DepthBuilder:
        if pool.pool_type == PoolType.V2:
            builder_cls = UniswapV2DepthBuilder
        elif pool.pool_type == PoolType.V3:
            builder_cls = UniswapV3DepthBuilder
        elif pool.pool_type == PoolType.V4:
            builder_cls = UniswapV4DepthBuilder
        else:
            raise UnsupportedChainOrPoolType(
                f"Could not identify a supported pool type for {pool.pool_id} on {pool.chain_id}",
                field="pool_id",
            )
        return builder_cls(
            self.reader_for(chain),
            self.tokens_for(chain),
            chain,
            self.config.depth,
            self.quote_strategy,
        )

    async def resolve_pool(self, query: DepthQuery, chain: ChainConfig) -> PoolReference:
        pool_type = await PoolTypeDetector(self.reader_for(chain)).detect(query.pool_id)
        return PoolReference(chain_id=chain.name, pool_id=query.pool_id, pool_type=pool_type)

    async def _compute(self, query: DepthQuery, chain: ChainConfig) -> DepthResult:
        started = time.perf_counter()
        pool = await self.resolve_pool(query, chain)
        builder = self._build_builder(pool, chain)
        result = await builder.build(query)
        self.cache.put(query.cache_key, result)
        logger.info(
            "Computed %s depth for %s on %s in %.0f ms",
            pool.pool_type.value,
            pool.pool_id,
            pool.chain_id,
            (time.perf_counter() - started) * 1000,
        )
        return result

    async def _compute_alternate(self, query: DepthQuery) -> DepthResult:
        result = await self.alternate.fetch_depth(query)
        self.cache.put(query.cache_key, result)
        return result

    async def get_depth(self, query: DepthQuery) -> DepthResponse:
        validate_query(query, self.config)
        key = query.cache_key

        cached = self.cache.get(key)
        if cached is not None and self.cache.is_fresh(cached[1]):
            return DepthResponse(data=cached[0], source="cache", age_ms=cached[1])

        chain_id = query.chain_id.lower()
        if chain_id in self.config.alternate_chains:
            if self.alternate is None or not self.alternate.supports(chain_id):
                raise UnsupportedChainOrPoolType(
                    f"No depth source configured for chain {query.chain_id}", field="chain_id"
                )
            factory = lambda: self._compute_alternate(query)  # noqa: E731
            source = "alternate"
        else:
            chain = self.config.chains.get(chain_id)
            if chain is None:
                raise UnsupportedChainOrPoolType(
                    f"No reader configured for chain {query.chain_id}", field="chain_id"
                )
            factory = lambda: self._compute(query, chain)  # noqa: E731
            source = "rpc"

        try:
            result = await asyncio.wait_for(
                self.coalescer.run(key, factory), timeout=self.config.depth.request_timeout
            )
        except (UpstreamUnavailable, asyncio.TimeoutError) as exc:
            return await self._fallback(query, exc, allow_alternate=source == "rpc")
        return DepthResponse(data=result, source=source)

    async def _fallback(
        self, query: DepthQuery, exc: Exception, allow_alternate: bool
    ) -> DepthResponse:
        reason = str(exc) or type(exc).__name__
        cached = self.cache.get(query.cache_key)
        if cached is not None and self.cache.is_usable_stale(cached[1]):
            logger.warning(
                "Serving stale depth for %s (%.0f ms old): %s", query.pool_id, cached[1], reason
            )
            return DepthResponse(data=cached[0], source="stale-cache", age_ms=cached[1])

        chain_id = query.chain_id.lower()
        if allow_alternate and self.alternate is not None and self.alternate.supports(chain_id):
            logger.warning("Using alternate depth source for %s: %s", query.pool_id, reason)
            result = await self.alternate.fetch_depth(query)
            return DepthResponse(data=result, source="alternate")

        if isinstance(exc, UpstreamUnavailable):
            raise exc
        raise UpstreamUnavailable(
            f"Depth for {query.pool_id} timed out after {self.config.depth.request_timeout:g}s"
        ) from exc

    async def close(self) -> None:
        for reader in self.readers.values():
            await reader.close()
        self.readers.clear()
        self._tokens.clear()

import logging
import re

from depthbook.abi_loader import ContractMethod, load_method
from depthbook.multicall import ChainReader
from depthbook.types import PoolType

logger = logging.getLogger(__name__)

ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
POOL_ID_PATTERN = re.compile(r"^0x[a-fA-F0-9]{64}$")

V3_SLOT0 = load_method("uniswap_v3_pool", "slot0")
V2_GET_RESERVES = load_method("uniswap_v2_pair", "getReserves")


def is_address(value: str) -> bool:
    return bool(ADDRESS_PATTERN.match(value))


def is_pool_id(value: str) -> bool:
    return bool(POOL_ID_PATTERN.match(value))


class PoolTypeDetector:
    """Classifies a pool identifier as V2, V3 or V4.

    V3 is probed before V2: some V2-shaped calls answer on contracts that are
    not V2 pairs, while slot0() only decodes on concentrated pools.
    """

    def __init__(self, reader: ChainReader):
        self.reader = reader

    async def _probe(self, method: ContractMethod, pool_address: str) -> bool:
        result = await self.reader.call(method.encode(pool_address))
        return method.decode(result) is not None

    async def detect(self, pool_id: str) -> PoolType:
        if is_pool_id(pool_id):
            return PoolType.V4
        if not is_address(pool_id):
            return PoolType.UNKNOWN
        if await self._probe(V3_SLOT0, pool_id):
            pool_type = PoolType.V3
        elif await self._probe(V2_GET_RESERVES, pool_id):
            pool_type = PoolType.V2
        else:
            pool_type = PoolType.UNKNOWN
        logger.info("Pool %s... detected as %s", pool_id[:10], pool_type.value)
        return pool_type

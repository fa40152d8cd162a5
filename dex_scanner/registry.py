"""
In-memory pool registry.

The registry is the single source of truth for reserves. It keeps three
indices over the same Pool objects: by address, by unordered token pair,
and by token (adjacency).
"""

from typing import Dict, Iterator, List, Optional, Tuple

from pool_arbitrage.exceptions import UnknownPool
from pool_arbitrage.utils import get_current_timestamp, get_logger, normalize_address

from .types import Pool

logger = get_logger(__name__)

PairKey = Tuple[str, str]


def pair_key(token_a: str, token_b: str) -> PairKey:
    """Order-independent, case-insensitive key for a token pair."""
    a = normalize_address(token_a)
    b = normalize_address(token_b)
    return (a, b) if a <= b else (b, a)


class PoolRegistry:
    """Pools indexed by address, pair and token."""

    def __init__(self):
        self._by_address: Dict[str, Pool] = {}
        # dicts used as insertion-ordered sets of addresses
        self._by_pair: Dict[PairKey, Dict[str, None]] = {}
        self._by_token: Dict[str, Dict[str, None]] = {}

    def __len__(self) -> int:
        return len(self._by_address)

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and normalize_address(address) in self._by_address

    def __iter__(self) -> Iterator[Pool]:
        return iter(list(self._by_address.values()))

    def upsert_pool(self, pool: Pool) -> Pool:
        """
        Insert a pool, or refresh the tracked one with the same address.

        Index membership is idempotent: re-inserting never duplicates a pool
        in its pair group or adjacency lists.

        Returns:
            The Pool object held by the registry
        """
        existing = self._by_address.get(pool.address)
        if existing is None:
            self._by_address[pool.address] = pool
            self._by_pair.setdefault(pair_key(pool.token0, pool.token1), {})[
                pool.address
            ] = None
            self._by_token.setdefault(pool.token0, {})[pool.address] = None
            self._by_token.setdefault(pool.token1, {})[pool.address] = None
            logger.debug(f"Registered pool {pool}")
            return pool

        if (existing.token0, existing.token1) != (pool.token0, pool.token1):
            logger.warning(
                f"Pool {pool.address} re-registered with different tokens; "
                f"keeping {existing.token0}/{existing.token1}"
            )
        existing.dex = pool.dex or existing.dex
        if pool.liquidity_usd:
            existing.liquidity_usd = pool.liquidity_usd
        # 0 means the caller had no blockTimestampLast, so skip the stale check
        self.refresh_reserves(
            existing.address,
            pool.reserve0,
            pool.reserve1,
            pool.block_timestamp_last or None,
        )
        return existing

    def refresh_reserves(
        self,
        address: str,
        reserve0: int,
        reserve1: int,
        block_timestamp: Optional[int] = None,
    ) -> bool:
        """
        Overwrite a pool's reserves.

        Args:
            address: Pool address (any case)
            reserve0: New raw reserve of token0
            reserve1: New raw reserve of token1
            block_timestamp: blockTimestampLast of the read; older than the
                stored value means the read is stale and is dropped

        Returns:
            True if the write was applied, False if it was stale

        Raises:
            UnknownPool: If the address isn't registered
        """
        pool = self._by_address.get(normalize_address(address))
        if pool is None:
            raise UnknownPool(f"Pool {address} is not registered", address=address)

        if block_timestamp is not None and block_timestamp < pool.block_timestamp_last:
            logger.debug(
                f"Dropping stale reserves for {pool.address} "
                f"({block_timestamp} < {pool.block_timestamp_last})"
            )
            return False

        pool.reserve0 = int(reserve0)
        pool.reserve1 = int(reserve1)
        if block_timestamp is not None:
            pool.block_timestamp_last = block_timestamp
        pool.updated_at = get_current_timestamp()
        pool.version += 1
        return True

    def pool_by_address(self, address: str) -> Optional[Pool]:
        return self._by_address.get(normalize_address(address))

    def pools_for_pair(self, token_a: str, token_b: str) -> List[Pool]:
        members = self._by_pair.get(pair_key(token_a, token_b), {})
        return [self._by_address[a] for a in members]

    def pools_for_token(self, token: str) -> List[Pool]:
        members = self._by_token.get(normalize_address(token), {})
        return [self._by_address[a] for a in members]

    def pair_groups(self) -> Iterator[Tuple[PairKey, List[Pool]]]:
        """All pair groups, in first-registration order."""
        for key, members in list(self._by_pair.items()):
            yield key, [self._by_address[a] for a in members]

    def tokens(self) -> List[str]:
        return list(self._by_token.keys())

    def addresses(self) -> List[str]:
        return list(self._by_address.keys())

    def stats(self) -> Dict[str, int]:
        return {
            "pools": len(self._by_address),
            "pairs": len(self._by_pair),
            "tokens": len(self._by_token),
        }

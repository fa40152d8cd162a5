"""
USD price lookup for token contracts.

Fetches prices by contract address from the CoinGecko token_price API and
caches them, so bootstrap and rescans do not hammer the free tier.
"""

import logging
import time
from typing import Dict, Iterable, List, Optional, Tuple

import requests

from pool_arbitrage.utils import normalize_address

logger = logging.getLogger(__name__)

COINGECKO_TOKEN_PRICE_URL = "https://api.coingecko.com/api/v3/simple/token_price/{platform}"


class TokenPriceOracle:
    """
    Fetches and caches USD prices keyed by token contract address.

    Addresses are looked up in batches; a failed batch leaves those
    addresses unpriced (0.0) instead of failing the whole lookup.
    """

    def __init__(
        self,
        platform: str = "polygon-pos",
        cache_ttl_seconds: int = 300,
        batch_size: int = 100,
        request_timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize price oracle with caching.

        Args:
            platform: CoinGecko asset platform id (e.g. "polygon-pos")
            cache_ttl_seconds: How long to cache prices
            batch_size: Maximum contract addresses per request
            request_timeout: HTTP timeout in seconds
            session: Optional requests session (for connection reuse)
        """
        self.platform = platform
        self.cache_ttl = cache_ttl_seconds
        self.batch_size = max(1, batch_size)
        self.request_timeout = request_timeout
        self.session = session or requests.Session()
        self.price_cache: Dict[str, Tuple[float, float]] = {}  # {address: (usd, timestamp)}

    def get_usd_prices(self, addresses: Iterable[str]) -> Dict[str, float]:
        """
        Get USD prices for token addresses.

        Args:
            addresses: Token contract addresses (any case)

        Returns:
            Mapping of lower-cased address to USD price; unknown tokens map to 0.0
        """
        wanted = list(dict.fromkeys(normalize_address(a) for a in addresses))
        if not wanted:
            return {}

        now = time.time()
        result: Dict[str, float] = {}
        missing: List[str] = []
        for address in wanted:
            cached = self.price_cache.get(address)
            if cached and now - cached[1] < self.cache_ttl:
                result[address] = cached[0]
            else:
                missing.append(address)

        if missing:
            logger.info(
                f"Fetching USD prices for {len(missing)} tokens "
                f"({len(wanted) - len(missing)} cached)"
            )

        for start in range(0, len(missing), self.batch_size):
            batch = missing[start : start + self.batch_size]
            fetched = self._fetch_batch(batch)
            for address in batch:
                if address in fetched:
                    self.price_cache[address] = (fetched[address], time.time())
                    result[address] = fetched[address]
                elif address in self.price_cache:
                    price, ts = self.price_cache[address]
                    logger.warning(
                        f"Using stale price for {address} (age: {time.time() - ts:.0f}s)"
                    )
                    result[address] = price
                else:
                    result[address] = 0.0

        return result

    def _fetch_batch(self, addresses: List[str]) -> Dict[str, float]:
        url = COINGECKO_TOKEN_PRICE_URL.format(platform=self.platform)
        params = {"contract_addresses": ",".join(addresses), "vs_currencies": "usd"}

        try:
            response = self.session.get(url, params=params, timeout=self.request_timeout)
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            logger.warning(f"CoinGecko token price request failed: {e}")
            return {}
        except ValueError as e:
            logger.warning(f"CoinGecko returned invalid JSON: {e}")
            return {}

        prices: Dict[str, float] = {}
        for address, entry in (data or {}).items():
            usd = entry.get("usd") if isinstance(entry, dict) else None
            if usd is None:
                continue
            try:
                prices[normalize_address(address)] = float(usd)
            except (TypeError, ValueError):
                logger.debug(f"Ignoring non-numeric price for {address}: {usd}")
        return prices

    def clear_cache(self) -> None:
        """Clear the price cache (useful for testing)."""
        self.price_cache.clear()

    def get_cache_stats(self) -> Dict:
        """Get cache statistics."""
        now = time.time()
        fresh = sum(1 for _, ts in self.price_cache.values() if now - ts < self.cache_ttl)
        return {
            "total_cached": len(self.price_cache),
            "fresh": fresh,
            "stale": len(self.price_cache) - fresh,
            "cache_ttl": self.cache_ttl,
        }

"""
Uniswap V2 style adapter for constant-product AMM pools.

Every read goes through a ResilientClient, so endpoint failures rotate and
retry transparently; reverts and undecodable data surface as
DecodeOrReadFailure.
"""

import asyncio
from typing import Any, Optional, Sequence, Tuple

from web3 import Web3

from pool_arbitrage.exceptions import DecodeOrReadFailure
from pool_arbitrage.rpc import ResilientClient

from ..abi import ERC20_ABI, UNISWAP_V2_FACTORY_ABI, UNISWAP_V2_PAIR_ABI


def _checksum(address: str) -> str:
    if not Web3.is_address(address):
        raise DecodeOrReadFailure(f"Invalid contract address: {address}", address=address)
    return Web3.to_checksum_address(address)


async def _read(
    client: ResilientClient,
    address: str,
    abi: Sequence[dict],
    function: str,
    *args: Any,
) -> Any:
    checksummed = _checksum(address)
    return await client.call(
        lambda w3: getattr(
            w3.eth.contract(address=checksummed, abi=abi).functions, function
        )(*args).call(),
        label=f"{function}@{address}",
        address=address,
    )


async def fetch_reserves(client: ResilientClient, pair_addr: str) -> Tuple[int, int, int]:
    """
    Fetch reserves from a Uniswap V2 style pair.

    Args:
        client: Read client
        pair_addr: Address of the pair contract

    Returns:
        Tuple of (reserve0, reserve1, blockTimestampLast) as raw integers

    Raises:
        DecodeOrReadFailure: If the pair reverts or returns malformed data
        EndpointUnavailable: If the read fails on the endpoint and its retry
    """
    reserves = await _read(client, pair_addr, UNISWAP_V2_PAIR_ABI, "getReserves")
    try:
        r0, r1, block_ts = int(reserves[0]), int(reserves[1]), int(reserves[2])
    except (TypeError, ValueError, IndexError) as e:
        raise DecodeOrReadFailure(
            f"Malformed getReserves result from {pair_addr}: {reserves!r}",
            address=pair_addr,
        ) from e
    return r0, r1, block_ts


async def fetch_pair_tokens(client: ResilientClient, pair_addr: str) -> Tuple[str, str]:
    """Fetch (token0, token1) of a pair, lower-cased."""
    token0, token1 = await asyncio.gather(
        _read(client, pair_addr, UNISWAP_V2_PAIR_ABI, "token0"),
        _read(client, pair_addr, UNISWAP_V2_PAIR_ABI, "token1"),
    )
    return str(token0).lower(), str(token1).lower()


async def fetch_pool_state(
    client: ResilientClient, pair_addr: str
) -> Tuple[str, str, int, int, int]:
    """
    Fetch token addresses and reserves in parallel.

    Returns:
        Tuple of (token0, token1, reserve0, reserve1, blockTimestampLast)
    """
    (token0, token1), (r0, r1, block_ts) = await asyncio.gather(
        fetch_pair_tokens(client, pair_addr), fetch_reserves(client, pair_addr)
    )
    return token0, token1, r0, r1, block_ts


async def fetch_pair_count(
    client: ResilientClient,
    factory_addr: str,
    abi: Optional[Sequence[dict]] = None,
) -> int:
    """Number of pairs a factory has created (allPairsLength)."""
    count = await _read(client, factory_addr, abi or UNISWAP_V2_FACTORY_ABI, "allPairsLength")
    return int(count)


async def fetch_pair_at(
    client: ResilientClient,
    factory_addr: str,
    index: int,
    abi: Optional[Sequence[dict]] = None,
) -> str:
    """Pair address at a factory index (allPairs), lower-cased."""
    pair = await _read(client, factory_addr, abi or UNISWAP_V2_FACTORY_ABI, "allPairs", index)
    return str(pair).lower()


async def fetch_token_decimals(client: ResilientClient, token_addr: str) -> int:
    decimals = await _read(client, token_addr, ERC20_ABI, "decimals")
    return int(decimals)


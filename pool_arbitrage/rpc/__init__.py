"""Resilient RPC access: endpoint pools, rotation and subscription replay."""

from .client import RpcClients, ResilientClient, Subscription, make_async_web3
from .config_schema import RpcSettings
from .endpoints import Endpoint, EndpointPool

__all__ = [
    "Endpoint",
    "EndpointPool",
    "ResilientClient",
    "RpcClients",
    "RpcSettings",
    "Subscription",
    "make_async_web3",
]

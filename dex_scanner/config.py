"""
Configuration loading and validation for the pool arbitrage scanner.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import yaml

from pool_arbitrage.exceptions import ConfigError
from pool_arbitrage.rpc import RpcSettings


@dataclass
class ExchangeConfig:
    """
    One constant-product exchange to enumerate.

    Factory address and ABI are validated at bootstrap, where a bad entry
    skips only that exchange.
    """

    name: str
    factory: Optional[str] = None
    abi: Union[str, List[Dict[str, Any]], None] = None
    fee_bps: Optional[float] = None
    enabled: bool = True


class ScannerConfig:
    """
    Parsed and validated scanner configuration.

    Attributes:
        network: Network label used in logs (e.g., "polygon")
        chain_id: Chain id every RPC endpoint must report
        rpc: Read/write endpoint settings
        exchanges: Exchanges to enumerate at bootstrap
        fee_default_bps: Fee for exchanges without a known fee
        fee_overrides: Exchange name -> fee in bps
        notional_usd: Trade size used to turn edge into profit
        min_profit_usd: Minimum estimated profit for emission
        min_edge: Minimum edge for emission
        swap_min_edge: Minimum edge for swap-led direct records
        min_liquidity_usd: Liquidity gate for new pools
        price_platform: CoinGecko asset platform for USD prices
        price_cache_ttl_sec: USD price cache lifetime
        page_size: Factory indices read concurrently per page
        page_delay_sec: Pause between pages
        max_pairs_per_exchange: Optional enumeration cap per factory
        rescan_interval_sec: Seconds between full rescans (0 disables)
        max_addresses_per_filter: Pools per Swap log filter
        startup_retry_sec: Pause between startup attempts while RPC is down
        record_max_age_sec: Opportunity record retention
        prune_interval_sec: Seconds between retention prunes
        metrics_enabled: Serve Prometheus metrics
        metrics_host: Metrics server bind address
        metrics_port: Metrics server port
    """

    def __init__(self, config_dict: Dict[str, Any]):
        """
        Parse and validate config from dictionary.

        Args:
            config_dict: Loaded YAML config

        Raises:
            ConfigError: If required fields missing or invalid
        """
        if not isinstance(config_dict, dict):
            raise ConfigError("Config root must be a mapping")

        self.network: str = config_dict.get("network", "polygon")
        self.chain_id: int = self._get_required(config_dict, "chain_id", int)

        # RPC endpoints
        rpc_raw = self._get_required(config_dict, "rpc", dict)
        self.rpc: RpcSettings = RpcSettings.from_dict(rpc_raw)
        if not self.rpc.read_endpoints:
            raise ConfigError("rpc.read_endpoints must list at least one endpoint")
        if self.rpc.failure_threshold < 1:
            raise ConfigError("rpc.watchdog.failure_threshold must be >= 1")

        # Exchanges
        self.exchanges: List[ExchangeConfig] = self._parse_exchanges(
            config_dict.get("exchanges", [])
        )
        if not self.exchanges:
            raise ConfigError("At least one exchange must be configured")

        # Fees
        fees = config_dict.get("fees", {}) or {}
        self.fee_default_bps: float = float(fees.get("default_bps", 30))
        self.fee_overrides: Dict[str, float] = {
            str(name): float(bps) for name, bps in (fees.get("overrides", {}) or {}).items()
        }
        for exchange in self.exchanges:
            if exchange.fee_bps is not None:
                self.fee_overrides[exchange.name] = exchange.fee_bps

        # Arbitrage thresholds
        arb = config_dict.get("arbitrage", {}) or {}
        self.notional_usd: float = float(arb.get("notional_usd", 10000))
        self.min_profit_usd: float = float(arb.get("min_profit_usd", 40))
        self.min_edge: float = float(arb.get("min_edge", 0.0))
        swap_min_edge = arb.get("swap_min_edge")
        self.swap_min_edge: Optional[float] = (
            float(swap_min_edge) if swap_min_edge is not None else None
        )
        if self.notional_usd <= 0:
            raise ConfigError("arbitrage.notional_usd must be positive")

        # Liquidity gate and prices
        liquidity = config_dict.get("liquidity", {}) or {}
        self.min_liquidity_usd: float = float(liquidity.get("min_liquidity_usd", 50000))
        self.price_platform: str = liquidity.get("price_platform", "polygon-pos")
        self.price_cache_ttl_sec: int = int(liquidity.get("price_cache_ttl_sec", 300))

        # Bootstrap / rescan
        scan = config_dict.get("scan", {}) or {}
        self.page_size: int = int(scan.get("page_size", 50))
        self.page_delay_sec: float = float(scan.get("page_delay_sec", 0.2))
        max_pairs = scan.get("max_pairs_per_exchange")
        self.max_pairs_per_exchange: Optional[int] = (
            int(max_pairs) if max_pairs is not None else None
        )
        self.rescan_interval_sec: float = float(scan.get("rescan_interval_sec", 0))
        self.max_addresses_per_filter: int = int(scan.get("max_addresses_per_filter", 500))
        self.startup_retry_sec: float = float(scan.get("startup_retry_sec", 30))
        if self.page_size < 1:
            raise ConfigError("scan.page_size must be >= 1")
        if self.startup_retry_sec <= 0:
            raise ConfigError("scan.startup_retry_sec must be positive")

        # Opportunity record retention
        opportunities = config_dict.get("opportunities", {}) or {}
        self.record_max_age_sec: float = float(opportunities.get("max_age_sec", 86400))
        self.prune_interval_sec: float = float(opportunities.get("prune_interval_sec", 3600))

        # Metrics
        metrics = config_dict.get("metrics", {}) or {}
        self.metrics_enabled: bool = bool(metrics.get("enabled", False))
        self.metrics_host: str = metrics.get("host", "0.0.0.0")
        self.metrics_port: int = int(metrics.get("port", 8000))

    @staticmethod
    def _get_required(d: Dict, key: str, expected_type: type) -> Any:
        """Get required config field with type validation."""
        if key not in d:
            raise ConfigError(f"Missing required config field: {key}")
        val = d[key]
        if not isinstance(val, expected_type) or isinstance(val, bool):
            raise ConfigError(
                f"Config field '{key}' must be {expected_type.__name__}, got {type(val).__name__}"
            )
        return val

    @staticmethod
    def _parse_exchanges(exchanges_raw: Any) -> List[ExchangeConfig]:
        """Parse exchanges config. Disabled exchanges are dropped."""
        if not isinstance(exchanges_raw, list):
            raise ConfigError("exchanges must be a list")

        exchanges = []
        seen = set()
        for i, exchange in enumerate(exchanges_raw):
            if not isinstance(exchange, dict):
                raise ConfigError(f"Exchange config {i} must be a dict")

            name = exchange.get("name")
            if not name:
                raise ConfigError(f"Exchange config {i} missing 'name'")
            if name in seen:
                raise ConfigError(f"Exchange '{name}' configured twice", exchange=name)
            seen.add(name)

            if not exchange.get("enabled", True):
                continue

            fee_bps = exchange.get("fee_bps")
            exchanges.append(
                ExchangeConfig(
                    name=str(name),
                    factory=exchange.get("factory"),
                    abi=exchange.get("abi"),
                    fee_bps=float(fee_bps) if fee_bps is not None else None,
                )
            )
        return exchanges


def load_config(config_path: str) -> ScannerConfig:
    """
    Load and validate config from YAML file.

    Args:
        config_path: Path to YAML config file

    Returns:
        Validated ScannerConfig

    Raises:
        ConfigError: If file missing, invalid YAML, or validation fails
    """
    try:
        with open(config_path, "r") as f:
            config_dict = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Config file not found: {config_path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if config_dict is None:
        raise ConfigError(f"Config file is empty: {config_path}")

    return ScannerConfig(config_dict)

"""
Configuration schema for the RPC layer.
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class RpcSettings:
    """Endpoint lists and timing for the read and write clients."""

    read_endpoints: List[str]
    write_endpoints: List[str] = field(default_factory=list)

    # Environment variable whose URL is tried before the configured reads
    read_url_env: Optional[str] = None

    request_timeout_sec: float = 10.0
    poll_interval_sec: float = 1.5

    # Watchdog
    read_watchdog_interval_sec: float = 1.5
    write_watchdog_interval_sec: float = 3.0
    failure_threshold: int = 3

    notification_queue_size: int = 10000
    randomize_start: bool = True

    @classmethod
    def from_dict(cls, config_dict: dict) -> "RpcSettings":
        """Create settings from dictionary."""
        watchdog = config_dict.get("watchdog", {}) or {}

        read_endpoints = list(config_dict.get("read_endpoints", []) or [])
        read_url_env = config_dict.get("read_url_env")
        if read_url_env:
            env_url = os.getenv(read_url_env)
            if env_url and env_url not in read_endpoints:
                read_endpoints.insert(0, env_url)

        return cls(
            read_endpoints=read_endpoints,
            write_endpoints=list(config_dict.get("write_endpoints", []) or []),
            read_url_env=read_url_env,
            request_timeout_sec=float(config_dict.get("request_timeout_sec", 10.0)),
            poll_interval_sec=float(config_dict.get("poll_interval_sec", 1.5)),
            read_watchdog_interval_sec=float(watchdog.get("read_interval_sec", 1.5)),
            write_watchdog_interval_sec=float(
                watchdog.get("write_interval_sec", 3.0)
            ),
            failure_threshold=int(watchdog.get("failure_threshold", 3)),
            notification_queue_size=int(
                config_dict.get("notification_queue_size", 10000)
            ),
            randomize_start=bool(config_dict.get("randomize_start", True)),
        )

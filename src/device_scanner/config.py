"""
Device scanner configuration.

Configuration can be loaded from environment variables or from a YAML file
(/var/lib/udc/scanner_config.yaml by default). Unset values fall back to
the defaults below.
"""

from __future__ import annotations

import ipaddress
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ._types import DEFAULT_NETWORK_RANGES

logger = logging.getLogger(__name__)


DEFAULT_SERIAL_PATHS = [
    "/dev/ttyUSB0",
    "/dev/ttyUSB1",
    "/dev/ttyACM0",
    "/dev/ttyS0",
    "/dev/ttyS1",
    "/dev/ttyS2",
]


def _env_flag(name: str, default: bool) -> bool:
    return os.getenv(name, "true" if default else "false").lower() == "true"


@dataclass
class ScannerConfig:
    """Device scanner configuration."""

    # Network ranges to scan (CIDR)
    network_ranges: list[str] = field(
        default_factory=lambda: list(DEFAULT_NETWORK_RANGES)
    )

    # Discovery methods
    enable_bluetooth: bool = True
    enable_wifi: bool = True
    enable_network: bool = True
    enable_local: bool = True

    # Probing behaviour
    quick_check_timeout: float = 0.3   # coarse reachability (ports 80/443)
    port_scan_timeout: float = 1.0     # per port, deep scan
    max_concurrent_hosts: int = 32     # parallel quick checks
    max_concurrent_scans: int = 10     # parallel deep port scans
    resolve_hosts: bool = True         # ARP MAC + reverse DNS for answering hosts
    bluetooth_scan_seconds: int = 12
    wifi_scan_timeout: float = 15.0

    # Local interfaces
    serial_paths: list[str] = field(
        default_factory=lambda: list(DEFAULT_SERIAL_PATHS)
    )

    # Vendor lookup
    online_vendor_lookup: bool = False
    vendor_lookup_url: str = "https://api.macvendors.com/"

    # Simulated remediation
    command_delay_seconds: float = 0.0

    # API server (for on-demand scans)
    api_host: str = "127.0.0.1"
    api_port: int = 8083

    # Paths
    cache_path: Path = field(default_factory=lambda: Path("/var/lib/udc/device_cache.json"))

    # Logging
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "ScannerConfig":
        """Load configuration from environment variables."""
        config = cls()

        # Network ranges (comma-separated)
        ranges = os.getenv("NETWORK_RANGES", "")
        if ranges:
            config.network_ranges = [r.strip() for r in ranges.split(",") if r.strip()]

        # Discovery methods
        config.enable_bluetooth = _env_flag("ENABLE_BLUETOOTH", True)
        config.enable_wifi = _env_flag("ENABLE_WIFI", True)
        config.enable_network = _env_flag("ENABLE_NETWORK", True)
        config.enable_local = _env_flag("ENABLE_LOCAL", True)

        # Probing
        config.max_concurrent_hosts = int(os.getenv("MAX_CONCURRENT_HOSTS", "32"))
        config.max_concurrent_scans = int(os.getenv("MAX_CONCURRENT_SCANS", "10"))
        config.resolve_hosts = _env_flag("RESOLVE_HOSTS", True)

        if serial := os.getenv("SERIAL_PATHS"):
            config.serial_paths = [p.strip() for p in serial.split(",") if p.strip()]

        config.online_vendor_lookup = _env_flag("ONLINE_VENDOR_LOOKUP", False)

        # API server
        config.api_host = os.getenv("API_HOST", "127.0.0.1")
        config.api_port = int(os.getenv("API_PORT", "8083"))

        # Paths
        if cache_path := os.getenv("CACHE_PATH"):
            config.cache_path = Path(cache_path)

        # Logging
        config.log_level = os.getenv("LOG_LEVEL", "INFO")

        return config

    @classmethod
    def from_yaml(cls, path: Path) -> "ScannerConfig":
        """Load configuration from YAML file."""
        if not path.exists():
            logger.warning(f"Config file not found: {path}, using defaults")
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        config = cls()

        if "network_ranges" in data:
            config.network_ranges = list(data["network_ranges"] or [])

        if "discovery" in data:
            d = data["discovery"]
            config.enable_bluetooth = d.get("bluetooth", True)
            config.enable_wifi = d.get("wifi", True)
            config.enable_network = d.get("network", True)
            config.enable_local = d.get("local", True)

        if "probing" in data:
            p = data["probing"]
            config.quick_check_timeout = p.get("quick_check_timeout", config.quick_check_timeout)
            config.port_scan_timeout = p.get("port_scan_timeout", config.port_scan_timeout)
            config.max_concurrent_hosts = p.get("max_concurrent_hosts", config.max_concurrent_hosts)
            config.max_concurrent_scans = p.get("max_concurrent_scans", config.max_concurrent_scans)
            config.resolve_hosts = p.get("resolve_hosts", config.resolve_hosts)
            config.bluetooth_scan_seconds = p.get("bluetooth_scan_seconds", config.bluetooth_scan_seconds)

        if "serial_paths" in data:
            config.serial_paths = list(data["serial_paths"] or [])

        if "vendor_lookup" in data:
            v = data["vendor_lookup"]
            config.online_vendor_lookup = v.get("online", False)
            config.vendor_lookup_url = v.get("url", config.vendor_lookup_url)

        if "api" in data:
            a = data["api"]
            config.api_host = a.get("host", "127.0.0.1")
            config.api_port = a.get("port", 8083)

        if "paths" in data:
            p = data["paths"]
            if "cache" in p:
                config.cache_path = Path(p["cache"])

        config.log_level = data.get("log_level", "INFO")

        return config

    def validate(self) -> list[str]:
        """Validate configuration, returning list of errors."""
        errors = []

        if self.enable_network and not self.network_ranges:
            errors.append("Network discovery enabled but no network ranges configured")

        for cidr in self.network_ranges:
            try:
                ipaddress.IPv4Network(cidr, strict=False)
            except ValueError:
                errors.append(f"Invalid network range: {cidr}")

        if self.max_concurrent_hosts < 1:
            errors.append(f"Invalid max_concurrent_hosts: {self.max_concurrent_hosts}")
        if self.max_concurrent_scans < 1:
            errors.append(f"Invalid max_concurrent_scans: {self.max_concurrent_scans}")

        if not (0 < self.api_port < 65536):
            errors.append(f"Invalid API port: {self.api_port}")

        return errors

    def enabled_methods(self) -> list[str]:
        """Names of the discovery methods switched on."""
        methods: list[Optional[str]] = [
            "bluetooth" if self.enable_bluetooth else None,
            "wifi" if self.enable_wifi else None,
            "network" if self.enable_network else None,
            "local" if self.enable_local else None,
        ]
        return [m for m in methods if m]


# Example scanner_config.yaml:
"""
# /var/lib/udc/scanner_config.yaml

network_ranges:
  - "192.168.1.0/24"
  - "10.0.0.0/24"

discovery:
  bluetooth: true
  wifi: true
  network: true
  local: true

probing:
  quick_check_timeout: 0.3
  port_scan_timeout: 1.0
  max_concurrent_hosts: 32
  max_concurrent_scans: 10
  resolve_hosts: true

serial_paths:
  - "/dev/ttyUSB0"
  - "/dev/ttyACM0"

vendor_lookup:
  online: false

api:
  host: "127.0.0.1"
  port: 8083

paths:
  cache: "/var/lib/udc/device_cache.json"

log_level: "INFO"
"""

"""Discovery methods for the device scanner."""

from .base import DiscoveryMethod
from .bluetooth import (
    BluetoothctlAdapter,
    RadioAdapter,
    RadioDevice,
    RadioPairingScanner,
    RadioSubscription,
)
from .ip_range import IPRangeScanner, enumerate_hosts, guess_category
from .local import LocalInterfaceScanner
from .wifi import (
    AccessPoint,
    NmcliAdapter,
    WirelessAdapter,
    WirelessScanner,
    frequency_band,
    security_tier,
    signal_quality,
)

__all__ = [
    "DiscoveryMethod",
    "RadioPairingScanner",
    "RadioAdapter",
    "RadioSubscription",
    "RadioDevice",
    "BluetoothctlAdapter",
    "WirelessScanner",
    "WirelessAdapter",
    "AccessPoint",
    "NmcliAdapter",
    "security_tier",
    "signal_quality",
    "frequency_band",
    "IPRangeScanner",
    "enumerate_hosts",
    "guess_category",
    "LocalInterfaceScanner",
]

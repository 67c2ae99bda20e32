"""
Universal Device Scanner - multi-transport device discovery and diagnostics.

Discovers devices over radio pairing (Bluetooth), wireless association
(Wi-Fi), IP ranges and local serial/USB interfaces, merges every sighting
into a persistent identity -> profile cache, and runs rule-based
troubleshooting and (simulated) remediation over the inventory.

Sovereignty:
    - All data stored locally in /var/lib/udc/device_cache.json
    - Works fully offline; online MAC vendor lookup is opt-in
"""

__version__ = "1.0.0"

from ._types import (
    AutomatedFix,
    DeviceProfile,
    DiagnosisReport,
    DispatchResult,
    FixResult,
    NetworkInsights,
    ScanResult,
    Severity,
    Sighting,
    Transport,
)

__all__ = [
    "__version__",
    "AutomatedFix",
    "DeviceProfile",
    "DiagnosisReport",
    "DispatchResult",
    "FixResult",
    "NetworkInsights",
    "ScanResult",
    "Severity",
    "Sighting",
    "Transport",
]

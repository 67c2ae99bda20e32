"""
Type definitions for the device scanner.

These dataclasses define the core domain model for multi-transport device
discovery, the merged device inventory, and diagnosis results.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


def now_utc() -> datetime:
    """Get current UTC timestamp (replaces deprecated datetime.utcnow())."""
    return datetime.now(timezone.utc)


UNKNOWN = "Unknown"


class Transport(str, Enum):
    """Physical transport a sighting arrived over."""
    BLUETOOTH = "bluetooth"  # Radio pairing
    WIFI = "wifi"            # Wireless association
    NETWORK = "network"      # IP range probing
    LOCAL = "local"          # Serial / USB interfaces


class Severity(str, Enum):
    """Per-category risk tier used by diagnosis."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


def identity_for(name: Optional[str], address: str) -> str:
    """Stable cache key: device name if present, else its address."""
    if name and name.strip():
        return name
    return address


@dataclass
class Sighting:
    """
    A single, possibly partial, observation of a device.

    This is a lightweight representation before classification.
    The scanner service enriches it and merges it into the device cache.
    """
    name: Optional[str]
    address: str
    transport: Transport = Transport.NETWORK

    vendor: Optional[str] = None
    category: Optional[str] = None  # First-pass guess from the transport, if any

    # Hardware address when the transport address is not one (ARP for IP hosts)
    mac_address: Optional[str] = None

    # Open-port evidence (IP transport only)
    ports: set[int] = field(default_factory=set)

    active: bool = False
    remote_accessible: bool = False
    observed_at: datetime = field(default_factory=now_utc)

    # Transport specific extras (security tier, signal, USB ids, ...)
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return identity_for(self.name, self.address)


@dataclass
class DeviceProfile:
    """
    The merged, persisted record for one identity.

    Owned by the DeviceCache; consumers receive copies.
    """
    name: str
    address: str
    vendor: str = UNKNOWN
    category: str = UNKNOWN
    ports: set[int] = field(default_factory=set)
    services: list[str] = field(default_factory=list)
    compatibility: str = UNKNOWN
    last_seen: datetime = field(default_factory=now_utc)
    active: bool = False
    remote_accessible: bool = False
    health_status: str = UNKNOWN

    # Transport facts: security tier, signal, USB ids, hostname, MAC
    attributes: dict[str, str] = field(default_factory=dict)

    @property
    def identity(self) -> str:
        return identity_for(self.name, self.address)

    def to_dict(self) -> dict:
        """Full profile as a JSON-compatible dict (report export)."""
        return {
            "name": self.name,
            "address": self.address,
            "vendor": self.vendor,
            "category": self.category,
            "ports": sorted(self.ports),
            "services": list(self.services),
            "compatibility": self.compatibility,
            "health_status": self.health_status,
            "remote_accessible": self.remote_accessible,
            "active": self.active,
            "last_seen": self.last_seen.isoformat(),
            "attributes": dict(self.attributes),
        }


# Default value of every mergeable profile field. A merge never replaces a
# known value with one of these.
PROFILE_DEFAULTS: dict[str, object] = {
    "vendor": UNKNOWN,
    "category": UNKNOWN,
    "ports": frozenset(),
    "services": (),
    "compatibility": UNKNOWN,
    "active": False,
    "remote_accessible": False,
    "health_status": UNKNOWN,
}

# Fields written to the durable cache document.
PERSISTED_FIELDS = frozenset({
    "name",
    "address",
    "vendor",
    "category",
    "compatibility",
    "last_seen",
    "remote_accessible",
    "health_status",
    "ports",
    "services",
    "active",
    "attributes",
})


@dataclass
class DiagnosisReport:
    """Result of analysing one device."""
    device_identity: str
    device_address: str
    issues: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    severity: Severity = Severity.LOW
    confidence: int = 95
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        return {
            "device": self.device_identity,
            "address": self.device_address,
            "issues": list(self.issues),
            "recommendations": list(self.recommendations),
            "severity": self.severity.value,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class NetworkInsights:
    """Network-wide aggregate over the device inventory."""
    total_devices: int = 0
    subnet_count: int = 0
    health_percentage: int = 0
    category_distribution: dict[str, int] = field(default_factory=dict)
    security_risk_device_count: int = 0
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=now_utc)

    def to_dict(self) -> dict:
        """Exported form, as embedded in the diagnostic report."""
        return {
            "subnet_count": self.subnet_count,
            "total_devices": self.total_devices,
            "device_categories": dict(self.category_distribution),
            "network_health_percentage": self.health_percentage,
            "security_risk_devices": self.security_risk_device_count,
            "ai_recommendations": list(self.recommendations),
            "analysis_timestamp": self.timestamp.isoformat(),
        }


@dataclass
class AutomatedFix:
    """A remediation plan for one issue."""
    issue: str
    description: str
    commands: list[str] = field(default_factory=list)
    estimated_time_seconds: int = 0
    risk_level: str = "LOW"


@dataclass
class FixResult:
    """Outcome of a (simulated) remediation run."""
    success: bool
    results: list[str] = field(default_factory=list)
    message: str = ""
    timestamp: datetime = field(default_factory=now_utc)


@dataclass
class DispatchResult:
    """Outcome of a remote action against one device."""
    protocol: str
    success: bool
    message: str


@dataclass
class ScanResult:
    """Result of an orchestrated scan pass."""
    scan_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    started_at: datetime = field(default_factory=now_utc)
    completed_at: Optional[datetime] = None

    # Results
    sightings: int = 0
    new_devices: int = 0
    updated_devices: int = 0

    methods_used: list[str] = field(default_factory=list)

    # Status
    status: str = "running"  # running, completed, cancelled, failed
    error_message: Optional[str] = None
    triggered_by: str = "manual"  # manual, startup, api

    def to_dict(self) -> dict:
        return {
            "scan_id": self.scan_id,
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "sightings": self.sightings,
            "new_devices": self.new_devices,
            "updated_devices": self.updated_devices,
            "methods_used": list(self.methods_used),
            "error_message": self.error_message,
            "triggered_by": self.triggered_by,
        }


# Well-known ports probed during a deep scan
COMMON_PORTS = [22, 23, 80, 443, 21, 25, 53, 110, 143, 993, 995, 515, 631, 3389, 8080]

# Protocol/service names by port, shared by classification and remote access
PROTOCOL_PORTS: dict[int, str] = {
    21: "FTP",
    22: "SSH",
    23: "Telnet",
    25: "SMTP",
    53: "DNS",
    80: "HTTP",
    443: "HTTPS",
    515: "LPD (Printer)",
    631: "IPP (Printer)",
    3389: "RDP",
    8080: "HTTP-Alt",
    8443: "HTTPS-Alt",
}

# Ports that make a device reachable for remote administration
REMOTE_ACCESS_PORTS = frozenset({22, 23, 80, 161, 443, 3389, 5900})

DEFAULT_NETWORK_RANGES = [
    "192.168.1.0/24",
    "192.168.0.0/24",
    "10.0.0.0/24",
    "172.16.0.0/24",
]


def service_labels(ports) -> list[str]:
    """Human readable service labels for a set of open ports, ascending."""
    return [
        f"{PROTOCOL_PORTS.get(port, 'Unknown Service')} (Port {port})"
        for port in sorted(ports)
    ]

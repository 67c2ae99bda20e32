"""
Rule-based diagnostics over the device inventory.

Per-category rules run first, then the transport-agnostic staleness and
activity rules. Severity depends only on the category. Remediation is
simulated: command outcomes are derived from the profile's known state,
never from a live session.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from ._types import (
    UNKNOWN,
    AutomatedFix,
    DeviceProfile,
    DiagnosisReport,
    FixResult,
    NetworkInsights,
    Severity,
    now_utc,
)

logger = logging.getLogger(__name__)


TROUBLESHOOTING_STEPS = {
    "printer_offline": [
        "Check power cable connection",
        "Verify network connectivity",
        "Restart print spooler service",
        "Update printer drivers",
        "Check for paper jams",
    ],
    "camera_no_feed": [
        "Check power supply",
        "Verify network connection",
        "Check camera settings",
        "Restart camera service",
        "Update firmware",
    ],
    "device_unreachable": [
        "Ping device to test connectivity",
        "Check network cables",
        "Verify IP configuration",
        "Check firewall settings",
        "Restart network services",
    ],
}


@dataclass(frozen=True)
class Rule:
    """One diagnostic check: when `applies` holds, the issue is reported."""
    issue: str
    applies: Callable[[DeviceProfile], bool]
    recommendations: tuple[str, ...]


def _lacks_all(*ports: int) -> Callable[[DeviceProfile], bool]:
    return lambda p: not any(port in p.ports for port in ports)


CATEGORY_RULES: dict[str, list[Rule]] = {
    "printer": [
        Rule(
            "Printer service ports not accessible",
            _lacks_all(631, 515),
            tuple(TROUBLESHOOTING_STEPS["printer_offline"]),
        ),
    ],
    "router": [
        Rule(
            "Router web interface not accessible",
            _lacks_all(80, 443),
            ("Check router configuration", "Verify admin credentials"),
        ),
        Rule(
            "DNS service not detected",
            _lacks_all(53),
            ("Check DNS configuration", "Verify DNS forwarding settings"),
        ),
    ],
    "camera": [
        Rule(
            "Camera streaming ports not accessible",
            _lacks_all(80, 554),
            tuple(TROUBLESHOOTING_STEPS["camera_no_feed"]),
        ),
        Rule(
            "Camera vendor not identified",
            lambda p: "unknown" in p.vendor.lower(),
            ("Check camera documentation", "Verify camera model and firmware"),
        ),
    ],
}

GENERIC_RULES: list[Rule] = [
    Rule(
        "No open ports detected",
        lambda p: not p.ports,
        tuple(TROUBLESHOOTING_STEPS["device_unreachable"]),
    ),
    Rule(
        "Device vendor not identified",
        lambda p: p.vendor == UNKNOWN,
        ("Perform MAC address lookup", "Check device documentation"),
    ),
]

SEVERITY_BY_CATEGORY = {
    "router": Severity.HIGH,
    "firewall": Severity.HIGH,
    "server": Severity.HIGH,
    "database": Severity.HIGH,
    "printer": Severity.MEDIUM,
    "camera": Severity.MEDIUM,
}

# (max issue count, confidence), checked in order
CONFIDENCE_STEPS = [(0, 95), (2, 85), (4, 70)]
MIN_CONFIDENCE = 60

STALE_AFTER = timedelta(hours=24)

# Exposing any of these without HTTPS counts as a security risk
INSECURE_PORTS = frozenset({21, 23, 80})

HEALTH_ALERT_THRESHOLD = 80
SEGMENTATION_SUBNET_THRESHOLD = 5

SECONDS_PER_COMMAND = 5


def severity_for(category: str) -> Severity:
    return SEVERITY_BY_CATEGORY.get(category.lower(), Severity.LOW)


def confidence_for(issue_count: int) -> int:
    """Step function of the number of issues found."""
    for max_issues, confidence in CONFIDENCE_STEPS:
        if issue_count <= max_issues:
            return confidence
    return MIN_CONFIDENCE


def analyze_device(profile: DeviceProfile, now: Optional[datetime] = None) -> DiagnosisReport:
    """
    Diagnose a single device.

    Args:
        profile: Device to analyse
        now: Reference time for the staleness rule (defaults to now)

    Returns:
        DiagnosisReport with issues in rule order and their recommendations
    """
    now = now or now_utc()
    issues: list[str] = []
    recommendations: list[str] = []

    rules = CATEGORY_RULES.get(profile.category.lower(), GENERIC_RULES)
    for rule in rules:
        if rule.applies(profile):
            issues.append(rule.issue)
            recommendations.extend(rule.recommendations)

    hours_unseen = int((now - profile.last_seen) / timedelta(hours=1))
    if now - profile.last_seen > STALE_AFTER:
        issues.append(f"Device not seen for {hours_unseen} hours")
        recommendations.extend(["Check device power status", "Verify network connectivity"])

    if not profile.active:
        issues.append("Device appears to be inactive")
        recommendations.extend(["Attempt to ping device", "Check device status indicators"])

    report = DiagnosisReport(
        device_identity=profile.identity,
        device_address=profile.address,
        issues=issues,
        recommendations=recommendations,
        severity=severity_for(profile.category),
        confidence=confidence_for(len(issues)),
        timestamp=now,
    )
    logger.debug(f"Diagnosed {profile.identity}: {len(issues)} issues, severity {report.severity.value}")
    return report


def health_status_for(report: DiagnosisReport, profile: DeviceProfile) -> str:
    """Health status written back to the cache after a diagnosis."""
    if not report.issues:
        return "Healthy"
    if not profile.active:
        return "Offline"
    return "Degraded"


def subnet_of(address: str) -> str:
    """First three octets of an IPv4 address, "unknown" for anything else."""
    try:
        ip = ipaddress.IPv4Address(address)
    except ValueError:
        return "unknown"
    return ".".join(str(ip).split(".")[:3])


def is_security_risk(profile: DeviceProfile) -> bool:
    return bool(profile.ports & INSECURE_PORTS) and 443 not in profile.ports


def generate_network_insights(
    profiles: Iterable[DeviceProfile],
    now: Optional[datetime] = None,
) -> NetworkInsights:
    """Aggregate subnet, health and security figures over the inventory."""
    profiles = list(profiles)
    total = len(profiles)

    subnets = {subnet_of(p.address) for p in profiles}
    categories = Counter(p.category for p in profiles)
    healthy = sum(1 for p in profiles if p.active and p.health_status != UNKNOWN)
    health_percentage = (healthy * 100) // total if total else 0
    risky = sum(1 for p in profiles if is_security_risk(p))

    recommendations = []
    if health_percentage < HEALTH_ALERT_THRESHOLD:
        recommendations.append("Consider investigating devices with unknown health status")
    if risky > 0:
        recommendations.append(f"{risky} devices may have security vulnerabilities")
    if len(subnets) > SEGMENTATION_SUBNET_THRESHOLD:
        recommendations.append("Large number of subnets detected - consider network segmentation review")

    return NetworkInsights(
        total_devices=total,
        subnet_count=len(subnets),
        health_percentage=health_percentage,
        category_distribution=dict(categories),
        security_risk_device_count=risky,
        recommendations=recommendations,
        timestamp=now or now_utc(),
    )


# issue prefix -> (description, command templates)
FIX_TEMPLATES: list[tuple[str, str, list[str]]] = [
    (
        "printer service ports not accessible",
        "Automated printer connectivity test and service verification",
        ["ping {address}", "telnet {address} 631", "snmpwalk -v2c -c public {address}"],
    ),
    (
        "router web interface not accessible",
        "Automated router interface accessibility check",
        ["ping {address}", "curl -I http://{address}", "nmap -p 80,443 {address}"],
    ),
    (
        "device not seen for",
        "Automated device reachability test",
        ["ping -c 4 {address}", "arping {address}", "nmap -sn {address}"],
    ),
]

FALLBACK_FIX = ("Basic connectivity test", ["ping {address}"])


def generate_automated_fix(profile: DeviceProfile, issue: str) -> AutomatedFix:
    """Remediation plan for an issue text; unknown issues get a reachability check."""
    issue_lower = issue.strip().lower()
    description, templates = FALLBACK_FIX
    for prefix, fix_description, fix_templates in FIX_TEMPLATES:
        if issue_lower.startswith(prefix):
            description, templates = fix_description, fix_templates
            break

    commands = [t.format(address=profile.address) for t in templates]
    return AutomatedFix(
        issue=issue,
        description=description,
        commands=commands,
        estimated_time_seconds=len(commands) * SECONDS_PER_COMMAND,
        risk_level="LOW",
    )


def simulate_command(command: str, profile: DeviceProfile) -> str:
    """Outcome of one remediation command, derived from the profile state."""
    if command.startswith("ping"):
        if profile.active:
            return "PING successful - 4 packets transmitted, 4 received"
        return "PING failed - Host unreachable"

    if command.startswith("telnet"):
        last = command.split()[-1]
        port = int(last) if last.isdigit() else None
        if port is not None and port in profile.ports:
            return f"Connection successful to port {port}"
        return "Connection failed - Port closed or filtered"

    if command.startswith("curl"):
        if profile.ports & {80, 443}:
            return "HTTP/1.1 200 OK - Web interface accessible"
        return "Connection failed - Web interface not available"

    if command.startswith("nmap"):
        return f"Nmap scan completed - {len(profile.ports)} open ports found"

    if command.startswith("snmpwalk"):
        if 161 in profile.ports:
            return "SNMP walk successful - Device responding"
        return "SNMP failed - Service not available"

    return "Command executed successfully"


async def execute_fix(
    fix: AutomatedFix,
    profile: DeviceProfile,
    command_delay: float = 0.0,
) -> FixResult:
    """
    Run a remediation plan against the simulated device.

    Every command runs even after a failure; the result is unsuccessful
    if any command output reports a failure.
    """
    results = []
    success = True
    for command in fix.commands:
        if command_delay:
            await asyncio.sleep(command_delay)
        outcome = simulate_command(command, profile)
        results.append(f"{command}: {outcome}")
        if "failed" in outcome.lower():
            success = False

    logger.info(f"Fix '{fix.description}' on {profile.identity}: {'ok' if success else 'failed'}")
    return FixResult(
        success=success,
        results=results,
        message="Automated fix completed successfully" if success else "Some commands failed",
    )

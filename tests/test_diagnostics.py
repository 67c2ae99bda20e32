"""Tests for the diagnostics engine."""

from datetime import datetime, timedelta, timezone

import pytest

from device_scanner._types import DeviceProfile, Severity
from device_scanner.diagnostics import (
    analyze_device,
    confidence_for,
    execute_fix,
    generate_automated_fix,
    generate_network_insights,
    health_status_for,
    subnet_of,
)

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)


def make_profile(**kwargs) -> DeviceProfile:
    defaults = {
        "name": "device",
        "address": "10.0.0.5",
        "vendor": "Acme",
        "last_seen": NOW,
        "active": True,
    }
    defaults.update(kwargs)
    return DeviceProfile(**defaults)


class TestAnalyzeDevice:
    """Tests for per-device diagnosis."""

    def test_router_missing_dns(self):
        """Should flag only the missing DNS service on a web-enabled router."""
        profile = make_profile(category="router", ports={80, 443})
        report = analyze_device(profile, now=NOW)

        assert not any("web interface" in issue for issue in report.issues)
        assert report.issues == ["DNS service not detected"]
        assert report.severity == Severity.HIGH
        assert report.confidence == 85

    def test_router_inactive_still_85(self):
        """Should stay at 85 with two issues."""
        profile = make_profile(category="router", ports={80, 443}, active=False)
        report = analyze_device(profile, now=NOW)
        assert report.issues == ["DNS service not detected", "Device appears to be inactive"]
        assert report.confidence == 85

    def test_printer_ports(self):
        """Should flag a printer without print services."""
        report = analyze_device(make_profile(category="printer", ports={80}), now=NOW)
        assert report.issues == ["Printer service ports not accessible"]
        assert "Check for paper jams" in report.recommendations
        assert report.severity == Severity.MEDIUM

    def test_printer_with_ipp(self):
        """Should accept either print port."""
        report = analyze_device(make_profile(category="printer", ports={515}), now=NOW)
        assert report.issues == []
        assert report.confidence == 95

    def test_camera_rules(self):
        """Should flag missing stream ports and unresolved vendor."""
        profile = make_profile(category="camera", ports=set(), vendor="Unknown")
        report = analyze_device(profile, now=NOW)
        assert report.issues == ["Camera streaming ports not accessible", "Camera vendor not identified"]

    def test_generic_rules(self):
        """Should flag no ports and unknown vendor for other categories."""
        profile = make_profile(category="usb device", ports=set(), vendor="Unknown")
        report = analyze_device(profile, now=NOW)
        assert report.issues == ["No open ports detected", "Device vendor not identified"]
        assert report.severity == Severity.LOW

    def test_stale_and_inactive(self):
        """Should add transport rules after the category rules."""
        profile = make_profile(
            category="server",
            ports={22},
            active=False,
            last_seen=NOW - timedelta(hours=30),
        )
        report = analyze_device(profile, now=NOW)
        assert report.issues == ["Device not seen for 30 hours", "Device appears to be inactive"]
        assert report.severity == Severity.HIGH

    def test_not_stale_at_24_hours(self):
        """Should require more than 24 hours."""
        profile = make_profile(category="server", ports={22}, last_seen=NOW - timedelta(hours=24))
        assert analyze_device(profile, now=NOW).issues == []

    @pytest.mark.parametrize("count,confidence", [
        (0, 95), (1, 85), (2, 85), (3, 70), (4, 70), (5, 60), (9, 60),
    ])
    def test_confidence_steps(self, count, confidence):
        """Should be a non-increasing step function of issue count."""
        assert confidence_for(count) == confidence

    def test_health_status(self):
        """Should derive the written-back health status."""
        healthy = make_profile(category="printer", ports={631})
        assert health_status_for(analyze_device(healthy, now=NOW), healthy) == "Healthy"

        offline = make_profile(category="printer", ports={631}, active=False)
        assert health_status_for(analyze_device(offline, now=NOW), offline) == "Offline"

        degraded = make_profile(category="printer", ports=set())
        assert health_status_for(analyze_device(degraded, now=NOW), degraded) == "Degraded"


class TestNetworkInsights:
    """Tests for inventory-wide insights."""

    def test_subnet_of(self):
        """Should group IPv4 addresses by first three octets."""
        assert subnet_of("192.168.1.44") == "192.168.1"
        assert subnet_of("aa:bb:cc:dd:ee:ff") == "unknown"
        assert subnet_of("/dev/ttyUSB0") == "unknown"

    def test_mixed_inventory(self):
        """Should count the non-IP bucket as one subnet and floor health."""
        profiles = (
            [make_profile(name=f"a{i}", address=f"192.168.1.{i}") for i in range(3)]
            + [make_profile(name=f"b{i}", address=f"10.0.0.{i}") for i in range(4)]
            + [make_profile(name=f"c{i}", address=f"aa:bb:cc:dd:ee:0{i}") for i in range(3)]
        )
        for index, profile in enumerate(profiles):
            profile.health_status = "Healthy" if index < 6 else "Unknown"

        insights = generate_network_insights(profiles, now=NOW)

        assert insights.total_devices == 10
        assert insights.subnet_count == 3
        assert insights.health_percentage == 60
        assert insights.recommendations == ["Consider investigating devices with unknown health status"]

    def test_security_risk(self):
        """Should count insecure exposure without HTTPS."""
        profiles = [
            make_profile(name="telnet", ports={23}, health_status="Healthy"),
            make_profile(name="web", ports={80, 443}, health_status="Healthy"),
            make_profile(name="ftp", ports={21, 22}, health_status="Healthy"),
        ]
        insights = generate_network_insights(profiles, now=NOW)
        assert insights.security_risk_device_count == 2
        assert insights.recommendations == ["2 devices may have security vulnerabilities"]

    def test_many_subnets(self):
        """Should recommend segmentation review above five subnets."""
        profiles = [
            make_profile(name=f"d{i}", address=f"10.0.{i}.1", health_status="Healthy")
            for i in range(6)
        ]
        insights = generate_network_insights(profiles, now=NOW)
        assert insights.recommendations == [
            "Large number of subnets detected - consider network segmentation review",
        ]
        assert insights.category_distribution == {"Unknown": 6}

    def test_empty_inventory(self):
        """Should report zero health for an empty inventory."""
        insights = generate_network_insights([], now=NOW)
        assert insights.health_percentage == 0
        assert insights.subnet_count == 0


class TestAutomatedFix:
    """Tests for remediation plans and simulated execution."""

    def test_printer_fix(self):
        """Should map the printer issue to its command list."""
        fix = generate_automated_fix(make_profile(), "Printer service ports not accessible")
        assert fix.commands == [
            "ping 10.0.0.5",
            "telnet 10.0.0.5 631",
            "snmpwalk -v2c -c public 10.0.0.5",
        ]
        assert fix.estimated_time_seconds == 15
        assert fix.risk_level == "LOW"

    def test_stale_fix_prefix_match(self):
        """Should match the staleness issue regardless of hour count."""
        fix = generate_automated_fix(make_profile(), "Device not seen for 30 hours")
        assert fix.description == "Automated device reachability test"
        assert fix.commands[0] == "ping -c 4 10.0.0.5"

    def test_fallback(self):
        """Should fall back to a single reachability command."""
        fix = generate_automated_fix(make_profile(), "Something else entirely")
        assert fix.commands == ["ping 10.0.0.5"]
        assert fix.description == "Basic connectivity test"
        assert fix.estimated_time_seconds == 5

    @pytest.mark.asyncio
    async def test_execute_partial_failure(self):
        """Should run every command and report failure if any failed."""
        profile = make_profile(ports={631})
        fix = generate_automated_fix(profile, "Printer service ports not accessible")
        result = await execute_fix(fix, profile)

        assert result.success is False
        assert result.message == "Some commands failed"
        assert result.results == [
            "ping 10.0.0.5: PING successful - 4 packets transmitted, 4 received",
            "telnet 10.0.0.5 631: Connection successful to port 631",
            "snmpwalk -v2c -c public 10.0.0.5: SNMP failed - Service not available",
        ]

    @pytest.mark.asyncio
    async def test_execute_success(self):
        """Should succeed when every simulated command passes."""
        profile = make_profile(ports={80, 443})
        fix = generate_automated_fix(profile, "Router web interface not accessible")
        result = await execute_fix(fix, profile)

        assert result.success is True
        assert result.message == "Automated fix completed successfully"
        assert result.results[1] == "curl -I http://10.0.0.5: HTTP/1.1 200 OK - Web interface accessible"
        assert result.results[2] == "nmap -p 80,443 10.0.0.5: Nmap scan completed - 2 open ports found"

    @pytest.mark.asyncio
    async def test_inactive_ping_fails(self):
        """Should fail ping for inactive devices."""
        profile = make_profile(active=False)
        result = await execute_fix(generate_automated_fix(profile, "x"), profile)
        assert result.results == ["ping 10.0.0.5: PING failed - Host unreachable"]
        assert result.success is False

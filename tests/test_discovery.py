"""Tests for discovery methods."""

import asyncio
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest

from device_scanner._types import Sighting, Transport
from device_scanner.discovery import (
    AccessPoint,
    DiscoveryMethod,
    IPRangeScanner,
    LocalInterfaceScanner,
    NmcliAdapter,
    RadioAdapter,
    RadioDevice,
    RadioPairingScanner,
    RadioSubscription,
    WirelessAdapter,
    WirelessScanner,
    enumerate_hosts,
    frequency_band,
    guess_category,
    security_tier,
    signal_quality,
)
from device_scanner.discovery.bluetooth import parse_device_line
from device_scanner.discovery.ip_range import host_count


class StaticScanner(DiscoveryMethod):
    """Emits a fixed list of sightings."""

    def __init__(self, sightings):
        self._sightings = sightings

    @property
    def name(self) -> str:
        return "static"

    async def sightings(self):
        for s in self._sightings:
            yield s


class FakeSubscription(RadioSubscription):
    """Found-device subscription fed from a queue."""

    def __init__(self):
        self.events: asyncio.Queue = asyncio.Queue()
        self.opened = False
        self.closed = False

    async def open(self) -> None:
        self.opened = True

    async def next_device(self) -> Optional[RadioDevice]:
        return await self.events.get()

    async def close(self) -> None:
        self.closed = True


class FakeRadio(RadioAdapter):
    def __init__(self, bonded):
        self.bonded = bonded
        self.subscription = FakeSubscription()

    async def bonded_devices(self):
        return list(self.bonded)

    def discovery(self) -> RadioSubscription:
        return self.subscription


class FakeWireless(WirelessAdapter):
    def __init__(self, results):
        self.results = results

    async def scan(self):
        return list(self.results)


async def _drain(queue: asyncio.Queue) -> list:
    items = []
    while not queue.empty():
        items.append(queue.get_nowait())
    return items


class TestDiscoveryMethod:
    """Tests for the common scanner contract."""

    @pytest.mark.asyncio
    async def test_pump_suppresses_duplicates(self):
        """Should emit each identity once per pass."""
        scanner = StaticScanner([
            Sighting(name="a", address="1"),
            Sighting(name="a", address="2"),
            Sighting(name=None, address="3"),
        ])
        intake = asyncio.Queue()

        scanner.start_scan(intake)
        emitted = await scanner.wait()

        assert emitted == 2
        assert [s.identity for s in await _drain(intake)] == ["a", "3"]
        assert scanner.is_scanning is False

    @pytest.mark.asyncio
    async def test_seen_set_resets_each_pass(self):
        """Should emit the same identity again on a new pass."""
        scanner = StaticScanner([Sighting(name="a", address="1")])
        intake = asyncio.Queue()

        scanner.start_scan(intake)
        await scanner.wait()
        scanner.start_scan(intake)
        await scanner.wait()

        assert intake.qsize() == 2

    @pytest.mark.asyncio
    async def test_discover_collects_pass(self):
        """Should collect one full pass as a list."""
        scanner = StaticScanner([Sighting(name="a", address="1"), Sighting(name="a", address="1")])
        found = await scanner.discover()
        assert len(found) == 1

    @pytest.mark.asyncio
    async def test_wait_without_scan(self):
        """Should report zero when never started."""
        assert await StaticScanner([]).wait() == 0


class TestRadioPairingScanner:
    """Tests for Bluetooth discovery."""

    @pytest.mark.asyncio
    async def test_bonded_first_then_events(self):
        """Should emit bonded devices as active, then found devices."""
        radio = FakeRadio([RadioDevice("AA:AA:AA:AA:AA:01", "Headset")])
        scanner = RadioPairingScanner(adapter=radio)
        intake = asyncio.Queue()

        await radio.subscription.events.put(RadioDevice("AA:AA:AA:AA:AA:02", "Speaker"))
        await radio.subscription.events.put(RadioDevice("AA:AA:AA:AA:AA:02", "Speaker"))
        await radio.subscription.events.put(None)

        scanner.start_scan(intake)
        assert await scanner.wait() == 2

        first, second = await _drain(intake)
        assert first.name == "Headset"
        assert first.active is True
        assert first.transport == Transport.BLUETOOTH
        assert first.attributes["paired"] == "yes"
        assert second.name == "Speaker"
        assert second.active is False
        assert radio.subscription.closed is True

    @pytest.mark.asyncio
    async def test_cancel_unsubscribes(self):
        """Should close the subscription when the scan is cancelled."""
        radio = FakeRadio([])
        scanner = RadioPairingScanner(adapter=radio)
        intake = asyncio.Queue()

        scanner.start_scan(intake)
        await radio.subscription.events.put(RadioDevice("AA:AA:AA:AA:AA:03", None))
        await asyncio.sleep(0.05)

        assert radio.subscription.opened is True
        assert scanner.is_scanning is True

        scanner.cancel()
        assert await scanner.wait() == 0

        assert radio.subscription.closed is True
        assert scanner.is_scanning is False
        assert intake.qsize() == 1

    def test_parse_device_line(self):
        """Should parse bluetoothctl device lines."""
        device = parse_device_line("Device 11:22:33:aa:bb:cc JBL Flip 5")
        assert device.address == "11:22:33:AA:BB:CC"
        assert device.name == "JBL Flip 5"

    def test_parse_new_event_with_ansi(self):
        """Should parse coloured [NEW] event lines."""
        line = "\x1b[0;92m[NEW]\x1b[0m Device 11:22:33:44:55:66 11-22-33-44-55-66"
        device = parse_device_line(line)
        assert device.address == "11:22:33:44:55:66"
        assert device.name is None

    def test_parse_other_line(self):
        """Should ignore unrelated output."""
        assert parse_device_line("Discovery started") is None


class TestWireless:
    """Tests for Wi-Fi discovery."""

    @pytest.mark.parametrize("caps,tier", [
        ("[WPA2-PSK-CCMP][WPA3-SAE]", "WPA3"),
        ("WPA1 WPA2", "WPA2"),
        ("WPA1", "WPA"),
        ("[WEP]", "WEP"),
        ("", "Open"),
    ])
    def test_security_tier(self, caps, tier):
        """Should rank WPA3 > WPA2 > WPA > WEP > Open."""
        assert security_tier(caps) == tier

    @pytest.mark.parametrize("level,bucket", [
        (-40, "Excellent"),
        (-50, "Good"),
        (-65, "Fair"),
        (-70, "Weak"),
        (-90, "Weak"),
    ])
    def test_signal_quality(self, level, bucket):
        """Should bucket signal strength."""
        assert signal_quality(level) == bucket

    def test_frequency_band(self):
        """Should split bands at 5000 MHz."""
        assert frequency_band(5180) == "5GHz"
        assert frequency_band(2437) == "2.4GHz"

    @pytest.mark.asyncio
    async def test_burst(self):
        """Should emit one sighting per access point."""
        adapter = FakeWireless([
            AccessPoint("Office", "aa:bb:cc:00:00:01", -45, 5180, "WPA2"),
            AccessPoint("", "aa:bb:cc:00:00:02", -80, 2412, ""),
        ])
        found = await WirelessScanner(adapter=adapter).discover()

        assert [s.identity for s in found] == ["Office", "aa:bb:cc:00:00:02"]
        assert found[0].attributes["security"] == "WPA2"
        assert found[0].attributes["signal_quality"] == "Excellent"
        assert found[0].attributes["band"] == "5GHz"
        assert found[1].attributes["security"] == "Open"
        assert all(s.transport == Transport.WIFI for s in found)

    def test_nmcli_parse(self):
        """Should parse terse nmcli output with escaped colons."""
        output = (
            "Office:AA\\:BB\\:CC\\:00\\:00\\:01:80:5180 MHz:WPA2\n"
            "Guest:AA\\:BB\\:CC\\:00\\:00\\:02:30:2437 MHz:\n"
        )
        results = NmcliAdapter.parse(output)

        assert results[0] == AccessPoint("Office", "aa:bb:cc:00:00:01", -60, 5180, "WPA2")
        assert results[1].level == -85
        assert results[1].capabilities == ""


class TestIPRange:
    """Tests for IP range discovery."""

    @pytest.mark.parametrize("prefix,expected", [
        (24, 254),
        (16, 254),
        (28, 14),
        (30, 2),
        (31, 0),
        (32, 0),
    ])
    def test_host_count(self, prefix, expected):
        """Should cap host enumeration at 254 and never go negative."""
        assert host_count(prefix) == expected
        assert len(enumerate_hosts(f"10.0.0.0/{prefix}")) == expected

    def test_hosts_ascending(self):
        """Should enumerate the first hosts in ascending order."""
        assert enumerate_hosts("192.168.1.0/29") == [
            "192.168.1.1",
            "192.168.1.2",
            "192.168.1.3",
            "192.168.1.4",
            "192.168.1.5",
            "192.168.1.6",
        ]

    def test_non_network_base(self):
        """Should use the network containing a host-style base address."""
        assert enumerate_hosts("10.0.0.77/30") == ["10.0.0.77", "10.0.0.78"]

    def test_invalid_range_skipped(self):
        """Should skip malformed ranges and keep the rest."""
        scanner = IPRangeScanner(["bogus", "10.0.0.0/30"])
        assert scanner.hosts() == ["10.0.0.1", "10.0.0.2"]

    @pytest.mark.parametrize("ports,category", [
        ({21, 22, 80}, "file server"),
        ({23, 80}, "network device"),
        ({443, 631}, "web server"),
        ({515}, "printer"),
        ({3389}, "unknown device"),
        (set(), "unknown device"),
    ])
    def test_guess_category(self, ports, category):
        """Should apply the port priority table."""
        assert guess_category(ports) == category

    @pytest.mark.asyncio
    async def test_one_sighting_per_reachable_host(self):
        """Should deep-scan reachable hosts only."""
        reachable = {"10.0.0.1", "10.0.0.2"}

        async def fake_quick_check(address, timeout):
            return address in reachable

        async def fake_scan_ports(address, ports, timeout):
            return {22, 80} if address == "10.0.0.1" else set()

        scanner = IPRangeScanner(
            ["10.0.0.0/29"],
            max_concurrent_hosts=2,
            max_concurrent_scans=1,
            resolve_hosts=False,
        )
        with patch("device_scanner.discovery.ip_range.quick_check", side_effect=fake_quick_check), \
             patch("device_scanner.discovery.ip_range.scan_ports", side_effect=fake_scan_ports) as mock_scan:
            found = await scanner.discover()

        by_address = {s.address: s for s in found}
        assert set(by_address) == reachable
        assert mock_scan.call_count == 2

        router = by_address["10.0.0.1"]
        assert router.name == "network device at 10.0.0.1"
        assert router.category == "network device"
        assert router.ports == {22, 80}
        assert router.remote_accessible is True
        assert router.active is True

        quiet = by_address["10.0.0.2"]
        assert quiet.name == "unknown device at 10.0.0.2"
        assert quiet.remote_accessible is False
        assert quiet.mac_address is None

    @pytest.mark.asyncio
    async def test_resolves_mac_and_hostname(self):
        """Should attach the ARP MAC and reverse DNS name of answering hosts."""
        scanner = IPRangeScanner(["10.0.0.0/30"])
        with patch("device_scanner.discovery.ip_range.quick_check", AsyncMock(side_effect=[True, False])), \
             patch("device_scanner.discovery.ip_range.scan_ports", AsyncMock(return_value={80})), \
             patch("device_scanner.discovery.ip_range.arp_lookup", AsyncMock(return_value="00:1b:63:00:00:01")), \
             patch("device_scanner.discovery.ip_range.reverse_dns", AsyncMock(return_value="gw.lan")):
            found = await scanner.discover()

        assert len(found) == 1
        assert found[0].mac_address == "00:1b:63:00:00:01"
        assert found[0].attributes["mac_address"] == "00:1b:63:00:00:01"
        assert found[0].attributes["hostname"] == "gw.lan"

    @pytest.mark.asyncio
    async def test_unresolved_host(self):
        """Should leave MAC and hostname out when lookups find nothing."""
        scanner = IPRangeScanner(["10.0.0.0/30"])
        with patch("device_scanner.discovery.ip_range.quick_check", AsyncMock(return_value=True)), \
             patch("device_scanner.discovery.ip_range.scan_ports", AsyncMock(return_value={443})), \
             patch("device_scanner.discovery.ip_range.arp_lookup", AsyncMock(return_value=None)), \
             patch("device_scanner.discovery.ip_range.reverse_dns", AsyncMock(return_value=None)):
            found = await scanner.discover()

        assert {s.address for s in found} == {"10.0.0.1", "10.0.0.2"}
        assert all(s.mac_address is None for s in found)
        assert all("hostname" not in s.attributes for s in found)


class TestLocalInterfaces:
    """Tests for serial/USB discovery."""

    @pytest.mark.asyncio
    async def test_existing_paths(self, tmp_path):
        """Should emit one sighting per existing candidate path."""
        present = tmp_path / "ttyUSB0"
        present.touch()
        scanner = LocalInterfaceScanner([str(present), str(tmp_path / "ttyACM0")])

        with patch("device_scanner.discovery.local.list_registry_ports", return_value=[]):
            found = await scanner.discover()

        assert len(found) == 1
        assert found[0].address == str(present)
        assert found[0].category == "serial device"
        assert found[0].transport == Transport.LOCAL

    @pytest.mark.asyncio
    async def test_registry_entries(self, tmp_path):
        """Should emit registry entries with USB metadata."""
        port = SimpleNamespace(
            device="/dev/ttyUSB7",
            description="CP2102 USB to UART",
            hwid="USB VID:PID=10C4:EA60",
            manufacturer="Silicon Labs",
            vid=0x10C4,
            pid=0xEA60,
            serial_number="0001",
        )
        scanner = LocalInterfaceScanner([])

        with patch("device_scanner.discovery.local.list_registry_ports", return_value=[port]):
            found = await scanner.discover()

        assert len(found) == 1
        assert found[0].vendor == "Silicon Labs"
        assert found[0].category == "usb device"
        assert found[0].attributes["vendor_id"] == "10c4"
        assert found[0].attributes["product_id"] == "ea60"

    @pytest.mark.asyncio
    async def test_nothing_found(self, tmp_path):
        """Should yield zero sightings when nothing is attached."""
        scanner = LocalInterfaceScanner([str(tmp_path / "none")])
        with patch("device_scanner.discovery.local.list_registry_ports", side_effect=OSError("no sysfs")):
            assert await scanner.discover() == []

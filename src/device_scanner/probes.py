"""
Probe primitives.

Timeout-bounded reachability and port-liveness checks against a single
address, plus ARP and reverse DNS lookups for hosts that answered. Every failure (refused, timeout, unreachable, bad address)
collapses to False / an empty result / None; nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import socket
from typing import Iterable, Optional

from ._types import COMMON_PORTS

logger = logging.getLogger(__name__)

# Two-probe coarse reachability check, in order
QUICK_CHECK_PORTS = (80, 443)

_ARP_LINE = re.compile(r"(?:(\S+)\s+)?\((\d+\.\d+\.\d+\.\d+)\)\s+at\s+(\S+)")


async def is_reachable(address: str, timeout: float = 0.5) -> bool:
    """
    Single ICMP echo to the address using the system ping.

    Returns False if the host does not answer, ping is unavailable,
    or the probe does not finish within the timeout.
    """
    wait_seconds = str(max(1, math.ceil(timeout)))
    try:
        proc = await asyncio.create_subprocess_exec(
            "ping", "-c", "1", "-W", wait_seconds, address,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug(f"ping unavailable for {address}: {e}")
        return False

    try:
        returncode = await asyncio.wait_for(proc.wait(), timeout=timeout + 1.0)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return False

    return returncode == 0


async def is_port_open(address: str, port: int, timeout: float = 0.5) -> bool:
    """Attempt a TCP handshake to (address, port). No retries."""
    try:
        _, writer = await asyncio.wait_for(
            asyncio.open_connection(address, port),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError, ValueError) as e:
        logger.debug(f"Port {address}:{port} closed: {e!r}")
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def scan_ports(
    address: str,
    ports: Optional[Iterable[int]] = None,
    timeout_per_port: float = 1.0,
    max_concurrent: Optional[int] = None,
) -> set[int]:
    """
    Probe each candidate port independently and return the ones that answered.

    Args:
        address: Host to probe
        ports: Candidate ports (defaults to COMMON_PORTS)
        timeout_per_port: Handshake timeout for each probe
        max_concurrent: Upper bound on simultaneous probes (None = all at once)
    """
    candidates = list(dict.fromkeys(ports if ports is not None else COMMON_PORTS))
    semaphore = asyncio.Semaphore(max_concurrent) if max_concurrent else None

    async def probe(port: int) -> Optional[int]:
        if semaphore is None:
            return port if await is_port_open(address, port, timeout_per_port) else None
        async with semaphore:
            return port if await is_port_open(address, port, timeout_per_port) else None

    results = await asyncio.gather(*(probe(p) for p in candidates))
    open_ports = {p for p in results if p is not None}
    if open_ports:
        logger.debug(f"Open ports on {address}: {sorted(open_ports)}")
    return open_ports


async def quick_check(address: str, timeout: float = 0.3) -> bool:
    """Coarse reachability: port 80, then 443 as fallback."""
    for port in QUICK_CHECK_PORTS:
        if await is_port_open(address, port, timeout):
            return True
    return False


def parse_arp_line(line: str) -> Optional[tuple[str, Optional[str], str]]:
    """
    Parse one `arp -an` line into (ip, hostname, mac).

    Linux:  ? (192.168.1.1) at aa:bb:cc:dd:ee:ff [ether] on eth0
    macOS:  ? (192.168.1.1) at aa:bb:cc:dd:ee:ff on en0 ifscope [ethernet]
    """
    match = _ARP_LINE.search(line)
    if not match:
        return None

    hostname = match.group(1) if match.group(1) != "?" else None
    mac_address = match.group(3).lower()

    # Skip incomplete and broadcast entries
    if mac_address in ("(incomplete)", "ff:ff:ff:ff:ff:ff") or mac_address.count(":") != 5:
        return None

    return match.group(2), hostname, mac_address


async def arp_lookup(address: str, timeout: float = 1.0) -> Optional[str]:
    """
    MAC address of a host from the local ARP cache.

    Only hosts that were recently contacted (e.g. just port-probed) have an
    entry. Returns None when there is none or `arp` is unavailable.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "arp", "-an", address,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
    except OSError as e:
        logger.debug(f"arp unavailable for {address}: {e}")
        return None

    try:
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return None

    for line in stdout.decode(errors="replace").splitlines():
        entry = parse_arp_line(line)
        if entry and entry[0] == address:
            return entry[2]
    return None


async def reverse_dns(address: str, timeout: float = 1.0) -> Optional[str]:
    """Hostname for an address via reverse DNS, or None."""
    loop = asyncio.get_running_loop()
    try:
        hostname, _ = await asyncio.wait_for(
            loop.getnameinfo((address, 0), socket.NI_NAMEREQD),
            timeout=timeout,
        )
    except (OSError, asyncio.TimeoutError, ValueError) as e:
        logger.debug(f"No reverse DNS for {address}: {e!r}")
        return None
    return hostname or None

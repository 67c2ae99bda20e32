"""Diagnostic report export."""

from __future__ import annotations

from typing import Iterable

from ._types import DeviceProfile, NetworkInsights, now_utc


def build_report(
    profiles: Iterable[DeviceProfile],
    insights: NetworkInsights,
    app_version: str = "1.0",
) -> dict:
    """Full inventory plus network insights as a JSON-compatible document."""
    devices = sorted(profiles, key=lambda p: p.identity)
    return {
        "timestamp": now_utc().isoformat(),
        "app_version": app_version,
        "total_devices": len(devices),
        "devices": [p.to_dict() for p in devices],
        "ai_insights": insights.to_dict(),
    }

"""
Persistent device cache.

Maps identity -> DeviceProfile and persists the whole map as one JSON
document at /var/lib/udc/device_cache.json (by default):

    {
      "HP LaserJet": {
        "name": "HP LaserJet",
        "address": "192.168.1.20",
        "vendor": "HP",
        "category": "printer",
        "compatibility": "High compatibility",
        "lastSeen": "2026-01-01T12:00:00+00:00",
        "remote_accessible": true,
        "health_status": "Healthy",
        "ports": [80, 631],
        "services": ["HTTP (Port 80)", "IPP (Printer) (Port 631)"],
        "active": true,
        "attributes": {"mac_address": "3c:d9:2b:00:00:20"}
      }
    }

Merges are serialized by a lock and never replace a known value with a
default. Saves snapshot the map under the same lock and are written
atomically (temp file + rename).
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

from ._types import (
    PERSISTED_FIELDS,
    PROFILE_DEFAULTS,
    UNKNOWN,
    DeviceProfile,
    now_utc,
)

logger = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Outcome of merging one partial profile."""
    profile: DeviceProfile
    is_new: bool
    changed_fields: set[str] = field(default_factory=set)

    @property
    def worth_persisting(self) -> bool:
        """New identity, or a persisted field other than last_seen changed."""
        if self.is_new:
            return True
        return bool((self.changed_fields - {"last_seen"}) & PERSISTED_FIELDS)


def _copy(profile: DeviceProfile) -> DeviceProfile:
    return replace(
        profile,
        ports=set(profile.ports),
        services=list(profile.services),
        attributes=dict(profile.attributes),
    )


def _is_default(field_name: str, value: Any) -> bool:
    if value is None:
        return True
    if field_name in ("ports", "services"):
        return not value
    default = PROFILE_DEFAULTS[field_name]
    if isinstance(value, str) and isinstance(default, str):
        # Classifier fallbacks are lower case ("unknown")
        return value.strip().lower() == default.lower()
    return value == default


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO-8601 string or epoch milliseconds."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


def profile_to_document(profile: DeviceProfile) -> dict:
    """Persisted form of one profile."""
    return {
        "name": profile.name,
        "address": profile.address,
        "vendor": profile.vendor,
        "category": profile.category,
        "compatibility": profile.compatibility,
        "lastSeen": profile.last_seen.isoformat(),
        "remote_accessible": profile.remote_accessible,
        "health_status": profile.health_status,
        "ports": sorted(profile.ports),
        "services": list(profile.services),
        "active": profile.active,
        "attributes": dict(profile.attributes),
    }


def profile_from_document(identity: str, entry: Mapping) -> DeviceProfile:
    """
    Rebuild a profile from its persisted form.

    Only `address` is required; absent fields take their defaults.
    Raises ValueError if the entry has no address.
    """
    address = entry.get("address")
    if not address:
        raise ValueError(f"cache entry {identity!r} has no address")

    return DeviceProfile(
        name=entry.get("name") or identity,
        address=str(address),
        vendor=entry.get("vendor") or UNKNOWN,
        category=entry.get("category") or UNKNOWN,
        ports={int(p) for p in entry.get("ports") or []},
        services=[str(s) for s in entry.get("services") or []],
        compatibility=entry.get("compatibility") or UNKNOWN,
        last_seen=_parse_timestamp(entry.get("lastSeen")) or now_utc(),
        active=bool(entry.get("active", False)),
        remote_accessible=bool(entry.get("remote_accessible", False)),
        health_status=entry.get("health_status") or UNKNOWN,
        attributes={
            str(k): str(v)
            for k, v in (entry.get("attributes") or {}).items()
            if v is not None
        },
    )


class DeviceCache:
    """Identity -> DeviceProfile map with JSON persistence."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._profiles: dict[str, DeviceProfile] = {}
        self._lock = asyncio.Lock()
        self._save_lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._profiles)

    def __contains__(self, identity: object) -> bool:
        return identity in self._profiles

    def get(self, identity: str) -> Optional[DeviceProfile]:
        profile = self._profiles.get(identity)
        return _copy(profile) if profile else None

    def identities(self) -> list[str]:
        return sorted(self._profiles)

    def snapshot(self) -> list[DeviceProfile]:
        """Copies of every profile, ordered by identity."""
        return [_copy(self._profiles[i]) for i in sorted(self._profiles)]

    async def load(self) -> int:
        """
        Populate the cache from disk.

        A missing or unreadable document leaves the cache empty.
        Returns the number of profiles loaded.
        """
        if not self.path.exists():
            logger.info(f"No device cache at {self.path}, starting empty")
            return 0

        try:
            raw = await asyncio.to_thread(self.path.read_text)
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            logger.warning(f"Could not read device cache {self.path}: {e}, starting empty")
            return 0

        if not isinstance(data, dict):
            logger.warning(f"Device cache {self.path} is not a JSON object, starting empty")
            return 0

        profiles = {}
        for identity, entry in data.items():
            if not isinstance(entry, dict):
                logger.warning(f"Skipping malformed cache entry {identity!r}")
                continue
            try:
                profiles[identity] = profile_from_document(identity, entry)
            except (AttributeError, TypeError, ValueError) as e:
                logger.warning(f"Skipping cache entry {identity!r}: {e}")

        async with self._lock:
            self._profiles = profiles

        logger.info(f"Loaded {len(profiles)} devices from {self.path}")
        return len(profiles)

    async def merge(self, identity: str, partial: Mapping[str, Any]) -> MergeResult:
        """
        Field-level merge of a partial profile into the cache.

        Default values in `partial` are ignored, so a merge never regresses
        a known field. Ports and services are replaced when given, attributes
        are merged key by key. last_seen only moves forward.
        """
        async with self._lock:
            existing = self._profiles.get(identity)
            is_new = existing is None
            if existing is None:
                existing = DeviceProfile(
                    name=partial.get("name") or identity,
                    address=partial.get("address") or identity,
                    last_seen=partial.get("last_seen") or now_utc(),
                )
                self._profiles[identity] = existing

            changed: set[str] = set()

            for key in ("name", "address"):
                value = partial.get(key)
                if value and value != getattr(existing, key):
                    setattr(existing, key, value)
                    changed.add(key)

            for key in PROFILE_DEFAULTS:
                value = partial.get(key)
                if _is_default(key, value):
                    continue
                if key == "ports":
                    value = set(value)
                elif key == "services":
                    value = list(value)
                if value != getattr(existing, key):
                    setattr(existing, key, value)
                    changed.add(key)

            for key, value in (partial.get("attributes") or {}).items():
                if value in (None, ""):
                    continue
                if existing.attributes.get(key) != value:
                    existing.attributes[key] = value
                    changed.add("attributes")

            seen_at = partial.get("last_seen")
            if seen_at is not None and seen_at > existing.last_seen:
                existing.last_seen = seen_at
                changed.add("last_seen")

            return MergeResult(profile=_copy(existing), is_new=is_new, changed_fields=changed)

    async def set_health(self, identity: str, status: str) -> DeviceProfile:
        """Overwrite the health status. Raises KeyError for an unknown identity."""
        async with self._lock:
            profile = self._profiles[identity]
            profile.health_status = status
            return _copy(profile)

    async def mark_inactive(self, identity: str) -> DeviceProfile:
        """Explicitly mark a device inactive. Raises KeyError for an unknown identity."""
        async with self._lock:
            profile = self._profiles[identity]
            profile.active = False
            return _copy(profile)

    async def save(self) -> bool:
        """Write the whole map to disk. Returns False if the write failed."""
        async with self._lock:
            document = {
                identity: profile_to_document(profile)
                for identity, profile in self._profiles.items()
            }

        async with self._save_lock:
            try:
                await asyncio.to_thread(self._write, document)
            except OSError as e:
                logger.error(f"Failed to save device cache to {self.path}: {e}")
                return False

        logger.debug(f"Saved {len(document)} devices to {self.path}")
        return True

    def _write(self, document: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        # Atomic write: write to temp file, then rename
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(document, indent=2))
        tmp_path.rename(self.path)

    async def clear(self) -> None:
        """Drop every profile and persist the empty map."""
        async with self._lock:
            count = len(self._profiles)
            self._profiles.clear()
        logger.info(f"Cleared {count} devices from cache")
        await self.save()

# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Reconciler — applies raw zone fragments from the core to the EntityCache and
works out which semantic facets changed.

A fragment may carry any mix of:

    zones               full snapshot, replaces the whole cache
    zones_added         new zones
    zones_changed       replacement zone objects
    zones_removed       zone ids
    zones_seek_changed  {zone_id, seek_position, queue_time_remaining?}

Sub-lists are applied in that order.  Every change is reported as a
Notification to the ``on_notification`` sink (normally the broadcaster) and
also returned from ``apply_fragment`` so callers can inspect it.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from . import protocol
from .cache import ConnectionStatus, EntityCache
from .models import Output, Zone, parse_zone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Notification:
    event: str
    data: Any
    zone_id: str | None = None


NotificationSink = Callable[[Notification], None]


@dataclass
class Fragment:
    """One raw update from the core, split into its five optional variants."""

    snapshot: list | None = None
    added: list | None = None
    changed: list | None = None
    removed: list | None = None
    seek_changed: list | None = None

    @classmethod
    def from_raw(cls, raw: dict | None) -> "Fragment":
        if not isinstance(raw, dict):
            return cls()

        def pick(key):
            value = raw.get(key)
            return value if isinstance(value, list) else None

        return cls(
            snapshot=pick("zones"),
            added=pick("zones_added"),
            changed=pick("zones_changed"),
            removed=pick("zones_removed"),
            seek_changed=pick("zones_seek_changed"),
        )

    @property
    def is_empty(self) -> bool:
        return all(v is None for v in (self.snapshot, self.added, self.changed,
                                       self.removed, self.seek_changed))


@dataclass
class _Batch:
    notifications: list[Notification] = field(default_factory=list)

    def add(self, event: str, data: Any, zone_id: str | None = None):
        self.notifications.append(Notification(event, data, zone_id))


# ---------------------------------------------------------------------------
# Diff axes
# ---------------------------------------------------------------------------
def _state_key(zone: Zone) -> tuple:
    return (zone.state, zone.is_play_allowed, zone.is_pause_allowed, zone.is_seek_allowed,
            zone.is_next_allowed, zone.is_previous_allowed)


def _track_key(zone: Zone) -> tuple | None:
    return zone.now_playing.text if zone.now_playing else None


def _settings_key(zone: Zone) -> tuple:
    s = zone.settings
    return (s.loop, s.shuffle, s.auto_radio)


def _volume_key(output: Output) -> tuple | None:
    return (output.volume.value, output.volume.is_muted) if output.volume else None


def state_payload(zone: Zone) -> dict:
    return {"state": zone.state, **zone.capabilities}


def track_payload(zone: Zone) -> dict | None:
    return zone.now_playing.to_dict() if zone.now_playing else None


def volume_payload(output: Output) -> dict:
    volume = output.volume
    return {
        "outputId": output.output_id,
        "displayName": output.display_name,
        "type": volume.type if volume else None,
        "value": volume.value if volume else None,
        "min": volume.min if volume else None,
        "max": volume.max if volume else None,
        "step": volume.step if volume else None,
        "isMuted": volume.is_muted if volume else None,
    }


def diff_zone(previous: Zone, current: Zone) -> list[Notification]:
    """Compare two versions of a zone along the state/track/settings/volume axes."""
    zone_id = current.zone_id
    out = []
    if _state_key(previous) != _state_key(current):
        out.append(Notification(protocol.STATE, state_payload(current), zone_id))
    if _track_key(previous) != _track_key(current):
        out.append(Notification(protocol.TRACK, track_payload(current), zone_id))
    if _settings_key(previous) != _settings_key(current):
        out.append(Notification(protocol.SETTINGS, current.settings.to_dict(), zone_id))
    for output in current.outputs:
        before = previous.get_output(output.output_id)
        if before is not None and _volume_key(before) != _volume_key(output):
            out.append(Notification(protocol.VOLUME, volume_payload(output), zone_id))
    return out


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------
class Reconciler:
    def __init__(self, cache: EntityCache, on_notification: NotificationSink | None = None):
        self.cache = cache
        self._on_notification = on_notification

    def set_notification_sink(self, sink: NotificationSink | None):
        self._on_notification = sink

    def apply_fragment(self, raw: dict | Fragment | None) -> list[Notification]:
        """Apply one fragment to the cache and emit the resulting notifications."""
        fragment = raw if isinstance(raw, Fragment) else Fragment.from_raw(raw)
        if fragment.is_empty:
            logger.debug("Ignoring fragment without zone data")
            return []
        batch = _Batch()

        if fragment.snapshot is not None:
            self._apply_snapshot(fragment.snapshot, batch)
        if fragment.added is not None:
            self._apply_added(fragment.added, batch)
        if fragment.changed is not None:
            self._apply_changed(fragment.changed, batch)
        if fragment.removed is not None:
            self._apply_removed(fragment.removed, batch)
        if fragment.seek_changed is not None:
            self._apply_seek(fragment.seek_changed, batch)

        self._emit(batch.notifications)
        return batch.notifications

    def set_connection_status(self, connected: bool, paired: bool,
                              core_name: str | None = None,
                              core_id: str | None = None) -> Notification | None:
        """Record connection status; notify only when something differs."""
        new = ConnectionStatus(connected=connected, paired=paired,
                               core_name=core_name, core_id=core_id)
        if new == self.cache.status:
            return None
        self.cache.status = new
        logger.info("Connection status: connected=%s paired=%s core=%s",
                    connected, paired, core_name or "-")
        notification = Notification(protocol.CONNECTION, new.to_dict())
        self._emit([notification])
        return notification

    # ── Sub-list handlers ──

    def _parse_all(self, raw_zones: list, kind: str) -> list[Zone]:
        zones = []
        for raw in raw_zones:
            zone = parse_zone(raw)
            if zone is None:
                logger.warning("Skipping %s entry without zone_id: %r", kind, raw)
                continue
            zones.append(zone)
        return zones

    def _apply_snapshot(self, raw_zones: list, batch: _Batch):
        self.cache.clear()
        zones = self._parse_all(raw_zones, "zones")
        for zone in zones:
            self.cache.upsert_zone(zone)
        logger.info("Zone snapshot: %d zones", len(zones))
        batch.add(protocol.ZONES, {"zones": [z.to_dict() for z in self.cache.list_zones()]})

    def _apply_added(self, raw_zones: list, batch: _Batch):
        zones = self._parse_all(raw_zones, "zones_added")
        for zone in zones:
            self.cache.upsert_zone(zone)
            logger.info("Zone added: %s (%s)", zone.display_name, zone.zone_id)
        if zones:
            batch.add(protocol.ZONES, {"added": [z.to_dict() for z in zones]})

    def _apply_changed(self, raw_zones: list, batch: _Batch):
        for zone in self._parse_all(raw_zones, "zones_changed"):
            previous = self.cache.upsert_zone(zone)
            if previous is None:
                logger.debug("Changed zone %s was not cached, stored as new", zone.zone_id)
                continue
            batch.notifications.extend(diff_zone(previous, zone))

    def _apply_removed(self, zone_ids: list, batch: _Batch):
        removed = []
        for zone_id in zone_ids:
            if not isinstance(zone_id, str):
                continue
            zone = self.cache.remove_zone(zone_id)
            if zone:
                logger.info("Zone removed: %s (%s)", zone.display_name, zone_id)
            removed.append(zone_id)
        if removed:
            batch.add(protocol.ZONES, {"removed": removed})

    def _apply_seek(self, entries: list, batch: _Batch):
        # Hot path: patch the cached now-playing in place, no reparse, no diff
        for entry in entries:
            if not isinstance(entry, dict) or not isinstance(entry.get("zone_id"), str):
                continue
            zone_id = entry["zone_id"]
            seek_position = entry.get("seek_position")
            queue_time_remaining = entry.get("queue_time_remaining")

            zone = self.cache.get_zone_by_id(zone_id)
            length = None
            if zone:
                if zone.now_playing:
                    zone.now_playing.seek_position = seek_position
                    length = zone.now_playing.length
                if queue_time_remaining is not None:
                    zone.queue_time_remaining = queue_time_remaining

            batch.add(protocol.POSITION, {
                "seekPosition": seek_position,
                "length": length,
                "queueTimeRemaining": queue_time_remaining,
            }, zone_id)

    def _emit(self, notifications: list[Notification]):
        if not self._on_notification:
            return
        for notification in notifications:
            try:
                self._on_notification(notification)
            except Exception:
                logger.exception("Notification sink failed for %s", notification.event)

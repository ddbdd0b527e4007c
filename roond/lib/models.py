# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
Data model for zones, outputs and library navigation results.

Raw payloads from the Roon Core are loosely typed dicts with snake_case keys
(``zone_id``, ``now_playing.three_line.line2`` ...).  The ``parse_*``
functions turn them into the dataclasses below; ``to_dict()`` renders the
camelCase JSON sent to IPC clients.  Absent optional attributes are left out
of the JSON rather than sent as null.
"""

from dataclasses import dataclass, field
from typing import Any

PLAY_STATES = ("playing", "paused", "loading", "stopped")
LOOP_MODES = ("loop", "loop_one", "disabled")
VOLUME_TYPES = ("number", "db", "incremental")
SOURCE_CONTROL_STATUSES = ("selected", "standby", "deselected", "indeterminate")

UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_TRACK = "Unknown Track"
UNKNOWN_ALBUM = "Unknown Album"


def _compact(d: dict) -> dict:
    return {k: v for k, v in d.items() if v is not None}


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def _line(raw: dict, block: str, key: str) -> str:
    value = _as_dict(raw.get(block)).get(key)
    return value if isinstance(value, str) else ""


def _number(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def _choice(value, allowed: tuple, fallback: str) -> str:
    return value if value in allowed else fallback


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------
@dataclass
class Volume:
    type: str = "number"
    value: float | None = None
    min: float | None = None
    max: float | None = None
    step: float | None = None
    is_muted: bool = False

    def to_dict(self) -> dict:
        return _compact({
            "type": self.type,
            "value": self.value,
            "min": self.min,
            "max": self.max,
            "step": self.step,
            "isMuted": self.is_muted,
        })


@dataclass
class SourceControl:
    control_key: str
    display_name: str = ""
    supports_standby: bool = False
    status: str = "indeterminate"

    def to_dict(self) -> dict:
        return {
            "controlKey": self.control_key,
            "displayName": self.display_name,
            "supportsStandby": self.supports_standby,
            "status": self.status,
        }


@dataclass
class Output:
    """A single addressable playback endpoint.

    ``zone_id`` is a lookup reference to the owning zone, not ownership.
    """

    output_id: str
    display_name: str
    zone_id: str
    volume: Volume | None = None
    can_group_with_output_ids: list[str] | None = None
    source_controls: list[SourceControl] | None = None

    def to_dict(self) -> dict:
        return _compact({
            "outputId": self.output_id,
            "displayName": self.display_name,
            "zoneId": self.zone_id,
            "volume": self.volume.to_dict() if self.volume else None,
            "canGroupWithOutputIds": self.can_group_with_output_ids,
            "sourceControls": ([sc.to_dict() for sc in self.source_controls]
                               if self.source_controls is not None else None),
        })


# ---------------------------------------------------------------------------
# Zones
# ---------------------------------------------------------------------------
@dataclass
class NowPlaying:
    artist: str = UNKNOWN_ARTIST
    track: str = UNKNOWN_TRACK
    album: str = UNKNOWN_ALBUM
    image_key: str | None = None
    seek_position: float | None = None
    length: float | None = None

    @property
    def text(self) -> tuple[str, str, str]:
        return (self.artist, self.track, self.album)

    def to_dict(self) -> dict:
        return _compact({
            "artist": self.artist,
            "track": self.track,
            "album": self.album,
            "imageKey": self.image_key,
            "seekPosition": self.seek_position,
            "length": self.length,
        })


@dataclass
class ZoneSettings:
    loop: str = "disabled"
    shuffle: bool = False
    auto_radio: bool = False

    def to_dict(self) -> dict:
        return {"loop": self.loop, "shuffle": self.shuffle, "autoRadio": self.auto_radio}


@dataclass
class Zone:
    """A logical playback group.  Owns the membership of its output list."""

    zone_id: str
    display_name: str
    state: str = "stopped"
    outputs: list[Output] = field(default_factory=list)
    now_playing: NowPlaying | None = None
    queue_items_remaining: int | None = None
    queue_time_remaining: float | None = None
    settings: ZoneSettings = field(default_factory=ZoneSettings)
    is_play_allowed: bool = False
    is_pause_allowed: bool = False
    is_seek_allowed: bool = False
    is_next_allowed: bool = False
    is_previous_allowed: bool = False

    @property
    def capabilities(self) -> dict:
        return {
            "isPlayAllowed": self.is_play_allowed,
            "isPauseAllowed": self.is_pause_allowed,
            "isSeekAllowed": self.is_seek_allowed,
            "isNextAllowed": self.is_next_allowed,
            "isPreviousAllowed": self.is_previous_allowed,
        }

    def get_output(self, output_id: str) -> Output | None:
        for output in self.outputs:
            if output.output_id == output_id:
                return output
        return None

    def to_dict(self) -> dict:
        return _compact({
            "zoneId": self.zone_id,
            "displayName": self.display_name,
            "state": self.state,
            "outputs": [o.to_dict() for o in self.outputs],
            "nowPlaying": self.now_playing.to_dict() if self.now_playing else None,
            "queueItemsRemaining": self.queue_items_remaining,
            "queueTimeRemaining": self.queue_time_remaining,
            "settings": self.settings.to_dict(),
            **self.capabilities,
        })


# ---------------------------------------------------------------------------
# Parsing raw core payloads
# ---------------------------------------------------------------------------
def parse_now_playing_text(raw: dict) -> tuple[str, str, str]:
    """Derive (artist, track, album) from the core's one/two/three line text.

    Prefers the richest descriptor and falls back through shorter ones;
    empty strings count as absent.
    """
    artist = (_line(raw, "three_line", "line2") or _line(raw, "two_line", "line2")
              or _line(raw, "one_line", "line1") or UNKNOWN_ARTIST)
    track = (_line(raw, "three_line", "line1") or _line(raw, "two_line", "line1")
             or _line(raw, "one_line", "line1") or UNKNOWN_TRACK)
    album = _line(raw, "three_line", "line3") or UNKNOWN_ALBUM
    return artist, track, album


def parse_now_playing(raw: dict) -> NowPlaying:
    artist, track, album = parse_now_playing_text(raw)
    image_key = raw.get("image_key")
    return NowPlaying(
        artist=artist,
        track=track,
        album=album,
        image_key=image_key if isinstance(image_key, str) else None,
        seek_position=_number(raw.get("seek_position")),
        length=_number(raw.get("length")),
    )


def parse_volume(raw: dict) -> Volume:
    return Volume(
        type=_choice(raw.get("type"), VOLUME_TYPES, "number"),
        value=_number(raw.get("value")),
        min=_number(raw.get("min")),
        max=_number(raw.get("max")),
        step=_number(raw.get("step")),
        is_muted=raw.get("is_muted") is True,
    )


def parse_output(raw: dict, zone_id: str) -> Output | None:
    output_id = raw.get("output_id")
    if not isinstance(output_id, str) or not output_id:
        return None

    volume = None
    if isinstance(raw.get("volume"), dict):
        volume = parse_volume(raw["volume"])

    source_controls = None
    if isinstance(raw.get("source_controls"), list):
        source_controls = [
            SourceControl(
                control_key=str(sc.get("control_key", "")),
                display_name=str(sc.get("display_name", "")),
                supports_standby=sc.get("supports_standby") is True,
                status=_choice(sc.get("status"), SOURCE_CONTROL_STATUSES, "indeterminate"),
            )
            for sc in raw["source_controls"] if isinstance(sc, dict)
        ]

    group_with = raw.get("can_group_with_output_ids")
    return Output(
        output_id=output_id,
        display_name=str(raw.get("display_name") or output_id),
        zone_id=zone_id,
        volume=volume,
        can_group_with_output_ids=([str(i) for i in group_with]
                                   if isinstance(group_with, list) else None),
        source_controls=source_controls,
    )


def parse_zone(raw: dict) -> Zone | None:
    """Parse a raw zone; returns None when it has no usable zone_id."""
    if not isinstance(raw, dict):
        return None
    zone_id = raw.get("zone_id")
    if not isinstance(zone_id, str) or not zone_id:
        return None

    outputs = []
    for raw_output in _as_list(raw.get("outputs")):
        if isinstance(raw_output, dict):
            output = parse_output(raw_output, zone_id)
            if output:
                outputs.append(output)

    settings = _as_dict(raw.get("settings"))
    now_playing = raw.get("now_playing")
    queue_items = _number(raw.get("queue_items_remaining"))
    return Zone(
        zone_id=zone_id,
        display_name=str(raw.get("display_name") or zone_id),
        state=_choice(raw.get("state"), PLAY_STATES, "stopped"),
        outputs=outputs,
        now_playing=parse_now_playing(now_playing) if isinstance(now_playing, dict) else None,
        queue_items_remaining=int(queue_items) if queue_items is not None else None,
        queue_time_remaining=_number(raw.get("queue_time_remaining")),
        settings=ZoneSettings(
            loop=_choice(settings.get("loop"), LOOP_MODES, "disabled"),
            shuffle=settings.get("shuffle") is True,
            auto_radio=settings.get("auto_radio") is True,
        ),
        is_play_allowed=raw.get("is_play_allowed") is True,
        is_pause_allowed=raw.get("is_pause_allowed") is True,
        is_seek_allowed=raw.get("is_seek_allowed") is True,
        is_next_allowed=raw.get("is_next_allowed") is True,
        is_previous_allowed=raw.get("is_previous_allowed") is True,
    )


# ---------------------------------------------------------------------------
# Browse / queue results
# ---------------------------------------------------------------------------
def parse_browse_result(result: dict, load_result: dict | None) -> dict:
    """Combine a browse response and its optional load into the IPC result."""
    items = []
    for item in _as_list(_as_dict(load_result).get("items")):
        if not isinstance(item, dict):
            continue
        items.append(_compact({
            "itemKey": item.get("item_key"),
            "title": item.get("title", ""),
            "subtitle": item.get("subtitle"),
            "imageKey": item.get("image_key"),
            "hint": item.get("hint"),
        }))

    browse_result: dict[str, Any] = {"action": result.get("action") or "none", "items": items}
    raw_list = result.get("list")
    if isinstance(raw_list, dict):
        browse_result["list"] = _compact({
            "title": raw_list.get("title", ""),
            "count": raw_list.get("count", 0),
            "level": raw_list.get("level", 0),
            "subtitle": raw_list.get("subtitle"),
            "imageKey": raw_list.get("image_key"),
            "displayOffset": raw_list.get("display_offset"),
        })
    if result.get("message"):
        browse_result["message"] = result["message"]
    return browse_result


def parse_queue_item(item: dict) -> dict:
    one = _line(item, "one_line", "line1")
    return _compact({
        "queueItemId": item.get("queue_item_id"),
        "length": item.get("length"),
        "imageKey": item.get("image_key"),
        "oneLine": {"line1": one},
        "twoLine": {
            "line1": _line(item, "two_line", "line1") or one,
            "line2": _line(item, "two_line", "line2"),
        },
        "threeLine": {
            "line1": _line(item, "three_line", "line1") or _line(item, "two_line", "line1") or one,
            "line2": _line(item, "three_line", "line2") or _line(item, "two_line", "line2"),
            "line3": _line(item, "three_line", "line3"),
        },
    })

# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
EntityCache — the reconciled set of zones and outputs, plus connection status.

Pure data: no I/O and no error paths.  Lookups that miss return None (or an
empty list); deciding whether a miss is an error is the caller's job.

Mutation happens only from the Reconciler, which runs on the event loop, so
readers never observe a half-applied fragment.
"""

from dataclasses import dataclass

from .models import Output, Zone


@dataclass
class ConnectionStatus:
    connected: bool = False
    paired: bool = False
    core_name: str | None = None
    core_id: str | None = None

    def to_dict(self) -> dict:
        return {
            "connected": self.connected,
            "paired": self.paired,
            "coreName": self.core_name,
            "coreId": self.core_id,
        }


class EntityCache:
    """Zones keyed by id (insertion ordered) with an independent output index."""

    def __init__(self):
        self._zones: dict[str, Zone] = {}
        self._outputs: dict[str, Output] = {}
        self.status = ConnectionStatus()

    # ── Mutation ──

    def upsert_zone(self, zone: Zone) -> Zone | None:
        """Store *zone*, replacing any previous version. Returns the previous version."""
        previous = self._zones.get(zone.zone_id)
        if previous:
            # Drop outputs that left this zone and were not claimed elsewhere
            keep = {o.output_id for o in zone.outputs}
            for old in previous.outputs:
                indexed = self._outputs.get(old.output_id)
                if old.output_id not in keep and indexed and indexed.zone_id == zone.zone_id:
                    del self._outputs[old.output_id]
        self._zones[zone.zone_id] = zone
        for output in zone.outputs:
            self._outputs[output.output_id] = output
        return previous

    def remove_zone(self, zone_id: str) -> Zone | None:
        zone = self._zones.pop(zone_id, None)
        if zone:
            for output in zone.outputs:
                indexed = self._outputs.get(output.output_id)
                if indexed and indexed.zone_id == zone_id:
                    del self._outputs[output.output_id]
        return zone

    def clear(self):
        self._zones.clear()
        self._outputs.clear()

    # ── Queries ──

    def get_zone(self, zone_id_or_name: str) -> Zone | None:
        """Exact id match first, then case-insensitive display-name match."""
        zone = self._zones.get(zone_id_or_name)
        if zone:
            return zone
        wanted = zone_id_or_name.lower()
        for z in self._zones.values():
            if z.display_name.lower() == wanted:
                return z
        return None

    def get_zone_by_id(self, zone_id: str) -> Zone | None:
        return self._zones.get(zone_id)

    def get_first_zone(self) -> Zone | None:
        return next(iter(self._zones.values()), None)

    def get_output(self, output_id_or_name: str) -> Output | None:
        """Exact id match first, then case-insensitive display-name match."""
        output = self._outputs.get(output_id_or_name)
        if output:
            return output
        wanted = output_id_or_name.lower()
        for o in self._outputs.values():
            if o.display_name.lower() == wanted:
                return o
        return None

    def get_first_output_of_zone(self, zone_id: str) -> Output | None:
        zone = self._zones.get(zone_id)
        return zone.outputs[0] if zone and zone.outputs else None

    def list_zones(self) -> list[Zone]:
        return list(self._zones.values())

    def list_outputs(self) -> list[Output]:
        return list(self._outputs.values())

    def is_ready(self) -> bool:
        return self.status.connected and self.status.paired

    def snapshot(self) -> dict:
        """Full daemon state as returned by the ``status`` method."""
        state = self.status.to_dict()
        state["zones"] = [z.to_dict() for z in self._zones.values()]
        state["outputs"] = [o.to_dict() for o in self._outputs.values()]
        return state

    def __len__(self):
        return len(self._zones)

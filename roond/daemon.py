#!/usr/bin/env python3
# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
roond — Roon control daemon.

Keeps one session to the Roon Core and republishes its zones over a local
unix socket to any number of short-lived CLI processes and long-lived
subscribers (status bars, scripts).

  core (roonapi) → Reconciler → EntityCache + notifications → EventBroadcaster
  client line    → ConnectionListener → RequestRouter → cache / core → response

Also serves album art over HTTP on 127.0.0.1 (``daemon.http_port``).

Usage:
    roond                         # config from the usual search path
    ROOND_CONFIG=./config.json roond
"""

import asyncio
import logging
import signal
import sys

from .http_server import AlbumArtServer
from .lib.broadcaster import EventBroadcaster
from .lib.cache import EntityCache
from .lib.config import DEFAULT_HTTP_PORT, DEFAULT_SOCKET_PATH, cfg
from .lib.listener import ConnectionListener
from .lib.player_base import CoreInfo, PlayerBase
from .lib.reconciler import Reconciler
from .lib.request_router import RequestRouter
from .lib.watchdog import notify_ready, notify_status, notify_stopping, watchdog_loop
from .players.roon import RoonPlayer

logger = logging.getLogger(__name__)


class Daemon:
    """Owns all daemon state; built once at startup."""

    def __init__(self, player: PlayerBase, socket_path: str | None = None,
                 http_port: int | None = None):
        self.cache = EntityCache()
        self.broadcaster = EventBroadcaster()
        self.reconciler = Reconciler(self.cache, self.broadcaster.publish)
        self.player = player
        self.router = RequestRouter(self.cache, player)
        self.listener = ConnectionListener(
            socket_path or cfg("daemon", "socket_path", default=DEFAULT_SOCKET_PATH),
            self.router, self.broadcaster, self.cache)

        if http_port is None:
            http_port = cfg("daemon", "http_port", default=DEFAULT_HTTP_PORT)
        self.http = AlbumArtServer(self.router, http_port) if http_port else None

        player.set_event_handlers(
            on_connected=self._on_connected,
            on_paired=self._on_paired,
            on_unpaired=self._on_unpaired,
            on_zones=self._on_zones,
        )

    # ── Player callbacks ──

    def _on_connected(self):
        self.reconciler.set_connection_status(True, False)
        notify_status("Waiting for authorisation")

    def _on_paired(self, core: CoreInfo):
        self.reconciler.set_connection_status(True, True, core.name, core.id)
        notify_status(f"Paired with {core.name}")

    def _on_unpaired(self):
        self.reconciler.set_connection_status(False, False)
        # Stale zones must not be served while disconnected
        self.reconciler.apply_fragment({"zones": []})
        notify_status("Disconnected from Roon Core")

    def _on_zones(self, fragment: dict):
        self.reconciler.apply_fragment(fragment)

    # ── Lifecycle ──

    async def start(self):
        """Start all parts. Raises OSError when the IPC socket cannot be bound."""
        await self.listener.start()
        if self.http:
            try:
                await self.http.start()
            except OSError as e:
                logger.error("Album art server disabled, cannot bind port %d: %s",
                             self.http.port, e)
                self.http = None
        await self.player.start()

    async def stop(self):
        await self.player.stop()
        if self.http:
            await self.http.stop()
        await self.listener.stop()

    async def run(self) -> int:
        """Run until SIGTERM/SIGINT. Returns the process exit status."""
        try:
            await self.start()
        except OSError as e:
            logger.error("Cannot bind IPC socket %s: %s", self.listener.socket_path, e)
            return 1

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, stop_event.set)

        notify_ready("Connecting to Roon Core")
        watchdog = asyncio.create_task(watchdog_loop())
        logger.info("roond running")
        try:
            await stop_event.wait()
        finally:
            logger.info("Shutting down")
            notify_stopping()
            watchdog.cancel()
            await self.stop()
        return 0


def main():
    level = str(cfg("daemon", "log_level", default="INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="[%(asctime)s] %(levelname)s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    daemon = Daemon(RoonPlayer())
    sys.exit(asyncio.run(daemon.run()))


if __name__ == "__main__":
    main()

# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
ConnectionListener — the unix-socket side of the daemon.

Each accepted connection is read line by line.  Every non-blank line is one
JSON request, dispatched in its own task so a slow player call never stalls
the rest of the connection:

    subscribe / unsubscribe   handled here (they belong to the connection)
    everything else           RequestRouter.handle()

A bad line gets an error response and the connection stays open.  When the
client goes away its subscription is dropped.
"""

import asyncio
import logging
import os

from . import protocol
from .broadcaster import EventBroadcaster
from .cache import EntityCache
from .protocol import ErrorCode, IPCError, ProtocolError, Request
from .request_router import RequestRouter

logger = logging.getLogger(__name__)

LINE_LIMIT = 1024 * 1024       # longest accepted request line (bytes)


class ClientConnection:
    """One connected client; also the broadcaster's subscriber handle."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, number: int):
        self.reader = reader
        self.writer = writer
        self.number = number
        self.tasks: set[asyncio.Task] = set()

    @property
    def closed(self) -> bool:
        return self.writer.is_closing()

    def write(self, data: bytes):
        self.writer.write(data)

    def send(self, message: dict):
        if not self.closed:
            self.write(protocol.encode(message))

    def __repr__(self):
        return f"<client #{self.number}>"


class ConnectionListener:
    def __init__(self, socket_path: str, router: RequestRouter,
                 broadcaster: EventBroadcaster, cache: EntityCache):
        self.socket_path = socket_path
        self.router = router
        self.broadcaster = broadcaster
        self.cache = cache
        self.clients: set[ClientConnection] = set()
        self._server: asyncio.AbstractServer | None = None
        self._next_number = 1

    # ── Lifecycle ──

    async def start(self):
        """Bind the socket. Raises OSError when it cannot be bound."""
        if os.path.exists(self.socket_path):
            # Stale socket from a previous run
            os.unlink(self.socket_path)
        self._server = await asyncio.start_unix_server(
            self._handle_client, path=self.socket_path, limit=LINE_LIMIT)
        os.chmod(self.socket_path, 0o600)
        logger.info("IPC server listening on %s", self.socket_path)

    async def stop(self):
        if self._server is None:
            return
        self._server.close()
        for client in list(self.clients):
            for task in client.tasks:
                task.cancel()
            client.writer.close()
        await self._server.wait_closed()
        self._server = None
        self.clients.clear()
        try:
            os.unlink(self.socket_path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Failed to remove socket file: %s", e)
        logger.info("IPC server stopped")

    # ── Per-connection loop ──

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        client = ClientConnection(reader, writer, self._next_number)
        self._next_number += 1
        self.clients.add(client)
        logger.info("Client connected: %s", client)
        try:
            while True:
                try:
                    raw = await reader.readline()
                except ValueError:
                    # Line longer than LINE_LIMIT; the stream cannot be resynchronised
                    client.send(protocol.make_error(
                        protocol.INVALID_ID, ErrorCode.INVALID_PARAMS, "Request too long"))
                    break
                if not raw:
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                task = asyncio.create_task(self._handle_line(client, line))
                client.tasks.add(task)
                task.add_done_callback(client.tasks.discard)
        except (ConnectionResetError, BrokenPipeError) as e:
            logger.debug("%s connection error: %s", client, e)
        finally:
            self.clients.discard(client)
            self.broadcaster.unsubscribe(client)
            if not writer.is_closing():
                writer.close()
            logger.info("Client disconnected: %s", client)

    async def _handle_line(self, client: ClientConnection, line: str):
        try:
            request = Request.from_line(line)
        except ProtocolError as e:
            logger.debug("%s bad request: %s", client, e.message)
            client.send(protocol.make_error(e.request_id, e.code, e.message))
            return

        try:
            if request.method == "subscribe":
                result = self._subscribe(client, request.params)
            elif request.method == "unsubscribe":
                self.broadcaster.unsubscribe(client)
                result = {"unsubscribed": True}
            else:
                result = await self.router.handle(request.method, request.params)
        except IPCError as e:
            logger.debug("%s %s failed: %s", client, request.method, e.message)
            client.send(protocol.make_error(request.id, e.code, e.message))
            return
        except Exception as e:
            logger.exception("Unhandled error in %s", request.method)
            client.send(protocol.make_error(
                request.id, ErrorCode.UNKNOWN, str(e) or "Unknown error"))
            return

        client.send(protocol.make_response(request.id, result))

    # ── Subscriptions ──

    def _subscribe(self, client: ClientConnection, params: dict) -> dict:
        events = params.get("events")
        if not isinstance(events, list) or not events:
            raise IPCError(ErrorCode.INVALID_PARAMS, "events must be a non-empty list")
        unknown = [e for e in events if e not in protocol.EVENT_TYPES]
        if unknown:
            raise IPCError(ErrorCode.INVALID_PARAMS,
                           f"Unknown event type(s): {', '.join(map(str, unknown))}")

        refs = params.get("zones") or []
        if not isinstance(refs, list):
            raise IPCError(ErrorCode.INVALID_PARAMS, "zones must be a list")
        zone_ids = []
        for ref in refs:
            zone = self.cache.get_zone(ref) if isinstance(ref, str) and ref else None
            if zone is None:
                logger.debug("Ignoring unknown zone in subscription: %s", ref)
            elif zone.zone_id not in zone_ids:
                zone_ids.append(zone.zone_id)

        subscription = self.broadcaster.subscribe(client, events, zone_ids)
        return {
            "subscribed": True,
            "events": sorted(subscription.events),
            "zones": zone_ids,
        }

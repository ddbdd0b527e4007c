# BeoSound 5c
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""systemd notify integration for the daemon.

Sends READY/STATUS/STOPPING notifications and a WATCHDOG=1 heartbeat to the
systemd notify socket.  Silently no-ops when NOTIFY_SOCKET is unset (dev mode).

Usage:
    from roond.lib.watchdog import notify_ready, watchdog_loop
    notify_ready("Waiting for Roon Core")
    asyncio.create_task(watchdog_loop())
"""

import asyncio
import logging
import os
import socket

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 20.0


def sd_notify(*fields: str) -> bool:
    """Send newline-joined fields to the notify socket. Returns True if sent."""
    addr = os.environ.get("NOTIFY_SOCKET")
    if not addr or not fields:
        return False
    if addr[0] == "@":
        addr = "\0" + addr[1:]
    sock = socket.socket(socket.AF_UNIX, socket.SOCK_DGRAM)
    try:
        sock.sendto("\n".join(fields).encode(), addr)
        return True
    except OSError as e:
        logger.debug("sd_notify failed: %s", e)
        return False
    finally:
        sock.close()


def notify_ready(status: str | None = None) -> bool:
    fields = ["READY=1"]
    if status:
        fields.append(f"STATUS={status}")
    return sd_notify(*fields)


def notify_status(status: str) -> bool:
    return sd_notify(f"STATUS={status}")


def notify_stopping() -> bool:
    return sd_notify("STOPPING=1")


def watchdog_interval() -> float:
    """Half of WATCHDOG_USEC in seconds, or DEFAULT_INTERVAL when unset."""
    usec = os.environ.get("WATCHDOG_USEC")
    try:
        return max(1.0, int(usec) / 2_000_000) if usec else DEFAULT_INTERVAL
    except ValueError:
        return DEFAULT_INTERVAL


async def watchdog_loop(interval: float | None = None):
    """Send WATCHDOG=1 every *interval* seconds.  Call as asyncio.create_task()."""
    interval = interval or watchdog_interval()
    logger.info("Watchdog started (interval=%.0fs)", interval)
    while True:
        sd_notify("WATCHDOG=1")
        await asyncio.sleep(interval)

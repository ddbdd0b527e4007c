"""
roond — local control daemon for a Roon Core.

Packages:
  lib/       shared plumbing: config, watchdog, wire protocol, zone models,
             entity cache, reconciler, broadcaster, request router, listener
  players/   core adapters (roon.py — Roon Core via roonapi)

Entry point: roond.daemon:main
"""

__version__ = "0.1.0"

"""
Players — adapters to the media-control core.

A player keeps the session with the core, turns its callbacks into raw zone
fragments for the Reconciler, and carries out commands for the RequestRouter.
See lib/player_base.py for the contract.

Current players:
  roon.py       — Roon Core via roonapi (discovery, token file, transport, browse, images)
"""

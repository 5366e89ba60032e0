"""
mmfm-playback — group-listening playback service.

One process plays a single shared audio stream, walks a shared playlist and
keeps remote listeners in sync over a Socket.IO control channel.  Scheduled
announcements can interrupt the stream and hand back to it afterwards.

Layout:
  player.py    — PlaybackOrchestrator (commands, cursor, ticker, interrupts)
  status.py    — optional aiohttp GET /status endpoint
  __main__.py  — CLI entry point
  lib/         — collaborators (config, cache, media, playlist, control channel)
"""

__version__ = "1.2.0"

"""
Collaborators used by the playback orchestrator.

Each module wraps one external concern behind a narrow async interface so
the orchestrator can be driven by fakes in tests:

  config.py           — JSON config + environment overrides
  playlist.py         — Track model and HTTP playlist fetch
  cache.py            — content-addressed file cache
  media.py            — player subprocess (mpv / mplayer) and ffprobe
  control_channel.py  — Socket.IO command/event transport
  commands.py         — envelope decoding into typed commands
  watchdog.py         — systemd heartbeat
"""

"""
Shared pytest fixtures.

Async code is driven with asyncio.run() inside plain test functions; every
collaborator of the player is replaced by a fake from test_doubles.
"""

from datetime import datetime

import pytest

from mmfm_playback.lib import config as config_module
from mmfm_playback.player import PlaybackOrchestrator
from test_doubles import (
    FakeCache,
    FakeChannel,
    FakeMediaProcess,
    FakePlaylistSource,
    FakeProbe,
    make_tracks,
)


@pytest.fixture
def tracks():
    return make_tracks("A", "B", "C")


@pytest.fixture
def channel():
    return FakeChannel()


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def media():
    return FakeMediaProcess()


@pytest.fixture
def probe():
    return FakeProbe()


@pytest.fixture
def make_player(channel, cache, media, probe):
    """Build a player whose playlist is already loaded (no bootstrap)."""

    def factory(tracks=(), scheduled=(), source=None, clock=datetime.now):
        player = PlaybackOrchestrator(
            playlist_source=source or FakePlaylistSource(list(tracks)),
            channel=channel,
            cache=cache,
            media=media,
            probe=probe,
            scheduled=scheduled,
            clock=clock,
        )
        player.playlist = list(tracks)
        return player

    return factory


@pytest.fixture(autouse=True)
def fresh_config(monkeypatch):
    """No test sees another test's cached config or the host's env overrides."""
    for name in ("FFPLAY_PATH", "FFPROBE_PATH", "MPLAYER_PATH", "WEBSOCKET_API", "WS_API",
                 "WEB_API", "WEB_API_URL", "CACHE_PATH", "CACHE_DIR", "NOTIFY_SOCKET"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(config_module, "_config", None)
    monkeypatch.setattr(config_module, "_config_path", None)

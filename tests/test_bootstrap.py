"""Startup: playlist fetch with bounded retry, first play, background tasks."""

import asyncio

import pytest

from mmfm_playback.lib.config import ScheduledInterrupt
from mmfm_playback.lib.errors import PlaylistError
from mmfm_playback.player import PlaybackOrchestrator
from test_doubles import FakePlaylistSource, SleepRecorder, settle, wait_until


def build(source, channel, cache, media, probe, scheduled=()):
    player = PlaybackOrchestrator(source, channel, cache, media, probe, scheduled=scheduled)
    player._sleep = SleepRecorder(passthrough=player.BOOTSTRAP_DELAY)
    return player


def test_first_fetch_success_starts_immediately(tracks, channel, cache, media, probe):
    source = FakePlaylistSource(tracks)

    async def scenario():
        player = build(source, channel, cache, media, probe)
        await player.start()
        await settle()
        await wait_until(lambda: cache.cleaned)
        snapshot = (player.state.cursor, player.alive())
        await player.stop()
        return player, snapshot

    player, (cursor, alive) = asyncio.run(scenario())
    assert source.calls == 1
    assert player._sleep.delays.count(player.BOOTSTRAP_DELAY) == 0
    assert cursor == 0
    assert alive is True
    assert media.starts[0] == (tracks[0].locator, 0)
    assert channel.commands[0] == "player.playing"
    assert channel.started and channel.stopped
    assert cache.cleaned == [[t.locator for t in tracks]]


def test_fetch_retries_with_fixed_delay(tracks, channel, cache, media, probe):
    source = FakePlaylistSource(PlaylistError("1"), PlaylistError("2"), PlaylistError("3"), tracks)

    async def scenario():
        player = build(source, channel, cache, media, probe)
        await player.start()
        await player.stop()
        return player

    player = asyncio.run(scenario())
    assert source.calls == 4
    assert [d for d in player._sleep.delays if d == 2.0] == [2.0, 2.0, 2.0]
    assert len(player.playlist) == 3


def test_fetch_gives_up_after_ten_attempts(channel, cache, media, probe):
    errors = [PlaylistError(f"attempt {i}") for i in range(1, 11)]
    source = FakePlaylistSource(*errors)

    async def scenario():
        player = build(source, channel, cache, media, probe)
        with pytest.raises(PlaylistError) as excinfo:
            await player.start()
        return player, excinfo.value

    player, error = asyncio.run(scenario())
    assert source.calls == 10
    assert player._sleep.delays == [2.0] * 9
    assert str(error) == "attempt 10"
    assert media.starts == []
    assert channel.started is False


def test_empty_playlist_boots_idle(channel, cache, media, probe):
    async def scenario():
        player = build(FakePlaylistSource([]), channel, cache, media, probe)
        await player.start()
        await settle()
        await player.stop()
        return player

    player = asyncio.run(scenario())
    assert player.playlist == []
    assert player.state.cursor == 0
    assert media.starts == []
    assert channel.sent == []


def test_bootstrap_play_failure_advances(tracks, channel, cache, media, probe):
    probe.fail.add(tracks[0].locator)

    async def scenario():
        player = build(FakePlaylistSource(tracks), channel, cache, media, probe)
        await player.start()
        await settle()
        cursor = player.state.cursor
        await player.stop()
        return cursor

    assert asyncio.run(scenario()) == 1
    assert media.starts[0] == (tracks[1].locator, 0)


def test_reconnect_rebroadcasts_current_state(tracks, channel, cache, media, probe):
    async def scenario():
        player = build(FakePlaylistSource(tracks), channel, cache, media, probe)
        await player.start()
        await settle()
        channel.clear()
        await channel.connected_handler()
        await player.stop()

    asyncio.run(scenario())
    assert channel.commands == ["player.playing"]


def test_stop_cancels_background_work(tracks, channel, cache, media, probe):
    scheduled = (ScheduledInterrupt("news", "http://announce.local/n.mp3", "never"),)

    async def scenario():
        player = build(FakePlaylistSource(tracks), channel, cache, media, probe, scheduled)
        await player.start()
        await settle()
        running = len(player._tasks)
        await player.stop()
        return player, running

    player, running = asyncio.run(scenario())
    # ticker, interrupt poll and the first track's finish-watcher at least
    assert running >= 3
    assert player._tasks == set()
    assert player.alive() is False
    assert media.running is False
    assert cache.closed is True
    assert channel.stopped is True

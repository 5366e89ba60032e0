"""
PlaybackOrchestrator — the shared player behind a group-listening room.

Owns the playlist, the cursor and the single player process, and keeps every
listener in sync over the control channel:

  commands   — player.play / continue / pause / current / update, one at a time
  ticker     — re-broadcasts "player.playing" every second while not paused
  watchers   — one per started track; advances to the next track on natural end
  interrupts — scheduled announcements that pause the stream and resume it

Everything runs on one event loop and every state change happens under
self._lock, so the ticker, finish-watchers, interrupt supervisor and command
loop never interleave half-way through a transition.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime

from .lib.cache import ContentCache
from .lib.commands import (
    CHAT_EVENT_MESSAGE,
    Continue,
    Pause,
    Play,
    QueryCurrent,
    RefreshPlaylist,
    decode_command,
    pause_envelope,
    playing_envelope,
)
from .lib.config import PlaybackConfig, ScheduledInterrupt
from .lib.control_channel import ControlChannel
from .lib.errors import CommandError, MediaError, PlaylistError
from .lib.media import MediaProbe, MediaProcess
from .lib.playlist import PlaylistSource, Track

log = logging.getLogger("mmfm-playback")


@dataclass
class PlayerState:
    cursor: int = 0
    # May be detached from the live playlist after a refresh or a deferred play.
    current_track: Track | None = None
    paused: bool = True
    interrupt_active: bool = False
    paused_before_interrupt: bool = False


class PlaybackOrchestrator:

    BOOTSTRAP_ATTEMPTS = 10
    BOOTSTRAP_DELAY = 2.0     # seconds between playlist fetch attempts
    TICK_INTERVAL = 1.0
    SCHEDULE_INTERVAL = 30.0

    def __init__(
        self,
        playlist_source: PlaylistSource,
        channel: ControlChannel,
        cache: ContentCache,
        media: MediaProcess,
        probe: MediaProbe,
        scheduled: tuple[ScheduledInterrupt, ...] = (),
        clock=datetime.now,
    ):
        self.playlist_source = playlist_source
        self.channel = channel
        self.cache = cache
        self.media = media
        self.probe = probe
        self.scheduled = tuple(scheduled)
        self._clock = clock
        self._sleep = asyncio.sleep

        self.state = PlayerState()
        self.playlist: list[Track] = []
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self._ticker_task: asyncio.Task | None = None
        # Bumped on every start/stop of a main track; finish-watchers compare it.
        self._generation = 0
        self._last_fired: dict[ScheduledInterrupt, tuple] = {}
        self._running = False

    @classmethod
    def from_config(cls, conf: PlaybackConfig) -> "PlaybackOrchestrator":
        return cls(
            playlist_source=PlaylistSource(conf.web),
            channel=ControlChannel(conf.ws),
            cache=ContentCache(conf.cache),
            media=MediaProcess(conf.player),
            probe=MediaProbe(conf.ffprobe),
            scheduled=conf.scheduled_audios,
        )

    # ── lifecycle ──

    async def load_playlist_with_retry(self) -> list[Track]:
        last_error = None
        for attempt in range(1, self.BOOTSTRAP_ATTEMPTS + 1):
            try:
                return await self.playlist_source.fetch()
            except PlaylistError as e:
                last_error = e
                if attempt < self.BOOTSTRAP_ATTEMPTS:
                    log.warning("Playlist unreachable (attempt %d/%d, retry in %ss): %s",
                                attempt, self.BOOTSTRAP_ATTEMPTS, self.BOOTSTRAP_DELAY, e)
                    await self._sleep(self.BOOTSTRAP_DELAY)
        log.error("Playlist unreachable after %d attempts: %s", self.BOOTSTRAP_ATTEMPTS, last_error)
        raise last_error

    async def start(self):
        """Fetch the playlist and start background work. Raises PlaylistError."""
        tracks = await self.load_playlist_with_retry()
        async with self._lock:
            self.playlist = tracks
            self.state.cursor = 0
        log.info("Playlist loaded: %d track(s)", len(tracks))

        self._running = True
        self._spawn(self._clean_cache(tracks), "cache-clean")
        if tracks:
            self._spawn(self._bootstrap_play(), "bootstrap-play")
        self._ticker_task = self._spawn(self._ticker_loop(), "ticker")
        if self.scheduled:
            self._spawn(self._schedule_loop(), "interrupts")

        self.channel.set_connected_handler(self.query_current)
        await self.channel.start()

    async def run(self):
        """start() then consume commands until cancelled."""
        await self.start()
        await self.listen()

    async def stop(self):
        self._running = False
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        await self.channel.stop()
        await self.media.stop()
        await self.cache.close()
        await self.playlist_source.close()
        log.info("Player stopped")

    def alive(self) -> bool:
        return self._running and self._ticker_task is not None and not self._ticker_task.done()

    def _spawn(self, coro, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error("Task %s crashed: %s", task.get_name(), exc, exc_info=exc)

    async def _clean_cache(self, tracks: list[Track]):
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.cache.clean, [t.locator for t in tracks])
        except OSError as e:
            log.error("Cache clean failed: %s", e)

    async def _bootstrap_play(self):
        async with self._lock:
            if self.state.interrupt_active or not self.playlist:
                return
            target = self._resolve(self.state.cursor)
            self.state.cursor = target
            if not await self._play_locked(self.playlist[target], 0):
                await self._next_locked()

    # ── command loop ──

    async def listen(self):
        while True:
            envelope = await self.channel.receive()
            try:
                command = decode_command(envelope)
            except CommandError as e:
                log.warning("Dropping malformed command: %s", e)
                continue
            if command is not None:
                await self.dispatch(command)

    async def dispatch(self, command):
        log.debug("Command %s", command)
        if isinstance(command, RefreshPlaylist):
            await self.refresh_playlist()
            return
        async with self._lock:
            if isinstance(command, Play):
                await self._on_play(command.index)
            elif isinstance(command, Continue):
                await self._on_continue()
            elif isinstance(command, Pause):
                await self._on_pause()
            elif isinstance(command, QueryCurrent):
                await self._broadcast_state()
            else:
                log.warning("Unknown command %r", command)

    async def query_current(self):
        async with self._lock:
            await self._broadcast_state()

    def _resolve(self, index: int | None) -> int | None:
        """Valid index, else 0. None only for an empty playlist."""
        if not self.playlist:
            return None
        if index is None or not 0 <= index < len(self.playlist):
            log.info("Track index %r not in playlist of %d, using track 0", index, len(self.playlist))
            return 0
        return index

    async def _on_play(self, index: int | None):
        target = self._resolve(index)
        if target is None:
            log.warning("Play requested but the playlist is empty")
            return
        self.state.cursor = target
        track = self.playlist[target]

        if self.state.interrupt_active:
            # Picked up when the announcement finishes.
            track.position = 0
            self.state.current_track = track
            self.state.paused_before_interrupt = False
            log.info("Queued %s until the scheduled audio ends", track.name)
            return

        await self._stop_main()
        if not await self._play_locked(track, 0):
            await self._next_locked()

    async def _on_continue(self):
        if self.state.interrupt_active:
            self.state.paused_before_interrupt = False
            log.info("Will resume after the scheduled audio ends")
            return
        track = self.state.current_track
        offset = 0
        if track is None:
            if not self.playlist:
                log.warning("Continue requested but nothing is loaded")
                return
            track = self.playlist[self.state.cursor]
        else:
            offset = int(track.position)
        self.state.paused = False
        await self._play_locked(track, offset)

    async def _on_pause(self):
        track = self.state.current_track
        log.debug("Pause %s", track.name if track else None)
        self.state.paused = True
        if self.state.interrupt_active:
            self.state.paused_before_interrupt = True
        else:
            await self._stop_main()
        await self._broadcast_pause()

    async def refresh_playlist(self) -> bool:
        log.debug("Update playlist")
        try:
            tracks = await self.playlist_source.fetch()
        except PlaylistError as e:
            log.error("Playlist refresh failed, keeping %d track(s): %s", len(self.playlist), e)
            return False

        async with self._lock:
            self.playlist = tracks
            if self.state.cursor >= len(tracks):
                self.state.cursor = 0
            current = self.state.current_track
            if current is not None:
                for i, track in enumerate(tracks):
                    if track.locator and track.locator == current.locator:
                        track.duration = current.duration
                        track.position = current.position
                        self.state.current_track = track
                        self.state.cursor = i
                        break
                else:
                    log.info("%s left the playlist; it plays on until it ends", current.name)
        log.info("Playlist refreshed: %d track(s)", len(tracks))
        return True

    # ── playback ──

    async def next(self):
        async with self._lock:
            await self._next_locked()

    async def _next_locked(self):
        if not self.playlist:
            log.warning("Playlist is empty, staying idle")
            self.state.paused = True
            return
        self.state.cursor = (self.state.cursor + 1) % len(self.playlist)
        track = self.playlist[self.state.cursor]
        if not await self._play_locked(track, 0):
            log.warning("Could not start %s, staying paused", track.name)

    async def _play_locked(self, track: Track, offset: int) -> bool:
        """Probe and start *track* at *offset*. False (and paused) on failure."""
        log.debug("Play %s from %ds", track.name, offset)
        locator = self.cache.resolve(track.locator)
        try:
            duration = await self.probe.duration(locator)
            done = await self.media.start(locator, offset)
        except MediaError as e:
            log.error("Cannot play %s: %s", track.name, e)
            await self._stop_main()
            self.state.paused = True
            return False

        self._generation += 1
        generation = self._generation
        track.duration = duration
        track.position = offset
        self.state.current_track = track
        self.state.paused = False
        log.info("Playing %s, duration %.1f, start %d", track.name, duration, offset)
        await self._broadcast_playing()
        self._spawn(self._watch_finish(done, generation), f"finish-{generation}")
        return True

    async def _stop_main(self):
        self._generation += 1
        await self.media.stop()

    async def _watch_finish(self, done, generation: int):
        await done
        async with self._lock:
            if generation != self._generation:
                return
            if self.state.paused or self.state.interrupt_active:
                return
            track = self.state.current_track
            log.info("%s finished", track.name if track else "Track")
            await self._next_locked()

    # ── broadcasting ──

    async def _broadcast_playing(self):
        track = self.state.current_track
        if track is None:
            return
        await self.channel.send_event(CHAT_EVENT_MESSAGE, playing_envelope(track, self.state.cursor))

    async def _broadcast_pause(self):
        track = self.state.current_track
        if track is None:
            return
        await self.channel.send_event(CHAT_EVENT_MESSAGE, pause_envelope(track, self.state.cursor))

    async def _broadcast_state(self):
        if self.state.paused:
            await self._broadcast_pause()
        else:
            await self._broadcast_playing()

    async def tick(self):
        """One ticker step: broadcast, then advance the local position clock."""
        async with self._lock:
            track = self.state.current_track
            if self.state.paused or track is None:
                return
            await self._broadcast_playing()
            track.position += 1

    async def _ticker_loop(self):
        while True:
            await self.tick()
            await self._sleep(self.TICK_INTERVAL)

    # ── scheduled interrupts ──

    async def _schedule_loop(self):
        log.info("Watching %d scheduled audio(s)", len(self.scheduled))
        while True:
            await self.check_interrupts()
            await self._sleep(self.SCHEDULE_INTERVAL)

    async def check_interrupts(self, now: datetime | None = None):
        """Run the first interrupt whose HH:MM is the current minute.

        Each entry fires at most once per minute, and at most one entry runs
        per poll; other entries due in the same minute are skipped.
        """
        current = now or self._clock()
        stamp = (current.date(), current.hour, current.minute)
        for item in self.scheduled:
            if not item.matches(current):
                continue
            if self._last_fired.get(item) == stamp:
                log.debug("%s already played this minute", item.name)
                continue
            if await self.run_interrupt(item):
                self._last_fired[item] = stamp
                for other in self.scheduled:
                    if other is not item and other.matches(current):
                        log.debug("Skipping %s, %s played this minute", other.name, item.name)
                        self._last_fired[other] = stamp
                return

    async def run_interrupt(self, item: ScheduledInterrupt) -> bool:
        """Play *item* to the end, then hand back to the main stream.

        Returns False without doing anything when an interrupt is already
        running or no main track is loaded.
        """
        async with self._lock:
            if self.state.interrupt_active:
                log.debug("Scheduled audio already playing, skipping %s", item.name)
                return False
            if self.state.current_track is None:
                log.debug("Nothing loaded, skipping scheduled audio %s", item.name)
                return False
            log.info("Playing scheduled audio %s at %s", item.name, item.url)
            self.state.paused_before_interrupt = self.state.paused
            if not self.state.paused:
                self.state.paused = True
                await self._stop_main()
                await self._broadcast_pause()
            self.state.interrupt_active = True

        try:
            await self._play_interrupt(item)
        except MediaError as e:
            log.error("Scheduled audio %s failed: %s", item.name, e)
        except asyncio.CancelledError:
            await self.media.stop()
            self.state.interrupt_active = False
            raise
        await self._end_interrupt()
        return True

    async def _play_interrupt(self, item: ScheduledInterrupt):
        locator = self.cache.resolve(item.url)
        duration = await self.probe.duration(locator)
        log.debug("Scheduled audio duration: %.1f", duration)
        done = await self.media.start(locator, 0)
        await done

    async def _end_interrupt(self):
        async with self._lock:
            self.state.interrupt_active = False
            if self.state.paused_before_interrupt:
                self.state.paused = True
                await self._broadcast_pause()
                return
            log.info("Resuming playback after scheduled audio")
            track = self.state.current_track
            if track is None:
                await self._next_locked()
                return
            if not await self._play_locked(track, int(track.position)):
                await self._next_locked()

    # ── introspection ──

    def snapshot(self) -> dict:
        track = self.state.current_track
        return {
            "cursor": self.state.cursor,
            "paused": self.state.paused,
            "interrupt_active": self.state.interrupt_active,
            "track": track.to_dict() if track else None,
            "playlist_length": len(self.playlist),
            "connected": self.channel.connected,
        }

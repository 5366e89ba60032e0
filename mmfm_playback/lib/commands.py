"""
Control envelopes ⇄ typed commands.

Listeners talk to the player with {"cmd": str, "args": [...]}.  Inbound
envelopes decode into one of the command classes below; outbound state
updates are built with playing_envelope() / pause_envelope().
"""

import logging
from dataclasses import dataclass, field

from .errors import CommandError
from .playlist import Track

logger = logging.getLogger(__name__)

CHAT_EVENT_MESSAGE = "msg"

EVENT_PLAY = "player.play"
EVENT_CONTINUE = "player.continue"
EVENT_PAUSE = "player.pause"
EVENT_CURRENT = "player.current"
EVENT_UPDATE = "update"
EVENT_PLAYING = "player.playing"


@dataclass(frozen=True)
class Play:
    # None means "absent or not a usable index"; the player clamps it to 0.
    index: int | None = None


@dataclass(frozen=True)
class Continue:
    pass


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class QueryCurrent:
    pass


@dataclass(frozen=True)
class RefreshPlaylist:
    pass


Command = Play | Continue | Pause | QueryCurrent | RefreshPlaylist

_SIMPLE = {
    EVENT_CONTINUE: Continue,
    EVENT_PAUSE: Pause,
    EVENT_CURRENT: QueryCurrent,
    EVENT_UPDATE: RefreshPlaylist,
}


def _index_arg(args: list) -> int | None:
    if len(args) < 2:
        return None
    value = args[1]
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def decode_command(envelope) -> Command | None:
    """Decode one inbound envelope.

    Returns None for commands this player does not handle.  Raises
    CommandError when the envelope itself is malformed.
    """
    if not isinstance(envelope, dict):
        raise CommandError(f"envelope must be an object, got {type(envelope).__name__}")
    name = envelope.get("cmd")
    if not isinstance(name, str):
        raise CommandError(f"envelope cmd must be a string, got {name!r}")
    args = envelope.get("args", [])
    if args is None:
        args = []
    if not isinstance(args, list):
        raise CommandError(f"envelope args must be a list, got {type(args).__name__}")

    if name == EVENT_PLAY:
        return Play(index=_index_arg(args))
    cls = _SIMPLE.get(name)
    if cls is None:
        logger.debug("Ignoring unhandled command %r", name)
        return None
    return cls()


def _state_envelope(cmd: str, track: Track, cursor: int) -> dict:
    return {
        "cmd": cmd,
        "args": [track.to_dict(), cursor, track.position, track.duration],
    }


def playing_envelope(track: Track, cursor: int) -> dict:
    return _state_envelope(EVENT_PLAYING, track, cursor)


def pause_envelope(track: Track, cursor: int) -> dict:
    return _state_envelope(EVENT_PAUSE, track, cursor)


@dataclass
class PlayingEvent:
    """What a listener needs from a "player.playing" broadcast."""

    track: Track = field(default_factory=Track)
    cursor: int = 0
    position: float = 0.0


def decode_playing_event(envelope) -> PlayingEvent:
    """Listener-side decode of a "player.playing" envelope.

    Raises CommandError if the envelope is some other command.  Any field of
    the wrong type yields an empty event instead of an exception.
    """
    if not isinstance(envelope, dict) or envelope.get("cmd") != EVENT_PLAYING:
        raise CommandError("not a player.playing envelope")
    args = envelope.get("args")
    try:
        track_data, cursor, position, duration = args[0], args[1], args[2], args[3]
        if not isinstance(track_data, dict):
            return PlayingEvent()
        for value in (cursor, position, duration):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise TypeError(f"expected a number, got {value!r}")
        track = Track.from_dict(track_data)
        track.duration = float(duration)
        track.position = float(position)
        return PlayingEvent(track=track, cursor=int(cursor), position=float(position))
    except (TypeError, IndexError, KeyError) as e:
        logger.warning("Malformed playing event: %s", e)
        return PlayingEvent()

"""Exception hierarchy shared by the playback service."""


class PlaybackError(Exception):
    """Base class for every error raised by mmfm-playback."""


class ConfigError(PlaybackError):
    """Configuration file missing required values or unreadable."""


class PlaylistError(PlaybackError):
    """Playlist endpoint unreachable or returned something unusable."""


class MediaError(PlaybackError):
    """Player process could not be started."""


class ProbeError(MediaError):
    """ffprobe failed or reported no usable duration."""


class CommandError(PlaybackError):
    """Inbound control envelope is malformed."""

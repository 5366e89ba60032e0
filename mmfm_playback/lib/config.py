"""
Configuration loader for mmfm-playback.

Loads a single JSON config file.  Search order:
  1. path given on the command line (-c)
  2. /etc/mmfm-playback/config.json
  3. config.json                      (CWD, handy for local dev)

Environment variables override file values, so containers can run without
a config file at all:

  FFPLAY_PATH, FFPROBE_PATH, MPLAYER_PATH
  WEBSOCKET_API  (legacy: WS_API)
  WEB_API        (legacy: WEB_API_URL)
  CACHE_PATH     (legacy: CACHE_DIR)

Usage:
    from mmfm_playback.lib.config import cfg, load_playback_config

    conf = load_playback_config("config.json")
    probe = cfg("ffmpeg", "ffprobe", default="ffprobe")
"""

import json
import logging
import os
import re
from dataclasses import dataclass, field

from .errors import ConfigError

logger = logging.getLogger(__name__)

_config: dict | None = None
_config_path: str | None = None

_SEARCH_PATHS = [
    "/etc/mmfm-playback/config.json",
    "config.json",
]

# (env var, section, key). Later entries win, so the legacy names take
# precedence when both are set.
_ENV_OVERRIDES = [
    ("FFPLAY_PATH", "ffmpeg", "ffplay"),
    ("FFPROBE_PATH", "ffmpeg", "ffprobe"),
    ("MPLAYER_PATH", "ffmpeg", "mplayer"),
    ("WEBSOCKET_API", "ws", None),
    ("WEB_API", "web", None),
    ("CACHE_PATH", "cache", None),
    ("WS_API", "ws", None),
    ("WEB_API_URL", "web", None),
    ("CACHE_DIR", "cache", None),
]

_SCHEDULE_RE = re.compile(r"^(\d{2}):(\d{2})$")


def _apply_env(config: dict) -> dict:
    for env_name, section, key in _ENV_OVERRIDES:
        value = os.environ.get(env_name)
        if not value:
            continue
        if key is None:
            config[section] = value
        else:
            sub = config.get(section)
            if not isinstance(sub, dict):
                sub = {}
                config[section] = sub
            sub[key] = value
        logger.debug("Config %s overridden from $%s", section if key is None else f"{section}.{key}", env_name)
    return config


def load_config(path: str | None = None) -> dict:
    """Load config from the first JSON file found. Cached after first call."""
    global _config, _config_path
    if _config is not None:
        return _config

    paths = [path] if path else []
    paths += _SEARCH_PATHS
    for candidate in paths:
        try:
            with open(candidate) as f:
                data = json.load(f)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError as e:
            logger.error("Invalid JSON in %s: %s", candidate, e)
            continue
        if not isinstance(data, dict):
            logger.error("Config %s: top level must be an object", candidate)
            continue
        logger.info("Config loaded from %s", candidate)
        _config_path = candidate
        _config = _apply_env(data)
        return _config

    logger.warning("No config.json found — using environment only")
    _config_path = None
    _config = _apply_env({})
    return _config


def cfg(section: str, key: str | None = None, *, default=None):
    """Read a config value.

    cfg("ws")                    → config["ws"]
    cfg("ffmpeg", "ffprobe")     → config["ffmpeg"]["ffprobe"]
    cfg("status_port", default=0)
    """
    config = load_config()
    val = config.get(section)
    if key is None:
        return val if val is not None else default
    if isinstance(val, dict):
        return val.get(key, default)
    return default


def reload_config(path: str | None = None) -> dict:
    """Force re-read from disk (for testing or hot-reload)."""
    global _config
    _config = None
    return load_config(path)


def config_path() -> str | None:
    """Path of the file the cached config came from, if any."""
    return _config_path


@dataclass(frozen=True)
class ScheduledInterrupt:
    """An announcement played every day at a fixed wall-clock minute."""

    name: str
    url: str
    schedule: str

    @property
    def trigger(self) -> tuple[int, int] | None:
        """(hour, minute) for a well-formed "HH:MM" schedule, else None."""
        m = _SCHEDULE_RE.match(self.schedule or "")
        if not m:
            return None
        hour, minute = int(m.group(1)), int(m.group(2))
        if hour > 23 or minute > 59:
            return None
        return hour, minute

    def matches(self, now) -> bool:
        trigger = self.trigger
        if trigger is None:
            return False
        return (now.hour, now.minute) == trigger


@dataclass(frozen=True)
class PlaybackConfig:
    ws: str
    web: str
    cache: str
    ffprobe: str
    player: str
    ffplay: str = ""
    status_port: int = 0
    scheduled_audios: tuple[ScheduledInterrupt, ...] = field(default_factory=tuple)

    @classmethod
    def from_dict(cls, data: dict) -> "PlaybackConfig":
        """Validate a raw config dict. Raises ConfigError listing every missing field."""
        ffmpeg = data.get("ffmpeg") or {}
        if not isinstance(ffmpeg, dict):
            ffmpeg = {}
        # mplayer is preferred; mpv or ffplay work as drop-ins.
        player = ffmpeg.get("mplayer") or ffmpeg.get("mpv") or ffmpeg.get("ffplay") or ""

        missing = []
        if not ffmpeg.get("ffprobe"):
            missing.append("ffmpeg.ffprobe")
        if not player:
            missing.append("ffmpeg.mplayer")
        for name in ("ws", "web", "cache"):
            if not data.get(name):
                missing.append(name)
        if missing:
            raise ConfigError(f"missing required configuration fields: {', '.join(missing)}")

        scheduled = []
        for entry in data.get("scheduled_audios") or []:
            if not isinstance(entry, dict):
                logger.warning("Ignoring scheduled audio entry %r: not an object", entry)
                continue
            item = ScheduledInterrupt(
                name=str(entry.get("name", "")),
                url=str(entry.get("url", "")),
                schedule=str(entry.get("schedule", "")),
            )
            if item.trigger is None:
                # Kept so it shows up in logs; matches() never fires for it.
                logger.warning("Scheduled audio %r: unsupported schedule %r (expected HH:MM)",
                               item.name, item.schedule)
            if not item.url:
                logger.warning("Scheduled audio %r has no url, skipping", item.name)
                continue
            scheduled.append(item)

        try:
            status_port = int(data.get("status_port") or 0)
        except (TypeError, ValueError):
            raise ConfigError(f"status_port must be an integer, got {data.get('status_port')!r}")

        return cls(
            ws=data["ws"],
            web=data["web"],
            cache=data["cache"],
            ffprobe=ffmpeg["ffprobe"],
            player=player,
            ffplay=ffmpeg.get("ffplay", ""),
            status_port=status_port,
            scheduled_audios=tuple(scheduled),
        )


def load_playback_config(path: str | None = None) -> PlaybackConfig:
    """Re-read the config file (plus env overrides) and validate it."""
    reload_config(path)
    return PlaybackConfig.from_dict({
        "ws": cfg("ws"),
        "web": cfg("web"),
        "cache": cfg("cache"),
        "ffmpeg": cfg("ffmpeg", default={}),
        "scheduled_audios": cfg("scheduled_audios", default=[]),
        "status_port": cfg("status_port", default=0),
    })

"""
Track model and the HTTP playlist source.

The playlist endpoint answers GET with a JSON array of track records:

    [{"cover": "...", "url": "...", "src": "...", "name": "...",
      "author": "...", "duration": 0, "index": 0}, ...]

`url` is the primary locator and `src` the fallback.  `duration` and
`index` (current position, seconds) are owned by the player once loaded.
"""

import asyncio
import logging
from dataclasses import dataclass

import aiohttp

from .errors import PlaylistError

logger = logging.getLogger(__name__)


def _str(data: dict, key: str) -> str:
    val = data.get(key)
    return val if isinstance(val, str) else ""


def _num(data: dict, key: str) -> float:
    val = data.get(key)
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        return 0.0
    return float(val)


@dataclass
class Track:
    url: str = ""
    src: str = ""
    name: str = ""
    author: str = ""
    cover: str = ""
    duration: float = 0.0
    position: float = 0.0

    @property
    def locator(self) -> str:
        """Primary locator if set, else the fallback."""
        return self.url or self.src

    @classmethod
    def from_dict(cls, data) -> "Track":
        """Decode one playlist record. Wrong-typed fields decode to empty defaults."""
        if not isinstance(data, dict):
            return cls()
        return cls(
            url=_str(data, "url"),
            src=_str(data, "src"),
            name=_str(data, "name"),
            author=_str(data, "author"),
            cover=_str(data, "cover"),
            duration=_num(data, "duration"),
            position=_num(data, "index"),
        )

    def to_dict(self) -> dict:
        # Listeners only read `url`, so it always carries the effective locator.
        return {
            "cover": self.cover,
            "url": self.locator,
            "src": self.src,
            "name": self.name,
            "author": self.author,
            "duration": self.duration,
            "index": self.position,
        }


class PlaylistSource:
    """Fetches the shared playlist from the web API."""

    def __init__(self, url: str, session: aiohttp.ClientSession | None = None):
        self.url = url
        self._session = session
        self._owns_session = session is None

    async def fetch(self) -> list[Track]:
        """GET the playlist. Raises PlaylistError on any transport or format problem."""
        if self._session is None:
            self._session = aiohttp.ClientSession(
                headers={"User-Agent": "mmfm-playback/1.0"},
            )
        logger.info("Loading playlist from %s", self.url)
        try:
            async with self._session.get(self.url, raise_for_status=True) as resp:
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PlaylistError(f"playlist request failed: {e}") from e
        except ValueError as e:
            raise PlaylistError(f"playlist is not valid JSON: {e}") from e

        if not isinstance(data, list):
            raise PlaylistError(f"playlist must be a JSON array, got {type(data).__name__}")
        tracks = [Track.from_dict(item) for item in data]
        logger.debug("Loaded playlist: %s", [t.name for t in tracks])
        return tracks

    async def close(self):
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

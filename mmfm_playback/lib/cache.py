"""
Content-addressed file cache for track audio.

Each locator is stored as <base>/data/<md5(locator)>.  A lookup that misses
returns the locator itself straight away and fills the cache in the
background, so the next play of the same track reads from disk.

Downloads are single-flight: asking for a key that is already being fetched
does not start a second download.
"""

import asyncio
import glob
import hashlib
import logging
import os
import shutil

import aiohttp

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


def cache_key(locator: str) -> str:
    return hashlib.md5(locator.encode("utf-8")).hexdigest()


class ContentCache:

    def __init__(self, base_path: str, session: aiohttp.ClientSession | None = None):
        self.base_path = base_path
        self.data_dir = os.path.join(base_path, "data")
        self._session = session
        self._owns_session = session is None
        self._inflight: dict[str, asyncio.Task] = {}

    def path_for(self, locator: str) -> str:
        return os.path.join(self.data_dir, cache_key(locator))

    def resolve(self, locator: str) -> str:
        """Return the cached path for *locator*, or *locator* itself on a miss.

        A miss schedules a background fill (needs a running event loop).
        """
        if not locator:
            return locator
        key = cache_key(locator)
        path = os.path.join(self.data_dir, key)
        if os.path.isfile(path):
            logger.info("Cache hit %s", path)
            return path

        if key in self._inflight:
            logger.debug("Cache fill already running for %s", locator)
            return locator

        task = asyncio.get_running_loop().create_task(self._populate(locator, key))
        self._inflight[key] = task
        task.add_done_callback(lambda _t, k=key: self._inflight.pop(k, None))
        return locator

    @property
    def pending(self) -> int:
        return len(self._inflight)

    async def _populate(self, locator: str, key: str):
        path = os.path.join(self.data_dir, key)
        # Write to a temp name so a half-finished file never counts as a hit.
        tmp_path = path + ".part"
        logger.debug("Begin caching %s", locator)
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            if locator.startswith("http"):
                await self._download(locator, tmp_path)
            else:
                loop = asyncio.get_running_loop()
                await loop.run_in_executor(None, shutil.copyfile, locator, tmp_path)
            os.replace(tmp_path, path)
            logger.debug("Cached %s -> %s", locator, path)
        except asyncio.CancelledError:
            self._discard(tmp_path)
            raise
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            logger.error("Caching %s failed: %s", locator, e)
            self._discard(tmp_path)

    async def _download(self, url: str, dest: str):
        if self._session is None:
            self._session = aiohttp.ClientSession()
        async with self._session.get(url) as resp:
            if resp.status != 200:
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history,
                    status=resp.status, message=f"url returned {resp.status}",
                )
            with open(dest, "wb") as out:
                async for chunk in resp.content.iter_chunked(CHUNK_SIZE):
                    out.write(chunk)

    @staticmethod
    def _discard(path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove partial cache file %s: %s", path, e)

    def clean(self, locators) -> int:
        """Delete every cached entry whose key matches none of *locators*.

        Key comparison is case-insensitive.  Returns the number of removed files.
        Blocking; run it in an executor from async code.
        """
        keep = {cache_key(loc).lower() for loc in locators if loc}
        removed = 0
        for path in glob.glob(os.path.join(self.data_dir, "*")):
            name = os.path.basename(path)
            if name.lower() in keep:
                continue
            # In-progress downloads belong to a live key; leave them alone.
            if name.endswith(".part") and name[:-5].lower() in keep:
                continue
            try:
                os.remove(path)
                removed += 1
            except OSError as e:
                logger.warning("Could not evict %s: %s", path, e)
        if removed:
            logger.info("Cache clean removed %d stale file(s)", removed)
        return removed

    def flush(self):
        """Remove the whole data directory."""
        shutil.rmtree(self.data_dir, ignore_errors=True)
        logger.info("Cache flushed: %s", self.data_dir)

    async def close(self):
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._inflight.clear()
        if self._session and self._owns_session:
            await self._session.close()
        self._session = None

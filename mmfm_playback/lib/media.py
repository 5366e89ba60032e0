"""
Player subprocess and ffprobe wrappers.

MediaProcess runs exactly one external player at a time (mplayer, mpv or
ffplay, picked from the binary name).  start() returns an awaitable that
resolves when the process exits, however it exits.  stop() is a hard kill.

MediaProbe asks ffprobe for a resource's duration.
"""

import asyncio
import logging
import os

from .errors import MediaError, ProbeError

log = logging.getLogger(__name__)


def sec_to_string(second: int) -> str:
    """Seconds → hh:mm:ss."""
    second = max(0, int(second))
    return "%02d:%02d:%02d" % (second // 3600, (second // 60) % 60, second % 60)


class MediaProcess:
    """One player process; starting a new one kills the previous."""

    def __init__(self, binary: str):
        self.binary = binary
        self.flavour = self._detect_flavour(binary)
        self._process: asyncio.subprocess.Process | None = None

    @staticmethod
    def _detect_flavour(binary: str) -> str:
        name = os.path.basename(binary).lower()
        if name.startswith("mpv"):
            return "mpv"
        if name.startswith("ffplay"):
            return "ffplay"
        return "mplayer"

    def build_args(self, locator: str, offset: int = 0) -> list[str]:
        offset = max(0, int(offset))
        if self.flavour == "mpv":
            args = ["--no-video", "--no-terminal"]
            if offset > 0:
                args.append(f"--start={offset}")
        elif self.flavour == "ffplay":
            args = ["-nodisp", "-autoexit", "-loglevel", "quiet"]
            if offset > 0:
                args += ["-ss", str(offset)]
        else:
            args = ["-really-quiet", "-vo", "null"]
            if offset > 0:
                args += ["-ss", sec_to_string(offset)]
        args.append(locator)
        return [self.binary] + args

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self, locator: str, offset: int = 0) -> asyncio.Future:
        """Spawn the player at *offset* seconds. Returns the completion future."""
        await self.stop()
        cmd = self.build_args(locator, offset)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise MediaError(f"could not start {self.binary}: {e}") from e
        self._process = proc
        log.debug("Player pid %d: %s", proc.pid, " ".join(cmd))
        return asyncio.ensure_future(proc.wait())

    async def stop(self):
        proc = self._process
        self._process = None
        if proc is None or proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        log.debug("Player pid %d killed", proc.pid)


def parse_duration(output: str) -> float:
    """Pull the duration out of `ffprobe -show_format -show_streams` text.

    The [FORMAT] section wins; otherwise the first stream that reports one.
    """
    section = ""
    stream_duration = None
    for line in output.splitlines():
        line = line.strip()
        if line.startswith("[") and line.endswith("]"):
            section = line
            continue
        if not line.startswith("duration="):
            continue
        value = line[len("duration="):].strip()
        try:
            duration = float(value)
        except ValueError:
            continue  # "N/A" for live streams
        if section == "[FORMAT]":
            return duration
        if stream_duration is None:
            stream_duration = duration
    if stream_duration is not None:
        return stream_duration
    raise ProbeError("duration not found in ffprobe output")


class MediaProbe:

    def __init__(self, binary: str):
        self.binary = binary

    async def duration(self, locator: str) -> float:
        try:
            proc = await asyncio.create_subprocess_exec(
                self.binary, "-v", "quiet", "-show_format", "-show_streams", locator,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as e:
            raise ProbeError(f"could not run {self.binary}: {e}") from e
        out, _ = await proc.communicate()
        if proc.returncode != 0:
            raise ProbeError(f"ffprobe exited with {proc.returncode} for {locator}")
        return parse_duration(out.decode("utf-8", errors="replace"))

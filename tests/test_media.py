"""Player command lines, ffprobe parsing and the subprocess wrappers."""

import asyncio
import os
import stat

import pytest

from mmfm_playback.lib.errors import MediaError, ProbeError
from mmfm_playback.lib.media import MediaProbe, MediaProcess, parse_duration, sec_to_string

FFPROBE_OUTPUT = """\
[STREAM]
index=0
codec_name=mp3
duration=201.482000
[/STREAM]
[FORMAT]
filename=a.mp3
duration=201.500000
bit_rate=128000
[/FORMAT]
"""


def script(tmp_path, name, body):
    path = tmp_path / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR)
    return str(path)


@pytest.mark.parametrize("seconds,expected", [
    (0, "00:00:00"),
    (59, "00:00:59"),
    (61, "00:01:01"),
    (3725, "01:02:05"),
    (-4, "00:00:00"),
])
def test_sec_to_string(seconds, expected):
    assert sec_to_string(seconds) == expected


def test_mplayer_args():
    player = MediaProcess("/usr/bin/mplayer")
    assert player.flavour == "mplayer"
    assert player.build_args("a.mp3") == ["/usr/bin/mplayer", "-really-quiet", "-vo", "null", "a.mp3"]
    assert player.build_args("a.mp3", 75)[-3:] == ["-ss", "00:01:15", "a.mp3"]


def test_mpv_args():
    player = MediaProcess("mpv")
    assert player.build_args("a.mp3", 0) == ["mpv", "--no-video", "--no-terminal", "a.mp3"]
    assert player.build_args("a.mp3", 30) == ["mpv", "--no-video", "--no-terminal", "--start=30", "a.mp3"]


def test_ffplay_args():
    player = MediaProcess("/opt/ffmpeg/bin/ffplay")
    assert player.flavour == "ffplay"
    args = player.build_args("a.mp3", 12)
    assert args[:5] == ["/opt/ffmpeg/bin/ffplay", "-nodisp", "-autoexit", "-loglevel", "quiet"]
    assert args[-3:] == ["-ss", "12", "a.mp3"]


def test_parse_duration_prefers_format_section():
    assert parse_duration(FFPROBE_OUTPUT) == 201.5


def test_parse_duration_falls_back_to_stream():
    output = "[STREAM]\nduration=N/A\n[/STREAM]\n[STREAM]\nduration=33.0\n[/STREAM]\n[FORMAT]\nduration=N/A\n[/FORMAT]\n"
    assert parse_duration(output) == 33.0


def test_parse_duration_missing():
    with pytest.raises(ProbeError):
        parse_duration("[FORMAT]\nfilename=live\n[/FORMAT]\n")


def test_process_runs_to_completion(tmp_path):
    marker = tmp_path / "args"
    binary = script(tmp_path, "mpv", f'echo "$@" > {marker}\n')
    player = MediaProcess(binary)

    async def scenario():
        done = await player.start("a.mp3", 9)
        return await asyncio.wait_for(done, 5)

    assert asyncio.run(scenario()) == 0
    assert marker.read_text().split() == ["--no-video", "--no-terminal", "--start=9", "a.mp3"]
    assert player.running is False


def test_stop_kills_running_process(tmp_path):
    binary = script(tmp_path, "mplayer", "exec sleep 30\n")
    player = MediaProcess(binary)

    async def scenario():
        done = await player.start("a.mp3")
        assert player.running is True
        await player.stop()
        return await asyncio.wait_for(done, 5)

    returncode = asyncio.run(scenario())
    assert returncode != 0
    assert player.running is False


def test_start_replaces_previous_process(tmp_path):
    binary = script(tmp_path, "mplayer", "exec sleep 30\n")
    player = MediaProcess(binary)

    async def scenario():
        first = await player.start("a.mp3")
        second = await player.start("b.mp3")
        first_code = await asyncio.wait_for(first, 5)
        still_running = player.running
        await player.stop()
        await asyncio.wait_for(second, 5)
        return first_code, still_running

    first_code, still_running = asyncio.run(scenario())
    assert first_code != 0
    assert still_running is True


def test_missing_binary_raises_media_error(tmp_path):
    player = MediaProcess(str(tmp_path / "no-such-player"))

    async def scenario():
        with pytest.raises(MediaError):
            await player.start("a.mp3")

    asyncio.run(scenario())


def test_probe_reads_duration(tmp_path):
    output = tmp_path / "probe.txt"
    output.write_text(FFPROBE_OUTPUT)
    binary = script(tmp_path, "ffprobe", f"cat {output}\n")

    assert asyncio.run(MediaProbe(binary).duration("a.mp3")) == 201.5


@pytest.mark.parametrize("body", ["exit 1\n", "echo nothing useful\n"])
def test_probe_failures(tmp_path, body):
    binary = script(tmp_path, "ffprobe", body)

    async def scenario():
        with pytest.raises(ProbeError):
            await MediaProbe(binary).duration("a.mp3")

    asyncio.run(scenario())


def test_probe_missing_binary(tmp_path):
    async def scenario():
        with pytest.raises(ProbeError):
            await MediaProbe(os.path.join(str(tmp_path), "ffprobe-missing")).duration("a.mp3")

    asyncio.run(scenario())

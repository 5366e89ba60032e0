"""HTTP status endpoint."""

import asyncio

from aiohttp.test_utils import TestClient, TestServer

from mmfm_playback.lib.commands import Play
from mmfm_playback.status import StatusServer


async def fetch(player, method="GET"):
    server = StatusServer(player, port=0)
    async with TestClient(TestServer(server.make_app())) as client:
        resp = await client.request(method, "/status")
        body = await resp.json() if method == "GET" else None
        return resp.status, dict(resp.headers), body


def test_status_reports_player_state(make_player, tracks):
    async def scenario():
        player = make_player(tracks)
        await player.dispatch(Play(1))
        return await fetch(player)

    status, headers, body = asyncio.run(scenario())
    assert status == 200
    assert headers["Access-Control-Allow-Origin"] == "*"
    assert body["cursor"] == 1
    assert body["paused"] is False
    assert body["interrupt_active"] is False
    assert body["playlist_length"] == 3
    assert body["connected"] is True
    assert body["track"]["name"] == "B"
    assert body["track"]["url"] == tracks[1].locator


def test_status_when_idle(make_player):
    status, _, body = asyncio.run(fetch(make_player()))
    assert status == 200
    assert body["track"] is None
    assert body["paused"] is True
    assert body["playlist_length"] == 0


def test_status_preflight(make_player):
    status, headers, _ = asyncio.run(fetch(make_player(), method="OPTIONS"))
    assert status == 200
    assert "GET" in headers["Access-Control-Allow-Methods"]

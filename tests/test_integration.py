from __future__ import annotations

import asyncio
import socket
from collections.abc import AsyncIterator

import orjson
import pytest
import pytest_asyncio
from aiohttp import ClientSession, WSCloseCode, WSMsgType, WSServerHandshakeError

from aiomediasync.client import PluginClient
from aiomediasync.config import ServerSettings
from aiomediasync.server.server import (
    ConnectionAddedEvent,
    ConnectionRemovedEvent,
    MediaSyncEvent,
    MediaSyncServer,
)

ADMIN_KEY = "admin-secret"
PLUGIN_TOKEN = "plugin-secret"


def _get_free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


@pytest_asyncio.fixture
async def running() -> AsyncIterator[tuple[MediaSyncServer, str]]:
    loop = asyncio.get_running_loop()
    settings = ServerSettings(
        _env_file=None, admin_key=ADMIN_KEY, plugin_token=PLUGIN_TOKEN, heartbeat_interval=30
    )
    server = MediaSyncServer(loop, settings)
    port = _get_free_port()
    await server.start_server(port=port, host="127.0.0.1")
    try:
        yield server, f"http://127.0.0.1:{port}"
    finally:
        await server.close()


async def _receive_json(ws) -> dict:
    msg = await asyncio.wait_for(ws.receive(), timeout=5)
    assert msg.type == WSMsgType.TEXT
    return orjson.loads(msg.data)


@pytest.mark.asyncio
async def test_invalid_token_is_refused(running) -> None:
    _, base = running
    async with ClientSession() as session, session.ws_connect(
        f"{base}/ws/video", params={"token": "x"}
    ) as ws:
        msg = await asyncio.wait_for(ws.receive(), timeout=5)
        assert msg.type == WSMsgType.CLOSE
        assert ws.close_code == WSCloseCode.POLICY_VIOLATION


@pytest.mark.asyncio
async def test_client_receives_admin_commands(running) -> None:
    server, base = running
    events: list[MediaSyncEvent] = []
    server.add_event_listener(lambda _server, event: events.append(event))

    async with ClientSession() as session:
        async with session.ws_connect(
            f"{base}/ws/video", params={"token": "abcdef123", "playerName": "Alex"}
        ) as ws:
            hello = await _receive_json(ws)
            assert hello["type"] == "HELLO_ACK"
            assert hello["playerId"] == "player-abcdef"
            assert hello["playerName"] == "Alex"
            assert "serverEpochMs" in hello
            assert "abcdef123" in server.connections

            async with session.post(
                f"{base}/admin/video/init",
                json={"token": "abcdef123", "url": "https://cdn.example/a.mp4"},
                headers={"x-admin-key": ADMIN_KEY},
            ) as resp:
                assert resp.status == 200
                assert await resp.json() == {"delivered": True, "target": "token"}

            init = await _receive_json(ws)
            assert init["type"] == "VIDEO_INIT"
            assert init["url"] == "https://cdn.example/a.mp4"

            await ws.send_str(orjson.dumps({"type": "VIDEO_STATE", "state": "playing"}).decode())
            await ws.send_str("not json at all")
            await ws.send_str(orjson.dumps({"type": "PONG", "t": 1}).decode())

            async with session.get(
                f"{base}/admin/video/connections", headers={"x-admin-key": ADMIN_KEY}
            ) as resp:
                snapshot = await resp.json()
            assert [c["token"] for c in snapshot["connections"]] == ["abcdef123"]

        for _ in range(50):
            if "abcdef123" not in server.connections:
                break
            await asyncio.sleep(0.05)
        assert "abcdef123" not in server.connections

    assert events == [ConnectionAddedEvent("abcdef123"), ConnectionRemovedEvent("abcdef123")]
    # Media stays pending for the token after it disconnected
    assert server.token_media.get("abcdef123") is not None


@pytest.mark.asyncio
async def test_reconnect_replaces_previous_connection(running) -> None:
    server, base = running
    async with ClientSession() as session:
        first = await session.ws_connect(f"{base}/ws/video", params={"token": "tok-1"})
        await _receive_json(first)
        second = await session.ws_connect(f"{base}/ws/video", params={"token": "tok-1"})
        await _receive_json(second)

        msg = await asyncio.wait_for(first.receive(), timeout=5)
        assert msg.type in (WSMsgType.CLOSE, WSMsgType.CLOSED)
        assert server.connections.get("tok-1") is not None
        assert len(server.connections) == 1

        await second.close()
        await first.close()


@pytest.mark.asyncio
async def test_admin_routes_require_key(running) -> None:
    _, base = running
    async with ClientSession() as session:
        async with session.post(f"{base}/admin/video/close", json={"token": "t"}) as resp:
            assert resp.status == 401
            assert await resp.json() == {"error": "unauthorized"}

        async with session.post(
            f"{base}/admin/video/close",
            data=b"{broken",
            headers={"x-admin-key": ADMIN_KEY},
        ) as resp:
            assert resp.status == 400
            assert await resp.json() == {"error": "invalid_json"}

        async with session.post(
            f"{base}/admin/video/play", json={}, headers={"x-admin-key": ADMIN_KEY}
        ) as resp:
            assert resp.status == 400

        async with session.post(
            f"{base}/set-region", json={"playerName": "Steve", "region": "Lobby"}
        ) as resp:
            assert resp.status == 200
            body = await resp.json()
            assert body["regionId"] == "lobby"

        async with session.get(f"{base}/healthz") as resp:
            assert await resp.json() == {"ok": True}


@pytest.mark.asyncio
async def test_plugin_bridge_round_trip(running) -> None:
    server, base = running
    async with ClientSession() as session:
        async with session.ws_connect(f"{base}/ws/video", params={"token": "viewer-1"}) as ws:
            await _receive_json(ws)

            client = PluginClient(session=session)
            await client.connect(f"{base}/ws/plugin", token=PLUGIN_TOKEN)
            assert client.hello is not None
            assert [c["token"] for c in client.hello.connections] == ["viewer-1"]

            pong = await client.ping()
            assert pong.server_epoch_ms > 0

            response = await client.request(
                "VIDEO_PLAY_INSTANT", {"token": "viewer-1", "url": "https://cdn.example/b.mp4"}
            )
            assert response.ok
            assert response.body["stage"] == "play"

            assert (await _receive_json(ws))["type"] == "VIDEO_INIT"
            play = await _receive_json(ws)
            assert play["type"] == "VIDEO_PLAY"
            assert play["atMs"] == 0

            rejected = await client.request("SET_REGION", {"token": "viewer-1"})
            assert rejected.status == 400

            await client.disconnect()
    assert server.token_media.get("viewer-1").state.url == "https://cdn.example/b.mp4"


@pytest.mark.asyncio
async def test_plugin_bridge_requires_token(running) -> None:
    _, base = running
    async with ClientSession() as session:
        with pytest.raises(WSServerHandshakeError) as err:
            await session.ws_connect(f"{base}/ws/plugin", params={"token": "wrong"})
        assert err.value.status == 401

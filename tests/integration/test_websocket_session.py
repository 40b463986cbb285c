"""Integration test: manager + real websocket transport against a local server."""

import asyncio
import base64
import json

import httpx
import pytest
from websockets.asyncio.server import serve

from kanbanterm.api_client import TerminalAPIClient
from kanbanterm.manager import TerminalSessionManager
from kanbanterm.models import ConnectionStatus

pytestmark = pytest.mark.integration


async def eventually(predicate, timeout=3.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_session_streams_reconnects_and_closes():
    opened: list[str] = []
    closed: list[str] = []
    inbound: list[str] = []

    async def handler(ws):
        opened.append(ws.request.path)
        try:
            inbound.append(await ws.recv())
            await ws.send(json.dumps({"type": "ready", "data": "running"}))
            await ws.send(json.dumps({"type": "data", "data": base64.b64encode(b"hi").decode()}))
            if len(opened) == 1:
                return  # server drops the first connection
            async for message in ws:
                inbound.append(message)
        finally:
            closed.append(ws.request.path)

    async with serve(handler, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        session = {
            "id": "s1",
            "projectId": "p1",
            "createdAt": "2024-01-01T00:00:00Z",
            "wsUrl": f"ws://127.0.0.1:{port}/api/v1/terminal/ws?sessionId=s1",
            "rows": 24,
            "cols": 80,
        }

        def api_handler(request):
            if request.method == "GET" and request.url.path == "/api/v1/projects/p1/terminals":
                return httpx.Response(200, json={"items": [session]})
            if request.url.path == "/api/v1/projects/p1/terminals/s1/close":
                return httpx.Response(200, json={"message": "closed"})
            return httpx.Response(404, json={"message": "not found"})

        api = TerminalAPIClient("http://kanban.test", transport=httpx.MockTransport(api_handler))
        manager = TerminalSessionManager(api, reconnect_delay=0.05)
        frames = []
        manager.subscribe("s1", frames.append)

        await manager.load_sessions("p1")
        await eventually(lambda: len(opened) == 2 and manager.connections.is_open("s1"))

        await eventually(lambda: [f.type for f in frames].count("data") == 2)

        tab = manager.list_sessions("p1")[0]
        assert tab.connection_status == ConnectionStatus.READY
        assert [json.loads(m) for m in inbound[:2]] == [
            {"type": "resize", "cols": 80, "rows": 24},
            {"type": "resize", "cols": 80, "rows": 24},
        ]

        assert manager.send("s1", json.dumps({"type": "input", "data": "bHMK"})) is True
        await eventually(lambda: len(inbound) == 3)

        await manager.close_session("p1", "s1")
        assert manager.list_sessions("p1") == []
        await eventually(lambda: len(closed) == 2)
        await asyncio.sleep(0.1)
        assert len(opened) == 2

        await manager.aclose()

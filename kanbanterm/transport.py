"""Session transport: one websocket per terminal session.

Transports report lifecycle through plain callbacks (open, message, close,
error) invoked on the event loop, in the order the underlying connection
produces them. They never reconnect on their own; that policy belongs to
ConnectionManager.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol
from urllib.parse import urljoin, urlsplit, urlunsplit

from structlog import get_logger
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosedOK, WebSocketException

logger = get_logger(__name__)

WS_OPEN_TIMEOUT_S = 10.0


@dataclass(frozen=True)
class TransportHandlers:
    on_open: Callable[[], None]
    on_message: Callable[[str], None]
    on_close: Callable[[], None]
    on_error: Callable[[Exception], None]


class Transport(Protocol):
    """A bidirectional text-frame connection."""

    @property
    def is_open(self) -> bool: ...

    def start(self) -> None: ...

    def send(self, text: str) -> bool: ...

    def close(self) -> None: ...


TransportFactory = Callable[[str, TransportHandlers], Transport]


def resolve_ws_url(ws_url: str, ws_path: str, base_url: str) -> str:
    """Resolve the transport URL for a session.

    An absolute ws_url wins; otherwise ws_path is joined onto base_url with
    http -> ws and https -> wss.
    """
    target = ws_url or ws_path
    if not target:
        raise ValueError("session has neither wsUrl nor wsPath")
    parts = urlsplit(target)
    if parts.scheme in ("ws", "wss"):
        return target
    if parts.scheme in ("http", "https"):
        joined = target
    else:
        joined = urljoin(base_url.rstrip("/") + "/", target.lstrip("/"))
    parts = urlsplit(joined)
    scheme = "wss" if parts.scheme == "https" else "ws"
    return urlunsplit((scheme, parts.netloc, parts.path, parts.query, parts.fragment))


class WebSocketTransport:
    """Transport over `websockets` asyncio client.

    Outbound frames go through a writer task so they leave in call order.
    """

    def __init__(self, url: str, handlers: TransportHandlers, *, open_timeout: float = WS_OPEN_TIMEOUT_S):
        self.url = url
        self.handlers = handlers
        self.open_timeout = open_timeout
        self._ws: ClientConnection | None = None
        self._task: asyncio.Task[None] | None = None
        self._writer: asyncio.Task[None] | None = None
        self._outbox: asyncio.Queue[str] = asyncio.Queue()
        self._open = False
        self._running = False
        self._close_reported = False

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"ws:{self.url}")

    def send(self, text: str) -> bool:
        if not self._open:
            return False
        self._outbox.put_nowait(text)
        return True

    def close(self) -> None:
        self._open = False
        if self._task is None or self._task.done():
            return
        self._task.cancel()
        if not self._running:
            # A task cancelled before its first step never enters _run
            self._report_close()

    def _report_close(self) -> None:
        if self._close_reported:
            return
        self._close_reported = True
        self.handlers.on_close()

    async def _run(self) -> None:
        self._running = True
        ws: ClientConnection | None = None
        try:
            ws = await connect(self.url, open_timeout=self.open_timeout)
            self._ws = ws
            self._open = True
            self._writer = asyncio.create_task(self._write_loop(ws))
            self.handlers.on_open()

            async for message in ws:
                text = message.decode("utf-8", errors="replace") if isinstance(message, bytes) else message
                self.handlers.on_message(text)
        except asyncio.CancelledError:
            logger.debug("ws_transport_cancelled", url=self.url)
        except ConnectionClosedOK:
            logger.debug("ws_transport_closed_by_peer", url=self.url)
        except (WebSocketException, OSError, TimeoutError) as e:
            logger.info("ws_transport_failed", url=self.url, error=str(e))
            self.handlers.on_error(e)
        finally:
            self._open = False
            if self._writer is not None:
                self._writer.cancel()
                self._writer = None
            if ws is not None:
                await ws.close()
            self._ws = None
            self._report_close()

    async def _write_loop(self, ws: ClientConnection) -> None:
        while True:
            text = await self._outbox.get()
            try:
                await ws.send(text)
            except WebSocketException as e:
                logger.debug("ws_transport_send_failed", url=self.url, error=str(e))
                return


def websocket_transport_factory(url: str, handlers: TransportHandlers) -> Transport:
    return WebSocketTransport(url, handlers)

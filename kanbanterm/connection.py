"""Connection manager: one transport per session plus the reconnect state machine.

States per session: connecting -> ready <-> error, closed reachable from any
state. Status lives on the registry's tab; this module only drives it.

Transitions:
- transport open: send a resize frame with the tab's rows/cols, then ready
- frame "ready": ready; "exit": closed (tab stays registered); "error": error
- transport error: error (no reconnect by itself)
- transport close, caller initiated: closed, marker cleared, no retry
- transport close, unexpected, still tracked: connecting + one reconnect
  after a fixed delay
- transport close, unexpected, no longer tracked: closed
"""

from __future__ import annotations

import asyncio
import json
from typing import Protocol

from pydantic import ValidationError as PydanticValidationError
from structlog import get_logger

from kanbanterm.api_models import ResizeFrame, ServerFrame
from kanbanterm.constants import DEFAULT_BASE_URL, FRAME_ERROR, FRAME_EXIT, FRAME_READY, RECONNECT_DELAY_S
from kanbanterm.errors import TransportFailure
from kanbanterm.event_hub import EventHub
from kanbanterm.models import ConnectionStatus, TerminalTab
from kanbanterm.transport import (
    Transport,
    TransportFactory,
    TransportHandlers,
    resolve_ws_url,
    websocket_transport_factory,
)

logger = get_logger(__name__)

OutboundMessage = str | dict[str, object]  # guard: loose-dict - caller-defined frames are forwarded verbatim


class SessionTracker(Protocol):
    """Registry view the connection manager needs: membership and status sink."""

    def lookup(self, session_id: str) -> TerminalTab | None: ...

    def set_connection_status(self, session_id: str, status: ConnectionStatus) -> None: ...


class ConnectionManager:
    """Owns the transport map, manual-close markers and reconnect timers."""

    def __init__(
        self,
        hub: EventHub,
        *,
        base_url: str = DEFAULT_BASE_URL,
        transport_factory: TransportFactory = websocket_transport_factory,
        reconnect_delay: float = RECONNECT_DELAY_S,
    ) -> None:
        self.hub = hub
        self.base_url = base_url
        self.transport_factory = transport_factory
        self.reconnect_delay = reconnect_delay
        self._tracker: SessionTracker | None = None
        self._transports: dict[str, Transport] = {}
        self._manual_close: dict[str, Transport] = {}
        self._reconnect_timers: dict[str, asyncio.TimerHandle] = {}

    def bind_tracker(self, tracker: SessionTracker) -> None:
        self._tracker = tracker

    # --- Queries ---

    def has_transport(self, session_id: str) -> bool:
        return session_id in self._transports

    def is_open(self, session_id: str) -> bool:
        transport = self._transports.get(session_id)
        return transport is not None and transport.is_open

    def reconnect_pending(self, session_id: str) -> bool:
        return session_id in self._reconnect_timers

    # --- Lifecycle ---

    def connect(self, tab: TerminalTab) -> Transport | None:
        """Open a transport for a tab. A session never has more than one transport."""
        existing = self._transports.get(tab.id)
        if existing is not None:
            return existing

        try:
            url = resolve_ws_url(tab.ws_url, tab.ws_path, self.base_url)
        except ValueError as e:
            failure = TransportFailure(str(e), session_id=tab.id)
            logger.warning("transport_url_unresolved", session_id=tab.id, error=str(failure))
            self._set_status(tab.id, ConnectionStatus.ERROR)
            return None

        session_id = tab.id
        holder: list[Transport] = []
        handlers = TransportHandlers(
            on_open=lambda: self._on_open(session_id, holder[0]),
            on_message=lambda raw: self._on_message(session_id, holder[0], raw),
            on_close=lambda: self._on_close(session_id, holder[0]),
            on_error=lambda exc: self._on_error(session_id, holder[0], exc),
        )
        transport = self.transport_factory(url, handlers)
        holder.append(transport)
        self._transports[session_id] = transport
        self._set_status(session_id, ConnectionStatus.CONNECTING)
        logger.debug("transport_connecting", session_id=session_id, url=url)
        transport.start()
        return transport

    def disconnect(self, session_id: str) -> bool:
        """Caller-initiated close. Cancels any pending reconnect; never retries."""
        cancelled = self._cancel_reconnect(session_id)
        transport = self._transports.pop(session_id, None)
        if transport is None:
            if cancelled:
                self._set_status(session_id, ConnectionStatus.CLOSED)
                logger.debug("reconnect_cancelled", session_id=session_id)
            return False
        self._manual_close[session_id] = transport
        transport.close()
        logger.debug("transport_closing", session_id=session_id)
        return True

    def close_all(self) -> None:
        for session_id in list(self._transports):
            self.disconnect(session_id)
        for session_id in list(self._reconnect_timers):
            self.disconnect(session_id)

    def send(self, session_id: str, message: OutboundMessage) -> bool:
        """Send a frame if the transport is open. Otherwise the frame is dropped."""
        transport = self._transports.get(session_id)
        if transport is None or not transport.is_open:
            logger.debug("send_dropped", session_id=session_id)
            return False
        text = message if isinstance(message, str) else json.dumps(message)
        return transport.send(text)

    # --- Transport events ---

    def _is_current(self, session_id: str, transport: Transport) -> bool:
        return self._transports.get(session_id) is transport

    def _on_open(self, session_id: str, transport: Transport) -> None:
        if not self._is_current(session_id, transport):
            return
        tab = self._lookup(session_id)
        if tab is not None:
            transport.send(ResizeFrame(cols=tab.cols, rows=tab.rows).model_dump_json(by_alias=True))
        self._set_status(session_id, ConnectionStatus.READY)
        logger.info("transport_ready", session_id=session_id)

    def _on_message(self, session_id: str, transport: Transport, raw: str) -> None:
        if not self._is_current(session_id, transport):
            return
        try:
            payload = json.loads(raw)
            frame = ServerFrame.model_validate(payload)
        except (json.JSONDecodeError, PydanticValidationError):
            logger.debug("frame_malformed", session_id=session_id, preview=raw[:80])
            return

        if frame.type == FRAME_READY:
            self._set_status(session_id, ConnectionStatus.READY)
        elif frame.type == FRAME_EXIT:
            self._set_status(session_id, ConnectionStatus.CLOSED)
        elif frame.type == FRAME_ERROR:
            self._set_status(session_id, ConnectionStatus.ERROR)
        self.hub.publish(session_id, frame)

    def _on_error(self, session_id: str, transport: Transport, exc: Exception) -> None:
        if not self._is_current(session_id, transport):
            return
        logger.info("transport_error", session_id=session_id, error=str(exc))
        self._set_status(session_id, ConnectionStatus.ERROR)

    def _on_close(self, session_id: str, transport: Transport) -> None:
        if self._manual_close.get(session_id) is transport:
            del self._manual_close[session_id]
            if session_id not in self._transports:
                self._set_status(session_id, ConnectionStatus.CLOSED)
            logger.debug("transport_closed", session_id=session_id)
            return
        if not self._is_current(session_id, transport):
            return

        del self._transports[session_id]
        if self._lookup(session_id) is None:
            self._set_status(session_id, ConnectionStatus.CLOSED)
            logger.debug("transport_closed_untracked", session_id=session_id)
            return

        logger.info("transport_dropped", session_id=session_id, retry_in=self.reconnect_delay)
        self._set_status(session_id, ConnectionStatus.CONNECTING)
        self._schedule_reconnect(session_id)

    # --- Reconnect ---

    def _schedule_reconnect(self, session_id: str) -> None:
        if session_id in self._reconnect_timers or self._lookup(session_id) is None:
            return
        loop = asyncio.get_running_loop()
        self._reconnect_timers[session_id] = loop.call_later(self.reconnect_delay, self._fire_reconnect, session_id)

    def _fire_reconnect(self, session_id: str) -> None:
        self._reconnect_timers.pop(session_id, None)
        tab = self._lookup(session_id)
        if tab is None:
            logger.debug("reconnect_skipped_untracked", session_id=session_id)
            return
        logger.info("transport_reconnecting", session_id=session_id)
        self.connect(tab)

    def _cancel_reconnect(self, session_id: str) -> bool:
        handle = self._reconnect_timers.pop(session_id, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    # --- Tracker passthrough ---

    def _lookup(self, session_id: str) -> TerminalTab | None:
        return self._tracker.lookup(session_id) if self._tracker is not None else None

    def _set_status(self, session_id: str, status: ConnectionStatus) -> None:
        if self._tracker is not None:
            self._tracker.set_connection_status(session_id, status)

"""Terminal session lifecycle facade.

The only entry point callers use. Composes the REST collaborator, the session
registry, the connection manager and the event hub. Everything runs on one
asyncio loop; the only suspension points are REST calls and transport I/O.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

from structlog import get_logger

from kanbanterm.api_client import TerminalAPIClient
from kanbanterm.config import KanbanTermConfig
from kanbanterm.connection import ConnectionManager, OutboundMessage
from kanbanterm.constants import DEFAULT_BASE_URL, RECONNECT_DELAY_S
from kanbanterm.errors import RequestFailure, ValidationError
from kanbanterm.event_hub import EventHub, FrameListener, Subscription
from kanbanterm.models import TerminalCreateOptions, TerminalTab
from kanbanterm.order_store import JsonFileKeyValueStore, MemoryKeyValueStore, TabOrderStore
from kanbanterm.registry import SessionRegistry
from kanbanterm.transport import TransportFactory, websocket_transport_factory

logger = get_logger(__name__)


def _require_project(project_id: str | None) -> str:
    if not project_id or not project_id.strip():
        raise ValidationError("A project must be selected.")
    return project_id


class TerminalSessionManager:
    """Create, list, rename, close, reorder and activate terminal sessions per project."""

    def __init__(
        self,
        api: TerminalAPIClient,
        *,
        order_store: TabOrderStore | None = None,
        base_url: str | None = None,
        transport_factory: TransportFactory = websocket_transport_factory,
        reconnect_delay: float = RECONNECT_DELAY_S,
    ) -> None:
        self.api = api
        self.hub = EventHub()
        self.connections = ConnectionManager(
            self.hub,
            base_url=base_url or getattr(api, "base_url", DEFAULT_BASE_URL),
            transport_factory=transport_factory,
            reconnect_delay=reconnect_delay,
        )
        self.registry = SessionRegistry(order_store or TabOrderStore(MemoryKeyValueStore()), self.connections)
        self._load_token = 0
        self._project_load_tokens: dict[str, int] = {}
        self._cached_counts: dict[str, int] = {}
        self._closed = False

    @classmethod
    def from_config(
        cls,
        config: KanbanTermConfig,
        *,
        transport_factory: TransportFactory = websocket_transport_factory,
    ) -> TerminalSessionManager:
        """Build a manager with durable tab order at config.state_path."""
        api = TerminalAPIClient(
            config.server.base_url,
            api_prefix=config.server.api_prefix,
            timeout=config.server.timeout_s,
        )
        order_store = TabOrderStore(JsonFileKeyValueStore(Path(config.state_path).expanduser()))
        return cls(
            api,
            order_store=order_store,
            base_url=config.server.base_url,
            transport_factory=transport_factory,
            reconnect_delay=config.terminal.reconnect_delay_s,
        )

    # --- Lifecycle ---

    async def __aenter__(self) -> TerminalSessionManager:
        await self.api.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        await self.aclose()

    async def aclose(self) -> None:
        """Disconnect every transport, cancel pending reconnects and close the HTTP client."""
        if self._closed:
            return
        self._closed = True
        self.registry.clear()
        self.connections.close_all()
        self.hub.clear()
        await self.api.close()
        logger.info("terminal_manager_closed")

    # --- Reads ---

    def list_sessions(self, project_id: str | None) -> list[TerminalTab]:
        return self.registry.tabs(project_id or "")

    def active_tab_id(self, project_id: str | None) -> str:
        return self.registry.active_tab_id(project_id or "")

    def set_active_tab(self, project_id: str | None, session_id: str) -> None:
        if not self.registry.set_active_tab(project_id or "", session_id):
            logger.debug("active_tab_ignored", project_id=project_id, session_id=session_id)

    def terminal_count(self, project_id: str | None) -> int:
        return len(self.registry.tabs(project_id or ""))

    @property
    def terminal_counts(self) -> dict[str, int]:
        return dict(self._cached_counts)

    def prepare_project(self, project_id: str) -> None:
        """Ensure a bucket and a valid active pointer exist before first render."""
        self.registry.ensure_bucket(project_id)
        self.registry.ensure_active_tab(project_id)

    def subscribe(self, session_id: str, listener: FrameListener) -> Subscription:
        return self.hub.subscribe(session_id, listener)

    # --- REST-backed operations ---

    async def load_sessions(self, project_id: str | None) -> None:
        """Fetch the authoritative list and reconcile. Only the latest load per project applies."""
        resolved = _require_project(project_id)
        self._load_token += 1
        token = self._load_token
        self._project_load_tokens[resolved] = token

        try:
            sessions = await self.api.list_sessions(resolved)
        except RequestFailure as e:
            logger.error("load_sessions_failed", project_id=resolved, error=str(e), exc_info=True)
            return

        if self._project_load_tokens.get(resolved) != token:
            logger.debug("load_sessions_stale", project_id=resolved, token=token)
            return

        self.registry.reconcile(resolved, sessions)
        self._cached_counts[resolved] = len(sessions)
        logger.debug("sessions_loaded", project_id=resolved, count=len(sessions))

    async def load_terminal_counts(self) -> dict[str, int]:
        """Refresh the per-project count cache. Failures keep the old cache."""
        try:
            counts = await self.api.terminal_counts()
        except RequestFailure as e:
            logger.error("load_terminal_counts_failed", error=str(e), exc_info=True)
            return {}
        self._cached_counts = dict(counts)
        return counts

    async def create_session(self, project_id: str | None, options: TerminalCreateOptions) -> TerminalTab:
        resolved = _require_project(project_id)
        if not options.worktree_id:
            raise ValidationError("A worktree must be selected.")

        session = await self.api.create_session(resolved, options)
        if session is None:
            raise RequestFailure("Failed to create terminal: server returned no session.")

        tab = self.registry.attach_or_update(session, activate=True, project_hint=resolved)
        if tab is None:
            raise RequestFailure("Failed to create terminal: session has no project.")
        self._cached_counts[tab.project_id] = self._cached_counts.get(tab.project_id, 0) + 1
        return tab

    async def rename_session(self, project_id: str | None, session_id: str, title: str) -> TerminalTab | None:
        resolved = _require_project(project_id)
        normalized = title.strip()
        if not normalized:
            raise ValidationError("Please enter a new terminal title.")

        session = await self.api.rename_session(resolved, session_id, normalized)
        if session is None:
            return None
        return self.registry.attach_or_update(session, project_hint=resolved)

    async def close_session(self, project_id: str | None, session_id: str) -> None:
        """Close server-side, then tear down locally even if a reconnect is pending."""
        resolved = _require_project(project_id)
        await self.api.close_session(resolved, session_id)
        self.disconnect(session_id, remove=True)

    async def close_all_sessions(self, project_id: str | None) -> list[str]:
        """Close every session in the project. Returns the ids that failed to close."""
        resolved = _require_project(project_id)
        tabs = self.registry.tabs(resolved)
        results = await asyncio.gather(
            *(self.close_session(resolved, tab.id) for tab in tabs),
            return_exceptions=True,
        )
        failed: list[str] = []
        for tab, result in zip(tabs, results):
            if isinstance(result, BaseException):
                logger.warning("close_session_failed", project_id=resolved, session_id=tab.id, error=str(result))
                failed.append(tab.id)
        return failed

    # --- Local operations ---

    def disconnect(self, session_id: str, remove: bool = True) -> None:
        """Caller-initiated teardown of a session's transport, optionally dropping the session."""
        if not remove:
            self.connections.disconnect(session_id)
            return
        tab = self.registry.remove(session_id)
        if tab is not None:
            current = self._cached_counts.get(tab.project_id, 0)
            self._cached_counts[tab.project_id] = max(0, current - 1)

    def reorder_tabs(self, project_id: str | None, from_index: int, to_index: int) -> bool:
        return self.registry.reorder(project_id or "", from_index, to_index)

    def send(self, session_id: str, message: OutboundMessage) -> bool:
        """Forward a frame verbatim if the session's transport is open; dropped otherwise."""
        return self.connections.send(session_id, message)

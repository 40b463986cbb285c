"""Per-project binding over TerminalSessionManager for a terminal panel view."""

from __future__ import annotations

from kanbanterm.connection import OutboundMessage
from kanbanterm.event_hub import FrameListener, Subscription
from kanbanterm.manager import TerminalSessionManager
from kanbanterm.models import TerminalCreateOptions, TerminalTab


class ProjectTerminalClient:
    """View-facing handle scoped to the currently selected project.

    Switching project prepares the bucket and kicks off a load; every call
    is forwarded to the shared manager with the current project id.
    """

    def __init__(self, manager: TerminalSessionManager, project_id: str = "") -> None:
        self.manager = manager
        self.project_id = project_id

    @property
    def tabs(self) -> list[TerminalTab]:
        return self.manager.list_sessions(self.project_id)

    @property
    def has_sessions(self) -> bool:
        return bool(self.tabs)

    @property
    def active_tab_id(self) -> str:
        return self.manager.active_tab_id(self.project_id)

    @active_tab_id.setter
    def active_tab_id(self, session_id: str) -> None:
        self.manager.set_active_tab(self.project_id, session_id)

    async def switch_project(self, project_id: str) -> None:
        self.project_id = project_id
        await self.reload_sessions()

    async def reload_sessions(self) -> None:
        if not self.project_id:
            return
        self.manager.prepare_project(self.project_id)
        await self.manager.load_sessions(self.project_id)

    async def create_session(self, options: TerminalCreateOptions) -> TerminalTab:
        return await self.manager.create_session(self.project_id, options)

    async def rename_session(self, session_id: str, title: str) -> TerminalTab | None:
        return await self.manager.rename_session(self.project_id, session_id, title)

    async def close_session(self, session_id: str) -> None:
        await self.manager.close_session(self.project_id, session_id)

    def reorder_tabs(self, from_index: int, to_index: int) -> bool:
        return self.manager.reorder_tabs(self.project_id, from_index, to_index)

    def send(self, session_id: str, message: OutboundMessage) -> bool:
        return self.manager.send(session_id, message)

    def disconnect(self, session_id: str, remove: bool = True) -> None:
        self.manager.disconnect(session_id, remove)

    def subscribe(self, session_id: str, listener: FrameListener) -> Subscription:
        return self.manager.subscribe(session_id, listener)

"""Local session state tracked by the registry."""

from __future__ import annotations

from dataclasses import dataclass, fields
from enum import Enum

from kanbanterm.api_models import TerminalSession


class ConnectionStatus(str, Enum):
    """Client-side transport status for a tab. Never persisted."""

    CONNECTING = "connecting"
    READY = "ready"
    CLOSED = "closed"
    ERROR = "error"


@dataclass
class TerminalTab:
    """Registry record for one session: server fields plus local connection status."""

    id: str
    project_id: str
    worktree_id: str = ""
    working_dir: str = ""
    title: str = ""
    created_at: str = ""
    last_active: str = ""
    status: str = ""
    ws_path: str = ""
    ws_url: str = ""
    rows: int = 0
    cols: int = 0
    connection_status: ConnectionStatus = ConnectionStatus.CONNECTING

    @classmethod
    def from_session(cls, session: TerminalSession, project_id: str) -> TerminalTab:
        payload = session.model_dump()
        payload["project_id"] = project_id
        return cls(**payload)

    def merge(self, session: TerminalSession) -> None:
        """Apply mutable server fields in place. `id` and `project_id` never change."""
        payload = session.model_dump()
        for item in fields(self):
            if item.name in ("id", "project_id", "connection_status"):
                continue
            if item.name in payload:
                setattr(self, item.name, payload[item.name])


@dataclass(frozen=True)
class TerminalCreateOptions:
    worktree_id: str
    working_dir: str = ""
    title: str = ""
    rows: int = 0
    cols: int = 0

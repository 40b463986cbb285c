"""Shared fakes for kanbanterm unit tests."""

from __future__ import annotations

import asyncio
import json

import pytest

from kanbanterm.api_models import TerminalSession
from kanbanterm.errors import RequestFailure
from kanbanterm.models import TerminalCreateOptions
from kanbanterm.transport import TransportHandlers


class FakeTransport:
    """In-memory transport; tests drive its lifecycle explicitly."""

    def __init__(self, url: str, handlers: TransportHandlers) -> None:
        self.url = url
        self.handlers = handlers
        self.sent: list[str] = []
        self.started = False
        self.closed = False
        self._open = False

    @property
    def is_open(self) -> bool:
        return self._open

    def start(self) -> None:
        self.started = True

    def send(self, text: str) -> bool:
        if not self._open:
            return False
        self.sent.append(text)
        return True

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._open = False
        self.handlers.on_close()

    # --- test drivers ---

    def open(self) -> None:
        self._open = True
        self.handlers.on_open()

    def receive(self, frame: dict[str, object] | str) -> None:
        self.handlers.on_message(frame if isinstance(frame, str) else json.dumps(frame))

    def fail(self, exc: Exception | None = None) -> None:
        self.handlers.on_error(exc or OSError("boom"))

    def drop(self) -> None:
        """Peer went away without the caller asking."""
        self.closed = True
        self._open = False
        self.handlers.on_close()

    def sent_frames(self) -> list[dict[str, object]]:
        return [json.loads(text) for text in self.sent]


class FakeTransportFactory:
    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    def __call__(self, url: str, handlers: TransportHandlers) -> FakeTransport:
        transport = FakeTransport(url, handlers)
        self.created.append(transport)
        return transport

    def for_session(self, session_id: str) -> list[FakeTransport]:
        return [t for t in self.created if t.url.endswith(f"sessionId={session_id}")]

    def latest(self, session_id: str) -> FakeTransport:
        return self.for_session(session_id)[-1]


def make_session(
    session_id: str,
    project_id: str = "p1",
    *,
    created_at: str = "2024-01-01T00:00:00Z",
    title: str = "",
    rows: int = 24,
    cols: int = 80,
    **extra: object,
) -> TerminalSession:
    fields: dict[str, object] = {
        "id": session_id,
        "project_id": project_id,
        "worktree_id": "wt1",
        "title": title or f"Terminal {session_id}",
        "created_at": created_at,
        "ws_path": f"/api/v1/terminal/ws?sessionId={session_id}",
        "rows": rows,
        "cols": cols,
    }
    fields.update(extra)
    return TerminalSession.model_validate(fields)


class FakeTerminalAPI:
    """Stands in for TerminalAPIClient with scriptable server state."""

    def __init__(self) -> None:
        self.base_url = "http://kanban.test"
        self.sessions: dict[str, list[TerminalSession]] = {}
        self.counts: dict[str, int] = {}
        self.calls: list[tuple[str, ...]] = []
        self.fail_close: set[str] = set()
        self.fail_list = False
        self.fail_counts = False
        self.create_returns_none = False
        self.create_project_id: str | None = None
        self.list_gates: dict[str, list[asyncio.Event]] = {}
        self.connected = False
        self._next_id = 0

    async def connect(self) -> None:
        self.connected = True

    async def close(self) -> None:
        self.connected = False

    async def list_sessions(self, project_id: str) -> list[TerminalSession]:
        self.calls.append(("list", project_id))
        snapshot = list(self.sessions.get(project_id, []))
        gates = self.list_gates.get(project_id)
        if gates:
            await gates.pop(0).wait()
        if self.fail_list:
            raise RequestFailure("list failed", status_code=500)
        return snapshot

    async def create_session(self, project_id: str, options: TerminalCreateOptions) -> TerminalSession | None:
        self.calls.append(("create", project_id, options.worktree_id))
        if self.create_returns_none:
            return None
        self._next_id += 1
        session = make_session(
            f"s{self._next_id}",
            self.create_project_id or project_id,
            created_at=f"2024-01-01T00:00:{self._next_id:02d}Z",
            title=options.title,
        )
        self.sessions.setdefault(project_id, []).append(session)
        return session

    async def rename_session(self, project_id: str, session_id: str, title: str) -> TerminalSession | None:
        self.calls.append(("rename", project_id, session_id, title))
        bucket = self.sessions.get(project_id, [])
        for index, session in enumerate(bucket):
            if session.id == session_id:
                bucket[index] = session.model_copy(update={"title": title})
                return bucket[index]
        return None

    async def close_session(self, project_id: str, session_id: str) -> None:
        self.calls.append(("close", project_id, session_id))
        if session_id in self.fail_close:
            raise RequestFailure(f"close {session_id} failed", status_code=500)
        self.sessions[project_id] = [s for s in self.sessions.get(project_id, []) if s.id != session_id]

    async def terminal_counts(self) -> dict[str, int]:
        self.calls.append(("counts",))
        if self.fail_counts:
            raise RequestFailure("counts failed", status_code=503)
        return dict(self.counts)


@pytest.fixture
def transports() -> FakeTransportFactory:
    return FakeTransportFactory()


@pytest.fixture
def fake_api() -> FakeTerminalAPI:
    return FakeTerminalAPI()


@pytest.fixture
def session_factory():
    return make_session

"""Session registry: authoritative map of session id -> tab, bucketed by project.

Invariants:
- A session id lives in at most one project bucket.
- An id without a registry entry has no live transport.
- Bucket order and stored tab order are kept eventually consistent; unchanged
  orders are never re-written.
- A non-empty bucket's active pointer always resolves to one of its members.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import TypeVar

from structlog import get_logger

from kanbanterm.api_models import TerminalSession
from kanbanterm.connection import ConnectionManager
from kanbanterm.errors import ProtocolAnomaly
from kanbanterm.models import ConnectionStatus, TerminalTab
from kanbanterm.order_store import TabOrderStore

logger = get_logger(__name__)

_SortableT = TypeVar("_SortableT", TerminalSession, TerminalTab)


@dataclass(frozen=True)
class ProjectResolution:
    """Outcome of resolving which project a newly seen session belongs to."""

    project_id: str  # empty when unresolved
    anomaly: ProtocolAnomaly | None = None


def _normalize(value: str | None) -> str:
    return value.strip() if isinstance(value, str) else ""


def resolve_project_id(
    session_id: str,
    payload_project_id: str | None,
    hint: str | None,
    tracked_project_id: str | None = None,
) -> ProjectResolution:
    """Decide the owning project for a session payload.

    - tracked: the locally recorded project always wins; a differing payload
      value is an anomaly.
    - untracked: payload wins over the caller hint; disagreement is an anomaly;
      neither present is an anomaly with no project.
    """
    from_payload = _normalize(payload_project_id)
    if tracked_project_id:
        if from_payload and from_payload != tracked_project_id:
            return ProjectResolution(
                tracked_project_id,
                ProtocolAnomaly(
                    f"payload project {from_payload!r} differs from tracked project {tracked_project_id!r}",
                    session_id=session_id,
                ),
            )
        return ProjectResolution(tracked_project_id)

    requested = _normalize(hint)
    if from_payload and requested and from_payload != requested:
        return ProjectResolution(
            from_payload,
            ProtocolAnomaly(
                f"payload project {from_payload!r} differs from requested project {requested!r}",
                session_id=session_id,
            ),
        )
    resolved = from_payload or requested
    if not resolved:
        return ProjectResolution("", ProtocolAnomaly("session has no known project", session_id=session_id))
    return ProjectResolution(resolved)


def sort_sessions_with_stored_order(
    sessions: Sequence[_SortableT],
    stored_order: Sequence[str] | None,
) -> list[_SortableT]:
    """Order sessions by stored tab order, then creation time, then id.

    Ids present in the stored order come first, by stored position; the rest
    follow sorted by created_at then id.
    """
    order_index = {session_id: index for index, session_id in enumerate(stored_order or ()) if session_id}

    def key(item: _SortableT) -> tuple[int, int, str, str]:
        index = order_index.get(item.id)
        if index is None:
            return (1, 0, item.created_at, item.id)
        return (0, index, item.created_at, item.id)

    return sorted(sessions, key=key)


class SessionRegistry:
    """In-memory registry of tabs per project.

    Owns bucket membership, the active-tab pointers and tab order capture.
    Attaching a new session opens its transport; removing one tears it down
    first.
    """

    def __init__(self, order_store: TabOrderStore, connections: ConnectionManager) -> None:
        self.order_store = order_store
        self.connections = connections
        self._buckets: dict[str, list[TerminalTab]] = {}
        self._index: dict[str, TerminalTab] = {}
        self._active: dict[str, str] = {}
        connections.bind_tracker(self)

    # --- Tracker protocol (used by ConnectionManager) ---

    def lookup(self, session_id: str) -> TerminalTab | None:
        return self._index.get(session_id)

    def set_connection_status(self, session_id: str, status: ConnectionStatus) -> None:
        tab = self._index.get(session_id)
        if tab is None:
            return
        if tab.connection_status != status:
            logger.debug(
                "connection_status_changed",
                session_id=session_id,
                previous=tab.connection_status.value,
                status=status.value,
            )
        tab.connection_status = status

    # --- Reads ---

    def is_tracked(self, session_id: str) -> bool:
        return session_id in self._index

    def tabs(self, project_id: str) -> list[TerminalTab]:
        if not project_id:
            return []
        return list(self._buckets.get(project_id, ()))

    def active_tab_id(self, project_id: str) -> str:
        """Return the active tab, healing the pointer to the first member if stale."""
        if not project_id:
            return ""
        bucket = self._buckets.get(project_id)
        if not bucket:
            self._active.pop(project_id, None)
            return ""
        current = self._active.get(project_id)
        if current and any(tab.id == current for tab in bucket):
            return current
        fallback = bucket[0].id
        self._active[project_id] = fallback
        return fallback

    # --- Writes ---

    def ensure_bucket(self, project_id: str) -> list[TerminalTab]:
        if not project_id:
            return []
        return self._buckets.setdefault(project_id, [])

    def ensure_active_tab(self, project_id: str) -> None:
        self.active_tab_id(project_id)

    def set_active_tab(self, project_id: str, session_id: str) -> bool:
        """Point the project's active tab at a bucket member. Unknown ids are ignored."""
        bucket = self._buckets.get(project_id) if project_id else None
        if not bucket or not any(tab.id == session_id for tab in bucket):
            return False
        self._active[project_id] = session_id
        return True

    def capture_order(self, project_id: str) -> bool:
        return self.order_store.capture(project_id, [tab.id for tab in self._buckets.get(project_id, ())])

    def attach_or_update(
        self,
        session: TerminalSession,
        *,
        activate: bool = False,
        project_hint: str | None = None,
        persist: bool = True,
    ) -> TerminalTab | None:
        """Track a server session, or merge into the existing tab.

        Returns the tab, or None when the owning project cannot be resolved.
        """
        existing = self._index.get(session.id)
        if existing is not None:
            resolution = resolve_project_id(session.id, session.project_id, project_hint, existing.project_id)
            if resolution.anomaly is not None:
                logger.warning(
                    "session_project_mismatch",
                    session_id=session.id,
                    payload_project=session.project_id,
                    tracked_project=existing.project_id,
                )
            existing.merge(session)
            if activate:
                self.set_active_tab(existing.project_id, existing.id)
            return existing

        resolution = resolve_project_id(session.id, session.project_id, project_hint)
        if resolution.anomaly is not None:
            logger.warning(
                "session_project_anomaly",
                session_id=session.id,
                payload_project=session.project_id,
                requested_project=project_hint,
                resolved_project=resolution.project_id or None,
                error=str(resolution.anomaly),
            )
        if not resolution.project_id:
            return None

        project_id = resolution.project_id
        bucket = self.ensure_bucket(project_id)
        tab = TerminalTab.from_session(session, project_id)
        bucket.append(tab)
        self._index[tab.id] = tab
        if persist:
            self.capture_order(project_id)

        if activate or len(bucket) == 1 or not self._active.get(project_id):
            self._active[project_id] = tab.id

        logger.info("session_attached", session_id=tab.id, project_id=project_id, title=tab.title)
        self.connections.connect(tab)
        return tab

    def remove(self, session_id: str, *, persist: bool = True) -> TerminalTab | None:
        """Tear down a session's transport and drop it from its bucket."""
        self.connections.disconnect(session_id)
        tab = self._index.pop(session_id, None)
        if tab is None:
            return None

        project_id = tab.project_id
        bucket = self._buckets.get(project_id)
        if bucket is not None:
            bucket[:] = [item for item in bucket if item.id != session_id]
            if persist:
                self.capture_order(project_id)
            if not bucket:
                del self._buckets[project_id]

        if self._active.get(project_id) == session_id:
            remaining = self._buckets.get(project_id)
            if remaining:
                self._active[project_id] = remaining[0].id
            else:
                self._active.pop(project_id, None)

        logger.info("session_removed", session_id=session_id, project_id=project_id)
        return tab

    def reconcile(self, project_id: str, server_sessions: Sequence[TerminalSession]) -> list[TerminalTab]:
        """Make the project's bucket match the server's authoritative list."""
        stored_order = self.order_store.get(project_id)
        bucket = self.ensure_bucket(project_id)
        incoming = {session.id for session in server_sessions}

        for tab in list(bucket):
            if tab.id not in incoming:
                self.remove(tab.id, persist=False)

        elsewhere: set[str] = set()
        for session in sort_sessions_with_stored_order(server_sessions, stored_order):
            tab = self.attach_or_update(session, project_hint=project_id, persist=False)
            if tab is not None and tab.project_id != project_id:
                elsewhere.add(tab.project_id)
        for other_project_id in elsewhere:
            self.capture_order(other_project_id)
            self.ensure_active_tab(other_project_id)

        bucket = self.ensure_bucket(project_id)
        bucket[:] = sort_sessions_with_stored_order(bucket, stored_order)
        self.capture_order(project_id)
        self.ensure_active_tab(project_id)
        return list(bucket)

    def reorder(self, project_id: str, from_index: int, to_index: int) -> bool:
        """Move one tab. Returns True when the bucket order changed."""
        bucket = self._buckets.get(project_id) if project_id else None
        if not bucket or len(bucket) < 2:
            return False
        if from_index == to_index:
            return False
        if from_index < 0 or from_index >= len(bucket):
            return False
        clamped = max(0, min(len(bucket) - 1, to_index))
        tab = bucket.pop(from_index)
        bucket.insert(clamped, tab)
        self.capture_order(project_id)
        return clamped != from_index

    def clear(self) -> None:
        """Disconnect and forget every session without touching stored order."""
        for session_id in list(self._index):
            self.connections.disconnect(session_id)
        self._index.clear()
        self._buckets.clear()
        self._active.clear()

"""Error taxonomy for the terminal session core.

- ValidationError: caller passed a bad argument; raised synchronously.
- ProtocolAnomaly: server payload disagrees with local invariants; logged and
  corrected locally, never raised out of the registry.
- TransportFailure: live connection errored or dropped; reflected in
  connection status only.
- RequestFailure: collaborator REST call failed.
"""

from __future__ import annotations


class KanbanTermError(Exception):
    """Base class for all kanbanterm errors."""


class ValidationError(KanbanTermError):
    """Invalid argument supplied by the caller."""


class ProtocolAnomaly(KanbanTermError):
    """Inbound payload inconsistent with locally tracked state."""

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class TransportFailure(KanbanTermError):
    """Session transport could not be opened or dropped unexpectedly."""

    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class RequestFailure(KanbanTermError):
    """REST request failed with structured error info."""

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail or message  # Fallback to full message if no detail

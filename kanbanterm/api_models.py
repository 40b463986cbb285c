"""Wire models for the terminal REST collaborator and session transport."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from kanbanterm.constants import FRAME_RESIZE

_WIRE_CONFIG = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True, extra="ignore")


class TerminalSession(BaseModel):  # type: ignore[explicit-any]
    """Server view of one remote PTY binding."""

    model_config = _WIRE_CONFIG

    id: str = Field(..., min_length=1)
    project_id: str = ""
    worktree_id: str = ""
    working_dir: str = ""
    title: str = ""
    created_at: str = ""
    last_active: str = ""
    status: str = ""  # server-side: starting | running | closed | error
    ws_path: str = ""
    ws_url: str = ""
    rows: int = 0
    cols: int = 0


class SessionListResponse(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE_CONFIG

    items: list[TerminalSession] = Field(default_factory=list)


class SessionItemResponse(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE_CONFIG

    item: TerminalSession | None = None


class TerminalCountsResponse(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE_CONFIG

    counts: dict[str, int] = Field(default_factory=dict)


class CreateSessionRequest(BaseModel):  # type: ignore[explicit-any]
    """Body for creating a session in a worktree."""

    model_config = _WIRE_CONFIG

    working_dir: str = ""
    title: str = ""
    rows: int = Field(default=0, ge=0)
    cols: int = Field(default=0, ge=0)


class RenameSessionRequest(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE_CONFIG

    title: str = Field(..., min_length=1)


class ServerFrame(BaseModel):  # type: ignore[explicit-any]
    """Inbound transport frame.

    `data` frames carry base64 encoded terminal output; the core never decodes it.
    """

    model_config = _WIRE_CONFIG

    type: str
    data: str | None = None
    cols: int | None = None
    rows: int | None = None


class ResizeFrame(BaseModel):  # type: ignore[explicit-any]
    model_config = _WIRE_CONFIG

    type: Literal["resize"] = FRAME_RESIZE
    cols: int
    rows: int

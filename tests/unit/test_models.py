"""Unit tests for local tab state."""

import pytest

from kanbanterm.api_models import ResizeFrame, TerminalSession
from kanbanterm.models import ConnectionStatus, TerminalTab

pytestmark = pytest.mark.unit


def test_from_session_overrides_project():
    session = TerminalSession.model_validate({"id": "s1", "projectId": "p2", "title": "t"})
    tab = TerminalTab.from_session(session, "p1")

    assert tab.project_id == "p1"
    assert tab.title == "t"
    assert tab.connection_status == ConnectionStatus.CONNECTING


def test_merge_keeps_identity_and_status():
    tab = TerminalTab(id="s1", project_id="p1", title="old", connection_status=ConnectionStatus.READY)
    tab.merge(TerminalSession.model_validate({"id": "other", "projectId": "p9", "title": "new", "rows": 40}))

    assert (tab.id, tab.project_id) == ("s1", "p1")
    assert tab.title == "new"
    assert tab.rows == 40
    assert tab.connection_status == ConnectionStatus.READY


def test_resize_frame_wire_shape():
    assert ResizeFrame(cols=80, rows=24).model_dump(by_alias=True) == {"type": "resize", "cols": 80, "rows": 24}

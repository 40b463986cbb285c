"""Unit tests for the kanbanterm CLI."""

import asyncio
import base64

import pytest

from kanbanterm.cli import main as cli_main
from kanbanterm.errors import RequestFailure
from kanbanterm.manager import TerminalSessionManager

pytestmark = pytest.mark.unit


class StubManager:
    """Minimal manager double for exercising CLI dispatch."""

    def __init__(self, fake_api, transports):
        self.inner = TerminalSessionManager(fake_api, transport_factory=transports, reconnect_delay=0.01)

    async def __aenter__(self):
        return self.inner

    async def __aexit__(self, *exc):
        await self.inner.aclose()


@pytest.fixture
def run_cli(monkeypatch, fake_api, transports, tmp_path):
    monkeypatch.setattr(cli_main, "setup_logging", lambda level=None: None)
    monkeypatch.setattr(
        cli_main.TerminalSessionManager,
        "from_config",
        classmethod(lambda cls, config, **kw: StubManager(fake_api, transports)),
    )

    def run(*argv):
        with pytest.raises(SystemExit) as exc_info:
            cli_main.main(["--config", str(tmp_path / "none.yml"), *argv])
        return exc_info.value.code

    return run


def test_sessions_lists_tabs(run_cli, fake_api, session_factory, capsys):
    fake_api.sessions["p1"] = [session_factory("a", title="shell"), session_factory("b", title="logs")]

    assert run_cli("sessions", "p1") == 0

    out = capsys.readouterr().out
    assert "shell" in out and "logs" in out
    assert "* a" in out


def test_sessions_empty(run_cli, capsys):
    assert run_cli("sessions", "p1") == 0
    assert "No sessions found." in capsys.readouterr().out


def test_counts(run_cli, fake_api, capsys):
    fake_api.counts = {"p2": 1, "p1": 3}
    assert run_cli("counts") == 0
    assert capsys.readouterr().out.splitlines() == ["p1\t3", "p2\t1"]


def test_create_prints_id(run_cli, fake_api, capsys):
    assert run_cli("create", "p1", "wt1", "--title", "dev") == 0
    assert capsys.readouterr().out.strip() == "s1"
    assert fake_api.calls == [("create", "p1", "wt1")]


def test_request_failure_exits_nonzero(run_cli, fake_api, monkeypatch, capsys):
    async def boom(project_id, session_id):
        raise RequestFailure("server unavailable")

    monkeypatch.setattr(fake_api, "close_session", boom)

    assert run_cli("close", "p1", "s1") == 1
    assert "server unavailable" in capsys.readouterr().err


def test_validation_error_exits_nonzero(run_cli, capsys):
    assert run_cli("rename", "p1", "s1", "   ") == 1
    assert "kanbanterm error" in capsys.readouterr().err


def test_close_all_reports_failures(run_cli, fake_api, session_factory, capsys):
    fake_api.sessions["p1"] = [session_factory("a"), session_factory("b")]
    fake_api.fail_close.add("b")

    assert run_cli("close-all", "p1") == 1
    assert "failed to close b" in capsys.readouterr().err
    assert [s.id for s in fake_api.sessions["p1"]] == ["b"]


def test_attach_unknown_session(run_cli, capsys):
    assert run_cli("attach", "p1", "ghost") == 1
    assert "not found" in capsys.readouterr().err


def test_attach_streams_until_exit(run_cli, fake_api, transports, session_factory, monkeypatch, capsysbinary):
    fake_api.sessions["p1"] = [session_factory("a")]
    original_subscribe = cli_main.TerminalSessionManager.subscribe

    def subscribe_then_emit(self, session_id, listener):
        subscription = original_subscribe(self, session_id, listener)
        transport = transports.latest(session_id)

        def emit():
            transport.open()
            transport.receive({"type": "data", "data": base64.b64encode(b"hello\n").decode()})
            transport.receive({"type": "exit"})

        asyncio.get_running_loop().call_soon(emit)
        return subscription

    monkeypatch.setattr(cli_main.TerminalSessionManager, "subscribe", subscribe_then_emit)

    assert run_cli("attach", "p1", "a") == 0
    assert capsysbinary.readouterr().out == b"hello\n"

"""Unit tests for config loading."""

import pydantic
import pytest

from kanbanterm.config import KanbanTermConfig, expand_env_vars, load_config
from kanbanterm.constants import DEFAULT_BASE_URL, RECONNECT_DELAY_S

pytestmark = pytest.mark.unit


def test_missing_file_returns_defaults(tmp_path):
    config = load_config(tmp_path / "absent.yml")

    assert config.server.base_url == DEFAULT_BASE_URL
    assert config.server.api_prefix == "/api/v1"
    assert config.terminal.reconnect_delay_s == RECONNECT_DELAY_S
    assert config.log_level == "INFO"


def test_load_yaml_with_env_expansion(tmp_path, monkeypatch):
    monkeypatch.setenv("KANBAN_HOST", "kanban.internal")
    path = tmp_path / "config.yml"
    path.write_text(
        """
server:
  base_url: "http://${KANBAN_HOST}:3007/"
  timeout_s: 2.5
terminal:
  reconnect_delay_s: 0.25
  default_rows: 40
  default_cols: 120
log_level: debug
""",
        encoding="utf-8",
    )

    config = load_config(path)

    assert config.server.base_url == "http://kanban.internal:3007"
    assert config.server.timeout_s == 2.5
    assert config.terminal.reconnect_delay_s == 0.25
    assert (config.terminal.default_rows, config.terminal.default_cols) == (40, 120)
    assert config.log_level == "DEBUG"


def test_empty_file_returns_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == KanbanTermConfig()


def test_broken_yaml_returns_defaults(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("server: [unclosed", encoding="utf-8")
    assert load_config(path).server.base_url == DEFAULT_BASE_URL


@pytest.mark.parametrize(
    "raw",
    [
        {"server": {"base_url": "ftp://nope"}},
        {"server": {"timeout_s": 0}},
        {"terminal": {"reconnect_delay_s": -1}},
        {"log_level": "LOUD"},
    ],
)
def test_invalid_values_raise(raw):
    with pytest.raises(pydantic.ValidationError):
        KanbanTermConfig.model_validate(raw)


def test_unknown_keys_are_kept(tmp_path):
    path = tmp_path / "config.yml"
    path.write_text("server:\n  colour: blue\nextra_section: {}\n", encoding="utf-8")

    config = load_config(path)

    assert config.model_extra == {"extra_section": {}}
    assert config.server.model_extra == {"colour": "blue"}


def test_expand_env_vars_leaves_unset_untouched(monkeypatch):
    monkeypatch.delenv("KANBANTERM_UNSET_VAR", raising=False)
    monkeypatch.setenv("KANBANTERM_SET_VAR", "x")
    data = {"a": ["${KANBANTERM_SET_VAR}", "${KANBANTERM_UNSET_VAR}"], "b": 3}
    assert expand_env_vars(data) == {"a": ["x", "${KANBANTERM_UNSET_VAR}"], "b": 3}

"""Configuration for kanbanterm: YAML file validated by pydantic models."""

from kanbanterm.config.loader import expand_env_vars, load_config
from kanbanterm.config.schema import KanbanTermConfig, ServerConfig, TerminalConfig

__all__ = ["KanbanTermConfig", "ServerConfig", "TerminalConfig", "expand_env_vars", "load_config"]

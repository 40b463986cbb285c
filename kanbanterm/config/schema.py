from pydantic import BaseModel, ConfigDict, Field, field_validator

from kanbanterm.constants import (
    DEFAULT_API_PREFIX,
    DEFAULT_BASE_URL,
    DEFAULT_REQUEST_TIMEOUT_S,
    RECONNECT_DELAY_S,
)
from kanbanterm.paths import STATE_PATH


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    base_url: str = DEFAULT_BASE_URL
    api_prefix: str = DEFAULT_API_PREFIX
    timeout_s: float = Field(default=DEFAULT_REQUEST_TIMEOUT_S, gt=0)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Require an http(s) origin."""
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Invalid base_url: {v}. Expected http:// or https://")
        return v.rstrip("/")


class TerminalConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    reconnect_delay_s: float = Field(default=RECONNECT_DELAY_S, gt=0)
    default_rows: int = Field(default=0, ge=0)  # 0 lets the server decide
    default_cols: int = Field(default=0, ge=0)


class KanbanTermConfig(BaseModel):
    model_config = ConfigDict(extra="allow")
    server: ServerConfig = ServerConfig()
    terminal: TerminalConfig = TerminalConfig()
    state_path: str = str(STATE_PATH)
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log_level: {v}")
        return level

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel
from structlog import get_logger

from kanbanterm.config.schema import KanbanTermConfig
from kanbanterm.paths import CONFIG_PATH

logger = get_logger(__name__)


def expand_env_vars(config: object) -> object:
    """Recursively replace ${VAR} patterns with environment variable values.

    Unset variables are left as-is.
    """
    if isinstance(config, dict):
        return {k: expand_env_vars(v) for k, v in config.items()}
    if isinstance(config, list):
        return [expand_env_vars(item) for item in config]
    if isinstance(config, str):

        def replace_env_var(match: re.Match[str]) -> str:
            return os.getenv(match.group(1), match.group(0))

        return re.sub(r"\$\{([^}]+)\}", replace_env_var, config)
    return config


def _warn_unknown_keys(model: BaseModel, path: str, config_path: Path) -> None:
    """Recursively warn about unknown keys in a model and its nested models."""
    if model.model_extra:
        logger.warning("config_unknown_keys", at=path, file=str(config_path), keys=list(model.model_extra.keys()))
    for field_name, field_value in model.__dict__.items():
        if isinstance(field_value, BaseModel):
            _warn_unknown_keys(field_value, f"{path}.{field_name}", config_path)


def load_config(path: Optional[Path] = None) -> KanbanTermConfig:
    """Load and validate configuration from a YAML file.

    A missing or unreadable file yields defaults; invalid values raise
    pydantic.ValidationError.
    """
    if path is None:
        path = CONFIG_PATH
    if not path.exists():
        return KanbanTermConfig()

    try:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("config_read_failed", file=str(path), error=str(e))
        return KanbanTermConfig()

    model = KanbanTermConfig.model_validate(expand_env_vars(raw))
    _warn_unknown_keys(model, "root", path)
    return model

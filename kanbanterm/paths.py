from __future__ import annotations

import os
from pathlib import Path

KANBANTERM_HOME = (Path("~/.kanbanterm")).expanduser()
CONFIG_PATH = Path(os.environ.get("KANBANTERM_CONFIG", str(KANBANTERM_HOME / "config.yml"))).expanduser()
STATE_PATH = KANBANTERM_HOME / "state.json"

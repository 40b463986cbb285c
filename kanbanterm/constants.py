"""Constants used across kanbanterm.

Protocol values here mirror the terminal server and must not drift.
"""

# Persisted tab order lives under this key in the local key-value store
TAB_ORDER_STORAGE_KEY = "kanban-terminal-tab-order"

# Transport
RECONNECT_DELAY_S = 1.0  # Fixed delay before a single reconnect attempt
FRAME_RESIZE = "resize"
FRAME_READY = "ready"
FRAME_DATA = "data"
FRAME_EXIT = "exit"
FRAME_ERROR = "error"

# REST collaborator
DEFAULT_BASE_URL = "http://127.0.0.1:3007"
DEFAULT_API_PREFIX = "/api/v1"
DEFAULT_REQUEST_TIMEOUT_S = 5.0

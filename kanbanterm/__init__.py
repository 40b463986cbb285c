"""kanbanterm - project-scoped terminal session manager for Code Kanban."""

__version__ = "0.1.0"

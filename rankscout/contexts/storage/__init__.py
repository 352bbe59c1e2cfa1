"""
Data storage domain.

Persists crawl tasks and listing rankings to PostgreSQL (or any SQLAlchemy
backend).

Public API exports only the interfaces needed by other contexts.
"""

from rankscout.contexts.storage.database import DatabaseConfig
from rankscout.contexts.storage.task_store import (
    TaskStore,
    SQLTaskStore,
    NullTaskStore,
    safe_store_call,
)

__all__ = [
    # Task store (primary interface)
    "TaskStore",
    "SQLTaskStore",
    "NullTaskStore",
    "safe_store_call",
    # Configuration
    "DatabaseConfig",
]

"""Cascade execution persistence layer.

SQLite-backed storage for archived fallback executions and their attempt
logs, used when ``persist_executions`` is enabled and by the history CLI.
"""

from cascade.persistence.database import close_db, init_db
from cascade.persistence.store import ExecutionStore

__all__ = ["ExecutionStore", "close_db", "init_db"]

"""
jmeter-runner — persistence

File: src/jmeter_runner/persistence/__init__.py

Purpose
- Persistence layer: state DB access, migrations, repositories.

Non-functional requirements
- SQLite-first; avoid heavy DB dependencies.
"""

from jmeter_runner.persistence.repositories import ExecutionRepository, RecordStore
from jmeter_runner.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
    canonical_json,
)

__all__ = [
    "ExecutionRepository",
    "RecordStore",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
    "canonical_json",
]

"""Shared async and filesystem helpers."""

from __future__ import annotations

from jmeter_runner.utils.concurrency import SlotPool, StopSignal, wait_for_exit
from jmeter_runner.utils.fs import (
    contained_path,
    guarded_remove,
    lexically_contained,
    tree_size,
    write_file_atomically,
)

__all__ = [
    "SlotPool",
    "StopSignal",
    "contained_path",
    "guarded_remove",
    "lexically_contained",
    "tree_size",
    "wait_for_exit",
    "write_file_atomically",
]

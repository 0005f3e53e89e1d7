"""SQLite persistence for pages, events and run history."""

from __future__ import annotations

from .schema import metadata as db_metadata
from .sqlite_manager import MonitorStore

__all__ = ["MonitorStore", "db_metadata"]

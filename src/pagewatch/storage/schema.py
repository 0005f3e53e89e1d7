"""
Database schema definition for the pagewatch SQLite store.
"""

from __future__ import annotations

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, MetaData, Table, Text
from sqlalchemy.sql import func

# Using a standard naming convention for database objects
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=convention)

# Rows are written with raw SQL, so defaults must live on the server side.
pages_table = Table(
    "pages",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("url", Text, nullable=False, unique=True),
    Column("last_fingerprint", Text),
    Column("last_segments", JSON, comment="Ordered segment list from the last completed run"),
    Column("error_count", Integer, nullable=False, server_default="0"),
    Column("active", Boolean, nullable=False, server_default="1"),
    Column("render_mode", Text, nullable=False, server_default="static"),
    Column("created_at", DateTime, server_default=func.now()),
    Column("last_checked_at", DateTime),
)

events_table = Table(
    "events",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("page_id", Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
    Column("title", Text, nullable=False),
    Column("summary", Text),
    Column("date_iso", Text, index=True),
    Column("price_info", Text),
    Column("location", Text),
    Column("source_link", Text),
    Column("content_hash", Text, nullable=False, unique=True),
    Column("is_future", Boolean, nullable=False, server_default="1"),
    Column("created_at", DateTime, server_default=func.now(), index=True),
)

change_log_table = Table(
    "change_log",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("page_id", Integer, ForeignKey("pages.id", ondelete="CASCADE"), nullable=False),
    Column("timestamp", DateTime, server_default=func.now()),
    Column("raw_findings", JSON),
)

errors_table = Table(
    "errors",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("page_id", Integer, ForeignKey("pages.id", ondelete="SET NULL")),
    Column("message", Text, nullable=False),
    Column("error_type", Text, nullable=False, server_default="general"),
    Column("severity", Text, nullable=False, server_default="warning"),
    Column("created_at", DateTime, server_default=func.now(), index=True),
)

telemetry_table = Table(
    "telemetry",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("run_at", DateTime, server_default=func.now(), index=True),
    Column("pages_checked", Integer, nullable=False, server_default="0"),
    Column("changes_found", Integer, nullable=False, server_default="0"),
    Column("extraction_calls", Integer, nullable=False, server_default="0"),
    Column("notifications_sent", Integer, nullable=False, server_default="0"),
    Column("errors", Integer, nullable=False, server_default="0"),
    Column("duration_ms", Integer, nullable=False, server_default="0"),
)

settings_table = Table(
    "settings",
    metadata,
    Column("key", Text, primary_key=True),
    Column("value", Text),
    Column("updated_at", DateTime, server_default=func.now()),
)

discovered_urls_table = Table(
    "discovered_urls",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("source_page_id", Integer, ForeignKey("pages.id", ondelete="SET NULL")),
    Column("url", Text, nullable=False, unique=True),
    Column("title", Text),
    Column("reason", Text),
    Column("created_at", DateTime, server_default=func.now()),
)

# Indexes for common query patterns
Index("ix_pages_active", pages_table.c.active)
Index("ix_change_log_page_timestamp", change_log_table.c.page_id, change_log_table.c.timestamp)

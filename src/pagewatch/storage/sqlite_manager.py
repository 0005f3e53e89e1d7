"""
Manages the SQLite database holding pages, events and run history.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite
import structlog
from sqlalchemy import create_engine

from pagewatch.config.config import StorageConfig
from pagewatch.dedup.similarity import titles_match
from pagewatch.exceptions import PagewatchError
from pagewatch.protocols import ChangeLogEntry, Event, RenderMode, Telemetry, TrackedPage

from .schema import metadata as db_metadata

logger = structlog.get_logger(__name__)

# The current version of the database schema.
# This should be incremented whenever the schema in schema.py changes.
CURRENT_SCHEMA_VERSION = 1

EVENT_COLUMNS = (
    "page_id",
    "title",
    "summary",
    "date_iso",
    "price_info",
    "location",
    "source_link",
    "content_hash",
    "is_future",
)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        return None


def _row_to_page(row: aiosqlite.Row) -> TrackedPage:
    segments = json.loads(row["last_segments"]) if row["last_segments"] else []
    return TrackedPage(
        id=row["id"],
        url=row["url"],
        last_fingerprint=row["last_fingerprint"],
        last_segments=segments,
        error_count=row["error_count"],
        active=bool(row["active"]),
        render_mode=RenderMode(row["render_mode"]),
    )


def _row_to_event(row: aiosqlite.Row) -> Event:
    return Event(
        id=row["id"],
        page_id=row["page_id"],
        title=row["title"],
        summary=row["summary"] or "",
        date_iso=row["date_iso"],
        price_info=row["price_info"] or "",
        location=row["location"] or "",
        source_link=row["source_link"] or "",
        content_hash=row["content_hash"],
        is_future=bool(row["is_future"]),
        created_at=_parse_timestamp(row["created_at"]),
    )


class MonitorStore:
    """Handles all interactions with the SQLite database."""

    def __init__(self, config: StorageConfig):
        self.config = config
        self.db_path = Path(config.db_path)
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=config.pool_size)
        self._engine = create_engine(f"sqlite:///{self.db_path}")
        self._initialized = False

    async def __aenter__(self) -> MonitorStore:
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Optional[type], exc_val: Optional[BaseException], exc_tb: Any) -> None:
        await self.close()

    async def initialize(self) -> None:
        """Initializes the database, connection pool, and runs migrations."""
        if self._initialized:
            return
        for _ in range(self.config.pool_size):
            conn = await self._create_connection()
            await self._pool.put(conn)

        async with self.get_connection() as conn:
            await self._run_migrations(conn)
        self._initialized = True

    async def _create_connection(self) -> aiosqlite.Connection:
        """Creates and configures a new database connection."""
        conn = await aiosqlite.connect(self.db_path)
        if self.config.wal_mode:
            await conn.execute("PRAGMA journal_mode=WAL;")
        await conn.execute("PRAGMA foreign_keys=ON;")
        await conn.execute("PRAGMA busy_timeout = 5000;")
        conn.row_factory = aiosqlite.Row
        return conn

    @asynccontextmanager
    async def get_connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Gets a connection from the pool."""
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            await self._pool.put(conn)

    async def _run_migrations(self, conn: aiosqlite.Connection) -> None:
        """Checks schema version and applies migrations if necessary."""
        cursor = await conn.execute("PRAGMA user_version;")
        version_row = await cursor.fetchone()
        current_version = version_row[0] if version_row is not None else 0

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info("Migrating database schema", from_version=current_version, to_version=CURRENT_SCHEMA_VERSION)
            db_metadata.create_all(self._engine)
            await conn.execute(f"PRAGMA user_version = {CURRENT_SCHEMA_VERSION};")
            await conn.commit()
            logger.info("Database migration complete")

    async def close(self) -> None:
        """Closes all connections in the pool."""
        while not self._pool.empty():
            conn = await self._pool.get()
            await conn.close()
        self._engine.dispose()
        self._initialized = False

    async def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        async with self.get_connection() as conn:
            cursor = await conn.execute(sql, params)
            await conn.commit()
            return cursor

    async def _fetchone(self, sql: str, params: tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        async with self.get_connection() as conn:
            cursor = await conn.execute(sql, params)
            return await cursor.fetchone()

    async def _fetchall(self, sql: str, params: tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        async with self.get_connection() as conn:
            cursor = await conn.execute(sql, params)
            return list(await cursor.fetchall())

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    async def add_page(self, url: str, render_mode: RenderMode = RenderMode.STATIC) -> TrackedPage:
        """Register a page. Registering a known URL returns the existing page."""
        await self._execute(
            "INSERT OR IGNORE INTO pages (url, render_mode) VALUES (?, ?)",
            (url, render_mode.value),
        )
        page = await self.get_page_by_url(url)
        if page is None:
            raise PagewatchError(f"Page could not be registered: {url}")
        return page

    async def get_page(self, page_id: int) -> Optional[TrackedPage]:
        row = await self._fetchone("SELECT * FROM pages WHERE id = ?", (page_id,))
        return _row_to_page(row) if row is not None else None

    async def get_page_by_url(self, url: str) -> Optional[TrackedPage]:
        row = await self._fetchone("SELECT * FROM pages WHERE url = ?", (url,))
        return _row_to_page(row) if row is not None else None

    async def list_pages(self) -> List[TrackedPage]:
        rows = await self._fetchall("SELECT * FROM pages ORDER BY id")
        return [_row_to_page(r) for r in rows]

    async def list_active_pages(self) -> List[TrackedPage]:
        rows = await self._fetchall("SELECT * FROM pages WHERE active = 1 ORDER BY id")
        return [_row_to_page(r) for r in rows]

    async def update_page_snapshot(self, page_id: int, fingerprint: str, segments: List[str]) -> None:
        """Store the snapshot of a completed page and reset its error count."""
        await self._execute(
            """
            UPDATE pages
            SET last_fingerprint = ?, last_segments = ?, error_count = 0, last_checked_at = CURRENT_TIMESTAMP
            WHERE id = ?
            """,
            (fingerprint, json.dumps(segments, ensure_ascii=False), page_id),
        )

    async def increment_error_count(self, page_id: int) -> None:
        await self._execute(
            "UPDATE pages SET error_count = error_count + 1, last_checked_at = CURRENT_TIMESTAMP WHERE id = ?",
            (page_id,),
        )

    async def set_page_active(self, page_id: int, active: bool) -> bool:
        cursor = await self._execute("UPDATE pages SET active = ? WHERE id = ?", (int(active), page_id))
        return cursor.rowcount > 0

    async def delete_page(self, page_id: int) -> bool:
        cursor = await self._execute("DELETE FROM pages WHERE id = ?", (page_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def add_event(self, record: Dict[str, Any]) -> Optional[Event]:
        """
        Insert an event unless its content hash is already stored.

        Returns:
            The stored Event, or None when the hash already existed
        """
        values = tuple(record.get(col) for col in EVENT_COLUMNS)
        placeholders = ", ".join("?" for _ in EVENT_COLUMNS)
        async with self.get_connection() as conn:
            cursor = await conn.execute(
                f"INSERT OR IGNORE INTO events ({', '.join(EVENT_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            await conn.commit()
            if cursor.rowcount == 0:
                return None
            event_id = cursor.lastrowid
        return await self.get_event(event_id)

    async def get_event(self, event_id: int) -> Optional[Event]:
        row = await self._fetchone("SELECT * FROM events WHERE id = ?", (event_id,))
        return _row_to_event(row) if row is not None else None

    async def event_exists(self, content_hash: str) -> bool:
        row = await self._fetchone("SELECT 1 FROM events WHERE content_hash = ? LIMIT 1", (content_hash,))
        return row is not None

    async def list_events_on_date(self, date_iso: str) -> List[Event]:
        rows = await self._fetchall("SELECT * FROM events WHERE date_iso = ? ORDER BY id", (date_iso,))
        return [_row_to_event(r) for r in rows]

    async def find_similar_event(self, date_iso: Optional[str], title: str, threshold: float = 0.8) -> Optional[int]:
        """Id of an event on the same date whose title matches, if any."""
        if not date_iso or not title:
            return None
        for event in await self.list_events_on_date(date_iso):
            if titles_match(event.title, title, threshold):
                return event.id
        return None

    async def list_upcoming_events(self, today: date, lookback_days: int = 30) -> List[Event]:
        """Events dated no earlier than `lookback_days` before today, plus undated ones."""
        cutoff = (today - timedelta(days=lookback_days)).isoformat()
        rows = await self._fetchall(
            """
            SELECT * FROM events
            WHERE date_iso >= ? OR date_iso IS NULL
            ORDER BY date_iso IS NULL, date_iso ASC, id ASC
            """,
            (cutoff,),
        )
        return [_row_to_event(r) for r in rows]

    async def list_events(self, page_id: Optional[int] = None, limit: int = 100) -> List[Event]:
        if page_id is None:
            rows = await self._fetchall("SELECT * FROM events ORDER BY id DESC LIMIT ?", (limit,))
        else:
            rows = await self._fetchall(
                "SELECT * FROM events WHERE page_id = ? ORDER BY id DESC LIMIT ?", (page_id, limit)
            )
        return [_row_to_event(r) for r in rows]

    async def delete_event(self, event_id: int) -> bool:
        cursor = await self._execute("DELETE FROM events WHERE id = ?", (event_id,))
        return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Audit and run history
    # ------------------------------------------------------------------

    async def log_change(self, page_id: int, raw_findings: List[Dict[str, Any]]) -> None:
        await self._execute(
            "INSERT INTO change_log (page_id, raw_findings) VALUES (?, ?)",
            (page_id, json.dumps(raw_findings, ensure_ascii=False, default=str)),
        )

    async def list_changes(self, page_id: Optional[int] = None, limit: int = 50) -> List[ChangeLogEntry]:
        if page_id is None:
            rows = await self._fetchall("SELECT * FROM change_log ORDER BY id DESC LIMIT ?", (limit,))
        else:
            rows = await self._fetchall(
                "SELECT * FROM change_log WHERE page_id = ? ORDER BY id DESC LIMIT ?", (page_id, limit)
            )
        return [
            ChangeLogEntry(
                page_id=r["page_id"],
                timestamp=_parse_timestamp(r["timestamp"]) or datetime.now(),
                raw_findings_json=r["raw_findings"] or "[]",
            )
            for r in rows
        ]

    async def log_error(
        self, page_id: Optional[int], message: str, error_type: str = "general", severity: str = "warning"
    ) -> None:
        await self._execute(
            "INSERT INTO errors (page_id, message, error_type, severity) VALUES (?, ?, ?, ?)",
            (page_id, message, error_type, severity),
        )

    async def list_errors(self, page_id: Optional[int] = None, limit: int = 50) -> List[Dict[str, Any]]:
        if page_id is None:
            rows = await self._fetchall("SELECT * FROM errors ORDER BY id DESC LIMIT ?", (limit,))
        else:
            rows = await self._fetchall("SELECT * FROM errors WHERE page_id = ? ORDER BY id DESC LIMIT ?", (page_id, limit))
        return [dict(r) for r in rows]

    async def record_telemetry(self, telemetry: Telemetry) -> None:
        await self._execute(
            """
            INSERT INTO telemetry (pages_checked, changes_found, extraction_calls, notifications_sent, errors, duration_ms)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                telemetry.pages_checked,
                telemetry.changes_found,
                telemetry.extraction_calls,
                telemetry.notifications_sent,
                telemetry.errors,
                telemetry.duration_ms,
            ),
        )

    async def list_telemetry(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent telemetry rows, newest first."""
        rows = await self._fetchall("SELECT * FROM telemetry ORDER BY id DESC LIMIT ?", (limit,))
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Settings and discovery
    # ------------------------------------------------------------------

    async def get_setting(self, key: str) -> Optional[str]:
        row = await self._fetchone("SELECT value FROM settings WHERE key = ?", (key,))
        return row["value"] if row is not None else None

    async def set_setting(self, key: str, value: str) -> None:
        await self._execute(
            """
            INSERT INTO settings (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
            """,
            (key, value),
        )

    async def add_discovered_url(
        self, source_page_id: Optional[int], url: str, title: Optional[str] = None, reason: Optional[str] = None
    ) -> bool:
        """Record a discovered URL. Returns False when it was already known."""
        cursor = await self._execute(
            "INSERT OR IGNORE INTO discovered_urls (source_page_id, url, title, reason) VALUES (?, ?, ?, ?)",
            (source_page_id, url, title, reason),
        )
        return cursor.rowcount > 0

    async def list_discovered_urls(self, limit: int = 50) -> List[Dict[str, Any]]:
        rows = await self._fetchall("SELECT * FROM discovered_urls ORDER BY id DESC LIMIT ?", (limit,))
        return [dict(r) for r in rows]

"""
SQLite materialized store for the Patron indexer.

This module manages the single SQLite database that stores:
- Creators with their descriptive fields
- Content rows and access purchases referencing creators
- Handle registrations
- Skipped events for operator visibility
- Per-event-type synchronizer cursors

The store is the materialized view of the ledger event log.
It can be rebuilt by replaying events from cursor zero.

Invariants:
    - All write operations run in a single IMMEDIATE transaction
    - Counters are computed from rows at read time, never stored
    - INSERT OR IGNORE on primary keys makes every insert idempotent
    - created_at is never touched by the upsert's UPDATE branch

How to change safely:
    - Schema migrations must be backward compatible; bump SCHEMA_VERSION
    - Keep the keyset index on (created_at, profile_id) in sync with get_creators
    - Use transactions for all write operations

Table schema:
    creators:
        - profile_id TEXT PRIMARY KEY
        - owner, name, bio TEXT
        - avatar_blob_id, alias TEXT NULL
        - price INTEGER
        - created_at INTEGER (Unix ms)

    content:
        - content_id TEXT PRIMARY KEY
        - profile_id TEXT REFERENCES creators
        - title, description, blob_id, content_type TEXT
        - created_at INTEGER

    access_purchases:
        - access_pass_id TEXT PRIMARY KEY
        - profile_id TEXT REFERENCES creators
        - supporter TEXT, amount INTEGER, timestamp INTEGER
        - expires_at INTEGER NULL (NULL = permanent)

    cursors:
        - event_type TEXT PRIMARY KEY
        - cursor TEXT
        - updated_at INTEGER
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from ..errors import UnknownCreatorError
from .base import (
    AccessPurchase,
    Content,
    ContentType,
    CreatorProfile,
    CreatorsPage,
    HandleRecord,
    ProfilePatch,
    SkippedEvent,
    check_stored_ints,
    decode_cursor,
    encode_cursor,
    validate_limit,
)

logger = logging.getLogger(__name__)

_CREATOR_SELECT = """
    SELECT c.profile_id, c.owner, c.name, c.bio, c.avatar_blob_id, c.alias,
           c.price, c.created_at,
           (SELECT COUNT(*) FROM content t WHERE t.profile_id = c.profile_id) AS content_count,
           (SELECT COUNT(*) FROM access_purchases a WHERE a.profile_id = c.profile_id)
               AS total_supporters
    FROM creators c
"""

_PATCH_COLUMNS = ("name", "bio", "avatar_blob_id", "alias", "price")


class SqliteStore:
    """SQLite-backed MaterializedStore and CursorStore.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> store = SqliteStore("/var/lib/patron")
        >>> await store.initialize()
        >>> await store.upsert_creator(profile)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        data_dir: str,
        db_name: str = "indexer.db",
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the store.

        Args:
            data_dir: Directory for the database file
            db_name: Database file name
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.data_dir = Path(data_dir)
        self.db_name = db_name
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms
        self._lock = asyncio.Lock()

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.db_name

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection for one operation."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(f"""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS creators (
                profile_id TEXT PRIMARY KEY,
                owner TEXT NOT NULL,
                name TEXT NOT NULL,
                bio TEXT NOT NULL DEFAULT '',
                avatar_blob_id TEXT,
                alias TEXT,
                price INTEGER NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_creators_keyset ON creators(created_at, profile_id);

            CREATE TABLE IF NOT EXISTS content (
                content_id TEXT PRIMARY KEY,
                profile_id TEXT NOT NULL REFERENCES creators(profile_id),
                title TEXT NOT NULL,
                description TEXT NOT NULL DEFAULT '',
                blob_id TEXT NOT NULL,
                content_type TEXT NOT NULL,
                created_at INTEGER NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_content_profile
                ON content(profile_id, created_at, content_id);

            CREATE TABLE IF NOT EXISTS access_purchases (
                access_pass_id TEXT PRIMARY KEY,
                profile_id TEXT NOT NULL REFERENCES creators(profile_id),
                supporter TEXT NOT NULL,
                amount INTEGER NOT NULL,
                timestamp INTEGER NOT NULL,
                expires_at INTEGER
            );

            CREATE INDEX IF NOT EXISTS idx_purchases_profile
                ON access_purchases(profile_id, timestamp DESC);

            CREATE TABLE IF NOT EXISTS handles (
                handle TEXT PRIMARY KEY,
                profile_id TEXT NOT NULL,
                registered_at INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS skipped_events (
                event_type TEXT NOT NULL,
                event_key TEXT NOT NULL,
                error TEXT NOT NULL,
                recorded_at INTEGER NOT NULL,
                PRIMARY KEY (event_type, event_key)
            );

            CREATE TABLE IF NOT EXISTS cursors (
                event_type TEXT PRIMARY KEY,
                cursor TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            );

            INSERT OR IGNORE INTO schema_version (version, applied_at)
            VALUES ({self.SCHEMA_VERSION}, strftime('%s', 'now') * 1000);
        """)

    async def initialize(self) -> None:
        """Create the database file and schema if they don't exist."""
        async with self._lock:
            with self._get_connection() as conn:
                self._create_schema(conn)
        logger.info("Initialized indexer database", extra={"path": str(self.db_path)})

    async def close(self) -> None:
        """Connections are per-operation; nothing to release."""

    # Creators

    async def upsert_creator(self, creator: CreatorProfile) -> CreatorProfile:
        check_stored_ints(price=creator.price, created_at=creator.created_at)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO creators (profile_id, owner, name, bio, avatar_blob_id,
                                      alias, price, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(profile_id) DO UPDATE SET
                    owner = excluded.owner,
                    name = excluded.name,
                    bio = excluded.bio,
                    avatar_blob_id = excluded.avatar_blob_id,
                    alias = excluded.alias,
                    price = excluded.price
                """,
                (
                    creator.profile_id,
                    creator.owner,
                    creator.name,
                    creator.bio,
                    creator.avatar_blob_id,
                    creator.alias,
                    creator.price,
                    creator.created_at,
                ),
            )
            stored = self._fetch_creator(conn, creator.profile_id)
        if stored is None:
            raise UnknownCreatorError(creator.profile_id)
        return stored

    async def update_creator(self, profile_id: str, patch: ProfilePatch) -> CreatorProfile | None:
        changes = patch.changes()
        check_stored_ints(price=patch.price)
        with self._transaction() as conn:
            if changes:
                assignments = ", ".join(f"{col} = ?" for col in _PATCH_COLUMNS if col in changes)
                values = [changes[col] for col in _PATCH_COLUMNS if col in changes]
                conn.execute(
                    f"UPDATE creators SET {assignments} WHERE profile_id = ?",
                    (*values, profile_id),
                )
            return self._fetch_creator(conn, profile_id)

    async def get_creator(self, profile_id: str) -> CreatorProfile | None:
        with self._get_connection() as conn:
            return self._fetch_creator(conn, profile_id)

    async def get_creators(self, limit: int, cursor: str | None = None) -> CreatorsPage:
        validate_limit(limit)
        with self._get_connection() as conn:
            if cursor:
                created_at, profile_id = decode_cursor(cursor)
                rows = conn.execute(
                    _CREATOR_SELECT
                    + """
                    WHERE c.created_at > ? OR (c.created_at = ? AND c.profile_id > ?)
                    ORDER BY c.created_at ASC, c.profile_id ASC
                    LIMIT ?
                    """,
                    (created_at, created_at, profile_id, limit + 1),
                ).fetchall()
            else:
                rows = conn.execute(
                    _CREATOR_SELECT + " ORDER BY c.created_at ASC, c.profile_id ASC LIMIT ?",
                    (limit + 1,),
                ).fetchall()

        items = [self._row_to_creator(row) for row in rows[:limit]]
        next_cursor = None
        if len(rows) > limit and items:
            last = items[-1]
            next_cursor = encode_cursor(last.created_at, last.profile_id)
        return CreatorsPage(items=items, next_cursor=next_cursor)

    # Content and purchases

    async def upsert_content(self, content: Content) -> bool:
        check_stored_ints(created_at=content.created_at)
        with self._transaction() as conn:
            self._require_creator(conn, content.profile_id)
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO content (content_id, profile_id, title, description,
                                               blob_id, content_type, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    content.content_id,
                    content.profile_id,
                    content.title,
                    content.description,
                    content.blob_id,
                    content.content_type.raw,
                    content.created_at,
                ),
            )
            return cursor.rowcount == 1

    async def add_access_purchase(self, purchase: AccessPurchase) -> bool:
        check_stored_ints(
            amount=purchase.amount, timestamp=purchase.timestamp, expires_at=purchase.expires_at
        )
        with self._transaction() as conn:
            self._require_creator(conn, purchase.profile_id)
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO access_purchases (access_pass_id, profile_id, supporter,
                                                        amount, timestamp, expires_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    purchase.access_pass_id,
                    purchase.profile_id,
                    purchase.supporter,
                    purchase.amount,
                    purchase.timestamp,
                    purchase.expires_at,
                ),
            )
            inserted = cursor.rowcount == 1

        if inserted:
            logger.debug(
                "Access purchase recorded",
                extra={"access_pass_id": purchase.access_pass_id, "profile_id": purchase.profile_id},
            )
        return inserted

    async def update_access_expiry(self, access_pass_id: str, expires_at: int) -> bool:
        check_stored_ints(expires_at=expires_at)
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT expires_at FROM access_purchases WHERE access_pass_id = ?",
                (access_pass_id,),
            ).fetchone()
            if row is None:
                return False
            # Permanent passes stay permanent; expiry only moves forward
            if row["expires_at"] is not None and row["expires_at"] < expires_at:
                conn.execute(
                    "UPDATE access_purchases SET expires_at = ? WHERE access_pass_id = ?",
                    (expires_at, access_pass_id),
                )
            return True

    async def get_content_by_profile(self, profile_id: str) -> list[Content]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM content WHERE profile_id = ?
                ORDER BY created_at ASC, content_id ASC
                """,
                (profile_id,),
            ).fetchall()
        return [
            Content(
                content_id=row["content_id"],
                profile_id=row["profile_id"],
                title=row["title"],
                description=row["description"],
                blob_id=row["blob_id"],
                content_type=ContentType.parse(row["content_type"]),
                created_at=row["created_at"],
            )
            for row in rows
        ]

    async def get_supporters(self, profile_id: str) -> list[AccessPurchase]:
        with self._get_connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM access_purchases WHERE profile_id = ?
                ORDER BY timestamp DESC, access_pass_id ASC
                """,
                (profile_id,),
            ).fetchall()
        return [
            AccessPurchase(
                access_pass_id=row["access_pass_id"],
                profile_id=row["profile_id"],
                supporter=row["supporter"],
                amount=row["amount"],
                timestamp=row["timestamp"],
                expires_at=row["expires_at"],
            )
            for row in rows
        ]

    # Handles and skipped events

    async def upsert_handle(self, record: HandleRecord) -> None:
        check_stored_ints(registered_at=record.registered_at)
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO handles (handle, profile_id, registered_at) VALUES (?, ?, ?)
                ON CONFLICT(handle) DO UPDATE SET
                    profile_id = excluded.profile_id,
                    registered_at = excluded.registered_at
                """,
                (record.handle, record.profile_id, record.registered_at),
            )

    async def get_handle(self, handle: str) -> HandleRecord | None:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM handles WHERE handle = ?", (handle,)).fetchone()
        if row is None:
            return None
        return HandleRecord(
            handle=row["handle"], profile_id=row["profile_id"], registered_at=row["registered_at"]
        )

    async def record_skipped_event(self, skipped: SkippedEvent) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO skipped_events (event_type, event_key, error, recorded_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(event_type, event_key) DO UPDATE SET
                    error = excluded.error,
                    recorded_at = excluded.recorded_at
                """,
                (skipped.event_type, skipped.event_key, skipped.error, skipped.recorded_at),
            )

    async def get_skipped_events(self, limit: int = 100) -> list[SkippedEvent]:
        validate_limit(limit)
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT * FROM skipped_events ORDER BY recorded_at DESC, event_key ASC LIMIT ?",
                (limit,),
            ).fetchall()
        return [
            SkippedEvent(
                event_type=row["event_type"],
                event_key=row["event_key"],
                error=row["error"],
                recorded_at=row["recorded_at"],
            )
            for row in rows
        ]

    # Cursors

    async def get_cursor(self, event_type: str) -> str | None:
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT cursor FROM cursors WHERE event_type = ?", (event_type,)
            ).fetchone()
        return row["cursor"] if row else None

    async def set_cursor(self, event_type: str, token: str) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO cursors (event_type, cursor, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(event_type) DO UPDATE SET
                    cursor = excluded.cursor,
                    updated_at = excluded.updated_at
                """,
                (event_type, token, int(time.time() * 1000)),
            )

    async def get_cursors(self) -> dict[str, str]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT event_type, cursor FROM cursors").fetchall()
        return {row["event_type"]: row["cursor"] for row in rows}

    async def stats(self) -> dict[str, int]:
        """Get row counts per table."""
        with self._get_connection() as conn:
            return {
                table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                for table in (
                    "creators",
                    "content",
                    "access_purchases",
                    "handles",
                    "skipped_events",
                    "cursors",
                )
            }

    # Helpers

    def _fetch_creator(self, conn: sqlite3.Connection, profile_id: str) -> CreatorProfile | None:
        row = conn.execute(_CREATOR_SELECT + " WHERE c.profile_id = ?", (profile_id,)).fetchone()
        return self._row_to_creator(row) if row else None

    def _require_creator(self, conn: sqlite3.Connection, profile_id: str) -> None:
        row = conn.execute("SELECT 1 FROM creators WHERE profile_id = ?", (profile_id,)).fetchone()
        if row is None:
            raise UnknownCreatorError(profile_id)

    @staticmethod
    def _row_to_creator(row: sqlite3.Row) -> CreatorProfile:
        return CreatorProfile(
            profile_id=row["profile_id"],
            owner=row["owner"],
            name=row["name"],
            bio=row["bio"],
            avatar_blob_id=row["avatar_blob_id"],
            alias=row["alias"],
            price=row["price"],
            created_at=row["created_at"],
            content_count=row["content_count"],
            total_supporters=row["total_supporters"],
        )

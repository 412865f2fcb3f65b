"""Sync state tracking with SQLite persistence."""

import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Self


@dataclass
class LocationState:
    """State information for a synced source location."""

    source: str
    db_path: str
    mtime: float = 0.0
    last_synced: int | None = None
    conversation_count: int = 0


class SyncState:
    """Manages sync state persistence in SQLite database.

    Tracks, per (source, location), the location mtime seen at the last
    successful sync so unchanged locations can be skipped.
    """

    VALID_ATTRS = {"mtime", "last_synced", "conversation_count"}

    def __init__(self, db_path: Path) -> None:
        """Initialize sync state with database path.

        Args:
            db_path: Path to SQLite database file. Parent directories
                     will be created if they don't exist.
        """
        self._db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(db_path)
        self._conn.row_factory = sqlite3.Row
        self.ensure_schema()

    def ensure_schema(self) -> None:
        """Create the sync_state table if it doesn't exist."""
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS sync_state (
                source TEXT NOT NULL,
                db_path TEXT NOT NULL,
                mtime REAL DEFAULT 0,
                last_synced INTEGER,
                conversation_count INTEGER DEFAULT 0,
                PRIMARY KEY (source, db_path)
            )
        """)
        self._conn.commit()

    def _row_to_state(self, row: sqlite3.Row) -> LocationState:
        return LocationState(
            source=row["source"],
            db_path=row["db_path"],
            mtime=row["mtime"] or 0.0,
            last_synced=row["last_synced"],
            conversation_count=row["conversation_count"] or 0,
        )

    def get_location_state(self, source: str, db_path: str) -> LocationState | None:
        """Get the state of a specific location.

        Args:
            source: Source name
            db_path: Location storage path

        Returns:
            LocationState if found, None otherwise
        """
        cursor = self._conn.execute(
            """
            SELECT source, db_path, mtime, last_synced, conversation_count
            FROM sync_state
            WHERE source = ? AND db_path = ?
            """,
            (source, db_path),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return self._row_to_state(row)

    def update_location_state(self, source: str, db_path: str, **attrs: float | int | None) -> None:
        """Update or insert location state.

        Args:
            source: Source name
            db_path: Location storage path
            **attrs: Attributes to update (mtime, last_synced, conversation_count)

        Raises:
            ValueError: If an unknown attribute is passed
        """
        invalid = set(attrs.keys()) - self.VALID_ATTRS
        if invalid:
            raise ValueError(f"Invalid attributes: {invalid}")

        existing = self.get_location_state(source, db_path)

        if existing is None:
            self._conn.execute(
                """
                INSERT INTO sync_state (source, db_path, mtime, last_synced, conversation_count)
                VALUES (?, ?, ?, ?, ?)
                """,
                (
                    source,
                    db_path,
                    attrs.get("mtime", 0.0),
                    attrs.get("last_synced"),
                    attrs.get("conversation_count", 0),
                ),
            )
        else:
            if not attrs:
                return

            set_clauses = []
            values: list[float | int | str | None] = []
            for key, value in attrs.items():
                set_clauses.append(f"{key} = ?")
                values.append(value)

            values.extend([source, db_path])
            self._conn.execute(
                f"""
                UPDATE sync_state
                SET {', '.join(set_clauses)}
                WHERE source = ? AND db_path = ?
                """,
                values,
            )

        self._conn.commit()

    def list_locations(self, source: str | None = None) -> list[LocationState]:
        """List tracked locations, optionally for one source."""
        query = "SELECT source, db_path, mtime, last_synced, conversation_count FROM sync_state"
        params: tuple[str, ...] = ()
        if source is not None:
            query += " WHERE source = ?"
            params = (source,)
        query += " ORDER BY source, db_path"

        return [self._row_to_state(row) for row in self._conn.execute(query, params)]

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> Self:
        """Enter context manager."""
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        """Exit context manager, closing database connection."""
        self.close()

"""
SQLite database operations for Tunelib.

One LibraryDatabase owns one long-lived connection. Every public mutation
runs inside `transaction()`, so a failure part-way through a multi-statement
operation leaves the previous state intact.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, Union

from loguru import logger

from .errors import ConstraintError, ValidationError
from .schemas import (
    AlbumData,
    PlaylistCreate,
    PlaylistUpdate,
    TrackCreate,
    TrackUpdate,
    coerce,
    set_fields,
)

# Schema version written by initialize(); migrate() records anything above it
SCHEMA_VERSION = 1

MEMORY_DB = ":memory:"

TRACK_SORT_COLUMNS = frozenset(
    {
        "track_id",
        "title",
        "artist",
        "album",
        "album_artist",
        "track_number",
        "disc_number",
        "release_year",
        "duration_seconds",
        "bitrate",
        "sample_rate",
        "codec",
        "file_size_bytes",
        "date_added",
        "date_modified",
        "is_compilation",
        "created_at",
        "updated_at",
    }
)

SORT_ORDERS = {"ASC": "ASC", "DESC": "DESC"}

SCHEMA_STATEMENTS = [
    """
    CREATE TABLE IF NOT EXISTS tracks (
        track_id INTEGER PRIMARY KEY AUTOINCREMENT,
        file_path TEXT NOT NULL UNIQUE,
        title TEXT NOT NULL,
        artist TEXT,
        album TEXT,
        album_artist TEXT,
        track_number INTEGER,
        disc_number INTEGER,
        release_year INTEGER,
        duration_seconds INTEGER,
        bitrate INTEGER,
        sample_rate INTEGER,
        codec TEXT,
        file_size_bytes INTEGER,
        date_added INTEGER NOT NULL,
        date_modified INTEGER,
        is_compilation BOOLEAN DEFAULT 0,
        artwork_path TEXT,
        created_at INTEGER DEFAULT (strftime('%s', 'now')),
        updated_at INTEGER DEFAULT (strftime('%s', 'now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_tracks_album ON tracks (album)",
    "CREATE INDEX IF NOT EXISTS idx_tracks_artist ON tracks (artist)",
    "CREATE INDEX IF NOT EXISTS idx_tracks_album_artist ON tracks (album_artist)",
    "CREATE INDEX IF NOT EXISTS idx_tracks_date_added ON tracks (date_added)",
    """
    CREATE TABLE IF NOT EXISTS genres (
        genre_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL UNIQUE,
        created_at INTEGER DEFAULT (strftime('%s', 'now'))
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_genres_name ON genres (name)",
    """
    CREATE TABLE IF NOT EXISTS track_genres (
        track_id INTEGER NOT NULL,
        genre_id INTEGER NOT NULL,
        PRIMARY KEY (track_id, genre_id),
        FOREIGN KEY (track_id) REFERENCES tracks (track_id) ON DELETE CASCADE,
        FOREIGN KEY (genre_id) REFERENCES genres (genre_id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_track_genres_track ON track_genres (track_id)",
    "CREATE INDEX IF NOT EXISTS idx_track_genres_genre ON track_genres (genre_id)",
    """
    CREATE TABLE IF NOT EXISTS playlists (
        playlist_id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        description TEXT,
        artwork_path TEXT,
        created_at INTEGER DEFAULT (strftime('%s', 'now')),
        updated_at INTEGER DEFAULT (strftime('%s', 'now'))
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS playlist_tracks (
        playlist_id INTEGER NOT NULL,
        track_id INTEGER NOT NULL,
        position INTEGER NOT NULL,
        added_at INTEGER DEFAULT (strftime('%s', 'now')),
        PRIMARY KEY (playlist_id, track_id),
        UNIQUE (playlist_id, position),
        FOREIGN KEY (playlist_id) REFERENCES playlists (playlist_id) ON DELETE CASCADE,
        FOREIGN KEY (track_id) REFERENCES tracks (track_id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_playlist_tracks_playlist ON playlist_tracks (playlist_id, position)",
    "CREATE INDEX IF NOT EXISTS idx_playlist_tracks_track ON playlist_tracks (track_id)",
    """
    CREATE TABLE IF NOT EXISTS albums (
        album_id INTEGER PRIMARY KEY AUTOINCREMENT,
        album_title TEXT NOT NULL,
        album_artist TEXT,
        release_year INTEGER,
        artwork_path TEXT,
        is_compilation BOOLEAN DEFAULT 0,
        track_count INTEGER DEFAULT 0,
        created_at INTEGER DEFAULT (strftime('%s', 'now')),
        UNIQUE (album_title, album_artist)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_albums_artist ON albums (album_artist)",
    "CREATE INDEX IF NOT EXISTS idx_albums_title ON albums (album_title)",
    """
    CREATE TRIGGER IF NOT EXISTS tracks_updated_at
    AFTER UPDATE ON tracks
    FOR EACH ROW
    BEGIN
        UPDATE tracks SET updated_at = strftime('%s', 'now')
        WHERE track_id = NEW.track_id;
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS playlists_updated_at
    AFTER UPDATE ON playlists
    FOR EACH ROW
    BEGIN
        UPDATE playlists SET updated_at = strftime('%s', 'now')
        WHERE playlist_id = NEW.playlist_id;
    END
    """,
    """
    CREATE TABLE IF NOT EXISTS schema_version (
        version INTEGER PRIMARY KEY,
        applied_at INTEGER DEFAULT (strftime('%s', 'now'))
    )
    """,
    f"INSERT OR IGNORE INTO schema_version (version) VALUES ({SCHEMA_VERSION})",
]


class LibraryDatabase:
    """Relational store for tracks, genres, playlists and albums."""

    def __init__(self, db_path: Path | str = MEMORY_DB):
        self.db_path = str(db_path)
        if self.db_path != MEMORY_DB:
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        # isolation_level=None: transactions are opened explicitly by transaction().
        # check_same_thread=False lets a caller hand the store to one worker thread;
        # it is still never used from two threads at once.
        self.conn = sqlite3.connect(
            self.db_path, timeout=30.0, isolation_level=None, check_same_thread=False
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys = ON")
        if self.db_path != MEMORY_DB:
            # WAL keeps readers unblocked while a write transaction is open
            self.conn.execute("PRAGMA journal_mode = WAL")

        self._depth = 0
        self._savepoint_seq = 0

    def __enter__(self) -> "LibraryDatabase":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        self.conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Scoped unit of work: commit on normal exit, roll back on any exception.

        Nested calls become savepoints, so an inner failure that the caller
        catches only undoes the inner block. IntegrityError is re-raised as
        ConstraintError.
        """
        if self._depth == 0:
            self.conn.execute("BEGIN")
            release, rollback = "COMMIT", ["ROLLBACK"]
        else:
            self._savepoint_seq += 1
            name = f"sp_{self._savepoint_seq}"
            self.conn.execute(f"SAVEPOINT {name}")
            release = f"RELEASE SAVEPOINT {name}"
            rollback = [f"ROLLBACK TO SAVEPOINT {name}", f"RELEASE SAVEPOINT {name}"]

        self._depth += 1
        try:
            yield self.conn
        except sqlite3.IntegrityError as e:
            self._depth -= 1
            self._rollback(rollback)
            raise ConstraintError(str(e)) from e
        except BaseException:
            self._depth -= 1
            self._rollback(rollback)
            raise
        else:
            self._depth -= 1
            self.conn.execute(release)

    def _rollback(self, statements: list[str]) -> None:
        # SQLite may already have aborted the transaction (e.g. disk full)
        if not self.conn.in_transaction:
            return
        for statement in statements:
            self.conn.execute(statement)

    def initialize(self) -> None:
        """Create tables, indexes and triggers; a no-op on an initialized store."""
        with self.transaction() as conn:
            for statement in SCHEMA_STATEMENTS:
                conn.execute(statement)
        logger.debug(f"Database schema ready at {self.db_path}")

    def is_initialized(self) -> bool:
        """Check whether the schema exists."""
        row = self.conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
        ).fetchone()
        return row is not None

    def ping(self) -> bool:
        """Check that the connection is usable."""
        try:
            self.conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error as e:
            logger.warning(f"Database ping failed: {e}")
            return False

    # ==================== TRACK OPERATIONS ====================

    def insert_track(self, track: TrackCreate | dict[str, Any]) -> int:
        """
        Insert a new track.

        Args:
            track: Track fields; file_path, title and date_added are required

        Returns:
            The new track_id

        Raises:
            ValidationError: If required fields are missing or malformed
            ConstraintError: If file_path is already in the library
        """
        data = coerce(TrackCreate, track).model_dump()
        data["is_compilation"] = 1 if data["is_compilation"] else 0

        columns = list(data.keys())
        placeholders = ", ".join(f":{column}" for column in columns)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"INSERT INTO tracks ({', '.join(columns)}) VALUES ({placeholders})",
                data,
            )
            return cursor.lastrowid

    def get_track(self, track_id: int) -> Optional[dict[str, Any]]:
        """Get a track by ID, or None if there is no such track."""
        row = self.conn.execute(
            "SELECT * FROM tracks WHERE track_id = ?", (track_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_track_by_path(self, file_path: str) -> Optional[dict[str, Any]]:
        """Get a track by its library file path."""
        row = self.conn.execute(
            "SELECT * FROM tracks WHERE file_path = ?", (file_path,)
        ).fetchone()
        return dict(row) if row else None

    def get_tracks(
        self,
        artist: Optional[str] = None,
        album: Optional[str] = None,
        album_artist: Optional[str] = None,
        sort_by: str = "title",
        sort_order: str = "ASC",
    ) -> list[dict[str, Any]]:
        """
        Get tracks filtered by exact artist/album/album_artist match.

        Args:
            artist: Exact artist match
            album: Exact album match
            album_artist: Exact album artist match
            sort_by: Column to sort by (must be a known track column)
            sort_order: 'ASC' or 'DESC'

        Raises:
            ValidationError: If sort_by or sort_order is not allowed
        """
        if sort_by not in TRACK_SORT_COLUMNS:
            raise ValidationError(f"Cannot sort tracks by {sort_by!r}")
        order = SORT_ORDERS.get(str(sort_order).upper())
        if order is None:
            raise ValidationError(f"Invalid sort order {sort_order!r}")

        conditions = []
        params: dict[str, Any] = {}
        for column, value in (
            ("artist", artist),
            ("album", album),
            ("album_artist", album_artist),
        ):
            if value is not None:
                conditions.append(f"{column} = :{column}")
                params[column] = value

        query = "SELECT * FROM tracks"
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        # track_id as tie-breaker keeps equal sort keys in insertion order
        query += f" ORDER BY {sort_by} {order}, track_id {order}"

        return [dict(row) for row in self.conn.execute(query, params).fetchall()]

    def get_recent_tracks(self, limit: int = 50) -> list[dict[str, Any]]:
        """Get the most recently added tracks, newest first."""
        cursor = self.conn.execute(
            """
            SELECT * FROM tracks
            ORDER BY date_added DESC, track_id DESC
            LIMIT ?
        """,
            (limit,),
        )
        return [dict(row) for row in cursor.fetchall()]

    def update_track(self, track_id: int, updates: TrackUpdate | dict[str, Any]) -> int:
        """
        Update mutable track metadata.

        Args:
            track_id: Track ID
            updates: Partial fields; unknown keys are ignored

        Returns:
            Number of rows changed (0 if nothing to write or no such track)
        """
        fields = set_fields(coerce(TrackUpdate, updates))
        if not fields:
            return 0

        if "is_compilation" in fields and fields["is_compilation"] is not None:
            fields["is_compilation"] = 1 if fields["is_compilation"] else 0

        assignments = ", ".join(f"{column} = :{column}" for column in fields)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE tracks SET {assignments} WHERE track_id = :track_id",
                {**fields, "track_id": track_id},
            )
            return cursor.rowcount

    def delete_track(self, track_id: int) -> int:
        """Delete a track; genre and playlist memberships cascade."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM tracks WHERE track_id = ?", (track_id,))
            return cursor.rowcount

    # ==================== GENRE OPERATIONS ====================

    def get_or_create_genre(self, name: str) -> int:
        """Get the genre_id for `name`, creating the genre if needed."""
        with self.transaction() as conn:
            row = conn.execute(
                "SELECT genre_id FROM genres WHERE name = ?", (name,)
            ).fetchone()
            if row:
                return row["genre_id"]

            cursor = conn.execute("INSERT INTO genres (name) VALUES (?)", (name,))
            logger.debug(f"Created genre {name!r}")
            return cursor.lastrowid

    def add_track_genres(
        self, track_id: int, genre_names: Union[str, Iterable[str], None]
    ) -> None:
        """
        Attach genres to a track, creating missing genres.

        Accepts a single genre name or any iterable of names. All-or-nothing:
        if any attachment fails, none of this call's genres or attachments
        persist.

        Raises:
            ConstraintError: If the track does not exist
        """
        if isinstance(genre_names, str):
            genre_names = [genre_names]
        names = []
        for name in genre_names or []:
            if name and name.strip() and name.strip() not in names:
                names.append(name.strip())
        if not names:
            return

        with self.transaction() as conn:
            for name in names:
                genre_id = self.get_or_create_genre(name)
                conn.execute(
                    """
                    INSERT OR IGNORE INTO track_genres (track_id, genre_id)
                    VALUES (?, ?)
                """,
                    (track_id, genre_id),
                )

    def get_track_genres(self, track_id: int) -> list[str]:
        """Get a track's genre names in lexicographic order."""
        cursor = self.conn.execute(
            """
            SELECT g.name
            FROM genres g
            JOIN track_genres tg ON g.genre_id = tg.genre_id
            WHERE tg.track_id = ?
            ORDER BY g.name
        """,
            (track_id,),
        )
        return [row["name"] for row in cursor.fetchall()]

    def clear_track_genres(self, track_id: int) -> int:
        """Remove all genres from a track."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM track_genres WHERE track_id = ?", (track_id,)
            )
            return cursor.rowcount

    def get_all_genres(self) -> list[dict[str, Any]]:
        """Get all genres ordered by name."""
        cursor = self.conn.execute("SELECT * FROM genres ORDER BY name")
        return [dict(row) for row in cursor.fetchall()]

    # ==================== PLAYLIST OPERATIONS ====================

    def create_playlist(self, playlist: PlaylistCreate | dict[str, Any]) -> int:
        """Create a playlist and return its playlist_id."""
        data = coerce(PlaylistCreate, playlist).model_dump()
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT INTO playlists (name, description, artwork_path)
                VALUES (:name, :description, :artwork_path)
            """,
                data,
            )
            return cursor.lastrowid

    def get_playlist(self, playlist_id: int) -> Optional[dict[str, Any]]:
        """Get a playlist by ID."""
        row = self.conn.execute(
            "SELECT * FROM playlists WHERE playlist_id = ?", (playlist_id,)
        ).fetchone()
        return dict(row) if row else None

    def get_all_playlists(self) -> list[dict[str, Any]]:
        """Get all playlists ordered by name."""
        cursor = self.conn.execute("SELECT * FROM playlists ORDER BY name, playlist_id")
        return [dict(row) for row in cursor.fetchall()]

    def update_playlist(
        self, playlist_id: int, updates: PlaylistUpdate | dict[str, Any]
    ) -> int:
        """Update playlist metadata; returns rows changed."""
        fields = set_fields(coerce(PlaylistUpdate, updates))
        if not fields:
            return 0

        assignments = ", ".join(f"{column} = :{column}" for column in fields)
        with self.transaction() as conn:
            cursor = conn.execute(
                f"UPDATE playlists SET {assignments} WHERE playlist_id = :playlist_id",
                {**fields, "playlist_id": playlist_id},
            )
            return cursor.rowcount

    def delete_playlist(self, playlist_id: int) -> int:
        """Delete a playlist; memberships cascade."""
        with self.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM playlists WHERE playlist_id = ?", (playlist_id,)
            )
            return cursor.rowcount

    def add_tracks_to_playlist(self, playlist_id: int, track_ids: Iterable[int]) -> int:
        """
        Append tracks after the playlist's current last position.

        Tracks that are already members keep their position and are skipped.

        Returns:
            Number of tracks actually added

        Raises:
            ConstraintError: If the playlist or a track does not exist
        """
        track_ids = list(track_ids or [])
        if not track_ids:
            return 0

        added = 0
        with self.transaction() as conn:
            position = conn.execute(
                """
                SELECT COALESCE(MAX(position), 0) AS max_pos
                FROM playlist_tracks
                WHERE playlist_id = ?
            """,
                (playlist_id,),
            ).fetchone()["max_pos"]

            for track_id in track_ids:
                cursor = conn.execute(
                    """
                    INSERT INTO playlist_tracks (playlist_id, track_id, position)
                    SELECT ?, ?, ?
                    WHERE NOT EXISTS (
                        SELECT 1 FROM playlist_tracks
                        WHERE playlist_id = ? AND track_id = ?
                    )
                """,
                    (playlist_id, track_id, position + 1, playlist_id, track_id),
                )
                if cursor.rowcount:
                    position += 1
                    added += 1

        return added

    def get_playlist_tracks(self, playlist_id: int) -> list[dict[str, Any]]:
        """Get a playlist's tracks with their position, ordered by position."""
        cursor = self.conn.execute(
            """
            SELECT t.*, pt.position
            FROM tracks t
            JOIN playlist_tracks pt ON t.track_id = pt.track_id
            WHERE pt.playlist_id = ?
            ORDER BY pt.position
        """,
            (playlist_id,),
        )
        return [dict(row) for row in cursor.fetchall()]

    def remove_track_from_playlist(self, playlist_id: int, track_id: int) -> int:
        """Remove a track from a playlist. Remaining positions are not renumbered."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                DELETE FROM playlist_tracks
                WHERE playlist_id = ? AND track_id = ?
            """,
                (playlist_id, track_id),
            )
            return cursor.rowcount

    # ==================== ALBUM OPERATIONS ====================

    def get_or_create_album(self, album: AlbumData | dict[str, Any]) -> int:
        """Get the album_id for (album_title, album_artist), creating it if needed."""
        data = coerce(AlbumData, album).model_dump()
        data["is_compilation"] = 1 if data["is_compilation"] else 0

        with self.transaction() as conn:
            row = conn.execute(
                """
                SELECT album_id FROM albums
                WHERE album_title = ? AND album_artist IS ?
            """,
                (data["album_title"], data["album_artist"]),
            ).fetchone()
            if row:
                return row["album_id"]

            cursor = conn.execute(
                """
                INSERT INTO albums (album_title, album_artist, release_year, artwork_path, is_compilation)
                VALUES (:album_title, :album_artist, :release_year, :artwork_path, :is_compilation)
            """,
                data,
            )
            return cursor.lastrowid

    def get_all_albums(self) -> list[dict[str, Any]]:
        """Get all albums ordered by title."""
        cursor = self.conn.execute(
            "SELECT * FROM albums ORDER BY album_title, album_artist"
        )
        return [dict(row) for row in cursor.fetchall()]

    def update_album_track_count(self, album_id: int) -> int:
        """Recount the tracks that belong to an album; returns rows changed."""
        with self.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE albums
                SET track_count = (
                    SELECT COUNT(*)
                    FROM tracks t
                    WHERE t.album = albums.album_title
                      AND t.album_artist IS albums.album_artist
                )
                WHERE album_id = ?
            """,
                (album_id,),
            )
            return cursor.rowcount

    def refresh_albums(self) -> int:
        """
        Rebuild the albums aggregate from the tracks table.

        Creates an album for every distinct (album, album_artist) pair found
        on tracks and recounts every album, including ones whose tracks are
        gone (their count drops to 0).

        Returns:
            Number of albums after the refresh
        """
        with self.transaction() as conn:
            pairs = conn.execute(
                """
                SELECT
                    album,
                    album_artist,
                    MAX(release_year) AS release_year,
                    MAX(artwork_path) AS artwork_path,
                    MAX(is_compilation) AS is_compilation
                FROM tracks
                WHERE album IS NOT NULL AND album != ''
                GROUP BY album, album_artist
            """
            ).fetchall()

            for pair in pairs:
                self.get_or_create_album(
                    {
                        "album_title": pair["album"],
                        "album_artist": pair["album_artist"],
                        "release_year": pair["release_year"],
                        "artwork_path": pair["artwork_path"],
                        "is_compilation": bool(pair["is_compilation"]),
                    }
                )

            conn.execute(
                """
                UPDATE albums
                SET track_count = (
                    SELECT COUNT(*)
                    FROM tracks t
                    WHERE t.album = albums.album_title
                      AND t.album_artist IS albums.album_artist
                )
            """
            )
            count = conn.execute("SELECT COUNT(*) AS count FROM albums").fetchone()[
                "count"
            ]

        logger.debug(f"Refreshed albums: {count} total")
        return count

    # ==================== UTILITY OPERATIONS ====================

    def get_stats(self) -> dict[str, int]:
        """Get row counts for tracks, albums, playlists and genres."""
        stats = {}
        for key, table in (
            ("tracks", "tracks"),
            ("albums", "albums"),
            ("playlists", "playlists"),
            ("genres", "genres"),
        ):
            row = self.conn.execute(f"SELECT COUNT(*) AS count FROM {table}").fetchone()
            stats[key] = row["count"]
        return stats

    def get_schema_version(self) -> int:
        """Get the current schema version (0 before initialize())."""
        if not self.is_initialized():
            return 0
        row = self.conn.execute(
            "SELECT MAX(version) AS version FROM schema_version"
        ).fetchone()
        return row["version"] or 0

    def migrate(
        self, version: int, migration: Callable[[sqlite3.Connection], None]
    ) -> bool:
        """
        Apply a migration and record its version in one transaction.

        Args:
            version: Target schema version
            migration: Called with the connection inside the transaction

        Returns:
            True if the migration ran, False if the store was already at or
            past `version`
        """
        current_version = self.get_schema_version()
        if current_version >= version:
            return False

        with self.transaction() as conn:
            migration(conn)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))

        logger.info(f"Migrated database from v{current_version} to v{version}")
        return True

import json
import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Iterator, List, Optional

from interfaces.offline_map import ICatalog
from models.offline_map import BoundingBox, Region, RegionStats, TileKey, TileRecord
from exceptions.offline_map_exceptions import StorageError

logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS regions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    bounds TEXT NOT NULL,
    min_zoom INTEGER,
    max_zoom INTEGER,
    tile_count INTEGER,
    download_date TEXT,
    size_bytes INTEGER
);

CREATE TABLE IF NOT EXISTS tiles (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    region_id INTEGER,
    x INTEGER,
    y INTEGER,
    z INTEGER,
    file_path TEXT,
    size_bytes INTEGER,
    FOREIGN KEY (region_id) REFERENCES regions(id) ON DELETE CASCADE,
    UNIQUE(x, y, z)
);

CREATE INDEX IF NOT EXISTS idx_tiles_coords ON tiles(x, y, z);
"""


class CatalogService(ICatalog):
    """SQLite catalog of downloaded regions and their tiles.

    One connection is shared between the caller and download threads, so every
    statement runs under a lock. Multi-statement changes go through
    ``_transaction`` which commits on success and rolls back on any error.
    """

    def __init__(self, database_path: str):
        self.database_path = database_path
        self._connection: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()

    def open(self) -> None:
        """Open the database and create tables"""
        with self._lock:
            if self._connection is not None:
                return
            try:
                directory = os.path.dirname(os.path.abspath(self.database_path))
                os.makedirs(directory, exist_ok=True)
                conn = sqlite3.connect(self.database_path, isolation_level=None,
                                       check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA foreign_keys = ON")
                conn.executescript(SCHEMA)
            except (sqlite3.Error, OSError) as e:
                raise StorageError(f"Cannot open catalog {self.database_path}: {e}")
            self._connection = conn
            logger.info(f"Catalog initialized at {self.database_path}")

    def close(self) -> None:
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @property
    def is_open(self) -> bool:
        return self._connection is not None

    def __enter__(self) -> 'CatalogService':
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _conn(self) -> sqlite3.Connection:
        if self._connection is None:
            raise StorageError("Catalog not initialized")
        return self._connection

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn()
            try:
                conn.execute("BEGIN")
                yield conn
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Catalog transaction failed: {e}") from e
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

    @contextmanager
    def _query(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = self._conn()
            try:
                yield conn
            except sqlite3.Error as e:
                raise StorageError(f"Catalog query failed: {e}") from e

    @staticmethod
    def _upsert_tile(conn: sqlite3.Connection, region_id: int, record: TileRecord) -> None:
        conn.execute(
            """INSERT OR REPLACE INTO tiles (region_id, x, y, z, file_path, size_bytes)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (region_id, record.key.x, record.key.y, record.key.z,
             record.file_path, record.size_bytes or 0)
        )

    @staticmethod
    def _row_to_region(row: sqlite3.Row) -> Region:
        return Region(
            id=row['id'],
            name=row['name'],
            bounds=BoundingBox.from_dict(json.loads(row['bounds'])),
            min_zoom=row['min_zoom'],
            max_zoom=row['max_zoom'],
            tile_count=row['tile_count'],
            size_bytes=row['size_bytes'] or 0,
            download_date=row['download_date']
        )

    def create_region(self, name: str, bounds: BoundingBox, min_zoom: int, max_zoom: int,
                      tile_count: int, size_bytes: int,
                      tiles: Iterable[TileRecord] = ()) -> int:
        """Insert a region and its tiles in one transaction, returning the region id"""
        with self._transaction() as conn:
            cursor = conn.execute(
                """INSERT INTO regions (name, bounds, min_zoom, max_zoom, tile_count, download_date, size_bytes)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (name, json.dumps(bounds.to_dict()), min_zoom, max_zoom, tile_count,
                 datetime.now(timezone.utc).isoformat(), size_bytes or 0)
            )
            region_id = cursor.lastrowid
            for record in tiles:
                self._upsert_tile(conn, region_id, record)
        logger.info(f"Saved region '{name}' (id={region_id}, tiles={tile_count})")
        return region_id

    def record_tile(self, region_id: int, record: TileRecord) -> None:
        # UNIQUE(x, y, z) means a tile already owned by another region moves to this one
        with self._transaction() as conn:
            self._upsert_tile(conn, region_id, record)

    def lookup_tile_path(self, key: TileKey) -> Optional[str]:
        with self._query() as conn:
            row = conn.execute(
                "SELECT file_path FROM tiles WHERE x = ? AND y = ? AND z = ?",
                (key.x, key.y, key.z)
            ).fetchone()
        return row['file_path'] if row else None

    def list_regions(self) -> List[Region]:
        with self._query() as conn:
            rows = conn.execute(
                "SELECT * FROM regions ORDER BY download_date DESC, id DESC"
            ).fetchall()
        return [self._row_to_region(row) for row in rows]

    def get_region(self, region_id: int) -> Optional[Region]:
        """Get a single region by id"""
        with self._query() as conn:
            row = conn.execute("SELECT * FROM regions WHERE id = ?", (region_id,)).fetchone()
        return self._row_to_region(row) if row else None

    def delete_region(self, region_id: int) -> List[str]:
        """Remove a region and its tile rows atomically, returning the tile file paths"""
        with self._transaction() as conn:
            rows = conn.execute(
                "SELECT file_path FROM tiles WHERE region_id = ?", (region_id,)
            ).fetchall()
            conn.execute("DELETE FROM tiles WHERE region_id = ?", (region_id,))
            conn.execute("DELETE FROM regions WHERE id = ?", (region_id,))
        paths = [row['file_path'] for row in rows if row['file_path']]
        logger.info(f"Deleted region id={region_id} ({len(paths)} tiles)")
        return paths

    def region_stats(self, region_id: int) -> RegionStats:
        with self._query() as conn:
            row = conn.execute(
                """SELECT COUNT(*) AS count, COALESCE(SUM(size_bytes), 0) AS total_size
                   FROM tiles WHERE region_id = ?""",
                (region_id,)
            ).fetchone()
        return RegionStats(count=row['count'], total_size=row['total_size'])

    def clear(self) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM tiles")
            conn.execute("DELETE FROM regions")

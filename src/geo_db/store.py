"""
SQLite sink for derived rows.

Every row is a one-shot insert: the import is a bulk load into a fresh
file, so there is no update or delete path. Primary-key conflicts are fatal
except on `object_languages`, where duplicates are ignored.
"""

import logging
import sqlite3
from collections import defaultdict
from pathlib import Path
from typing import Iterable, Optional

from .models import DerivedRow
from .schema import IGNORE_CONFLICT_RELATIONS, RELATION_COLUMNS, create_all_tables

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("geo.db")


class SinkConflictError(RuntimeError):
    """A primary-key conflict on a relation that does not tolerate duplicates."""

    def __init__(self, relation: str, entity_id: str, detail: str = ""):
        self.relation = relation
        self.entity_id = entity_id
        message = f"conflict inserting {entity_id} into {relation}"
        super().__init__(f"{message}: {detail}" if detail else message)


def _apply_pragmas(conn: sqlite3.Connection) -> None:
    """Bulk-load PRAGMAs: large page cache, in-memory temp store, no fsync per commit."""
    conn.execute("PRAGMA cache_size = -512000")  # 500 MB
    conn.execute("PRAGMA temp_store = MEMORY")
    conn.execute("PRAGMA synchronous = OFF")
    conn.execute("PRAGMA journal_mode = WAL")


def _insert_sql(relation: str) -> str:
    columns = RELATION_COLUMNS[relation]
    verb = "INSERT OR IGNORE" if relation in IGNORE_CONFLICT_RELATIONS else "INSERT"
    placeholders = ", ".join("?" for _ in columns)
    return f"{verb} INTO {relation} ({', '.join(columns)}) VALUES ({placeholders})"


class GeoDatabase:
    """
    Write-side handle on a geo database file.

    Use `GeoDatabase.create(path)` for imports: it refuses to touch an
    existing file. Inserts run inside an open transaction until `commit()`.
    """

    def __init__(self, db_path: str | Path, conn: Optional[sqlite3.Connection] = None):
        self._db_path = Path(db_path)
        self._conn = conn
        self._sql = {relation: _insert_sql(relation) for relation in RELATION_COLUMNS}
        self.rows_written = 0

    @property
    def path(self) -> Path:
        return self._db_path

    @classmethod
    def create(cls, db_path: str | Path) -> "GeoDatabase":
        """
        Create a new database file with the full schema.

        Raises:
            FileExistsError: if the file already exists
        """
        path = Path(db_path)
        if path.exists():
            raise FileExistsError(f"database already exists: {path}")
        path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(path))
        conn.row_factory = sqlite3.Row
        _apply_pragmas(conn)
        create_all_tables(conn)
        logger.info(f"Created database {path}")
        return cls(path, conn)

    @classmethod
    def open(cls, db_path: str | Path) -> "GeoDatabase":
        """Open an existing database (for reading stats)."""
        path = Path(db_path)
        if not path.exists():
            raise FileNotFoundError(f"Database not found: {path}")
        conn = sqlite3.connect(str(path))
        conn.row_factory = sqlite3.Row
        return cls(path, conn)

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError(f"database {self._db_path} is closed")
        return self._conn

    def insert_rows(self, entity_id: str, rows: Iterable[DerivedRow]) -> int:
        """
        Insert all rows derived from one entity, grouped per relation.

        Returns:
            Number of rows submitted

        Raises:
            SinkConflictError: on a primary-key conflict outside object_languages
        """
        grouped: dict[str, list[tuple]] = defaultdict(list)
        for row in rows:
            values = row.model_dump_for_db()
            grouped[row.relation].append(tuple(values[c] for c in RELATION_COLUMNS[row.relation]))

        conn = self._connect()
        count = 0
        for relation, params in grouped.items():
            try:
                conn.executemany(self._sql[relation], params)
            except sqlite3.IntegrityError as e:
                raise SinkConflictError(relation, entity_id, str(e)) from e
            count += len(params)

        self.rows_written += count
        return count

    def set_info(self, key: str, value: str) -> None:
        self._connect().execute(
            "INSERT OR REPLACE INTO db_info (key, value) VALUES (?, ?)", (key, value)
        )

    def get_info(self, key: str) -> Optional[str]:
        row = self._connect().execute("SELECT value FROM db_info WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def commit(self) -> None:
        self._connect().commit()

    def get_stats(self) -> dict[str, int]:
        """Row count per relation."""
        conn = self._connect()
        return {
            relation: conn.execute(f"SELECT COUNT(*) FROM {relation}").fetchone()[0]
            for relation in RELATION_COLUMNS
        }

    def close(self, commit: bool = True) -> None:
        """Close the connection, committing pending inserts unless `commit` is False."""
        if self._conn is None:
            return
        if commit:
            self._conn.commit()
        else:
            self._conn.rollback()
        self._conn.close()
        self._conn = None
        logger.debug(f"Closed database {self._db_path}")

    def __enter__(self) -> "GeoDatabase":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close(commit=exc_type is None)

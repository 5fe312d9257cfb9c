"""SQLite-backed snapshot store, one database file per source.

Each source gets its own file so that a long write on one source never
blocks another. Inside a file the ``snapshots`` table maps a record id to
its serialized ``StoredSnapshot`` and the ``meta`` table keeps small
watermarks such as the last successful sync time.

Usage:
    store = StateStore(Path("~/.config/tm").expanduser())
    bucket = store.bucket(SourceKind.GITHUB)

    with bucket.transaction() as txn:
        old = txn.get("github_acme_api_9")
        txn.put(record.to_snapshot(old))
"""

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog
from pydantic import ValidationError

from thymer_inbox.exceptions import StorageError
from thymer_inbox.models.record import SourceKind, StoredSnapshot

log = structlog.stdlib.get_logger()

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS snapshots (
        id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS meta (
        key TEXT PRIMARY KEY,
        value TEXT NOT NULL
    )
    """,
)


class BucketTransaction:
    """Operations on one bucket bound to an open transaction."""

    def __init__(self, source: str, conn: sqlite3.Connection):
        self._source = source
        self._conn = conn

    def _execute(self, sql: str, params: tuple = ()) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, params)
        except sqlite3.Error as e:
            raise StorageError(f"{self._source} store query failed: {e}") from e

    def get(self, record_id: str) -> StoredSnapshot | None:
        row = self._execute("SELECT data FROM snapshots WHERE id = ?", (record_id,)).fetchone()
        if row is None:
            return None
        try:
            return StoredSnapshot.model_validate_json(row["data"])
        except ValidationError as e:
            raise StorageError(
                f"{self._source} snapshot {record_id} could not be decoded: {e}"
            ) from e

    def put(self, snapshot: StoredSnapshot) -> None:
        try:
            data = snapshot.model_dump_json()
        except (TypeError, ValueError) as e:
            raise StorageError(
                f"{self._source} snapshot {snapshot.id} could not be encoded: {e}"
            ) from e
        self._execute(
            "INSERT INTO snapshots (id, data, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at",
            (snapshot.id, data, snapshot.stored_at.isoformat()),
        )

    def delete(self, record_id: str) -> bool:
        cursor = self._execute("DELETE FROM snapshots WHERE id = ?", (record_id,))
        return cursor.rowcount > 0

    def all(self) -> list[StoredSnapshot]:
        rows = self._execute("SELECT id, data FROM snapshots ORDER BY id").fetchall()
        snapshots = []
        for row in rows:
            try:
                snapshots.append(StoredSnapshot.model_validate_json(row["data"]))
            except ValidationError as e:
                raise StorageError(
                    f"{self._source} snapshot {row['id']} could not be decoded: {e}"
                ) from e
        return snapshots

    def count(self) -> int:
        return self._execute("SELECT COUNT(*) AS n FROM snapshots").fetchone()["n"]

    def get_meta(self, key: str) -> str | None:
        row = self._execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        self._execute(
            "INSERT INTO meta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )

    def delete_meta(self, key: str) -> None:
        self._execute("DELETE FROM meta WHERE key = ?", (key,))

    def wipe(self) -> int:
        """Delete every snapshot and every watermark. Returns the snapshot count removed."""
        removed = self._execute("DELETE FROM snapshots").rowcount
        self._execute("DELETE FROM meta")
        return removed


class SnapshotBucket:
    """Durable snapshot table for one source.

    Every public method runs in its own short transaction. Use
    ``transaction()`` directly when a read and the following write must be
    atomic. Writers are serialized by SQLite's write lock; waiting for it is
    bounded by ``lock_timeout`` and a timeout surfaces as ``StorageError``.
    """

    def __init__(self, source: str, db_path: Path, lock_timeout: float = 1.0):
        self.source = source
        self.db_path = db_path
        self.lock_timeout = lock_timeout
        self._init_schema()

    def _init_schema(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot create data directory {self.db_path.parent}: {e}") from e

        with self._connect() as conn:
            try:
                conn.execute("PRAGMA journal_mode=WAL")
                for statement in SCHEMA:
                    conn.execute(statement)
            except sqlite3.Error as e:
                raise StorageError(f"Cannot initialise {self.db_path}: {e}") from e

        log.debug("snapshot_bucket_ready", source=self.source, db_path=str(self.db_path))

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self.db_path),
                timeout=self.lock_timeout,
                isolation_level=None,
                check_same_thread=False,
            )
        except sqlite3.Error as e:
            raise StorageError(f"Cannot open {self.db_path}: {e}") from e

        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self, write: bool = True) -> Iterator[BucketTransaction]:
        """Open a transaction; commit on success, roll back on any exception.

        ``write=True`` takes the write lock up front (``BEGIN IMMEDIATE``) so a
        read-modify-write cannot interleave with another writer.
        """
        with self._connect() as conn:
            try:
                conn.execute("BEGIN IMMEDIATE" if write else "BEGIN")
            except sqlite3.Error as e:
                raise StorageError(f"Could not lock the {self.source} store: {e}") from e

            try:
                yield BucketTransaction(self.source, conn)
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise

            try:
                conn.execute("COMMIT")
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise StorageError(f"Commit to the {self.source} store failed: {e}") from e

    def get(self, record_id: str) -> StoredSnapshot | None:
        with self.transaction(write=False) as txn:
            return txn.get(record_id)

    def put(self, snapshot: StoredSnapshot) -> None:
        with self.transaction() as txn:
            txn.put(snapshot)

    def delete(self, record_id: str) -> bool:
        with self.transaction() as txn:
            return txn.delete(record_id)

    def all(self) -> list[StoredSnapshot]:
        with self.transaction(write=False) as txn:
            return txn.all()

    def count(self) -> int:
        with self.transaction(write=False) as txn:
            return txn.count()

    def get_meta(self, key: str) -> str | None:
        with self.transaction(write=False) as txn:
            return txn.get_meta(key)

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as txn:
            txn.set_meta(key, value)

    def delete_meta(self, key: str) -> None:
        with self.transaction() as txn:
            txn.delete_meta(key)

    def wipe(self) -> int:
        with self.transaction() as txn:
            removed = txn.wipe()
        log.info("snapshot_bucket_wiped", source=self.source, removed=removed)
        return removed


class StateStore:
    """Owns one ``SnapshotBucket`` per source under a shared data directory."""

    def __init__(self, data_dir: Path, lock_timeout: float = 1.0):
        self.data_dir = Path(data_dir)
        self.lock_timeout = lock_timeout
        self._buckets: dict[str, SnapshotBucket] = {}
        self._lock = threading.Lock()

    def bucket(self, source: SourceKind | str) -> SnapshotBucket:
        name = source.value if isinstance(source, SourceKind) else source
        with self._lock:
            if name not in self._buckets:
                self._buckets[name] = SnapshotBucket(
                    name, self.data_dir / f"{name}.db", lock_timeout=self.lock_timeout
                )
            return self._buckets[name]

    def stats(self) -> dict[str, int]:
        """Snapshot counts per opened bucket."""
        with self._lock:
            buckets = dict(self._buckets)
        return {name: bucket.count() for name, bucket in buckets.items()}

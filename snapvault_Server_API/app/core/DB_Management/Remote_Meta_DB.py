# Remote_Meta_DB.py
# Description: Server-side persistence of per-device photo metadata (id -> item, tombstones included).
#
# Imports
import sqlite3
import threading
import logging
from pathlib import Path
from typing import List, Dict, Optional, Any, Union
#
# Local Imports
from snapvault_Server_API.app.core.Sync.models import RemoteMetaItem, DEFAULT_ORIGINAL_NAME
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class RemoteMetaDBError(Exception):
    """Base exception for RemoteMetaDatabase errors."""
    pass


class NotFoundError(RemoteMetaDBError):
    """No live metadata entry exists for the requested (device, photo) pair."""
    def __init__(self, message="not found", device_id: Optional[str] = None, photo_id: Optional[str] = None):
        super().__init__(message)
        self.device_id = device_id
        self.photo_id = photo_id


class RemoteMetaDatabase:
    """
    One table holds the metadata map of every device namespace, keyed by (device_id, id).
    Read-modify-write callers wrap their work in `transaction()` so concurrent requests
    for the same id serialize on the SQLite write lock.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "snapvault_remote_meta"

    _FULL_SCHEMA_SQL_V1 = """
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('snapvault_remote_meta',0);

CREATE TABLE IF NOT EXISTS remote_photos(
  device_id      TEXT     NOT NULL,
  id             TEXT     NOT NULL,
  object_key     TEXT     NOT NULL,
  created_at     INTEGER  NOT NULL,
  updated_at     INTEGER  NOT NULL,
  folder         TEXT,
  favorite       INTEGER  NOT NULL DEFAULT 0,
  deleted        INTEGER  NOT NULL DEFAULT 0,
  original_name  TEXT     NOT NULL DEFAULT 'photo.jpg',
  PRIMARY KEY (device_id, id)
);

CREATE INDEX IF NOT EXISTS idx_remote_photos_device_updated ON remote_photos(device_id, updated_at);

UPDATE db_schema_version SET version = 1 WHERE schema_name = 'snapvault_remote_meta' AND version = 0;
    """

    def __init__(self, db_path: Union[str, Path]):
        self.is_memory_db = (str(db_path) == ':memory:')
        self.db_path = Path(":memory:") if self.is_memory_db else Path(db_path).resolve()
        self.db_path_str = ':memory:' if self.is_memory_db else str(self.db_path)
        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise RemoteMetaDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        self._local = threading.local()
        # A ':memory:' database only lives as long as its connection, so it is shared across threads.
        self._shared_conn: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()
        try:
            self._initialize_schema()
        except sqlite3.Error as e:
            logger.critical(f"FATAL: Remote meta DB initialization failed for {self.db_path_str}: {e}", exc_info=True)
            raise RemoteMetaDBError(f"Database initialization failed: {e}") from e
        logger.info(f"RemoteMetaDatabase ready at {self.db_path_str}")

    # --- Connection Management ---
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15, isolation_level=None)
        conn.row_factory = sqlite3.Row
        if not self.is_memory_db:
            conn.execute("PRAGMA journal_mode=WAL;")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        try:
            if self.is_memory_db:
                if self._shared_conn is None:
                    self._shared_conn = self._connect()
                return self._shared_conn
            conn = getattr(self._local, 'conn', None)
            if conn is None:
                conn = self._connect()
                self._local.conn = conn
            return conn
        except sqlite3.Error as e:
            raise RemoteMetaDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e

    def close_connection(self):
        conn = self._shared_conn if self.is_memory_db else getattr(self._local, 'conn', None)
        if conn is None:
            return
        try:
            conn.close()
        except sqlite3.Error as e:
            logger.warning(f"Error closing remote meta DB connection: {e}")
        finally:
            if self.is_memory_db:
                self._shared_conn = None
            else:
                self._local.conn = None

    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None,
                      script: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            if script:
                cursor.executescript(query)
            else:
                cursor.execute(query, params or ())
            return cursor
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:200]}... Error: {e}", exc_info=True)
            raise RemoteMetaDBError(f"Query execution failed: {e}") from e

    def transaction(self) -> '_WriteTransaction':
        return _WriteTransaction(self)

    def _initialize_schema(self):
        conn = self.get_connection()
        try:
            row = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ?",
                               (self._SCHEMA_NAME,)).fetchone()
            version = row['version'] if row else 0
        except sqlite3.OperationalError:
            version = 0
        if version > self._CURRENT_SCHEMA_VERSION:
            raise RemoteMetaDBError(
                f"Database schema '{self._SCHEMA_NAME}' version ({version}) is newer than supported "
                f"by code ({self._CURRENT_SCHEMA_VERSION}).")
        if version < self._CURRENT_SCHEMA_VERSION:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
            logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized to version {self._CURRENT_SCHEMA_VERSION}.")

    # --- Item access ---
    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> RemoteMetaItem:
        return RemoteMetaItem(
            id=row['id'],
            key=row['object_key'],
            created_at=row['created_at'],
            updated_at=row['updated_at'],
            folder=row['folder'],
            favorite=bool(row['favorite']),
            deleted=bool(row['deleted']),
            original_name=row['original_name'] or DEFAULT_ORIGINAL_NAME,
        )

    def get_item(self, device_id: str, photo_id: str) -> Optional[RemoteMetaItem]:
        row = self.execute_query(
            "SELECT * FROM remote_photos WHERE device_id = ? AND id = ?", (device_id, photo_id)
        ).fetchone()
        return self._row_to_item(row) if row else None

    def put_item(self, device_id: str, item: RemoteMetaItem):
        self.execute_query(
            """INSERT OR REPLACE INTO remote_photos
               (device_id, id, object_key, created_at, updated_at, folder, favorite, deleted, original_name)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (device_id, item.id, item.key or "", item.created_at, item.updated_at, item.folder,
             int(bool(item.favorite)), int(bool(item.deleted)), item.original_name or DEFAULT_ORIGINAL_NAME),
        )

    def list_items(self, device_id: str) -> List[RemoteMetaItem]:
        """Every entry of a namespace, tombstones included, most recently changed first."""
        rows = self.execute_query(
            """SELECT * FROM remote_photos WHERE device_id = ?
               ORDER BY COALESCE(NULLIF(updated_at, 0), created_at) DESC, id ASC""",
            (device_id,),
        ).fetchall()
        return [self._row_to_item(row) for row in rows]


class _WriteTransaction:
    """BEGIN IMMEDIATE on entry; commit on clean exit, rollback on error. Nested use joins the outer block."""

    def __init__(self, db: RemoteMetaDatabase):
        self.db = db
        self.conn: Optional[sqlite3.Connection] = None
        self.outermost = False

    def __enter__(self) -> sqlite3.Connection:
        if self.db.is_memory_db:
            self.db._shared_lock.acquire()
        self.conn = self.db.get_connection()
        if not self.conn.in_transaction:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                if self.db.is_memory_db:
                    self.db._shared_lock.release()
                raise RemoteMetaDBError(f"Could not start transaction: {e}") from e
            self.outermost = True
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if not self.outermost:
                return False
            if exc_type:
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback FAILED on {self.db.db_path_str}: {rb_err}", exc_info=True)
                return False
            try:
                self.conn.commit()
            except sqlite3.Error as commit_err:
                logger.error(f"Commit FAILED on {self.db.db_path_str}: {commit_err}", exc_info=True)
                self.conn.rollback()
                raise RemoteMetaDBError(f"Commit failed: {commit_err}") from commit_err
            return False
        finally:
            if self.db.is_memory_db:
                self.db._shared_lock.release()

#
# End of Remote_Meta_DB.py
#######################################################################################################################

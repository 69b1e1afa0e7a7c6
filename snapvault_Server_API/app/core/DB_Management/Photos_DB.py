# Photos_DB.py
# Description: DB Library for the local, authoritative photo collection (records, tombstones, settings).
#
# Imports
import json
import sqlite3
import threading
import logging
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, Iterable, Tuple
#
# Local Imports
from snapvault_Server_API.app.core.Sync.models import (
    PhotoRecord,
    RemoteMetaItem,
    SyncState,
    DEFAULT_CONTENT_TYPE,
    DEFAULT_ORIGINAL_NAME,
    generate_id,
    normalize_folder,
    now_ms,
)
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class PhotosDBError(Exception):
    """Base exception for PhotosDatabase errors. Callers should treat it as transient and retry."""
    pass


class SchemaError(PhotosDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Raised when a write would violate a record invariant."""
    pass


BACKGROUND_STYLES = ("PURPLE", "PINK")
DEFAULT_BACKGROUND_STYLE = "PURPLE"

# Settings keys
SETTING_BG_STYLE = "bgStyle"
SETTING_FOLDERS = "folders"
SETTING_SYNC_ENABLED = "syncEnabled"
SETTING_LAST_SYNC_AT = "lastSyncAt"
SETTING_DEVICE_ID = "deviceId"

_PHOTO_COLUMNS = "id, name, created_at, updated_at, folder, is_favorite, deleted, sync_state, content_type"


def clean_folder_names(folders: Iterable[Any]) -> List[str]:
    """Trims names, drops empties and de-duplicates while keeping first-seen order."""
    seen = set()
    clean = []
    for name in folders:
        name = str(name).strip()
        if name and name not in seen:
            seen.add(name)
            clean.append(name)
    return clean


class PhotosDatabase:
    """
    Manages the SQLite store holding the device's photo records and key-value settings.

    Every write goes through a full-record transaction; readers never observe a
    partially applied batch. Deleted records are kept as tombstones until a
    sync pass has reported them and an explicit purge removes them.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "snapvault_photos"

    _FULL_SCHEMA_SQL_V1 = """
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('snapvault_photos',0);

CREATE TABLE IF NOT EXISTS photos(
  id            TEXT     PRIMARY KEY NOT NULL,
  name          TEXT     NOT NULL DEFAULT 'photo.jpg',
  created_at    INTEGER  NOT NULL,
  updated_at    INTEGER  NOT NULL,
  folder        TEXT,
  is_favorite   INTEGER  NOT NULL DEFAULT 0,
  deleted       INTEGER  NOT NULL DEFAULT 0,
  sync_state    TEXT     NOT NULL DEFAULT 'local'
                CHECK (sync_state IN ('local','pending_upload','pending_update','pending_delete','synced')),
  content_type  TEXT     NOT NULL DEFAULT 'image/jpeg',
  blob          BLOB     NOT NULL DEFAULT x'',
  CHECK (deleted = 0 OR sync_state IN ('pending_delete','synced'))
);

CREATE INDEX IF NOT EXISTS idx_photos_created_at  ON photos(created_at);
CREATE INDEX IF NOT EXISTS idx_photos_folder      ON photos(folder);
CREATE INDEX IF NOT EXISTS idx_photos_is_favorite ON photos(is_favorite);
CREATE INDEX IF NOT EXISTS idx_photos_deleted     ON photos(deleted);
CREATE INDEX IF NOT EXISTS idx_photos_sync_state  ON photos(sync_state);
CREATE INDEX IF NOT EXISTS idx_photos_updated_at  ON photos(updated_at);

CREATE TABLE IF NOT EXISTS settings(
  key   TEXT PRIMARY KEY NOT NULL,
  value TEXT
);

UPDATE db_schema_version SET version = 1 WHERE schema_name = 'snapvault_photos' AND version = 0;
    """

    def __init__(self, db_path: Union[str, Path]):
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise PhotosDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing PhotosDatabase for path: {self.db_path_str}")
        self._local = threading.local()
        try:
            self._initialize_schema()
        except (PhotosDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise PhotosDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(f"Thread-local connection for {self.db_path_str} became unusable. Reopening.")
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(self.db_path_str, check_same_thread=False, timeout=15)
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise PhotosDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        return self._get_thread_connection()

    def close_connection(self):
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                if conn.in_transaction:
                    logger.warning(f"Connection to {self.db_path_str} closed inside a transaction. Rolling back.")
                    conn.rollback()
                conn.close()
            except sqlite3.Error as e:
                logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
            finally:
                self._local.conn = None

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False, script: bool = False) -> sqlite3.Cursor:
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            if script:
                cursor.executescript(query)
            else:
                cursor.execute(query, params or ())
            if commit and not getattr(self._local, 'tx_depth', 0):
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:200]}... Error: {e}")
            raise InputError(f"Record rejected by database constraint: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:200]}... Error: {e}", exc_info=True)
            raise PhotosDBError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        conn = self.get_connection()
        current_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        if current_version == target_version:
            logger.debug(f"Database schema '{self._SCHEMA_NAME}' is up to date.")
            return
        if current_version > target_version:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than supported "
                f"by code ({target_version}).")
        try:
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
        except sqlite3.Error as e:
            raise SchemaError(f"DB schema V1 setup failed for '{self._SCHEMA_NAME}': {e}") from e
        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema setup finished at version {final_version}, expected {target_version}.")
        logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized to version {final_version}.")

    # --- Row helpers ---
    def _select_photos(self, where: str = "", params: tuple = (), include_blob: bool = True,
                       order_by: str = "created_at DESC") -> List[PhotoRecord]:
        blob_col = "blob" if include_blob else "x'' AS blob"
        query = f"SELECT {_PHOTO_COLUMNS}, {blob_col} FROM photos"
        if where:
            query += f" WHERE {where}"
        if order_by:
            query += f" ORDER BY {order_by}"
        cursor = self.execute_query(query, params)
        return [PhotoRecord.from_row(row) for row in cursor.fetchall()]

    @staticmethod
    def _record_params(record: PhotoRecord) -> tuple:
        return (
            record.id, record.name or DEFAULT_ORIGINAL_NAME, record.created_at, record.updated_at,
            normalize_folder(record.folder), int(bool(record.is_favorite)), int(bool(record.deleted)),
            record.sync_state.value, record.content_type or DEFAULT_CONTENT_TYPE,
            sqlite3.Binary(record.blob or b""),
        )

    @staticmethod
    def _validate(record: PhotoRecord):
        try:
            record.validate()
        except ValueError as e:
            raise InputError(str(e)) from e

    @staticmethod
    def _next_updated_at(record: PhotoRecord) -> int:
        # strictly increasing even when the clock has not advanced
        return max(now_ms(), record.updated_at + 1)

    # --- Record Store Contract ---
    def get_photo(self, photo_id: str, include_blob: bool = True) -> Optional[PhotoRecord]:
        records = self._select_photos("id = ?", (photo_id,), include_blob=include_blob, order_by="")
        return records[0] if records else None

    def put_photo(self, record: PhotoRecord):
        self.put_photos([record])

    def put_photos(self, records: List[PhotoRecord]):
        """Writes a batch of full records; the batch either fully commits or fully aborts."""
        for record in records:
            self._validate(record)
        with self.transaction():
            for record in records:
                self.execute_query(
                    f"INSERT OR REPLACE INTO photos ({_PHOTO_COLUMNS}, blob) VALUES (?,?,?,?,?,?,?,?,?,?)",
                    self._record_params(record),
                )
        logger.debug(f"Stored {len(records)} photo record(s).")

    def hard_delete_photo(self, photo_id: str) -> bool:
        with self.transaction():
            cursor = self.execute_query("DELETE FROM photos WHERE id = ?", (photo_id,))
        return cursor.rowcount > 0

    def list_all_photos(self, include_blob: bool = True) -> List[PhotoRecord]:
        """Every record, tombstones included, newest first."""
        return self._select_photos(include_blob=include_blob)

    def list_visible_photos(self, include_blob: bool = True) -> List[PhotoRecord]:
        return self._select_photos("deleted = 0", include_blob=include_blob)

    def list_pending_photos(self, include_blob: bool = False) -> List[PhotoRecord]:
        return self._select_photos("sync_state IN (?, ?, ?)",
                                   (SyncState.PENDING_UPLOAD.value, SyncState.PENDING_UPDATE.value,
                                    SyncState.PENDING_DELETE.value),
                                   include_blob=include_blob)

    # --- Mutations (UI layer) ---
    def add_photos(self, items: List[Tuple[str, bytes, Optional[str]]], folder: Optional[str] = None,
                   favorite: bool = False) -> List[PhotoRecord]:
        """
        Adds new photos as one batch.

        Args:
            items: (name, blob, content_type) tuples.
            folder: Folder label for every new photo (None for unfiled).
            favorite: Initial favorite flag.

        Returns:
            The created records, all in `pending_upload`.
        """
        ts = now_ms()
        folder = normalize_folder(folder)
        records = [
            PhotoRecord(
                id=generate_id(),
                name=name or DEFAULT_ORIGINAL_NAME,
                created_at=ts,
                updated_at=ts,
                folder=folder,
                is_favorite=bool(favorite),
                deleted=False,
                sync_state=SyncState.PENDING_UPLOAD,
                blob=blob or b"",
                content_type=content_type or DEFAULT_CONTENT_TYPE,
            )
            for name, blob, content_type in items
        ]
        with self.transaction():
            self.put_photos(records)
            if folder:
                self.add_folder(folder)
        logger.info(f"Added {len(records)} photo(s) (folder={folder!r}, favorite={favorite}).")
        return records

    def add_photo(self, name: str, blob: bytes, content_type: Optional[str] = None,
                  folder: Optional[str] = None, favorite: bool = False) -> PhotoRecord:
        return self.add_photos([(name, blob, content_type)], folder=folder, favorite=favorite)[0]

    def soft_delete_photo(self, photo_id: str) -> Optional[PhotoRecord]:
        """Turns the record into a tombstone owed to the server and releases its media."""
        with self.transaction():
            record = self.get_photo(photo_id, include_blob=False)
            if record is None:
                return None
            if record.deleted:
                return record
            record.deleted = True
            record.updated_at = self._next_updated_at(record)
            record.sync_state = SyncState.PENDING_DELETE
            record.blob = b""
            self.put_photo(record)
        logger.info(f"Soft-deleted photo {photo_id}.")
        return record

    def _edit(self, photo_id: str, apply) -> Optional[PhotoRecord]:
        with self.transaction():
            record = self.get_photo(photo_id)
            if record is None or record.deleted:
                return None
            apply(record)
            record.updated_at = self._next_updated_at(record)
            # never uploaded yet -> the upload will carry the edit
            record.sync_state = (SyncState.PENDING_UPDATE if record.sync_state in
                                 (SyncState.SYNCED, SyncState.PENDING_UPDATE) else SyncState.PENDING_UPLOAD)
            self.put_photo(record)
            if record.folder:
                self.add_folder(record.folder)
        return record

    def toggle_favorite(self, photo_id: str) -> Optional[PhotoRecord]:
        def _flip(record: PhotoRecord):
            record.is_favorite = not record.is_favorite
        return self._edit(photo_id, _flip)

    def set_photo_folder(self, photo_id: str, folder: Optional[str]) -> Optional[PhotoRecord]:
        folder = normalize_folder(folder)

        def _move(record: PhotoRecord):
            record.folder = folder
        return self._edit(photo_id, _move)

    # --- Sync bookkeeping ---
    def mark_synced(self, photo_id: str, expected_updated_at: Optional[int] = None) -> bool:
        """
        Marks a record as synced. If `expected_updated_at` is given and the record changed
        since the caller snapshotted it, the record stays pending and False is returned.
        """
        with self.transaction():
            record = self.get_photo(photo_id, include_blob=False)
            if record is None:
                return False
            if expected_updated_at is not None and record.updated_at != expected_updated_at:
                logger.info(f"Photo {photo_id} changed while syncing; leaving it '{record.sync_state.value}'.")
                return False
            self.execute_query("UPDATE photos SET sync_state = ? WHERE id = ?",
                               (SyncState.SYNCED.value, photo_id))
        return True

    def apply_server_deleted(self, photo_id: str) -> bool:
        """Forces a local record into the synced tombstone state. Returns False if it does not exist."""
        with self.transaction():
            record = self.get_photo(photo_id, include_blob=False)
            if record is None:
                return False
            if not record.deleted:
                record.deleted = True
                record.updated_at = self._next_updated_at(record)
            record.sync_state = SyncState.SYNCED
            record.blob = b""
            self.put_photo(record)
        logger.debug(f"Applied server tombstone to photo {photo_id}.")
        return True

    def upsert_local_meta_from_server(self, item: RemoteMetaItem) -> bool:
        """
        Merges server metadata into an existing local record. Skipped when the record is
        missing, dirty, a tombstone, or not strictly older than the server's copy.
        """
        with self.transaction():
            record = self.get_photo(item.id)
            if record is None or record.is_pending or record.deleted:
                return False
            if item.effective_updated_at <= record.updated_at:
                return False
            if item.deleted:
                record.deleted = True
                record.blob = b""
            record.folder = normalize_folder(item.folder)
            record.is_favorite = bool(item.favorite)
            record.name = item.original_name or record.name
            record.updated_at = item.effective_updated_at
            record.sync_state = SyncState.SYNCED
            self.put_photo(record)
            if record.folder and not record.deleted:
                self.add_folder(record.folder)
        return True

    def insert_downloaded_photo(self, item: RemoteMetaItem, blob: bytes,
                                content_type: Optional[str] = None) -> Optional[PhotoRecord]:
        """Materializes a photo pulled from the server. Never overwrites an existing record."""
        if item.deleted:
            return None
        created_at = item.created_at or now_ms()
        record = PhotoRecord(
            id=item.id,
            name=item.original_name or DEFAULT_ORIGINAL_NAME,
            created_at=created_at,
            updated_at=max(item.updated_at or created_at, created_at),
            folder=normalize_folder(item.folder),
            is_favorite=bool(item.favorite),
            deleted=False,
            sync_state=SyncState.SYNCED,
            blob=blob or b"",
            content_type=content_type or DEFAULT_CONTENT_TYPE,
        )
        with self.transaction():
            if self.get_photo(item.id, include_blob=False) is not None:
                return None
            self.put_photo(record)
            if record.folder:
                self.add_folder(record.folder)
        return record

    def purge_synced_tombstones(self) -> int:
        """Hard-deletes tombstones the server already knows about."""
        with self.transaction():
            cursor = self.execute_query("DELETE FROM photos WHERE deleted = 1 AND sync_state = ?",
                                        (SyncState.SYNCED.value,))
        purged = cursor.rowcount
        if purged:
            logger.info(f"Purged {purged} synced tombstone(s).")
        return purged

    # --- Settings (key-value) ---
    def get_setting(self, key: str, default: Any = None) -> Any:
        row = self.execute_query("SELECT value FROM settings WHERE key = ?", (key,)).fetchone()
        if row is None or row['value'] is None:
            return default
        try:
            return json.loads(row['value'])
        except json.JSONDecodeError:
            logger.warning(f"Setting '{key}' holds invalid JSON; using default.")
            return default

    def set_setting(self, key: str, value: Any):
        with self.transaction():
            self.execute_query("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                               (key, json.dumps(value)))

    def get_background_style(self) -> str:
        value = self.get_setting(SETTING_BG_STYLE)
        return value if value in BACKGROUND_STYLES else DEFAULT_BACKGROUND_STYLE

    def set_background_style(self, style: str):
        if style not in BACKGROUND_STYLES:
            raise InputError(f"Unknown background style: {style}")
        self.set_setting(SETTING_BG_STYLE, style)

    def get_folders(self) -> List[str]:
        value = self.get_setting(SETTING_FOLDERS)
        if not isinstance(value, list):
            return []
        return clean_folder_names(value)

    def set_folders(self, folders: Iterable[Any]) -> List[str]:
        clean = clean_folder_names(folders)
        self.set_setting(SETTING_FOLDERS, clean)
        return clean

    def add_folder(self, folder: str) -> List[str]:
        with self.transaction():
            folders = self.get_folders()
            folder = normalize_folder(folder)
            if folder and folder not in folders:
                folders.append(folder)
                self.set_setting(SETTING_FOLDERS, folders)
        return folders

    def rebuild_folders(self) -> List[str]:
        """Recomputes the folder index from visible records, oldest first."""
        rows = self.execute_query(
            "SELECT folder FROM photos WHERE deleted = 0 AND folder IS NOT NULL ORDER BY created_at ASC"
        ).fetchall()
        return self.set_folders(row['folder'] for row in rows)

    def get_sync_enabled(self) -> bool:
        return self.get_setting(SETTING_SYNC_ENABLED) is not False

    def set_sync_enabled(self, enabled: bool):
        self.set_setting(SETTING_SYNC_ENABLED, bool(enabled))

    def get_last_sync_at(self) -> Optional[int]:
        value = self.get_setting(SETTING_LAST_SYNC_AT)
        return value if isinstance(value, int) else None

    def set_last_sync_at(self, ts: int):
        self.set_setting(SETTING_LAST_SYNC_AT, int(ts))

    def get_stored_device_id(self) -> Optional[str]:
        value = self.get_setting(SETTING_DEVICE_ID)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    def set_stored_device_id(self, device_id: str):
        self.set_setting(SETTING_DEVICE_ID, device_id)


class TransactionContextManager:
    """Outermost block issues BEGIN IMMEDIATE/COMMIT/ROLLBACK; nested blocks join it."""

    def __init__(self, db_instance: PhotosDatabase):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        depth = getattr(self.db._local, 'tx_depth', 0)
        if depth == 0:
            try:
                if self.conn.in_transaction:
                    self.conn.commit()
                self.conn.execute("BEGIN IMMEDIATE")
            except sqlite3.Error as e:
                raise PhotosDBError(f"Could not start transaction on {self.db.db_path_str}: {e}") from e
            self.is_outermost_transaction = True
        self.db._local.tx_depth = depth + 1
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.db._local.tx_depth = max(getattr(self.db._local, 'tx_depth', 1) - 1, 0)
        if not self.is_outermost_transaction:
            return False

        if exc_type:
            logger.debug(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
            try:
                self.conn.rollback()
            except sqlite3.Error as rb_err:
                logger.critical(f"Rollback FAILED on {self.db.db_path_str}: {rb_err}", exc_info=True)
            return False

        try:
            self.conn.commit()
        except sqlite3.Error as commit_err:
            logger.error(f"Commit FAILED on {self.db.db_path_str}, rolling back: {commit_err}", exc_info=True)
            try:
                self.conn.rollback()
            except sqlite3.Error:
                logger.critical(f"Rollback after failed commit also FAILED on {self.db.db_path_str}.")
            raise PhotosDBError(f"Commit failed: {commit_err}") from commit_err
        return False

#
# End of Photos_DB.py
#######################################################################################################################

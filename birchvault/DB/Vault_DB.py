# Vault_DB.py
# Description: Local durable cache for vault items and folders, plus the sync outbox.
#
"""
Vault_DB.py
-----------

SQLite-backed local store for the offline-first vault.

The store owns all on-disk state of a device:
- `vault_items`: encrypted records, soft-deleted by stamping `deleted_at` (tombstones).
- `folders`: plain folder rows; deleting a folder detaches its items.
- `sync_queue`: the outbox, an append-only FIFO of local mutations not yet
  acknowledged by the server. Every local create/update/soft-delete/restore/purge
  appends exactly one entry inside the same transaction as the mutation.
- `user_session`: a single row holding tokens and `last_sync_at`.
- `app_settings`: a single row of desktop preferences.

Concurrency model:
- One sqlite3 connection per store, guarded by a single re-entrant lock. Every
  public method holds the lock for the whole of its transaction, so reads and
  writes from different threads never interleave.
- Each public method is one transaction; a storage fault rolls it back and is
  raised to the caller as `VaultDBError`.

Rows pulled from the server go through `bulk_upsert`, which never touches the outbox.
"""
# Imports
import sqlite3
import threading
import logging
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, Iterable
#
# Third-Party Libraries
from pydantic import ValidationError
#
# Local Imports
from birchvault.DB.Vault_Models import (
    ENTITY_FOLDERS,
    ENTITY_VAULT_ITEMS,
    AppSettings,
    Folder,
    OutboxEntry,
    UserSession,
    VaultItem,
)
from birchvault.Utils.Time_Utils import get_current_utc_timestamp_iso
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class VaultDBError(Exception):
    """Base exception for local vault store errors."""
    pass


class SchemaError(VaultDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class SerializationError(VaultDBError):
    """A row or payload could not be converted to or from its stored form."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class NotFoundError(VaultDBError):
    """
    Raised when a mutation targets a record that does not exist.

    Attributes:
        entity (Optional[str]): The table involved (e.g., "vault_items").
        entity_id (Any): The ID of the missing record.
    """

    def __init__(self, message="Record not found.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


_VALID_OPERATIONS = ('create', 'update', 'delete')
_VALID_ENTITY_KINDS = (ENTITY_VAULT_ITEMS, ENTITY_FOLDERS)

_ITEM_COLUMNS = ("id, encrypted_data, item_type, folder_id, is_favorite, deleted_at, "
                 "synced_at, local_updated_at, server_updated_at")


# --- Database Class ---
class VaultDB:
    """
    Manages the SQLite connection and all operations of the local vault store.

    Attributes:
        db_path (Path): The absolute path to the SQLite database file, or Path(":memory:").
        is_memory_db (bool): True if the database is in-memory.
        db_path_str (str): String representation of the database path for SQLite connection.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "birchvault_local_schema"

    _FULL_SCHEMA_SQL_V1 = """
/*───────────────────────────────────────────────────────────────
  BirchVault local store  –  Version 1
───────────────────────────────────────────────────────────────*/
BEGIN;

CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('birchvault_local_schema',0);

/* folder_id is informational only: foreign_keys stays off so pulled items may
   reference folders that have not arrived yet. delete_folder detaches items itself. */
CREATE TABLE IF NOT EXISTS vault_items(
  id                TEXT PRIMARY KEY,
  encrypted_data    TEXT NOT NULL,
  item_type         TEXT NOT NULL,
  folder_id         TEXT REFERENCES folders(id) ON DELETE SET NULL,
  is_favorite       INTEGER NOT NULL DEFAULT 0,
  deleted_at        TEXT,
  synced_at         TEXT,
  local_updated_at  TEXT NOT NULL,
  server_updated_at TEXT
);

CREATE TABLE IF NOT EXISTS folders(
  id               TEXT PRIMARY KEY,
  name             TEXT NOT NULL,
  synced_at        TEXT,
  local_updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_queue(
  sequence_id      INTEGER PRIMARY KEY AUTOINCREMENT,
  operation        TEXT NOT NULL CHECK(operation IN ('create','update','delete')),
  entity_kind      TEXT NOT NULL,
  record_id        TEXT NOT NULL,
  payload_snapshot TEXT,
  created_at       TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_session(
  id            INTEGER PRIMARY KEY CHECK (id = 1),
  user_id       TEXT NOT NULL,
  email         TEXT NOT NULL,
  access_token  TEXT NOT NULL,
  refresh_token TEXT NOT NULL,
  expires_at    TEXT NOT NULL,
  last_sync_at  TEXT
);

CREATE TABLE IF NOT EXISTS app_settings(
  id                      INTEGER PRIMARY KEY CHECK (id = 1),
  auto_lock_minutes       INTEGER NOT NULL DEFAULT 15,
  clipboard_clear_seconds INTEGER NOT NULL DEFAULT 30,
  start_minimized         INTEGER NOT NULL DEFAULT 0,
  start_on_boot           INTEGER NOT NULL DEFAULT 0,
  theme                   TEXT    NOT NULL DEFAULT 'system'
);
INSERT OR IGNORE INTO app_settings(id) VALUES (1);

CREATE INDEX IF NOT EXISTS idx_vault_items_folder  ON vault_items(folder_id);
CREATE INDEX IF NOT EXISTS idx_vault_items_type    ON vault_items(item_type);
CREATE INDEX IF NOT EXISTS idx_vault_items_deleted ON vault_items(deleted_at);
CREATE INDEX IF NOT EXISTS idx_vault_items_synced  ON vault_items(synced_at);

UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'birchvault_local_schema'
   AND version < 1;

COMMIT;
"""

    def __init__(self, db_path: Union[str, Path]):
        """
        Opens (or creates) the local store and ensures the schema is current.

        Args:
            db_path: Path to the SQLite database file (e.g., "data/vault.db")
                     or ":memory:" for an in-memory database.

        Raises:
            VaultDBError: If directory creation or database initialization fails.
            SchemaError: If the on-disk schema is newer than this code supports.
        """
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
                raise VaultDBError(f"Failed to create database directory {self.db_path.parent}: {e}") from e

        logger.info(f"Initializing VaultDB for path: {self.db_path_str}")
        self._lock = threading.RLock()
        self._conn: Optional[sqlite3.Connection] = None
        try:
            self._initialize_schema()
            logger.debug(f"VaultDB initialization completed successfully for {self.db_path_str}")
        except SchemaError:
            self.close_connection()
            raise
        except (VaultDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            raise VaultDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def get_connection(self) -> sqlite3.Connection:
        """
        Returns the store's single connection, opening it on first use.

        The connection runs in autocommit mode; transactions are opened explicitly
        by `TransactionContextManager`.

        Raises:
            VaultDBError: If connecting to the database fails.
        """
        with self._lock:
            if self._conn is None:
                try:
                    conn = sqlite3.connect(
                        self.db_path_str,
                        check_same_thread=False,
                        isolation_level=None,
                        timeout=15
                    )
                    conn.row_factory = sqlite3.Row
                    if not self.is_memory_db:
                        conn.execute("PRAGMA journal_mode=WAL;")
                    self._conn = conn
                    logger.debug(f"Opened SQLite connection to {self.db_path_str}")
                except sqlite3.Error as e:
                    logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                    raise VaultDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
            return self._conn

    def close_connection(self):
        """
        Closes the connection, rolling back any open transaction and checkpointing
        the WAL file for file-based databases.
        """
        with self._lock:
            conn = self._conn
            if conn is None:
                return
            try:
                if conn.in_transaction:
                    logger.warning(f"Connection to {self.db_path_str} is in an uncommitted transaction during close. Rolling back.")
                    conn.rollback()
                if not self.is_memory_db:
                    mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                    if mode_row and mode_row[0].lower() == 'wal':
                        conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                conn.close()
                logger.debug(f"Closed connection to {self.db_path_str}.")
            except sqlite3.Error as e:
                logger.warning(f"Error during SQLite connection close/checkpoint for {self.db_path_str}: {e}")
            finally:
                self._conn = None

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager that holds the store lock for one transaction.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
            # committed on success, rolled back on exception
        """
        return TransactionContextManager(self)

    def _fetchall(self, query: str, params: tuple = ()) -> List[sqlite3.Row]:
        with self._lock:
            try:
                if logger.isEnabledFor(logging.DEBUG):
                    logger.debug(f"Executing SQL: {query[:300]}... Params: {str(params)[:200]}...")
                return self.get_connection().execute(query, params).fetchall()
            except sqlite3.Error as e:
                logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
                raise VaultDBError(f"Query execution failed: {e}") from e

    def _fetchone(self, query: str, params: tuple = ()) -> Optional[sqlite3.Row]:
        rows = self._fetchall(query, params)
        return rows[0] if rows else None

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
        """
        Applies the full schema to a fresh database, accepts a current one,
        and refuses one written by newer code.
        """
        with self._lock:
            conn = self.get_connection()
            current_version = self._get_db_version(conn)
            target_version = self._CURRENT_SCHEMA_VERSION
            logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_version}. Code supports: {target_version}")

            if current_version == target_version:
                return
            if current_version > target_version:
                raise SchemaError(
                    f"Database schema '{self._SCHEMA_NAME}' version ({current_version}) is newer than supported by code ({target_version}).")

            try:
                conn.executescript(self._FULL_SCHEMA_SQL_V1)
            except sqlite3.Error as e:
                if conn.in_transaction:
                    conn.rollback()
                raise SchemaError(f"DB schema V{target_version} setup failed for '{self._SCHEMA_NAME}': {e}") from e

            final_version = self._get_db_version(conn)
            if final_version != target_version:
                raise SchemaError(f"Schema version update check failed. Expected {target_version}, got: {final_version}")
            logger.info(f"Database schema '{self._SCHEMA_NAME}' initialized to version {final_version}.")

    # --- Internal Helpers ---
    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> VaultItem:
        try:
            data = dict(row)
            data['is_favorite'] = bool(data['is_favorite'])
            return VaultItem(**data)
        except ValidationError as e:
            raise SerializationError(f"Stored vault item {row['id']} is malformed: {e}") from e

    @staticmethod
    def _row_to_folder(row: sqlite3.Row) -> Folder:
        try:
            return Folder(**dict(row))
        except ValidationError as e:
            raise SerializationError(f"Stored folder {row['id']} is malformed: {e}") from e

    @staticmethod
    def _snapshot(record: Union[VaultItem, Folder]) -> str:
        try:
            return record.model_dump_json()
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Could not serialize snapshot for {record.id}: {e}") from e

    @staticmethod
    def _insert_outbox(conn: sqlite3.Connection, operation: str, entity_kind: str, record_id: str,
                       payload_snapshot: Optional[str]) -> int:
        if operation not in _VALID_OPERATIONS:
            raise InputError(f"Unknown outbox operation '{operation}'.")
        if entity_kind not in _VALID_ENTITY_KINDS:
            raise InputError(f"Unknown entity kind '{entity_kind}'.")
        cursor = conn.execute(
            "INSERT INTO sync_queue (operation, entity_kind, record_id, payload_snapshot, created_at) VALUES (?, ?, ?, ?, ?)",
            (operation, entity_kind, record_id, payload_snapshot, get_current_utc_timestamp_iso())
        )
        return cursor.lastrowid

    @staticmethod
    def _upsert_item_row(conn: sqlite3.Connection, item: VaultItem):
        conn.execute(
            f"""
            INSERT INTO vault_items ({_ITEM_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                encrypted_data = excluded.encrypted_data,
                item_type = excluded.item_type,
                folder_id = excluded.folder_id,
                is_favorite = excluded.is_favorite,
                deleted_at = excluded.deleted_at,
                synced_at = excluded.synced_at,
                local_updated_at = excluded.local_updated_at,
                server_updated_at = excluded.server_updated_at
            """,
            (item.id, item.encrypted_data, item.item_type, item.folder_id, int(item.is_favorite),
             item.deleted_at, item.synced_at, item.local_updated_at, item.server_updated_at)
        )

    @staticmethod
    def _upsert_folder_row(conn: sqlite3.Connection, folder: Folder):
        conn.execute(
            """
            INSERT INTO folders (id, name, synced_at, local_updated_at) VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                name = excluded.name,
                synced_at = excluded.synced_at,
                local_updated_at = excluded.local_updated_at
            """,
            (folder.id, folder.name, folder.synced_at, folder.local_updated_at)
        )

    # --- Vault Item Methods ---
    def upsert_vault_item(self, item: VaultItem) -> VaultItem:
        """
        Inserts a vault item or replaces the content of the existing row with the same id.

        The row's `local_updated_at` is bumped to now. Sync bookkeeping columns
        (`synced_at`, `server_updated_at`) of an existing row are preserved.
        An outbox entry is appended with the post-mutation snapshot: `create` when the
        id was new, `update` otherwise.

        Returns:
            The item as stored.

        Raises:
            InputError: If required fields are empty.
            VaultDBError: On storage faults.
        """
        if not item.id or not item.id.strip():
            raise InputError("Vault item id cannot be empty.")
        if not item.item_type or not item.item_type.strip():
            raise InputError("Vault item type cannot be empty.")
        if item.encrypted_data is None:
            raise InputError("Vault item encrypted_data cannot be None.")

        now = get_current_utc_timestamp_iso()
        with self.transaction() as conn:
            existing = conn.execute(f"SELECT {_ITEM_COLUMNS} FROM vault_items WHERE id = ?", (item.id,)).fetchone()
            if existing:
                stored = item.model_copy(update={
                    'local_updated_at': now,
                    'synced_at': existing['synced_at'],
                    'server_updated_at': existing['server_updated_at'],
                })
                operation = 'update'
            else:
                stored = item.model_copy(update={'local_updated_at': now})
                operation = 'create'
            self._upsert_item_row(conn, stored)
            seq = self._insert_outbox(conn, operation, ENTITY_VAULT_ITEMS, stored.id, self._snapshot(stored))
            logger.info(f"Upserted vault item {stored.id} ({operation}), outbox sequence {seq}.")
            return stored

    def get_vault_item(self, item_id: str) -> Optional[VaultItem]:
        """Returns the item with this id, tombstoned or not, or None."""
        row = self._fetchone(f"SELECT {_ITEM_COLUMNS} FROM vault_items WHERE id = ?", (item_id,))
        return self._row_to_item(row) if row else None

    def list_active_items(self) -> List[VaultItem]:
        """Items without a tombstone, most recently updated first."""
        rows = self._fetchall(
            f"SELECT {_ITEM_COLUMNS} FROM vault_items WHERE deleted_at IS NULL ORDER BY local_updated_at DESC"
        )
        return [self._row_to_item(r) for r in rows]

    def list_trashed_items(self) -> List[VaultItem]:
        """Tombstoned items, most recently deleted first."""
        rows = self._fetchall(
            f"SELECT {_ITEM_COLUMNS} FROM vault_items WHERE deleted_at IS NOT NULL ORDER BY deleted_at DESC"
        )
        return [self._row_to_item(r) for r in rows]

    def list_unsynced_items(self) -> List[VaultItem]:
        """
        Items never acknowledged by the server, or modified locally after their last
        acknowledgment. Diagnostic view; the outbox is the authoritative work list.
        """
        rows = self._fetchall(
            f"""
            SELECT {_ITEM_COLUMNS} FROM vault_items
            WHERE synced_at IS NULL OR local_updated_at > synced_at
            ORDER BY local_updated_at ASC
            """
        )
        return [self._row_to_item(r) for r in rows]

    def _set_tombstone(self, item_id: str, tombstone: bool, action: str) -> None:
        now = get_current_utc_timestamp_iso()
        with self.transaction() as conn:
            cursor = conn.execute(
                "UPDATE vault_items SET deleted_at = ?, local_updated_at = ? WHERE id = ?",
                (now if tombstone else None, now, item_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Cannot {action} missing vault item.", entity=ENTITY_VAULT_ITEMS, entity_id=item_id)
            # Payload is re-derived from the row at push time.
            self._insert_outbox(conn, 'update', ENTITY_VAULT_ITEMS, item_id, None)
        logger.info(f"Vault item {item_id}: {action} applied.")

    def soft_delete_vault_item(self, item_id: str) -> None:
        """Moves an item to the trash by stamping `deleted_at`."""
        self._set_tombstone(item_id, tombstone=True, action="soft-delete")

    def restore_vault_item(self, item_id: str) -> None:
        """Clears `deleted_at`, bringing the item back into the active listing."""
        self._set_tombstone(item_id, tombstone=False, action="restore")

    def purge_vault_item(self, item_id: str) -> None:
        """Physically removes an item and queues a remote delete."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM vault_items WHERE id = ?", (item_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("Cannot purge missing vault item.", entity=ENTITY_VAULT_ITEMS, entity_id=item_id)
            self._insert_outbox(conn, 'delete', ENTITY_VAULT_ITEMS, item_id, None)
        logger.info(f"Purged vault item {item_id}.")

    # --- Folder Methods ---
    def upsert_folder(self, folder: Folder) -> Folder:
        """Inserts or renames a folder; same outbox rules as `upsert_vault_item`."""
        if not folder.id or not folder.id.strip():
            raise InputError("Folder id cannot be empty.")
        if not folder.name or not folder.name.strip():
            raise InputError("Folder name cannot be empty.")

        now = get_current_utc_timestamp_iso()
        with self.transaction() as conn:
            existing = conn.execute("SELECT synced_at FROM folders WHERE id = ?", (folder.id,)).fetchone()
            stored = folder.model_copy(update={
                'name': folder.name.strip(),
                'local_updated_at': now,
                'synced_at': existing['synced_at'] if existing else folder.synced_at,
            })
            operation = 'update' if existing else 'create'
            self._upsert_folder_row(conn, stored)
            self._insert_outbox(conn, operation, ENTITY_FOLDERS, stored.id, self._snapshot(stored))
        logger.info(f"Upserted folder {stored.id} ({operation}).")
        return stored

    def get_folder(self, folder_id: str) -> Optional[Folder]:
        row = self._fetchone("SELECT id, name, synced_at, local_updated_at FROM folders WHERE id = ?", (folder_id,))
        return self._row_to_folder(row) if row else None

    def list_folders(self) -> List[Folder]:
        rows = self._fetchall("SELECT id, name, synced_at, local_updated_at FROM folders ORDER BY name ASC")
        return [self._row_to_folder(r) for r in rows]

    def delete_folder(self, folder_id: str) -> None:
        """
        Deletes a folder. Member items keep existing with `folder_id` cleared;
        the detach is part of the folder delete and is not queued separately.
        """
        with self.transaction() as conn:
            conn.execute("UPDATE vault_items SET folder_id = NULL WHERE folder_id = ?", (folder_id,))
            cursor = conn.execute("DELETE FROM folders WHERE id = ?", (folder_id,))
            if cursor.rowcount == 0:
                raise NotFoundError("Cannot delete missing folder.", entity=ENTITY_FOLDERS, entity_id=folder_id)
            self._insert_outbox(conn, 'delete', ENTITY_FOLDERS, folder_id, None)
        logger.info(f"Deleted folder {folder_id}.")

    # --- Bulk Operations for Sync ---
    def bulk_upsert(self, items: Iterable[VaultItem] = (), folders: Iterable[Folder] = ()) -> int:
        """
        Replaces rows with server state in one all-or-nothing transaction.

        Used only by the pull phase; rows are written exactly as given and no outbox
        entries are created. Applying the same batch twice leaves the same state.

        Returns:
            The number of rows written.
        """
        items = list(items)
        folders = list(folders)
        with self.transaction() as conn:
            for folder in folders:
                self._upsert_folder_row(conn, folder)
            for item in items:
                self._upsert_item_row(conn, item)
        logger.info(f"Bulk upserted {len(folders)} folders and {len(items)} vault items.")
        return len(folders) + len(items)

    def mark_synced(self, entity_kind: str, record_id: str, timestamp: Optional[str] = None) -> None:
        """Stamps a record as acknowledged by the server. Missing rows are ignored."""
        ts = timestamp or get_current_utc_timestamp_iso()
        with self.transaction() as conn:
            if entity_kind == ENTITY_VAULT_ITEMS:
                conn.execute("UPDATE vault_items SET synced_at = ?, server_updated_at = ? WHERE id = ?",
                             (ts, ts, record_id))
            elif entity_kind == ENTITY_FOLDERS:
                conn.execute("UPDATE folders SET synced_at = ? WHERE id = ?", (ts, record_id))
            else:
                raise InputError(f"Unknown entity kind '{entity_kind}'.")

    # --- Outbox ---
    def enqueue(self, operation: str, entity_kind: str, record_id: str,
                payload_snapshot: Optional[str] = None) -> int:
        """Appends an outbox entry and returns its sequence id."""
        with self.transaction() as conn:
            return self._insert_outbox(conn, operation, entity_kind, record_id, payload_snapshot)

    def list_pending(self) -> List[OutboxEntry]:
        """Outbox entries in FIFO (sequence) order."""
        rows = self._fetchall(
            "SELECT sequence_id, operation, entity_kind, record_id, payload_snapshot, created_at "
            "FROM sync_queue ORDER BY sequence_id ASC"
        )
        try:
            return [OutboxEntry(**dict(r)) for r in rows]
        except ValidationError as e:
            raise SerializationError(f"Malformed outbox entry: {e}") from e

    def count_pending(self) -> int:
        row = self._fetchone("SELECT COUNT(*) AS n FROM sync_queue")
        return row['n'] if row else 0

    def dequeue(self, sequence_id: int) -> bool:
        """Removes one acknowledged entry. Returns False if it was already gone."""
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue WHERE sequence_id = ?", (sequence_id,))
            return cursor.rowcount > 0

    def clear_outbox(self) -> int:
        with self.transaction() as conn:
            cursor = conn.execute("DELETE FROM sync_queue")
            removed = cursor.rowcount
        logger.info(f"Cleared {removed} outbox entries.")
        return removed

    # --- User Session ---
    def get_session(self) -> Optional[UserSession]:
        row = self._fetchone(
            "SELECT user_id, email, access_token, refresh_token, expires_at, last_sync_at FROM user_session WHERE id = 1"
        )
        if not row:
            return None
        try:
            return UserSession(**dict(row))
        except ValidationError as e:
            raise SerializationError(f"Stored session is malformed: {e}") from e

    def save_session(self, session: UserSession) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO user_session
                (id, user_id, email, access_token, refresh_token, expires_at, last_sync_at)
                VALUES (1, ?, ?, ?, ?, ?, ?)
                """,
                (session.user_id, session.email, session.access_token, session.refresh_token,
                 session.expires_at, session.last_sync_at)
            )
        logger.debug(f"Saved session for user {session.user_id}.")

    def update_last_sync(self, timestamp: Optional[str] = None) -> str:
        ts = timestamp or get_current_utc_timestamp_iso()
        with self.transaction() as conn:
            conn.execute("UPDATE user_session SET last_sync_at = ? WHERE id = 1", (ts,))
        return ts

    def clear_session(self) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM user_session WHERE id = 1")

    # --- App Settings ---
    def get_settings(self) -> AppSettings:
        row = self._fetchone(
            "SELECT auto_lock_minutes, clipboard_clear_seconds, start_minimized, start_on_boot, theme "
            "FROM app_settings WHERE id = 1"
        )
        if not row:
            return AppSettings()
        data: Dict[str, Any] = dict(row)
        data['start_minimized'] = bool(data['start_minimized'])
        data['start_on_boot'] = bool(data['start_on_boot'])
        return AppSettings(**data)

    def save_settings(self, settings: AppSettings) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO app_settings (id, auto_lock_minutes, clipboard_clear_seconds, start_minimized, start_on_boot, theme)
                VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    auto_lock_minutes = excluded.auto_lock_minutes,
                    clipboard_clear_seconds = excluded.clipboard_clear_seconds,
                    start_minimized = excluded.start_minimized,
                    start_on_boot = excluded.start_on_boot,
                    theme = excluded.theme
                """,
                (settings.auto_lock_minutes, settings.clipboard_clear_seconds,
                 int(settings.start_minimized), int(settings.start_on_boot), settings.theme)
            )

    # --- Wipe ---
    def wipe_all(self) -> None:
        """Deletes every record, outbox entry and the session row (logout). Settings survive."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM vault_items")
            conn.execute("DELETE FROM folders")
            conn.execute("DELETE FROM sync_queue")
            conn.execute("DELETE FROM user_session")
        logger.info("Wiped all local vault data.")


# --- Transaction Context Manager Class (Helper for `with db.transaction():`) ---
class TransactionContextManager:
    """
    Holds the store lock for the duration of a transaction.

    Only the outermost block issues BEGIN/COMMIT/ROLLBACK; nested blocks on the
    same thread join the open transaction. sqlite3 errors raised inside the block
    are re-raised as `VaultDBError` after rollback.
    """

    def __init__(self, db_instance: VaultDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.db._lock.acquire()
        try:
            self.conn = self.db.get_connection()
            if not self.conn.in_transaction:
                self.conn.execute("BEGIN IMMEDIATE")
                self.is_outermost_transaction = True
                logger.debug(f"Transaction started (outermost) on thread {threading.get_ident()}.")
        except sqlite3.Error as e:
            self.db._lock.release()
            raise VaultDBError(f"Could not begin transaction: {e}") from e
        except BaseException:
            self.db._lock.release()
            raise
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if self.is_outermost_transaction:
                if exc_type:
                    logger.error(f"Transaction failed, rolling back: {exc_type.__name__} - {exc_val}")
                    try:
                        self.conn.rollback()
                    except sqlite3.Error as rb_err:
                        logger.critical(f"Rollback FAILED: {rb_err}", exc_info=True)
                else:
                    try:
                        self.conn.commit()
                    except sqlite3.Error as commit_err:
                        logger.error(f"Commit FAILED, attempting rollback: {commit_err}", exc_info=True)
                        try:
                            self.conn.rollback()
                        except sqlite3.Error as rb_err:
                            logger.critical(f"Rollback after failed commit also FAILED: {rb_err}", exc_info=True)
                        raise VaultDBError(f"Commit failed: {commit_err}") from commit_err
            if exc_type is not None and issubclass(exc_type, sqlite3.Error):
                raise VaultDBError(f"Database operation failed: {exc_val}") from exc_val
        finally:
            self.db._lock.release()
        return False

#
# End of Vault_DB.py
#######################################################################################################################

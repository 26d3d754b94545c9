# Vault_Service.py
# Description: Operations exposed to the command layer (UI / IPC handlers).
#
"""
Vault_Service.py
----------------

Thin async facade over the local store and the sync engine.

Every data-returning or mutating call checks the vault lock first and raises
`VaultLockedError` while locked. Store calls run in a worker thread.
"""
# Imports
import asyncio
from typing import List, Optional
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from birchvault.app_context import AppContext
from birchvault.DB.Vault_DB import NotFoundError
from birchvault.DB.Vault_Models import AppSettings, Folder, UserSession, VaultItem
from birchvault.Sync.Sync_Engine import (
    CancellationToken,
    InvalidOperationError,
    SyncError,
    SyncStatus,
)
from birchvault.vault_api.exceptions import APIConnectionError, AuthenticationError
#
#######################################################################################################################
#
# Functions:

__all__ = [
    "VaultService", "VaultLockedError", "NetworkUnavailableError", "InvalidOperationError",
]


class VaultLockedError(Exception):
    """The vault is locked; unlock before reading or changing records."""

    def __init__(self, message: str = "Vault is locked"):
        super().__init__(message)


class NetworkUnavailableError(Exception):
    """The backend could not be reached."""
    pass


class VaultService:
    def __init__(self, context: AppContext):
        self.ctx = context
        self._locked = True
        self._master_key_hash: Optional[str] = None

    # --- Lock state ---
    @property
    def is_locked(self) -> bool:
        return self._locked

    def _check_unlocked(self):
        if self._locked:
            raise VaultLockedError()

    def lock(self):
        self._locked = True
        self._master_key_hash = None
        logger.info("Vault locked.")

    def _unlock(self, master_key_hash: str):
        self._master_key_hash = master_key_hash
        self._locked = False

    # --- Auth ---
    async def login(self, email: str, password_hash: str, master_key_hash: str) -> UserSession:
        """
        Authenticates, caches the master key hash, unlocks, then runs a full initial sync.

        Raises:
            AuthenticationError: The backend rejected the credentials.
            NetworkUnavailableError: The backend could not be reached.
        """
        try:
            session = await self.ctx.session_manager.authenticate(email, password_hash)
        except APIConnectionError as e:
            raise NetworkUnavailableError(str(e)) from e
        self.ctx.credential_store.set_master_key_hash(session.email or email, master_key_hash)
        self._unlock(master_key_hash)
        logger.info(f"Logged in as {session.email} ({session.user_id}).")

        try:
            await self.ctx.sync_engine.initial_sync()
        except SyncError as e:
            if isinstance(e.__cause__, APIConnectionError):
                raise NetworkUnavailableError(str(e)) from e
            raise
        return await asyncio.to_thread(self.ctx.db.get_session) or session

    async def logout(self):
        """
        Locks the vault, forgets the cached key hash and wipes all local data.

        A sync cycle that is still running is cancelled and waited for first, so
        none of its writes land after the wipe.
        """
        self.lock()
        if self.ctx.scheduler:
            await self.ctx.scheduler.stop()
        await self.ctx.sync_engine.cancel_and_wait()
        session = await asyncio.to_thread(self.ctx.db.get_session)
        if session:
            self.ctx.credential_store.delete_master_key_hash(session.email)
        await asyncio.to_thread(self.ctx.db.wipe_all)
        await self.ctx.sync_engine.reset()
        logger.info(f"Logged out{' ' + session.email if session else ''}; local data wiped.")

    async def unlock_with_cached_key(self, master_key_hash: str) -> UserSession:
        """
        Unlocks using the stored session. If a key hash was cached at login it must match;
        with no cached hash the check is skipped.
        """
        session = await asyncio.to_thread(self.ctx.db.get_session)
        if session is None:
            raise AuthenticationError("No session found")
        stored_hash = self.ctx.credential_store.get_master_key_hash(session.email)
        if stored_hash is not None and stored_hash != master_key_hash:
            raise AuthenticationError("Invalid master password")
        self._unlock(master_key_hash)
        logger.info(f"Vault unlocked for {session.email}.")
        return session

    async def get_session(self) -> Optional[UserSession]:
        return await asyncio.to_thread(self.ctx.db.get_session)

    async def has_stored_session(self) -> bool:
        return await self.get_session() is not None

    # --- Vault items ---
    async def list_vault_items(self) -> List[VaultItem]:
        self._check_unlocked()
        return await asyncio.to_thread(self.ctx.db.list_active_items)

    async def list_trashed_items(self) -> List[VaultItem]:
        self._check_unlocked()
        return await asyncio.to_thread(self.ctx.db.list_trashed_items)

    async def get_vault_item(self, item_id: str) -> Optional[VaultItem]:
        self._check_unlocked()
        return await asyncio.to_thread(self.ctx.db.get_vault_item, item_id)

    async def create_vault_item(self, encrypted_data: str, item_type: str, folder_id: Optional[str] = None,
                                is_favorite: bool = False) -> VaultItem:
        self._check_unlocked()
        item = VaultItem.new(encrypted_data, item_type, folder_id=folder_id, is_favorite=is_favorite)
        return await asyncio.to_thread(self.ctx.db.upsert_vault_item, item)

    async def update_vault_item(self, item_id: str, encrypted_data: str, item_type: str,
                                folder_id: Optional[str] = None, is_favorite: bool = False) -> VaultItem:
        self._check_unlocked()
        existing = await asyncio.to_thread(self.ctx.db.get_vault_item, item_id)
        if existing is None:
            raise NotFoundError("Cannot update missing vault item.", entity="vault_items", entity_id=item_id)
        updated = existing.model_copy(update={
            "encrypted_data": encrypted_data,
            "item_type": item_type,
            "folder_id": folder_id,
            "is_favorite": is_favorite,
        })
        return await asyncio.to_thread(self.ctx.db.upsert_vault_item, updated)

    async def delete_vault_item(self, item_id: str):
        """Moves the item to the trash."""
        self._check_unlocked()
        await asyncio.to_thread(self.ctx.db.soft_delete_vault_item, item_id)

    async def restore_vault_item(self, item_id: str):
        self._check_unlocked()
        await asyncio.to_thread(self.ctx.db.restore_vault_item, item_id)

    async def permanently_delete_vault_item(self, item_id: str):
        self._check_unlocked()
        await asyncio.to_thread(self.ctx.db.purge_vault_item, item_id)

    # --- Folders ---
    async def list_folders(self) -> List[Folder]:
        self._check_unlocked()
        return await asyncio.to_thread(self.ctx.db.list_folders)

    async def create_folder(self, name: str) -> Folder:
        self._check_unlocked()
        return await asyncio.to_thread(self.ctx.db.upsert_folder, Folder.new(name))

    async def update_folder(self, folder_id: str, name: str) -> Folder:
        self._check_unlocked()
        existing = await asyncio.to_thread(self.ctx.db.get_folder, folder_id)
        if existing is None:
            raise NotFoundError("Cannot rename missing folder.", entity="folders", entity_id=folder_id)
        return await asyncio.to_thread(self.ctx.db.upsert_folder, existing.model_copy(update={"name": name}))

    async def delete_folder(self, folder_id: str):
        self._check_unlocked()
        await asyncio.to_thread(self.ctx.db.delete_folder, folder_id)

    # --- Sync ---
    async def trigger_sync(self, cancel_token: Optional[CancellationToken] = None) -> SyncStatus:
        self._check_unlocked()
        try:
            return await self.ctx.sync_engine.sync(cancel_token)
        except APIConnectionError as e:
            raise NetworkUnavailableError(str(e)) from e
        except SyncError as e:
            if isinstance(e.__cause__, APIConnectionError):
                raise NetworkUnavailableError(str(e)) from e
            raise

    async def get_sync_status(self) -> SyncStatus:
        return await self.ctx.sync_engine.get_status()

    async def check_connectivity(self) -> bool:
        return await self.ctx.sync_engine.check_connectivity()

    def start_auto_sync(self):
        if self.ctx.scheduler is None:
            raise InvalidOperationError("Auto-sync is disabled in configuration.")
        self.ctx.scheduler.start()

    # --- Settings ---
    async def get_settings(self) -> AppSettings:
        return await asyncio.to_thread(self.ctx.db.get_settings)

    async def save_settings(self, settings: AppSettings):
        await asyncio.to_thread(self.ctx.db.save_settings, settings)

#
# End of Vault_Service.py
#######################################################################################################################

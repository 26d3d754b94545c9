# Vault_Models.py
# Description: Row models for the local vault store.
#
# Imports
import uuid
from typing import Literal, Optional
#
# Third-Party Libraries
from pydantic import BaseModel, Field
#
# Local Imports
from birchvault.Utils.Time_Utils import get_current_utc_timestamp_iso
#
#######################################################################################################################
#
# Functions:

ENTITY_VAULT_ITEMS = "vault_items"
ENTITY_FOLDERS = "folders"

EntityKind = Literal['vault_items', 'folders']
OutboxOperation = Literal['create', 'update', 'delete']


def generate_record_id() -> str:
    """Client-side identifiers are UUID4 strings."""
    return str(uuid.uuid4())


class VaultItem(BaseModel):
    id: str
    encrypted_data: str
    item_type: str
    folder_id: Optional[str] = None
    is_favorite: bool = False
    deleted_at: Optional[str] = None # Tombstone marker
    synced_at: Optional[str] = None
    local_updated_at: str = Field(default_factory=get_current_utc_timestamp_iso)
    server_updated_at: Optional[str] = None

    @classmethod
    def new(cls, encrypted_data: str, item_type: str, folder_id: Optional[str] = None,
            is_favorite: bool = False) -> "VaultItem":
        return cls(
            id=generate_record_id(),
            encrypted_data=encrypted_data,
            item_type=item_type,
            folder_id=folder_id,
            is_favorite=is_favorite,
        )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class Folder(BaseModel):
    id: str
    name: str
    synced_at: Optional[str] = None
    local_updated_at: str = Field(default_factory=get_current_utc_timestamp_iso)

    @classmethod
    def new(cls, name: str) -> "Folder":
        return cls(id=generate_record_id(), name=name)


class OutboxEntry(BaseModel):
    sequence_id: int
    operation: OutboxOperation
    entity_kind: EntityKind
    record_id: str
    payload_snapshot: Optional[str] = None # JSON of the row at enqueue time, absent for delete/restore
    created_at: str


class UserSession(BaseModel):
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: str
    last_sync_at: Optional[str] = None # None forces a full pull


class AppSettings(BaseModel):
    auto_lock_minutes: int = 15
    clipboard_clear_seconds: int = 30
    start_minimized: bool = False
    start_on_boot: bool = False
    theme: str = "system"

#
# End of Vault_Models.py
#######################################################################################################################

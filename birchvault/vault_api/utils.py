# birchvault/vault_api/utils.py
#
#
# Imports
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, Optional
#
# 3rd-party Libraries
from pydantic import ValidationError
#
# Local Imports
from ..DB.Vault_Models import Folder, UserSession, VaultItem
from ..Utils.Time_Utils import epoch_to_timestamp, format_utc_timestamp, normalize_timestamp
from .schemas import AuthResponse, RemoteError, RemoteFolder, RemoteVaultItem
#
#######################################################################################################################
#
# Functions:

def extract_error_message(response_data: Any, default: str) -> str:
    """
    Pulls the human readable message out of an error body.

    The REST endpoints answer `{"message": ..., "error": ...}`, the auth endpoints
    `{"error": ..., "error_description": ...}` or `{"msg": ...}`.
    """
    if isinstance(response_data, dict):
        try:
            return RemoteError(**response_data).best_message(default)
        except ValidationError:
            return default
    return default


def build_list_params(user_id: str, since: Optional[str] = None) -> Dict[str, str]:
    """Query parameters for a filtered list: the user's rows, optionally only those updated after `since`."""
    params = {"user_id": f"eq.{user_id}"}
    if since:
        params["updated_at"] = f"gt.{normalize_timestamp(since)}"
    return params


def session_from_auth_response(auth: AuthResponse, last_sync_at: Optional[str] = None) -> UserSession:
    if auth.expires_at is not None:
        expires_at = epoch_to_timestamp(auth.expires_at)
    elif auth.expires_in is not None:
        expires_at = format_utc_timestamp(datetime.now(timezone.utc) + timedelta(seconds=auth.expires_in))
    else:
        # No expiry reported: treat the token as already due so the next sync refreshes it.
        expires_at = format_utc_timestamp(datetime.now(timezone.utc))
    return UserSession(
        user_id=auth.user.id,
        email=auth.user.email,
        access_token=auth.access_token,
        refresh_token=auth.refresh_token,
        expires_at=expires_at,
        last_sync_at=last_sync_at,
    )


def vault_item_to_payload(item: VaultItem, user_id: str) -> Dict[str, Any]:
    """Wire body for an item upsert. `is_favorite` is local only."""
    return {
        "id": item.id,
        "user_id": user_id,
        "encrypted_data": item.encrypted_data,
        "type": item.item_type,
        "folder_id": item.folder_id,
        "deleted_at": item.deleted_at,
    }


def folder_to_payload(folder: Folder, user_id: str) -> Dict[str, Any]:
    return {
        "id": folder.id,
        "user_id": user_id,
        "name": folder.name,
    }


def remote_item_to_local(remote: RemoteVaultItem, synced_at: str) -> VaultItem:
    server_ts = normalize_timestamp(remote.updated_at)
    return VaultItem(
        id=remote.id,
        encrypted_data=remote.encrypted_data,
        item_type=remote.item_type,
        folder_id=remote.folder_id,
        is_favorite=False,
        deleted_at=normalize_timestamp(remote.deleted_at),
        synced_at=synced_at,
        local_updated_at=server_ts,
        server_updated_at=server_ts,
    )


def remote_folder_to_local(remote: RemoteFolder, synced_at: str) -> Folder:
    return Folder(
        id=remote.id,
        name=remote.name,
        synced_at=synced_at,
        local_updated_at=normalize_timestamp(remote.updated_at),
    )

#
# End of birchvault/vault_api/utils.py
#######################################################################################################################

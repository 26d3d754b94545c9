# birchvault/vault_api/schemas.py
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


# --- Auth ---
class RemoteUser(BaseModel):
    id: str
    email: str = ""


class AuthResponse(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: Optional[int] = None # epoch seconds
    expires_in: Optional[int] = None # seconds from now, used when expires_at is missing
    token_type: Optional[str] = "bearer"
    user: RemoteUser


# --- Rows ---
class RemoteVaultItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    user_id: str
    encrypted_data: str
    item_type: str = Field(alias="type") # "type" on the wire
    folder_id: Optional[str] = None
    deleted_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: str


class RemoteFolder(BaseModel):
    id: str
    user_id: str
    name: str
    created_at: Optional[str] = None
    updated_at: str


# --- Errors ---
class RemoteError(BaseModel):
    """Error body of a non-2xx response. The auth endpoints use different keys than the REST ones."""
    model_config = ConfigDict(extra="allow")

    message: Optional[str] = None
    error: Optional[str] = None
    msg: Optional[str] = None
    error_description: Optional[str] = None

    def best_message(self, default: str) -> str:
        return self.message or self.error_description or self.msg or self.error or default

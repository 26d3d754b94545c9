# birchvault/vault_api/__init__.py
from .client import VaultAPIClient
from .exceptions import (
    VaultAPIError, APIConnectionError, APIRequestError,
    APIResponseError, AuthenticationError
)
from .schemas import AuthResponse, RemoteUser, RemoteVaultItem, RemoteFolder, RemoteError

__all__ = [
    "VaultAPIClient",
    "VaultAPIError", "APIConnectionError", "APIRequestError",
    "APIResponseError", "AuthenticationError",
    "AuthResponse", "RemoteUser", "RemoteVaultItem", "RemoteFolder", "RemoteError",
]

# Credential_Store.py
# Description: Boundary for caching the master key hash used to unlock the vault without a login.
#
# Imports
import threading
from typing import Dict, Optional
#
# Third-Party Imports
from loguru import logger
#
#######################################################################################################################
#
# Functions:

SERVICE_NAME = "birchvault"


class CredentialStoreError(Exception):
    """Raised when the backing credential store cannot be read or written."""
    pass


class CredentialStore:
    """
    Where master key hashes are cached, keyed by account email.

    Desktop builds back this with the OS keyring; that adapter lives outside this package.
    """

    def get_master_key_hash(self, email: str) -> Optional[str]:
        raise NotImplementedError

    def set_master_key_hash(self, email: str, master_key_hash: str) -> None:
        raise NotImplementedError

    def delete_master_key_hash(self, email: str) -> None:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. Nothing survives a restart."""

    def __init__(self, service_name: str = SERVICE_NAME):
        self.service_name = service_name
        self._entries: Dict[str, str] = {}
        self._lock = threading.Lock()

    def get_master_key_hash(self, email: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(email)

    def set_master_key_hash(self, email: str, master_key_hash: str) -> None:
        if not email:
            raise CredentialStoreError("Cannot cache a key hash without an account email.")
        with self._lock:
            self._entries[email] = master_key_hash
        logger.debug(f"Cached master key hash for {email} in '{self.service_name}'.")

    def delete_master_key_hash(self, email: str) -> None:
        with self._lock:
            self._entries.pop(email, None)

#
# End of Credential_Store.py
#######################################################################################################################

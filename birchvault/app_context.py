# app_context.py
# Description: The object graph shared by every component, built once at startup.
#
# Imports
from dataclasses import dataclass
from typing import Any, Dict, Optional
#
# Third-Party Imports
import httpx
from loguru import logger
#
# Local Imports
from birchvault.config import get_api_settings, get_sync_settings, get_vault_db_path, load_settings
from birchvault.Credential_Store import CredentialStore, InMemoryCredentialStore
from birchvault.DB.Vault_DB import VaultDB
from birchvault.Logging_Config import configure_logging
from birchvault.Sync.Session_Manager import SessionManager
from birchvault.Sync.Sync_Engine import SyncEngine
from birchvault.Sync.Sync_Scheduler import AutoSyncScheduler
from birchvault.vault_api.client import VaultAPIClient
#
#######################################################################################################################
#
# Functions:

@dataclass
class AppContext:
    """
    Holds the store, API client, session manager, sync engine and scheduler.

    Components receive what they need from here; nothing is kept in module globals.
    """
    settings: Dict[str, Any]
    db: VaultDB
    api_client: VaultAPIClient
    session_manager: SessionManager
    sync_engine: SyncEngine
    credential_store: CredentialStore
    scheduler: Optional[AutoSyncScheduler] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[Dict[str, Any]] = None,
        credential_store: Optional[CredentialStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        db_path: Optional[str] = None,
        configure_logs: bool = False,
    ) -> "AppContext":
        """
        Builds the full graph. `transport` and `db_path` exist for tests.

        An application entry point passes `configure_logs=True` so the root logging
        handlers are installed from the same settings before anything else logs.
        """
        settings = settings if settings is not None else load_settings()
        if configure_logs:
            configure_logging(settings)
        api = get_api_settings(settings)
        sync = get_sync_settings(settings)

        db = VaultDB(db_path if db_path is not None else get_vault_db_path(settings))
        api_client = VaultAPIClient(
            base_url=api["url"],
            anon_key=api["anon_key"],
            auth_path=api["auth_path"],
            rest_path=api["rest_path"],
            timeout=api["request_timeout_seconds"],
            transport=transport,
        )
        session_manager = SessionManager(db, api_client, refresh_skew_seconds=sync["token_refresh_skew_seconds"])
        sync_engine = SyncEngine(db, api_client, session_manager, call_timeout=api["request_timeout_seconds"])
        scheduler = None
        if sync["auto_sync_enabled"]:
            scheduler = AutoSyncScheduler(sync_engine, interval_seconds=sync["auto_sync_interval_seconds"])

        logger.info(f"BirchVault context ready (db={db.db_path_str}, api={api['url']}).")
        return cls(
            settings=settings,
            db=db,
            api_client=api_client,
            session_manager=session_manager,
            sync_engine=sync_engine,
            credential_store=credential_store or InMemoryCredentialStore(),
            scheduler=scheduler,
        )

    async def aclose(self):
        if self.scheduler:
            await self.scheduler.stop()
        await self.api_client.close()
        self.db.close_connection()

#
# End of app_context.py
#######################################################################################################################

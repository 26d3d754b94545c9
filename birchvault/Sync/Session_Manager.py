# Session_Manager.py
# Description: Holds the device session and keeps its access token fresh.
#
# Imports
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from birchvault.DB.Vault_DB import VaultDB
from birchvault.DB.Vault_Models import UserSession
from birchvault.Utils.Time_Utils import parse_timestamp
from birchvault.vault_api.client import VaultAPIClient
#
#######################################################################################################################
#
# Functions:

DEFAULT_REFRESH_SKEW_SECONDS = 300


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionManager:
    """
    Reads the persisted session and refreshes it before it lapses.

    Not being logged in is a normal state: `current_session()` returns None.
    Refresh and login failures surface as `AuthenticationError` with the
    server's message.
    """

    def __init__(self, db: VaultDB, api_client: VaultAPIClient,
                 refresh_skew_seconds: int = DEFAULT_REFRESH_SKEW_SECONDS,
                 clock: Callable[[], datetime] = _utc_now):
        self.db = db
        self.api_client = api_client
        self.refresh_skew = timedelta(seconds=refresh_skew_seconds)
        self._clock = clock

    async def current_session(self) -> Optional[UserSession]:
        return await asyncio.to_thread(self.db.get_session)

    def needs_refresh(self, session: UserSession) -> bool:
        """True when the token expires within the skew window (boundary included)."""
        try:
            expires_at = parse_timestamp(session.expires_at)
        except ValueError:
            logger.warning(f"Unparseable expires_at for user {session.user_id}; forcing refresh.")
            return True
        return expires_at <= self._clock() + self.refresh_skew

    async def ensure_valid(self, session: UserSession) -> UserSession:
        if not self.needs_refresh(session):
            return session
        logger.info(f"Access token for user {session.user_id} expires at {session.expires_at}; refreshing.")
        return await self.refresh(session)

    async def refresh(self, session: UserSession) -> UserSession:
        refreshed = await self.api_client.refresh_session(session)
        await asyncio.to_thread(self.db.save_session, refreshed)
        logger.info(f"Session refreshed for user {refreshed.user_id}, new expiry {refreshed.expires_at}.")
        return refreshed

    async def authenticate(self, email: str, password_hash: str) -> UserSession:
        session = await self.api_client.authenticate(email, password_hash)
        await asyncio.to_thread(self.db.save_session, session)
        return session

#
# End of Session_Manager.py
#######################################################################################################################

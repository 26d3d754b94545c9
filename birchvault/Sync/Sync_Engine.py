# Sync_Engine.py
# Description: Outbox push / delta pull reconciliation between the local store and the backend.
#
"""
Sync_Engine.py
--------------

One sync cycle:
1. Load the persisted session (absent -> `AuthenticationError`) and refresh it if it is
   about to expire.
2. Push: walk the outbox in sequence order. Create/update entries send the record's
   *current* row, tagged with the session's user id; delete entries send a delete by id.
   An acknowledged entry is dequeued and the record marked synced. A failing entry is
   logged, left queued, and the walk continues (at-least-once delivery).
3. Pull: note the time, then fetch folders, then items, changed since `last_sync_at`
   (everything when it is unset), and apply them to the store in one transaction.
4. Stamp `last_sync_at` with the time noted before the first pull request. If the pull
   fails the cycle fails, `last_sync_at` is left alone, and entries dequeued during the
   push stay dequeued.

Stamping the pre-pull time means a remote write that lands while the pull is on the wire
is returned again by the next delta pull instead of being skipped; re-applying a row is
harmless. The cutoff is the client's clock compared against server `updated_at` values,
so clock skew between the two widens or narrows that overlap.

Pulled rows overwrite local rows unconditionally (last writer wins). A local edit made
after the last sync to a record that was also edited remotely is lost if its push fails
and the pull then brings the remote version in. There is no merge.

Only one cycle runs at a time per engine. A `sync()` call that arrives while a cycle is
in flight returns the current status without touching the network. `cancel_and_wait()`
trips the running cycle's token and returns once the cycle has stopped; every store
write of that cycle has finished by then.
"""
# Imports
import asyncio
import threading
from dataclasses import dataclass, field, replace
from typing import Awaitable, List, Optional, Tuple, TypeVar
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from birchvault.DB.Vault_DB import VaultDB
from birchvault.DB.Vault_Models import ENTITY_FOLDERS, ENTITY_VAULT_ITEMS, OutboxEntry, UserSession
from birchvault.Sync.Session_Manager import SessionManager
from birchvault.Utils.Time_Utils import get_current_utc_timestamp_iso
from birchvault.vault_api.client import VaultAPIClient
from birchvault.vault_api.exceptions import APIConnectionError, AuthenticationError, VaultAPIError
from birchvault.vault_api.utils import (
    folder_to_payload,
    remote_folder_to_local,
    remote_item_to_local,
    vault_item_to_payload,
)
#
#######################################################################################################################
#
# Functions:

T = TypeVar("T")

DEFAULT_CALL_TIMEOUT_SECONDS = 30.0


class SyncError(Exception):
    """A sync cycle failed. The underlying error is chained as __cause__."""
    pass


class SyncCancelledError(SyncError):
    """The cycle was stopped through its CancellationToken."""
    pass


class InvalidOperationError(Exception):
    """The requested operation is not allowed in the current state."""
    pass


def _resolve_waiter(waiter: asyncio.Future):
    if not waiter.done():
        waiter.set_result(None)


class CancellationToken:
    """
    Cooperative cancellation for a sync cycle.

    The engine checks the token before each outbox entry and before each pull
    request, and a request on the wire is abandoned as soon as the token trips.
    Store writes are never interrupted. `cancel()` may be called from any thread.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._waiters: List[Tuple[asyncio.AbstractEventLoop, asyncio.Future]] = []

    def cancel(self):
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            waiters, self._waiters = self._waiters, []
        for loop, waiter in waiters:
            loop.call_soon_threadsafe(_resolve_waiter, waiter)

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        if self._event.is_set():
            raise SyncCancelledError("Sync cancelled")

    async def wait(self):
        """Returns once the token has been cancelled."""
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        with self._lock:
            if self._event.is_set():
                return
            entry = (loop, waiter)
            self._waiters.append(entry)
        try:
            await waiter
        finally:
            with self._lock:
                if entry in self._waiters:
                    self._waiters.remove(entry)


@dataclass
class SyncStatus:
    is_syncing: bool = False
    last_sync_at: Optional[str] = None
    pending_changes: int = 0
    is_online: bool = True


@dataclass
class SyncResult:
    started_at: str = field(default_factory=get_current_utc_timestamp_iso)
    finished_at: Optional[str] = None
    pushed: int = 0
    failed: int = 0
    pulled_folders: int = 0
    pulled_items: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.finished_at is not None and self.error is None


class SyncEngine:
    def __init__(self, db: VaultDB, api_client: VaultAPIClient, session_manager: SessionManager,
                 call_timeout: float = DEFAULT_CALL_TIMEOUT_SECONDS):
        self.db = db
        self.api_client = api_client
        self.session_manager = session_manager
        self.call_timeout = call_timeout
        self._status = SyncStatus()
        self._status_lock = asyncio.Lock()
        self._active_token: Optional[CancellationToken] = None
        self._idle = asyncio.Event()
        self._idle.set()
        self._last_result: Optional[SyncResult] = None

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._last_result

    # --- Status ---
    async def get_status(self) -> SyncStatus:
        """Snapshot of the status block; `pending_changes` is read from the outbox."""
        async with self._status_lock:
            snapshot = replace(self._status)
        snapshot.pending_changes = await asyncio.to_thread(self.db.count_pending)
        if snapshot.last_sync_at is None:
            session = await asyncio.to_thread(self.db.get_session)
            snapshot.last_sync_at = session.last_sync_at if session else None
        return snapshot

    async def check_connectivity(self) -> bool:
        online = await self.api_client.ping()
        async with self._status_lock:
            self._status.is_online = online
        logger.debug(f"Connectivity check: {'online' if online else 'offline'}")
        return online

    async def reset(self):
        """Forgets cached status after the local data was wiped."""
        async with self._status_lock:
            self._status.last_sync_at = None
        self._last_result = None

    async def cancel_and_wait(self):
        """
        Cancels the running cycle, if any, and waits until it has stopped.

        Must not be awaited from inside a cycle.
        """
        async with self._status_lock:
            token = self._active_token if self._status.is_syncing else None
        if token is None:
            return
        logger.info("Cancelling the running sync cycle.")
        token.cancel()
        await self._idle.wait()

    async def _try_begin(self, cancel_token: CancellationToken) -> bool:
        async with self._status_lock:
            if self._status.is_syncing:
                return False
            self._status.is_syncing = True
            self._active_token = cancel_token
            self._idle.clear()
            return True

    async def _finish(self, result: SyncResult, last_sync_at: Optional[str] = None,
                      is_online: Optional[bool] = None):
        result.finished_at = get_current_utc_timestamp_iso()
        self._last_result = result
        async with self._status_lock:
            self._status.is_syncing = False
            self._active_token = None
            if last_sync_at is not None:
                self._status.last_sync_at = last_sync_at
            if is_online is not None:
                self._status.is_online = is_online
            self._idle.set()

    # --- Cycle ---
    async def sync(self, cancel_token: Optional[CancellationToken] = None) -> SyncStatus:
        """
        Runs one push/pull cycle and returns the resulting status.

        Raises:
            AuthenticationError: No session, or the token refresh was rejected.
            SyncError: The pull failed or returned rows that could not be applied.
            SyncCancelledError: The cycle's token was cancelled mid-cycle.
            VaultDBError: The local store failed.
        """
        token = cancel_token or CancellationToken()
        if not await self._try_begin(token):
            logger.info("Sync already in progress; returning in-flight status.")
            return await self.get_status()

        result = SyncResult()
        logger.info("Starting sync cycle.")
        try:
            session = await self._load_valid_session()
            await self._push(session, result, token)
            pulled_at = await self._pull(session, result, since=session.last_sync_at, cancel_token=token)
            last_sync_at = await asyncio.to_thread(self.db.update_last_sync, pulled_at)
        except BaseException as e:
            result.error = str(e) or type(e).__name__
            await self._finish(result, is_online=self._online_after(e))
            logger.error(f"Sync cycle failed: {result.error}")
            raise
        await self._finish(result, last_sync_at=last_sync_at, is_online=True)
        logger.info(f"Sync cycle finished: pushed={result.pushed} failed={result.failed} "
                    f"pulled_folders={result.pulled_folders} pulled_items={result.pulled_items}")
        return await self.get_status()

    async def initial_sync(self, cancel_token: Optional[CancellationToken] = None) -> SyncResult:
        """
        Full pull for a freshly authenticated session. Queued local changes are
        discarded afterwards since the pulled state supersedes them.

        Raises:
            InvalidOperationError: A sync cycle is already running.
        """
        token = cancel_token or CancellationToken()
        if not await self._try_begin(token):
            raise InvalidOperationError("A sync is already in progress.")

        result = SyncResult()
        logger.info("Starting initial sync.")
        try:
            session = await self._load_valid_session()
            pulled_at = await self._pull(session, result, since=None, cancel_token=token)
            discarded = await asyncio.to_thread(self.db.clear_outbox)
            if discarded:
                logger.warning(f"Initial sync discarded {discarded} queued local changes.")
            last_sync_at = await asyncio.to_thread(self.db.update_last_sync, pulled_at)
        except BaseException as e:
            result.error = str(e) or type(e).__name__
            await self._finish(result, is_online=self._online_after(e))
            logger.error(f"Initial sync failed: {result.error}")
            raise
        await self._finish(result, last_sync_at=last_sync_at, is_online=True)
        logger.info(f"Initial sync finished: {result.pulled_folders} folders, {result.pulled_items} items.")
        return result

    @staticmethod
    def _online_after(error: BaseException) -> Optional[bool]:
        cause = error.__cause__ if isinstance(error, SyncError) else error
        if isinstance(cause, APIConnectionError):
            return False
        return None

    async def _load_valid_session(self) -> UserSession:
        session = await self.session_manager.current_session()
        if session is None:
            raise AuthenticationError("Not logged in")
        return await self.session_manager.ensure_valid(session)

    async def _call(self, awaitable: Awaitable[T], cancel_token: CancellationToken) -> T:
        """Awaits one remote call, bounded by `call_timeout` and abandoned if the token trips."""
        request = asyncio.ensure_future(awaitable)
        cancelled = asyncio.ensure_future(cancel_token.wait())
        try:
            done, _ = await asyncio.wait({request, cancelled}, timeout=self.call_timeout,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (request, cancelled):
                if not pending.done():
                    pending.cancel()
        if request in done:
            return request.result()
        if cancelled in done:
            raise SyncCancelledError("Sync cancelled")
        raise APIConnectionError(f"Request timed out after {self.call_timeout}s")

    # --- Push ---
    async def _push(self, session: UserSession, result: SyncResult, cancel_token: CancellationToken):
        entries = await asyncio.to_thread(self.db.list_pending)
        if not entries:
            logger.debug("No local changes to push.")
            return
        logger.info(f"Pushing {len(entries)} queued changes.")

        for entry in entries:
            cancel_token.raise_if_cancelled()
            try:
                acknowledged = await self._push_entry(session, entry, cancel_token)
            except VaultAPIError as e:
                result.failed += 1
                logger.warning(f"Failed to push {entry.entity_kind}/{entry.record_id} "
                               f"(seq {entry.sequence_id}): {e}")
                continue

            await asyncio.to_thread(self.db.dequeue, entry.sequence_id)
            if acknowledged:
                await asyncio.to_thread(self.db.mark_synced, entry.entity_kind, entry.record_id,
                                        get_current_utc_timestamp_iso())
            result.pushed += 1

    async def _push_entry(self, session: UserSession, entry: OutboxEntry,
                          cancel_token: CancellationToken) -> bool:
        """
        Sends one outbox entry. Returns True if a record row should be marked synced.

        Payloads are always rebuilt from the current row; a row that no longer exists
        has a later delete entry queued and is skipped here.
        """
        if entry.operation == 'delete':
            await self._call(self.api_client.delete_record(entry.entity_kind, entry.record_id,
                                                           session.access_token), cancel_token)
            return False

        if entry.entity_kind == ENTITY_VAULT_ITEMS:
            item = await asyncio.to_thread(self.db.get_vault_item, entry.record_id)
            payload = vault_item_to_payload(item, session.user_id) if item else None
        elif entry.entity_kind == ENTITY_FOLDERS:
            folder = await asyncio.to_thread(self.db.get_folder, entry.record_id)
            payload = folder_to_payload(folder, session.user_id) if folder else None
        else:
            logger.error(f"Dropping outbox entry {entry.sequence_id} with unknown entity kind {entry.entity_kind}")
            return False

        if payload is None:
            logger.debug(f"{entry.entity_kind}/{entry.record_id} no longer exists locally; skipping upsert.")
            return False
        await self._call(self.api_client.upsert_record(entry.entity_kind, payload, session.access_token),
                         cancel_token)
        return True

    # --- Pull ---
    async def _pull(self, session: UserSession, result: SyncResult, since: Optional[str],
                    cancel_token: CancellationToken) -> str:
        """Fetches and applies remote changes. Returns the time noted before the first request."""
        logger.info(f"Pulling remote changes since {since or 'the beginning'}.")
        cancel_token.raise_if_cancelled()
        pulled_at = get_current_utc_timestamp_iso()
        try:
            remote_folders = await self._call(
                self.api_client.list_folders(session.user_id, session.access_token, since), cancel_token)
            cancel_token.raise_if_cancelled()
            remote_items = await self._call(
                self.api_client.list_vault_items(session.user_id, session.access_token, since), cancel_token)

            synced_at = get_current_utc_timestamp_iso()
            folders = [remote_folder_to_local(f, synced_at) for f in remote_folders]
            items = [remote_item_to_local(i, synced_at) for i in remote_items]
        except VaultAPIError as e:
            raise SyncError(f"Pull failed: {e}") from e
        except ValueError as e:
            raise SyncError(f"Pull failed: malformed remote row: {e}") from e
        cancel_token.raise_if_cancelled()

        await asyncio.to_thread(self.db.bulk_upsert, items, folders)
        result.pulled_folders = len(folders)
        result.pulled_items = len(items)
        return pulled_at

#
# End of Sync_Engine.py
#######################################################################################################################

# Sync_Scheduler.py
# Description: Periodic background sync.
#
# Imports
import asyncio
from typing import Optional
#
# Third-Party Libraries
from loguru import logger
#
# Local Imports
from birchvault.DB.Vault_DB import VaultDBError
from birchvault.Sync.Sync_Engine import CancellationToken, SyncEngine, SyncError
from birchvault.vault_api.exceptions import AuthenticationError, VaultAPIError
#
#######################################################################################################################
#
# Functions:

class AutoSyncScheduler:
    """
    Calls `SyncEngine.sync()` every `interval_seconds` while started.

    A failed cycle is logged and the timer keeps going. `stop()` cancels the
    timer task and trips the token of a cycle that is already running; that
    cycle winds down on its own at its next checkpoint.
    """

    def __init__(self, engine: SyncEngine, interval_seconds: float = 60.0):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._cycle_token: Optional[CancellationToken] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        """Must be called from within a running event loop."""
        if self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="BirchVaultAutoSync")
        logger.info(f"Auto-sync started (every {self.interval_seconds}s).")

    async def stop(self):
        if not self._task:
            return
        task, self._task = self._task, None
        if self._cycle_token:
            self._cycle_token.cancel()
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("Auto-sync stopped.")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            self._cycle_token = CancellationToken()
            # Shielded so a stop() never interrupts the cycle between store writes.
            await asyncio.shield(self.run_once(self._cycle_token))

    async def run_once(self, cancel_token: Optional[CancellationToken] = None):
        """One timer tick. Errors are logged, never raised."""
        try:
            await self.engine.sync(cancel_token)
        except AuthenticationError as e:
            logger.info(f"Auto-sync skipped: {e}")
        except (SyncError, VaultAPIError) as e:
            logger.warning(f"Auto-sync cycle failed: {e}")
        except VaultDBError as e:
            logger.error(f"Auto-sync cycle hit a local storage error: {e}")
        except Exception as e:
            logger.opt(exception=e).error(f"Auto-sync cycle failed unexpectedly: {e!r}")

#
# End of Sync_Scheduler.py
#######################################################################################################################

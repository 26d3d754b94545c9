# birchvault/Sync/__init__.py
from .Session_Manager import SessionManager
from .Sync_Engine import (
    CancellationToken, InvalidOperationError, SyncCancelledError,
    SyncEngine, SyncError, SyncResult, SyncStatus
)
from .Sync_Scheduler import AutoSyncScheduler

__all__ = [
    "SessionManager",
    "SyncEngine", "SyncStatus", "SyncResult", "CancellationToken",
    "SyncError", "SyncCancelledError", "InvalidOperationError",
    "AutoSyncScheduler",
]

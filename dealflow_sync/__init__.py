"""
Deal Flow Transcript Sync

Keeps each sales deal's insights and momentum current as meeting transcripts
become available from the transcript provider: detects readiness by polling
and change events, persists each transcript once, analyzes it, and
recomputes the deal's momentum.
"""

__version__ = "0.1.0"

from dealflow_sync.bus import ChangeNotificationBus
from dealflow_sync.orchestrator import SyncOrchestrator
from dealflow_sync.registry import SessionRegistry
from dealflow_sync.store import InMemoryStore, PersistenceStore

__all__ = [
    "ChangeNotificationBus",
    "InMemoryStore",
    "PersistenceStore",
    "SessionRegistry",
    "SyncOrchestrator",
    "__version__",
]

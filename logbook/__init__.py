"""
Logbook - Offline-first finance logbook with remote sync.

Usage:
    from logbook import ConnectivityMonitor, Database, PullEngine, PushEngine, RestRemoteStore, SyncCoordinator

    db = Database()
    await db.connect()

    # Local writes always succeed and queue an outbox entry
    txn = await db.put('txns', {'amount': 50000, 'type': 'expense', 'currency': 'COP',
                                'date': '2024-05-01', 'time': '09:30'})

    # Sync when online
    remote = RestRemoteStore(url, api_key, access_token=token)
    monitor = ConnectivityMonitor(ping=remote.ping)
    coordinator = SyncCoordinator(PushEngine(db, remote, monitor), PullEngine(db, remote, monitor), monitor)
    report = await coordinator.full_sync()
"""

from logbook.connectivity import ConnectivityMonitor
from logbook.database import Database
from logbook.outbox import Outbox, OutboxEntry
from logbook.remote import RemoteStore, RestRemoteStore
from logbook.resilience import RemoteResult, RetryPolicy, call_with_retry
from logbook.settings import Settings
from logbook.settlement import SettlementService
from logbook.sync import PullEngine, PullReport, PushEngine, SyncCoordinator, SyncReport

__all__ = [
    "Database",
    "Settings",
    "Outbox",
    "OutboxEntry",
    "RemoteStore",
    "RestRemoteStore",
    "ConnectivityMonitor",
    "RetryPolicy",
    "RemoteResult",
    "call_with_retry",
    "PushEngine",
    "PullEngine",
    "PullReport",
    "SyncCoordinator",
    "SyncReport",
    "SettlementService",
]

"""
Sync Package

Push (outbox -> remote), pull (remote -> local mirror) and the coordinator
that runs them as one cycle.
"""

from logbook.sync.coordinator import SyncCoordinator, SyncReport
from logbook.sync.pull import PullEngine, PullReport
from logbook.sync.push import PushEngine

__all__ = ["PushEngine", "PullEngine", "PullReport", "SyncCoordinator", "SyncReport"]

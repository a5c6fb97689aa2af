"""
Database Package

Provides the local store for the logbook: mirrored tables, outbox and meta.
"""

from logbook.database.base import BaseDatabase
from logbook.database.main import Database

__all__ = ["Database", "BaseDatabase"]

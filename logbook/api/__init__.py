"""Logbook API package.

Contains FastAPI routers for the settlement endpoint and sync controls.
"""

from logbook.api.dependencies import CommonDependencies

__all__ = ["CommonDependencies"]

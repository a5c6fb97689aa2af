"""API routers for the logbook.

Each router handles a specific domain of the API.
"""

from logbook.api.routers.log import router as log_router
from logbook.api.routers.settlements import router as settlements_router
from logbook.api.routers.sync import router as sync_router

__all__ = [
    "log_router",
    "settlements_router",
    "sync_router",
]

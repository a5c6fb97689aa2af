"""FastAPI dependencies for API routers.

The app lifespan builds the shared objects once and registers them with
set_common_deps(); route handlers receive them through get_common_deps.
"""

from dataclasses import dataclass
from typing import Optional

from logbook.database import Database
from logbook.remote import RemoteStore
from logbook.settings import Settings
from logbook.settlement import SettlementService
from logbook.sync import SyncCoordinator


@dataclass
class CommonDependencies:
    """Common dependencies used across API routes.

    Usage:
        @router.post("/endpoint")
        async def my_endpoint(deps: Annotated[CommonDependencies, Depends(get_common_deps)]):
            coordinator = deps.coordinator
            # ...
    """

    db: Database
    settings: Settings
    remote: RemoteStore
    settlements: SettlementService
    coordinator: SyncCoordinator


_deps: Optional[CommonDependencies] = None


def set_common_deps(deps: Optional[CommonDependencies]) -> None:
    """Register the dependencies built at startup (None on shutdown)."""
    global _deps
    _deps = deps


async def get_common_deps() -> CommonDependencies:
    """Factory for common dependencies."""
    if _deps is None:
        raise RuntimeError("Application dependencies not initialized")
    return _deps

"""
Logbook Web API - FastAPI entry point.

Usage:
    uvicorn logbook.app:app --host 0.0.0.0 --port 8000
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from logbook.api.dependencies import CommonDependencies, set_common_deps
from logbook.api.routers import log_router, settlements_router, sync_router
from logbook.connectivity import ConnectivityMonitor
from logbook.database import Database
from logbook.remote import RestRemoteStore
from logbook.settings import Settings
from logbook.settlement import SettlementService
from logbook.sync import PullEngine, PushEngine, SyncCoordinator
from logbook.version import VERSION

logger = logging.getLogger(__name__)


async def build_dependencies(db: Database) -> tuple[CommonDependencies, ConnectivityMonitor]:
    """Construct the remote client, engines and coordinator for a connected database."""
    settings = Settings(db)
    await settings.init_defaults()

    remote_url = await settings.get("remote_url")
    if not remote_url:
        logger.warning("Remote store not configured (set LOGBOOK_REMOTE_URL); sync will fail until it is")
    remote = RestRemoteStore(
        remote_url or "http://localhost",
        await settings.get("remote_api_key"),
        access_token=os.getenv("LOGBOOK_ACCESS_TOKEN"),
        timeout=float(await settings.get("remote_timeout_seconds")),
    )

    policy = await settings.retry_policy()
    connectivity = ConnectivityMonitor(
        ping=remote.ping,
        interval=float(await settings.get("connectivity_ping_interval")),
    )
    push = PushEngine(db, remote, connectivity, retry_policy=policy)
    pull = PullEngine(
        db,
        remote,
        connectivity,
        retry_policy=policy,
        incremental=bool(await settings.get("pull_incremental")),
    )
    coordinator = SyncCoordinator(push, pull, connectivity)
    coordinator.install()
    db.on_write(coordinator.notify_write)

    deps = CommonDependencies(
        db=db,
        settings=settings,
        remote=remote,
        settlements=SettlementService(remote, retry_policy=policy),
        coordinator=coordinator,
    )
    return deps, connectivity


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize services on startup, cleanup on shutdown."""
    db = Database()
    await db.connect()
    logger.info(f"Local store ready at {db.path}")

    deps, connectivity = await build_dependencies(db)
    set_common_deps(deps)
    await connectivity.start()

    yield

    # Shutdown
    await connectivity.stop()
    await deps.coordinator.wait_idle()
    set_common_deps(None)
    await deps.remote.aclose()
    await db.close()
    logger.info("Logbook stopped")


app = FastAPI(
    title="Logbook",
    description="Offline-first finance logbook sync service",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(settlements_router, prefix="/api")
app.include_router(sync_router, prefix="/api")
app.include_router(log_router, prefix="/api")


@app.get("/api/health")
async def health() -> dict:
    return {"status": "ok", "version": VERSION}

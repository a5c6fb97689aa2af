"""Sync control API routes."""

from fastapi import APIRouter, Depends
from typing_extensions import Annotated

from logbook.api.dependencies import CommonDependencies, get_common_deps

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("")
async def run_sync(deps: Annotated[CommonDependencies, Depends(get_common_deps)]) -> dict:
    """Run a full push-then-pull cycle now (the refresh button)."""
    report = await deps.coordinator.full_sync()
    if report is None:
        return {"status": "queued"}
    return {"status": "skipped" if report.skipped else "completed", "report": report.to_dict()}


@router.get("/status")
async def sync_status(deps: Annotated[CommonDependencies, Depends(get_common_deps)]) -> dict:
    """Outbox size, watermark and the last cycle's report."""
    last = deps.coordinator.last_report
    return {
        "online": deps.coordinator.online,
        "running": deps.coordinator.running,
        "pending_mutations": await deps.db.get_outbox_count(),
        "last_sync": await deps.db.get_last_sync(),
        "last_report": last.to_dict() if last else None,
    }

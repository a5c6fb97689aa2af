"""Client log sink.

Clients post sync and remote-store errors here so they end up in the server
log. The endpoint always answers ``{"ok": true}``; a report that cannot be
parsed is still logged as raw text.
"""

import logging

from fastapi import APIRouter, Request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/log", tags=["log"])


@router.post("")
async def record_client_log(request: Request) -> dict:
    """Log a client report: {"context": ..., "message": ..., "ts": ...}."""
    try:
        body = await request.json()
    except ValueError:
        body = (await request.body()).decode("utf-8", errors="replace")

    if isinstance(body, dict):
        context = body.get("context") or "unknown"
        message = body.get("message") or body
        ts = body.get("ts")
    else:
        context, message, ts = "unknown", body, None

    logger.warning(f"Client error [{context}] {message}" + (f" (ts={ts})" if ts is not None else ""))
    return {"ok": True}

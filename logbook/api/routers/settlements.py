"""Settlement API routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from typing_extensions import Annotated

from logbook.api.dependencies import CommonDependencies, get_common_deps
from logbook.errors import RemoteError, SettlementNotFoundError, SettlementValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlements", tags=["settlements"])


@router.post("")
async def record_settlement(
    request: Request,
    deps: Annotated[CommonDependencies, Depends(get_common_deps)],
) -> dict:
    """Record a settlement payment: {"txn_id": ..., "amount": ...}."""
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body") from None
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    txn_id = payload.get("txn_id")
    try:
        return await deps.settlements.record_payment(txn_id, payload.get("amount"))
    except SettlementValidationError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except SettlementNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except RemoteError as e:
        logger.error(f"Settlement for {txn_id} failed: {e}")
        raise HTTPException(status_code=502 if e.retryable else 400, detail=str(e)) from e

"""
Settlement - record payments against a transaction and keep ``settled`` current.

A transaction is settled once the payments recorded against it add up to at
least its original amount. Recomputing from all payments on every call means
a corrected or reopened settlement flips the flag back.

Usage:
    service = SettlementService(remote)
    result = await service.record_payment('txn-1', 60)
    result['totals']  # {'original': 100.0, 'paid': 60.0, 'remaining': 40.0}
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional

from logbook.errors import RemoteError, SettlementNotFoundError, SettlementValidationError
from logbook.normalize import coerce_amount, iso_utc
from logbook.remote import RemoteStore
from logbook.resilience import RetryPolicy, call_with_retry

logger = logging.getLogger(__name__)


def _parse_payment_amount(value: Any) -> float:
    if value is None or isinstance(value, bool):
        raise SettlementValidationError("txn_id and positive amount are required")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise SettlementValidationError("txn_id and positive amount are required") from None
    if not math.isfinite(amount) or amount <= 0:
        raise SettlementValidationError("txn_id and positive amount are required")
    return round(amount, 2)


class SettlementService:
    """Records settlement payments through the remote store."""

    def __init__(self, remote: RemoteStore, retry_policy: Optional[RetryPolicy] = None, sleep=None):
        self._remote = remote
        self._policy = retry_policy or RetryPolicy.default()
        self._retry_kwargs: dict[str, Any] = {"sleep": sleep} if sleep else {}

    async def _call(self, fn: Callable[[], Awaitable[Any]], context: str) -> Any:
        result = await call_with_retry(fn, policy=self._policy, context=context, **self._retry_kwargs)
        if not result.ok:
            raise result.error
        return result.value

    async def _insert_payment(self, row: dict) -> dict:
        result = await call_with_retry(
            lambda: self._remote.insert("settlement_payments", row),
            policy=self._policy,
            context="insert settlement_payments",
            **self._retry_kwargs,
        )
        if result.ok:
            return result.value
        # A conflict after a failed attempt means that attempt reached the store.
        error = result.error
        if isinstance(error, RemoteError) and error.status == 409 and result.attempts > 1:
            logger.info(f"Payment {row['id']} already stored by an earlier attempt")
            return row
        raise error

    async def record_payment(self, txn_id: Any, amount: Any) -> dict:
        """
        Record a payment and recompute the transaction's settlement state.

        Each remote call is retried under the service's policy. The payment
        id is fixed before the first attempt, so a retried insert cannot
        record the payment twice.

        Args:
            txn_id: Transaction being settled
            amount: Positive payment amount (number or numeric string)

        Returns:
            {'payment': row, 'totals': {'original', 'paid', 'remaining'}, 'settled': bool}

        Raises:
            SettlementValidationError: missing txn_id or non-positive amount
            SettlementNotFoundError: no transaction with that id
            RemoteError: the remote store failed
        """
        if not isinstance(txn_id, str) or not txn_id.strip():
            raise SettlementValidationError("txn_id and positive amount are required")
        payment_amount = _parse_payment_amount(amount)

        matches = await self._call(lambda: self._remote.select("txns", filters={"id": txn_id}), "select txns")
        if not matches:
            raise SettlementNotFoundError(f"Txn not found: {txn_id}")
        txn = matches[0]

        now = iso_utc(datetime.now(timezone.utc))
        payment = await self._insert_payment(
            {
                "id": str(uuid.uuid4()),
                "txn_id": txn_id,
                "amount": payment_amount,
                "occurred_on": now,
                "created_at": now,
            }
        )

        payments = await self._call(
            lambda: self._remote.select("settlement_payments", filters={"txn_id": txn_id}),
            "select settlement_payments",
        )
        paid = round(sum(coerce_amount(p.get("amount")) for p in payments), 2)
        original = coerce_amount(txn.get("amount"))
        fully_settled = original > 0 and paid >= original

        if fully_settled != bool(txn.get("settled")):
            await self._call(lambda: self._remote.update("txns", txn_id, {"settled": fully_settled}), "update txns")
            logger.info(f"Txn {txn_id} settled={fully_settled} (paid {paid} of {original})")

        return {
            "payment": payment,
            "totals": {
                "original": original,
                "paid": paid,
                "remaining": round(max(0.0, original - paid), 2),
            },
            "settled": fully_settled,
        }

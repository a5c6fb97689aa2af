"""Tests for settlement payment recording."""

import pytest

from conftest import FakeRemoteStore, make_remote_txn, no_sleep
from logbook.errors import RemoteError, SettlementNotFoundError, SettlementValidationError
from logbook.resilience import RetryPolicy
from logbook.settlement import SettlementService


@pytest.fixture
def service(remote, fast_policy):
    remote.seed("txns", [make_remote_txn("t1", amount="100.00")])
    return SettlementService(remote, retry_policy=fast_policy, sleep=no_sleep)


class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_partial_payment_leaves_txn_open(self, remote, service):
        result = await service.record_payment("t1", 60)

        assert result["totals"] == {"original": 100.0, "paid": 60.0, "remaining": 40.0}
        assert result["settled"] is False
        assert result["payment"]["txn_id"] == "t1"
        assert result["payment"]["amount"] == 60.0
        assert result["payment"]["id"]
        assert remote.rows("txns")["t1"]["settled"] is False
        assert not [c for c in remote.calls if c[0] == "update"]

    @pytest.mark.asyncio
    async def test_payments_adding_up_settle_txn(self, remote, service):
        await service.record_payment("t1", 60)
        result = await service.record_payment("t1", "40")

        assert result["totals"] == {"original": 100.0, "paid": 100.0, "remaining": 0.0}
        assert result["settled"] is True
        assert remote.rows("txns")["t1"]["settled"] is True

    @pytest.mark.asyncio
    async def test_overpayment_keeps_remaining_at_zero(self, remote, service):
        await service.record_payment("t1", 60)
        await service.record_payment("t1", 40)
        result = await service.record_payment("t1", 10)

        assert result["totals"] == {"original": 100.0, "paid": 110.0, "remaining": 0.0}
        assert result["settled"] is True
        # Already settled: no second update
        assert len([c for c in remote.calls if c[0] == "update"]) == 1

    @pytest.mark.asyncio
    async def test_flag_flips_back_when_payments_shrink(self, remote, service):
        """A payment removed elsewhere reopens the transaction on the next recompute."""
        await service.record_payment("t1", 100)
        assert remote.rows("txns")["t1"]["settled"] is True

        remote.tables["settlement_payments"].clear()
        result = await service.record_payment("t1", 30)

        assert result["settled"] is False
        assert remote.rows("txns")["t1"]["settled"] is False

    @pytest.mark.asyncio
    async def test_zero_amount_txn_never_settles(self, remote):
        remote.seed("txns", [make_remote_txn("t0", amount=0)])
        result = await SettlementService(remote).record_payment("t0", 5)
        assert result["settled"] is False


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "txn_id,amount",
        [
            (None, 10),
            ("", 10),
            ("   ", 10),
            (42, 10),
            ("t1", None),
            ("t1", 0),
            ("t1", -5),
            ("t1", "abc"),
            ("t1", True),
            ("t1", float("nan")),
        ],
    )
    async def test_invalid_input_rejected_before_any_write(self, remote, service, txn_id, amount):
        with pytest.raises(SettlementValidationError, match="txn_id and positive amount are required"):
            await service.record_payment(txn_id, amount)
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_unknown_txn(self, remote, service):
        with pytest.raises(SettlementNotFoundError):
            await service.record_payment("missing", 10)
        assert not remote.rows("settlement_payments")

    @pytest.mark.asyncio
    async def test_remote_failure_propagates(self, remote, service):
        remote.fail("insert", "settlement_payments", times=10, error=RemoteError("unavailable", status=503))
        with pytest.raises(RemoteError):
            await service.record_payment("t1", 10)
        assert not remote.rows("settlement_payments")


class _LostAckRemote(FakeRemoteStore):
    """Stores the first payment insert, then fails as if the response was lost."""

    def __init__(self):
        super().__init__()
        self.dropped = 0

    async def insert(self, table, row):
        stored = await super().insert(table, row)
        if table == "settlement_payments" and not self.dropped:
            self.dropped += 1
            raise RemoteError("connection reset", status=503)
        return stored


class TestRetries:
    @pytest.mark.asyncio
    async def test_transient_insert_failure_is_retried(self, remote, service):
        remote.fail("insert", "settlement_payments", error=RemoteError("unavailable", status=503))

        result = await service.record_payment("t1", 100)

        assert result["settled"] is True
        assert len(remote.rows("settlement_payments")) == 1
        inserts = [c for c in remote.calls if c[0] == "insert"]
        assert len(inserts) == 2
        # The retry resends the same payment id
        assert inserts[0][2]["id"] == inserts[1][2]["id"]

    @pytest.mark.asyncio
    async def test_conflict_after_lost_response_counts_as_recorded(self, fast_policy):
        remote = _LostAckRemote()
        remote.seed("txns", [make_remote_txn("t1", amount="100.00")])
        service = SettlementService(remote, retry_policy=fast_policy, sleep=no_sleep)

        result = await service.record_payment("t1", 60)

        assert result["totals"] == {"original": 100.0, "paid": 60.0, "remaining": 40.0}
        assert result["payment"]["amount"] == 60.0
        assert len(remote.rows("settlement_payments")) == 1

    @pytest.mark.asyncio
    async def test_conflict_on_first_attempt_is_an_error(self, remote):
        remote.seed("txns", [make_remote_txn("t1", amount="100.00")])
        remote.fail("insert", "settlement_payments", error=RemoteError("duplicate key", status=409, retryable=False))
        service = SettlementService(remote, retry_policy=RetryPolicy(max_attempts=3, jitter=0.0), sleep=no_sleep)

        with pytest.raises(RemoteError) as excinfo:
            await service.record_payment("t1", 10)

        assert excinfo.value.status == 409
        assert len([c for c in remote.calls if c[0] == "insert"]) == 1

    @pytest.mark.asyncio
    async def test_transient_select_failure_is_retried(self, remote, service):
        remote.fail("select", "txns", error=RemoteError("unavailable", status=503))

        result = await service.record_payment("t1", 10)

        assert result["totals"]["paid"] == 10.0

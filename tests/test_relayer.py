"""Tests for the ledger relayer and the in-memory ledger."""
import asyncio
import pytest

from presence.errors import LedgerRejectedError, LedgerSubmissionError, LedgerTimeout

ALICE = "0x" + "ab" * 20


async def registered_event(relayer) -> int:
    return await relayer.register_event("ipfs://cid")


@pytest.mark.asyncio
async def test_register_event_returns_ledger_id(relayer, ledger):
    assert await registered_event(relayer) == 1
    assert await registered_event(relayer) == 2
    assert [tx.operation for tx in ledger.transactions] == ["createEvent", "createEvent"]


@pytest.mark.asyncio
async def test_register_empty_metadata_rejected(relayer, ledger):
    with pytest.raises(LedgerRejectedError):
        await relayer.register_event("")
    assert ledger.transactions == []


@pytest.mark.asyncio
async def test_mint_badge(relayer, ledger):
    event_id = await registered_event(relayer)
    receipt = await relayer.mint_badge(event_id, ALICE)

    assert receipt.token_id == 1
    assert receipt.block_number is not None
    assert ledger.mint_count(event_id, ALICE) == 1


@pytest.mark.asyncio
async def test_mint_for_unknown_event_rejected(relayer):
    with pytest.raises(LedgerRejectedError):
        await relayer.submit_mint(99, ALICE)


class TestNonceOrdering:
    """One signing identity, strictly increasing nonces"""

    @pytest.mark.asyncio
    async def test_concurrent_submissions_get_consecutive_nonces(self, relayer, ledger):
        event_id = await registered_event(relayer)
        attendees = ["0x" + f"{i:02x}" * 20 for i in range(1, 9)]

        pending = await asyncio.gather(*(relayer.submit_mint(event_id, a) for a in attendees))
        receipts = await asyncio.gather(*(p.result() for p in pending))

        assert [tx.nonce for tx in ledger.transactions] == list(range(9))
        assert len({r.tx_hash for r in receipts}) == 8
        assert all(ledger.mint_count(event_id, a) == 1 for a in attendees)

    @pytest.mark.asyncio
    async def test_nonce_resyncs_after_submission_failure(self, relayer, ledger):
        event_id = await registered_event(relayer)
        ledger.fail_next_submissions(1)

        with pytest.raises(LedgerSubmissionError):
            await relayer.submit_mint(event_id, ALICE)

        pending = await relayer.submit_mint(event_id, ALICE)
        await pending.result()
        assert [tx.nonce for tx in ledger.transactions] == [0, 1]

    @pytest.mark.asyncio
    async def test_nonce_drift_recovered(self, relayer, ledger):
        await registered_event(relayer)
        # Another process spent a nonce with the same key
        ledger._next_nonce += 1

        with pytest.raises(LedgerSubmissionError):
            await registered_event(relayer)
        assert await registered_event(relayer) == 2
        assert ledger.transactions[-1].nonce == 2

    @pytest.mark.asyncio
    async def test_rejection_is_not_retried(self, relayer, ledger):
        event_id = await registered_event(relayer)
        ledger.reject_next_submissions(1)

        with pytest.raises(LedgerRejectedError):
            await relayer.submit_mint(event_id, ALICE)
        assert len(ledger.transactions) == 1
        assert ledger.mint_count(event_id, ALICE) == 0


class TestFinality:
    """Bounded waits on broadcast transactions"""

    @pytest.mark.asyncio
    async def test_timeout_keeps_watching(self, relayer, ledger):
        event_id = await registered_event(relayer)
        ledger.hold_finality()
        pending = await relayer.submit_mint(event_id, ALICE)

        with pytest.raises(LedgerTimeout) as exc:
            await pending.result(timeout=0.05)
        assert exc.value.tx_hash == pending.tx_hash
        assert exc.value.retryable is False
        assert not pending.done
        assert relayer.in_flight == 1

        ledger.release_finality()
        receipt = await pending.result(timeout=1.0)
        assert receipt.tx_hash == pending.tx_hash
        assert relayer.in_flight == 0
        assert ledger.mint_count(event_id, ALICE) == 1

    @pytest.mark.asyncio
    async def test_registration_timeout(self, relayer, ledger):
        ledger.hold_finality()
        with pytest.raises(LedgerTimeout):
            await relayer.register_event("ipfs://cid", timeout=0.05)
        ledger.release_finality()

    @pytest.mark.asyncio
    async def test_queue_not_blocked_by_unfinished_transaction(self, relayer, ledger):
        event_id = await registered_event(relayer)
        ledger.hold_finality()
        first = await relayer.submit_mint(event_id, ALICE)
        second = await relayer.submit_mint(event_id, "0x" + "cd" * 20)

        assert first.tx_hash != second.tx_hash
        assert relayer.in_flight == 2
        ledger.release_finality()
        await asyncio.gather(first.result(), second.result())

    @pytest.mark.asyncio
    async def test_shutdown_cancels_watchers(self, relayer, ledger):
        event_id = await registered_event(relayer)
        ledger.hold_finality()
        await relayer.submit_mint(event_id, ALICE)

        await relayer.shutdown()
        await asyncio.sleep(0.01)
        assert relayer.in_flight == 0


class TestBeforeBroadcast:
    """Hook run at the head of the queue, under the relayer lock"""

    @pytest.mark.asyncio
    async def test_runs_before_send(self, relayer, ledger):
        event_id = await registered_event(relayer)
        seen = []

        async def hook():
            seen.append(len(ledger.transactions))

        pending = await relayer.submit_mint(event_id, ALICE, before_broadcast=hook)
        await pending.result()
        assert seen == [1]
        assert ledger.mint_count(event_id, ALICE) == 1

    @pytest.mark.asyncio
    async def test_failing_hook_aborts_mint(self, relayer, ledger, metrics):
        event_id = await registered_event(relayer)

        async def hook():
            raise RuntimeError("reservation gone")

        with pytest.raises(RuntimeError):
            await relayer.submit_mint(event_id, ALICE, before_broadcast=hook)
        assert ledger.mint_count(event_id, ALICE) == 0
        assert metrics.registry.get_sample_value(
            "presence_ledger_transactions_total", {"operation": "mintBadge", "outcome": "submission_error"}
        ) is None

        # Nonce was not consumed
        pending = await relayer.submit_mint(event_id, ALICE)
        await pending.result()
        assert [tx.nonce for tx in ledger.transactions] == [0, 1]

    @pytest.mark.asyncio
    async def test_hook_waits_for_queue(self, relayer, ledger):
        event_id = await registered_event(relayer)
        gate = asyncio.Event()
        order = []

        async def slow_hook():
            order.append("first")
            await gate.wait()

        async def hook():
            order.append("second")

        first = asyncio.ensure_future(relayer.submit_mint(event_id, ALICE, before_broadcast=slow_hook))
        await asyncio.sleep(0.01)
        second = asyncio.ensure_future(relayer.submit_mint(event_id, "0x" + "cd" * 20, before_broadcast=hook))
        await asyncio.sleep(0.01)
        assert order == ["first"]

        gate.set()
        await asyncio.gather(first, second)
        assert order == ["first", "second"]


@pytest.mark.asyncio
async def test_metrics_recorded(relayer, metrics):
    event_id = await registered_event(relayer)
    await relayer.mint_badge(event_id, ALICE)

    registry = metrics.registry
    assert registry.get_sample_value(
        "presence_ledger_transactions_total", {"operation": "createEvent", "outcome": "final"}
    ) == 1.0
    assert registry.get_sample_value(
        "presence_ledger_transactions_total", {"operation": "mintBadge", "outcome": "final"}
    ) == 1.0
    assert registry.get_sample_value(
        "presence_ledger_finality_seconds_count", {"operation": "mintBadge"}
    ) == 1.0


@pytest.mark.asyncio
async def test_health_check(relayer):
    assert await relayer.health_check() is True

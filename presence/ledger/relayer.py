"""
LedgerRelayer: the single service identity that writes to the ledger.

All registrations and mints are signed by one relayer account, so their
order at the ledger is the order of that account's nonces. The relayer
serializes broadcasts behind one asyncio.Lock and hands out nonces from an
explicit counter. The lock covers nonce allocation and broadcast only;
waiting for finality happens outside it so slow blocks do not stall the
queue.

Finality is modelled as a PendingTransaction: a shielded future watching
the receipt, awaited with a bound. When the bound expires the caller gets
LedgerTimeout while the watcher keeps running.
"""
import asyncio
import time
from typing import Awaitable, Callable, Optional
import structlog

from .base import LedgerClient
from ..errors import LedgerError, LedgerRejectedError, LedgerSubmissionError, LedgerTimeout
from ..models import LedgerReceipt

log = structlog.get_logger()


class PendingTransaction:
    """A broadcast transaction whose finality has not been observed yet."""

    def __init__(self, tx_hash: str, operation: str, watcher: "asyncio.Future[LedgerReceipt]", default_timeout: float):
        self.tx_hash = tx_hash
        self.operation = operation
        self._watcher = watcher
        self._default_timeout = default_timeout

    @property
    def done(self) -> bool:
        return self._watcher.done()

    async def result(self, timeout: Optional[float] = None) -> LedgerReceipt:
        """
        Wait for finality.

        Raises:
            LedgerTimeout: If not final within `timeout` (default: the
                relayer's finality timeout). The watcher is not cancelled.
            LedgerRejectedError: If the transaction reverted
            LedgerSubmissionError: If the transaction was dropped
        """
        timeout = self._default_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(asyncio.shield(self._watcher), timeout)
        except asyncio.TimeoutError:
            raise LedgerTimeout(self.tx_hash, timeout)


class LedgerRelayer:
    """
    Submits event registrations and badge mints through one signing identity.

    Never retries a submission: a blind retry can double-register or
    double-mint. Transient failures are surfaced to the caller.
    """

    def __init__(self, client: LedgerClient, finality_timeout: float = 30.0, metrics=None):
        """
        Args:
            client: Ledger backend holding the relayer key
            finality_timeout: Default bound, in seconds, on finality waits
            metrics: Optional Metrics instance for ledger counters
        """
        self._client = client
        self._finality_timeout = finality_timeout
        self._metrics = metrics
        self._lock = asyncio.Lock()
        self._nonce: Optional[int] = None
        self._watchers: set[asyncio.Future] = set()

    @property
    def address(self) -> str:
        return self._client.address

    @property
    def in_flight(self) -> int:
        """Transactions broadcast but not yet final."""
        return sum(1 for w in self._watchers if not w.done())

    async def _submit(
        self,
        operation: str,
        send: Callable[[int], Awaitable[str]],
        before_broadcast: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> PendingTransaction:
        async with self._lock:
            if self._nonce is None:
                self._nonce = await self._client.next_nonce()
                log.info("relayer.nonce_synced", nonce=self._nonce, relayer=self.address)
            if before_broadcast is not None:
                # Runs at the head of the queue; if it raises nothing is sent
                await before_broadcast()
            nonce = self._nonce
            try:
                tx_hash = await send(nonce)
            except LedgerError as e:
                # The node's view of our nonce is unknown now; resync next time
                self._nonce = None
                self._record(operation, "rejected" if isinstance(e, LedgerRejectedError) else "submission_error")
                log.warning(
                    "relayer.submit_failed",
                    operation=operation,
                    nonce=nonce,
                    error=e.message,
                    error_type=type(e).__name__,
                )
                raise
            self._nonce = nonce + 1

        log.info("relayer.submitted", operation=operation, nonce=nonce, tx_hash=tx_hash)
        watcher = asyncio.ensure_future(self._watch(operation, tx_hash))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._forget)
        return PendingTransaction(tx_hash, operation, watcher, self._finality_timeout)

    def _forget(self, watcher: asyncio.Future):
        self._watchers.discard(watcher)
        # Outcome already logged by _watch; mark it retrieved for abandoned waits
        if not watcher.cancelled():
            watcher.exception()

    async def _watch(self, operation: str, tx_hash: str) -> LedgerReceipt:
        start = time.monotonic()
        try:
            receipt = await self._client.wait_for_receipt(tx_hash)
        except LedgerRejectedError:
            self._record(operation, "reverted", start)
            log.warning("relayer.reverted", operation=operation, tx_hash=tx_hash)
            raise
        except LedgerSubmissionError:
            self._record(operation, "dropped", start)
            log.error("relayer.dropped", operation=operation, tx_hash=tx_hash)
            raise
        self._record(operation, "final", start)
        log.info("relayer.final", operation=operation, tx_hash=tx_hash, block_number=receipt.block_number)
        return receipt

    def _record(self, operation: str, outcome: str, start: Optional[float] = None):
        if self._metrics is None:
            return
        self._metrics.ledger_transactions_total.labels(operation=operation, outcome=outcome).inc()
        if start is not None:
            self._metrics.ledger_finality_seconds.labels(operation=operation).observe(time.monotonic() - start)

    async def submit_registration(self, metadata_ref: str) -> PendingTransaction:
        return await self._submit(
            "createEvent",
            lambda nonce: self._client.send_create_event(metadata_ref, nonce),
        )

    async def submit_mint(
        self,
        ledger_event_id: int,
        attendee_identity: str,
        before_broadcast: Optional[Callable[[], Awaitable[None]]] = None,
    ) -> PendingTransaction:
        """
        Broadcast a mint.

        Args:
            before_broadcast: Awaited under the relayer lock once this mint
                reaches the head of the queue. An exception from it aborts
                the mint before anything is broadcast.
        """
        return await self._submit(
            "mintBadge",
            lambda nonce: self._client.send_mint_badge(ledger_event_id, attendee_identity, nonce),
            before_broadcast,
        )

    async def register_event(self, metadata_ref: str, timeout: Optional[float] = None) -> int:
        """
        Create the event on the ledger and wait for finality.

        Returns:
            Ledger-assigned event id
        """
        pending = await self.submit_registration(metadata_ref)
        receipt = await pending.result(timeout)
        if receipt.ledger_event_id is None:
            raise LedgerRejectedError(
                f"Registration {pending.tx_hash} final but no event id was emitted",
                transaction_hash=pending.tx_hash,
            )
        return receipt.ledger_event_id

    async def mint_badge(self, ledger_event_id: int, attendee_identity: str, timeout: Optional[float] = None) -> LedgerReceipt:
        """Mint a badge and wait for finality."""
        pending = await self.submit_mint(ledger_event_id, attendee_identity)
        return await pending.result(timeout)

    async def health_check(self) -> bool:
        return await self._client.health_check()

    async def shutdown(self):
        """Stop watching receipts; pending transactions stay on the ledger."""
        for watcher in list(self._watchers):
            watcher.cancel()

"""In-memory ledger simulation for development and tests."""
import asyncio
import secrets
from collections import Counter
from dataclasses import dataclass
from typing import Optional
import structlog

from .base import LedgerClient
from ..errors import LedgerRejectedError, LedgerSubmissionError
from ..models import LedgerReceipt

log = structlog.get_logger()


@dataclass
class _Transaction:
    tx_hash: str
    nonce: int
    operation: str
    ledger_event_id: Optional[int] = None
    attendee_identity: Optional[str] = None
    token_id: Optional[int] = None
    block_number: Optional[int] = None


class InMemoryLedger(LedgerClient):
    """
    Simulated ledger with strict nonce ordering.

    A transaction whose nonce is not exactly the next expected one is
    refused, like an EVM node would. Tests can inject failures and hold
    finality open to exercise timeouts.
    """

    def __init__(self, finality_delay: float = 0.0, address: str = "0x" + "00" * 19 + "01"):
        self._address = address
        self._finality_delay = finality_delay
        self._next_nonce = 0
        self._next_event_id = 1
        self._next_token_id = 1
        self._block = 0
        self._transactions: dict[str, _Transaction] = {}
        self._mints: Counter = Counter()
        self._finality_open = asyncio.Event()
        self._finality_open.set()
        self._submission_failures = 0
        self._rejections = 0

    @property
    def address(self) -> str:
        return self._address

    @property
    def transactions(self) -> list[_Transaction]:
        """Broadcast transactions in submission order."""
        return list(self._transactions.values())

    def mint_count(self, ledger_event_id: int, attendee_identity: str) -> int:
        return self._mints[(ledger_event_id, attendee_identity.lower())]

    def fail_next_submissions(self, count: int = 1) -> None:
        self._submission_failures = count

    def reject_next_submissions(self, count: int = 1) -> None:
        self._rejections = count

    def hold_finality(self) -> None:
        """Broadcasts succeed but no transaction becomes final until released."""
        self._finality_open.clear()

    def release_finality(self) -> None:
        self._finality_open.set()

    async def next_nonce(self) -> int:
        return self._next_nonce

    def _broadcast(self, nonce: int, operation: str, **fields) -> str:
        if self._submission_failures:
            self._submission_failures -= 1
            raise LedgerSubmissionError(f"Simulated RPC failure for {operation}")
        if self._rejections:
            self._rejections -= 1
            raise LedgerRejectedError(f"Simulated revert for {operation}")
        if nonce != self._next_nonce:
            raise LedgerSubmissionError(
                f"Nonce {nonce} out of order, expected {self._next_nonce}",
                expected_nonce=self._next_nonce,
            )

        self._next_nonce += 1
        tx_hash = "0x" + secrets.token_hex(32)
        self._transactions[tx_hash] = _Transaction(tx_hash=tx_hash, nonce=nonce, operation=operation, **fields)
        log.debug("ledger.broadcast", tx_hash=tx_hash, nonce=nonce, operation=operation, ledger="memory")
        return tx_hash

    async def send_create_event(self, metadata_ref: str, nonce: int) -> str:
        if not metadata_ref:
            raise LedgerRejectedError("Metadata reference is empty")
        return self._broadcast(nonce, "createEvent")

    async def send_mint_badge(self, ledger_event_id: int, attendee_identity: str, nonce: int) -> str:
        if ledger_event_id >= self._next_event_id or ledger_event_id < 1:
            raise LedgerRejectedError(f"Unknown ledger event {ledger_event_id}")
        return self._broadcast(
            nonce,
            "mintBadge",
            ledger_event_id=ledger_event_id,
            attendee_identity=attendee_identity.lower(),
        )

    async def wait_for_receipt(self, tx_hash: str) -> LedgerReceipt:
        tx = self._transactions.get(tx_hash)
        if tx is None:
            raise LedgerSubmissionError(f"Unknown transaction {tx_hash}")

        if tx.block_number is None:
            if self._finality_delay:
                await asyncio.sleep(self._finality_delay)
            await self._finality_open.wait()
            self._finalize(tx)

        return LedgerReceipt(
            tx_hash=tx.tx_hash,
            block_number=tx.block_number,
            ledger_event_id=tx.ledger_event_id,
            token_id=tx.token_id,
        )

    def _finalize(self, tx: _Transaction) -> None:
        if tx.block_number is not None:
            return
        self._block += 1
        tx.block_number = self._block
        if tx.operation == "createEvent":
            tx.ledger_event_id = self._next_event_id
            self._next_event_id += 1
        else:
            tx.token_id = self._next_token_id
            self._next_token_id += 1
            self._mints[(tx.ledger_event_id, tx.attendee_identity)] += 1

    async def health_check(self) -> bool:
        return True

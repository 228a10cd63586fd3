"""Base interface for external ledger backends."""
from abc import ABC, abstractmethod

from ..models import LedgerReceipt


class LedgerClient(ABC):
    """
    Low-level access to the ledger through one signing identity.

    Implementations broadcast transactions with a caller-supplied nonce and
    never retry on their own: ledger submissions are not idempotent. Errors
    are raised already classified as LedgerSubmissionError (transient) or
    LedgerRejectedError (permanent).
    """

    @property
    @abstractmethod
    def address(self) -> str:
        """Identity handle of the relayer account."""
        pass

    @abstractmethod
    async def next_nonce(self) -> int:
        """Next unused transaction sequence number for the relayer account."""
        pass

    @abstractmethod
    async def send_create_event(self, metadata_ref: str, nonce: int) -> str:
        """
        Broadcast an event-creation transaction.

        Returns:
            Transaction hash
        """
        pass

    @abstractmethod
    async def send_mint_badge(self, ledger_event_id: int, attendee_identity: str, nonce: int) -> str:
        """
        Broadcast a badge-mint transaction.

        Returns:
            Transaction hash
        """
        pass

    @abstractmethod
    async def wait_for_receipt(self, tx_hash: str) -> LedgerReceipt:
        """
        Wait until the transaction is final.

        No caller-facing bound is applied here; LedgerRelayer bounds the
        wait. Raises LedgerRejectedError if the transaction reverted.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

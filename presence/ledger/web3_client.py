"""EVM ledger backend over JSON-RPC using web3.py."""
from typing import Optional
import structlog
from eth_account import Account
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound
from web3.logs import DISCARD

from .abi import PROOF_OF_PRESENCE_ABI
from .base import LedgerClient
from ..errors import LedgerRejectedError, LedgerSubmissionError
from ..models import LedgerReceipt

log = structlog.get_logger()


class Web3LedgerClient(LedgerClient):
    """
    Talks to the ProofOfPresence contract with the relayer's private key.

    Transactions are built and signed locally and broadcast raw, so the
    nonce passed in by LedgerRelayer is the one the node sees.
    """

    def __init__(
        self,
        rpc_url: str,
        contract_address: str,
        private_key: str,
        poll_interval: float = 1.0,
        receipt_timeout: float = 600.0,
        request_timeout: float = 10.0,
        w3: Optional[AsyncWeb3] = None,
    ):
        """
        Args:
            rpc_url: JSON-RPC endpoint of the ledger node
            contract_address: Deployed badge contract address
            private_key: Relayer signing key (hex)
            poll_interval: Seconds between receipt polls
            receipt_timeout: Ceiling on how long a receipt is watched
                before the transaction is treated as dropped
            request_timeout: Per-RPC HTTP timeout in seconds
            w3: Pre-built client, for tests
        """
        self._w3 = w3 or AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self._account = Account.from_key(private_key)
        self._contract = self._w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(contract_address),
            abi=PROOF_OF_PRESENCE_ABI,
        )
        self._poll_interval = poll_interval
        self._receipt_timeout = receipt_timeout
        self._chain_id: Optional[int] = None
        self._operations: dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._account.address

    async def next_nonce(self) -> int:
        try:
            return await self._w3.eth.get_transaction_count(self._account.address, "pending")
        except Exception as e:
            raise LedgerSubmissionError(f"Could not read relayer nonce: {e}") from e

    async def _send(self, function, nonce: int, operation: str) -> str:
        try:
            if self._chain_id is None:
                self._chain_id = await self._w3.eth.chain_id
            tx = await function.build_transaction({
                "from": self._account.address,
                "nonce": nonce,
                "chainId": self._chain_id,
            })
        except ContractLogicError as e:
            # Gas estimation executes the call; a revert here is permanent
            raise LedgerRejectedError(f"{operation} reverted during estimation: {e}") from e
        except Exception as e:
            raise LedgerSubmissionError(f"Could not build {operation} transaction: {e}") from e

        signed = self._account.sign_transaction(tx)
        try:
            tx_hash = AsyncWeb3.to_hex(await self._w3.eth.send_raw_transaction(signed.raw_transaction))
        except ContractLogicError as e:
            raise LedgerRejectedError(f"{operation} rejected: {e}") from e
        except Exception as e:
            raise LedgerSubmissionError(f"Could not broadcast {operation}: {e}") from e

        self._operations[tx_hash] = operation
        return tx_hash

    async def send_create_event(self, metadata_ref: str, nonce: int) -> str:
        return await self._send(self._contract.functions.createEvent(metadata_ref), nonce, "createEvent")

    async def send_mint_badge(self, ledger_event_id: int, attendee_identity: str, nonce: int) -> str:
        try:
            attendee = AsyncWeb3.to_checksum_address(attendee_identity)
        except ValueError as e:
            raise LedgerRejectedError(f"Invalid attendee address: {attendee_identity}") from e
        return await self._send(
            self._contract.functions.mintBadge(ledger_event_id, attendee),
            nonce,
            "mintBadge",
        )

    async def wait_for_receipt(self, tx_hash: str) -> LedgerReceipt:
        try:
            receipt = await self._w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=self._receipt_timeout,
                poll_latency=self._poll_interval,
            )
        except (TimeExhausted, TransactionNotFound) as e:
            raise LedgerSubmissionError(f"Transaction {tx_hash} was not mined: {e}") from e
        except Exception as e:
            raise LedgerSubmissionError(f"Could not fetch receipt for {tx_hash}: {e}") from e

        operation = self._operations.pop(tx_hash, None)
        if receipt["status"] == 0:
            raise LedgerRejectedError(f"Transaction {tx_hash} reverted", transaction_hash=tx_hash)

        result = LedgerReceipt(tx_hash=tx_hash, block_number=receipt["blockNumber"])
        if operation == "createEvent":
            result.ledger_event_id = await self._event_id_from(receipt, tx_hash)
        elif operation == "mintBadge":
            result.token_id = self._token_id_from(receipt, tx_hash)
        return result

    async def _event_id_from(self, receipt, tx_hash: str) -> int:
        for entry in self._contract.events.EventCreated().process_receipt(receipt, errors=DISCARD):
            return int(entry["args"]["eventId"])

        # Racy under concurrent registrations; only used for contracts
        # that do not emit EventCreated
        latest = int(await self._contract.functions.getLatestEventId().call())
        log.warning("ledger.event_id_fallback", tx_hash=tx_hash, ledger_event_id=latest)
        return latest

    def _token_id_from(self, receipt, tx_hash: str) -> Optional[int]:
        for entry in self._contract.events.Transfer().process_receipt(receipt, errors=DISCARD):
            if int(entry["args"]["from"], 16) == 0:
                return int(entry["args"]["tokenId"])
        log.warning("ledger.token_id_missing", tx_hash=tx_hash)
        return None

    async def health_check(self) -> bool:
        try:
            return await self._w3.is_connected()
        except Exception as e:
            log.warning("ledger.health_check_failed", error=str(e))
            return False

"""Tests for the web3 ledger client against a mocked node."""
from unittest.mock import AsyncMock, MagicMock

import pytest
from eth_account import Account
from web3.exceptions import ContractLogicError, TimeExhausted

from presence.errors import LedgerRejectedError, LedgerSubmissionError
from presence.ledger import Web3LedgerClient

CONTRACT = "0x" + "22" * 20


@pytest.fixture
def w3():
    return MagicMock()


@pytest.fixture
def client(w3):
    return Web3LedgerClient(
        rpc_url="http://node.test",
        contract_address=CONTRACT,
        private_key=Account.create().key,
        w3=w3,
    )


@pytest.mark.asyncio
async def test_next_nonce_uses_pending_count(client, w3):
    w3.eth.get_transaction_count = AsyncMock(return_value=7)

    assert await client.next_nonce() == 7
    w3.eth.get_transaction_count.assert_awaited_once_with(client.address, "pending")


@pytest.mark.asyncio
async def test_next_nonce_rpc_failure(client, w3):
    w3.eth.get_transaction_count = AsyncMock(side_effect=ConnectionError("down"))

    with pytest.raises(LedgerSubmissionError):
        await client.next_nonce()


@pytest.mark.asyncio
async def test_mint_to_invalid_address_rejected(client):
    with pytest.raises(LedgerRejectedError):
        await client.send_mint_badge(1, "not-an-address", nonce=0)


@pytest.mark.asyncio
async def test_revert_during_estimation_rejected(client, w3):
    w3.eth.chain_id = AsyncMock(return_value=1)()
    contract = w3.eth.contract.return_value
    contract.functions.createEvent.return_value.build_transaction = AsyncMock(
        side_effect=ContractLogicError("execution reverted")
    )

    with pytest.raises(LedgerRejectedError):
        await client.send_create_event("ipfs://cid", nonce=0)


@pytest.mark.asyncio
async def test_reverted_receipt(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 0, "blockNumber": 5})

    with pytest.raises(LedgerRejectedError):
        await client.wait_for_receipt("0xabc")


@pytest.mark.asyncio
async def test_receipt_never_mined(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(side_effect=TimeExhausted("gave up"))

    with pytest.raises(LedgerSubmissionError):
        await client.wait_for_receipt("0xabc")


@pytest.mark.asyncio
async def test_final_receipt(client, w3):
    w3.eth.wait_for_transaction_receipt = AsyncMock(return_value={"status": 1, "blockNumber": 5})

    receipt = await client.wait_for_receipt("0xabc")
    assert receipt.tx_hash == "0xabc"
    assert receipt.block_number == 5


@pytest.mark.asyncio
async def test_health_check(client, w3):
    w3.is_connected = AsyncMock(return_value=True)
    assert await client.health_check() is True

    w3.is_connected = AsyncMock(side_effect=ConnectionError("down"))
    assert await client.health_check() is False

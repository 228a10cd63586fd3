"""
Ledger access: relayer plus pluggable ledger backends.
"""

from .base import LedgerClient
from .memory import InMemoryLedger
from .relayer import LedgerRelayer, PendingTransaction
from .web3_client import Web3LedgerClient

__all__ = [
    "LedgerClient",
    "InMemoryLedger",
    "LedgerRelayer",
    "PendingTransaction",
    "Web3LedgerClient",
]

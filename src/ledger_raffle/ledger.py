"""
Ledger adapter interface.

The core only talks to the ledger through these calls; `rest.LedgerRestClient`
is the HTTP implementation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class TxOutput:
    value: int
    address: Optional[str] = None
    script_public_key: str = ""


@dataclass(frozen=True)
class LedgerTransaction:
    txid: str
    is_accepted: bool = False
    accepting_block_ref: Optional[str] = None
    confirmations: int = 0
    outputs: List[TxOutput] = field(default_factory=list)
    payload: Optional[str] = None  # hex
    block_time_ms: Optional[int] = None


@dataclass(frozen=True)
class TransactionAcceptance:
    txid: str
    is_accepted: bool
    accepting_block_ref: Optional[str] = None
    confirmations: int = 0


@dataclass(frozen=True)
class BlockDetails:
    block_ref: str
    finality_weight: int
    timestamp_ms: int = 0
    parent_refs: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class AddressTransactionsPage:
    transactions: List[LedgerTransaction]
    cursor: Optional[str] = None
    has_more: bool = False


class LedgerAdapter(ABC):
    """Raises AdapterError on transport failure; returns None for unknown items."""

    @abstractmethod
    def list_address_transactions(
        self,
        address: str,
        limit: int = 100,
        cursor: Optional[str] = None,
        accepted_only: bool = False,
    ) -> AddressTransactionsPage:
        ...

    @abstractmethod
    def get_transactions_acceptance(self, txids: List[str]) -> List[TransactionAcceptance]:
        ...

    @abstractmethod
    def get_transaction(self, txid: str) -> Optional[LedgerTransaction]:
        ...

    @abstractmethod
    def get_block_details(self, block_ref: str) -> Optional[BlockDetails]:
        ...

    def close(self) -> None:
        pass

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set

import pytest

from ledger_raffle.errors import AdapterError
from ledger_raffle.ledger import (
    AddressTransactionsPage,
    BlockDetails,
    LedgerAdapter,
    LedgerTransaction,
    TransactionAcceptance,
)
from ledger_raffle.models import PurchaseAttempt, Sale, SaleStatus, ValidationStatus
from ledger_raffle.store import MemoryStore

SALE_ID = "6f1c2a3e-5b7d-4c11-9e2f-0a1b2c3d4e5f"
OTHER_SALE_ID = "0b9e8d7c-6a5f-4e3d-8c2b-1a0f9e8d7c6b"
TREASURY = "kaspatest:qz0treasury"
FIXED_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeLedger(LedgerAdapter):
    """In-memory ledger. Call counters and failure switches for tests."""

    def __init__(self) -> None:
        self.transactions: Dict[str, LedgerTransaction] = {}
        self.address_index: Dict[str, List[str]] = {}
        self.acceptance: Dict[str, TransactionAcceptance] = {}
        self.blocks: Dict[str, BlockDetails] = {}
        self.failing_acceptance_calls: Set[int] = set()
        self.failing_blocks: Set[str] = set()
        self.acceptance_calls: List[List[str]] = []
        self.block_calls: List[str] = []
        self.page_size_override: Optional[int] = None

    def add_transaction(self, tx: LedgerTransaction, to_address: str = TREASURY) -> None:
        self.transactions[tx.txid] = tx
        self.address_index.setdefault(to_address, []).append(tx.txid)

    def set_acceptance(
        self, txid: str, accepted: bool, block_ref: Optional[str] = None, confirmations: int = 0
    ) -> None:
        self.acceptance[txid] = TransactionAcceptance(txid, accepted, block_ref, confirmations)

    def add_block(self, block_ref: str, weight: int) -> None:
        self.blocks[block_ref] = BlockDetails(block_ref=block_ref, finality_weight=weight)

    def list_address_transactions(
        self,
        address: str,
        limit: int = 100,
        cursor: Optional[str] = None,
        accepted_only: bool = False,
    ) -> AddressTransactionsPage:
        txids = list(reversed(self.address_index.get(address, [])))  # newest first
        start = int(cursor) if cursor else 0
        size = self.page_size_override or limit
        chunk = txids[start : start + size]
        txs = [self.transactions[t] for t in chunk]
        if accepted_only:
            txs = [t for t in txs if t.is_accepted]
        more = start + size < len(txids)
        return AddressTransactionsPage(
            transactions=txs, cursor=str(start + size) if more else None, has_more=more
        )

    def get_transactions_acceptance(self, txids: List[str]) -> List[TransactionAcceptance]:
        self.acceptance_calls.append(list(txids))
        if len(self.acceptance_calls) in self.failing_acceptance_calls:
            raise AdapterError("ledger unavailable (429)")
        return [self.acceptance[t] for t in txids if t in self.acceptance]

    def get_transaction(self, txid: str) -> Optional[LedgerTransaction]:
        return self.transactions.get(txid)

    def get_block_details(self, block_ref: str) -> Optional[BlockDetails]:
        self.block_calls.append(block_ref)
        if block_ref in self.failing_blocks:
            raise AdapterError(f"block lookup failed: {block_ref}")
        return self.blocks.get(block_ref)


def make_sale(**overrides: object) -> Sale:
    fields: Dict[str, object] = dict(
        id=SALE_ID,
        treasury_address=TREASURY,
        ticket_price=100_000_000,
        supply_total=2,
        finality_depth=1,
        pow_difficulty=4,
        status=SaleStatus.LIVE,
    )
    fields.update(overrides)
    return Sale(**fields)  # type: ignore[arg-type]


def final_attempt(txid: str, weight: Optional[int], confirmations: int = 5, **overrides: object) -> PurchaseAttempt:
    attempt = PurchaseAttempt(
        sale_id=SALE_ID,
        txid=txid,
        validation_status=ValidationStatus.VALID,
        accepted=True,
        accepting_block_ref=f"block-{txid}",
        finality_weight=weight,
        confirmations=confirmations,
        buyer_id_hash="ab" * 20,
    )
    return replace(attempt, **overrides)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def sale(store: MemoryStore) -> Sale:
    s = make_sale()
    store.add_sale(s)
    return s

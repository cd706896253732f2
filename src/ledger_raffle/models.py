from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional


class SaleStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINALIZING = "finalizing"
    FINALIZED = "finalized"


# Each status has exactly one legal predecessor.
LEGAL_PREDECESSOR: Dict[SaleStatus, SaleStatus] = {
    SaleStatus.LIVE: SaleStatus.SCHEDULED,
    SaleStatus.FINALIZING: SaleStatus.LIVE,
    SaleStatus.FINALIZED: SaleStatus.FINALIZING,
}

# Sales whose attempts are still tracked and ranked.
ACTIVE_STATUSES: FrozenSet[SaleStatus] = frozenset(
    {SaleStatus.LIVE, SaleStatus.FINALIZING}
)


class ValidationStatus(str, Enum):
    PENDING = "pending"
    VALID = "valid"
    VALID_FALLBACK = "valid_fallback"
    INVALID_WRONG_AMOUNT = "invalid_wrong_amount"
    INVALID_MISSING_PAYLOAD = "invalid_missing_payload"
    INVALID_BAD_PAYLOAD = "invalid_bad_payload"
    INVALID_WRONG_SALE = "invalid_wrong_sale"
    INVALID_POW = "invalid_pow"


VALID_STATUSES: FrozenSet[ValidationStatus] = frozenset(
    {ValidationStatus.VALID, ValidationStatus.VALID_FALLBACK}
)


@dataclass(frozen=True)
class Sale:
    id: str  # UUID string
    treasury_address: str
    ticket_price: int  # smallest ledger unit
    supply_total: int
    finality_depth: int
    pow_difficulty: int
    network: str = "testnet"
    max_per_address: Optional[int] = None
    fallback_enabled: bool = False
    status: SaleStatus = SaleStatus.SCHEDULED
    merkle_root: Optional[str] = None
    commit_txid: Optional[str] = None


@dataclass(frozen=True)
class PurchaseAttempt:
    """One observed payment transaction to a sale's treasury."""

    sale_id: str
    txid: str
    payload_hex: Optional[str] = None
    validation_status: ValidationStatus = ValidationStatus.PENDING
    invalid_reason: Optional[str] = None
    buyer_id_hash: Optional[str] = None

    # written by the acceptance tracker only
    accepted: bool = False
    accepting_block_ref: Optional[str] = None
    finality_weight: Optional[int] = None
    confirmations: int = 0
    last_checked_at: Optional[datetime] = None

    # written by the ordering engine only
    provisional_rank: Optional[int] = None
    final_rank: Optional[int] = None

    detected_at: Optional[datetime] = None

    @property
    def is_valid(self) -> bool:
        return self.validation_status in VALID_STATUSES

    @property
    def is_rankable(self) -> bool:
        return self.accepted and self.is_valid

    def is_final(self, finality_depth: int) -> bool:
        return self.is_rankable and self.confirmations >= finality_depth

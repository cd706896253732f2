"""
Allocation snapshot.

A pure read of current state: the final-eligible attempts in canonical
order, the first `supply_total` of them as winners, sale-wide counts for
transparency, and the Merkle root over the winners. The generation
timestamp is the newest observation time among the sale's attempts, so with
unchanged state the JSON output is byte-identical between calls.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from . import merkle
from .errors import NotFoundError
from .merkle import MerkleLeaf, ProofStep
from .models import VALID_STATUSES, PurchaseAttempt, Sale
from .ordering import sort_attempts
from .project_constants import ORDERING_PRIMARY, ORDERING_TIEBREAKER
from .store import Store


@dataclass(frozen=True)
class Winner:
    final_rank: int
    txid: str
    accepting_block_ref: Optional[str]
    finality_weight: Optional[int]
    confirmations: int
    buyer_id_hash: Optional[str]

    def leaf(self) -> MerkleLeaf:
        return MerkleLeaf(
            final_rank=self.final_rank,
            txid=self.txid,
            accepting_block_ref=self.accepting_block_ref,
            finality_weight=self.finality_weight,
            buyer_id_hash=self.buyer_id_hash,
        )

    def to_dict(self) -> Dict[str, Any]:
        d = self.leaf().to_dict()
        d["confirmations"] = self.confirmations
        return d


@dataclass(frozen=True)
class AllocationSnapshot:
    sale: Sale
    generated_at: Optional[datetime]
    total_attempts: int
    valid_attempts: int
    winners: List[Winner]
    losers_count: int
    merkle_root: str
    computed_merkle_root: str

    @property
    def leaves(self) -> List[MerkleLeaf]:
        return [w.leaf() for w in self.winners]

    def to_dict(self) -> Dict[str, Any]:
        sale = self.sale
        return {
            "sale_id": sale.id,
            "network": sale.network,
            "treasury_address": sale.treasury_address,
            "ticket_price": str(sale.ticket_price),
            "supply_total": sale.supply_total,
            "max_per_address": sale.max_per_address,
            "finality_depth": sale.finality_depth,
            "pow": {"algo": "sha256", "difficulty": sale.pow_difficulty},
            "fallback_enabled": sale.fallback_enabled,
            "ordering_rule": {
                "primary": ORDERING_PRIMARY,
                "tiebreaker": ORDERING_TIEBREAKER,
            },
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
            "total_attempts": self.total_attempts,
            "valid_attempts": self.valid_attempts,
            "winners": [w.to_dict() for w in self.winners],
            "losers_count": self.losers_count,
            "merkle_root": self.merkle_root,
            "commit_txid": sale.commit_txid,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)


@dataclass(frozen=True)
class ProofResponse:
    found: bool
    txid: str
    final_rank: Optional[int] = None
    leaf: Optional[MerkleLeaf] = None
    proof: List[ProofStep] = field(default_factory=list)
    merkle_root: Optional[str] = None
    commit_txid: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if not self.found:
            return {"found": False, "txid": self.txid, "message": self.message}
        return {
            "found": True,
            "txid": self.txid,
            "final_rank": self.final_rank,
            "leaf": self.leaf.to_dict() if self.leaf else None,
            "proof": [s.to_dict() for s in self.proof],
            "merkle_root": self.merkle_root,
            "commit_txid": self.commit_txid,
        }


def last_observed(attempts: Sequence[PurchaseAttempt]) -> Optional[datetime]:
    """Newest detection or acceptance-check time; None before anything was seen."""
    stamps = [
        t for a in attempts for t in (a.detected_at, a.last_checked_at) if t is not None
    ]
    return max(stamps, default=None)


class AllocationBuilder:
    def __init__(
        self,
        store: Store,
        clock: Optional[Callable[[], datetime]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.clock = clock
        self.log = logger or logging.getLogger("ledger_raffle.allocation")

    def _sale(self, sale_id: str) -> Sale:
        sale = self.store.get_sale(sale_id)
        if sale is None:
            raise NotFoundError(f"Sale not found: {sale_id}")
        return sale

    def generate(self, sale_id: str) -> AllocationSnapshot:
        sale = self._sale(sale_id)
        attempts = self.store.list_attempts(sale.id)
        final = sort_attempts(a for a in attempts if a.is_final(sale.finality_depth))
        winners = [
            Winner(
                final_rank=i,
                txid=a.txid,
                accepting_block_ref=a.accepting_block_ref,
                finality_weight=a.finality_weight,
                confirmations=a.confirmations,
                buyer_id_hash=a.buyer_id_hash,
            )
            for i, a in enumerate(final[: sale.supply_total], start=1)
        ]

        counts = self.store.count_by_status(sale.id)
        computed = merkle.root([w.leaf() for w in winners])
        snapshot = AllocationSnapshot(
            sale=sale,
            generated_at=self.clock() if self.clock else last_observed(attempts),
            total_attempts=sum(counts.values()),
            valid_attempts=sum(n for status, n in counts.items() if status in VALID_STATUSES),
            winners=winners,
            losers_count=max(0, len(final) - sale.supply_total),
            merkle_root=sale.merkle_root or computed,
            computed_merkle_root=computed,
        )
        self.log.info("Generated allocation for sale %s: %d winners", sale.id, len(winners))
        return snapshot

    def proof_for_txid(self, sale_id: str, txid: str) -> ProofResponse:
        snapshot = self.generate(sale_id)
        wanted = txid.lower()
        index = next(
            (i for i, w in enumerate(snapshot.winners) if w.txid.lower() == wanted), None
        )
        if index is None:
            return ProofResponse(
                found=False,
                txid=txid,
                message="Transaction is not a winner or not yet finalized",
            )

        leaves = snapshot.leaves
        inclusion = merkle.proof(leaves, index)
        if inclusion is None:
            raise NotFoundError(f"No leaf {index} in allocation of sale {sale_id}")
        return ProofResponse(
            found=True,
            txid=snapshot.winners[index].txid,
            final_rank=snapshot.winners[index].final_rank,
            leaf=leaves[index],
            proof=inclusion.steps,
            merkle_root=inclusion.root,
            commit_txid=snapshot.sale.commit_txid,
        )

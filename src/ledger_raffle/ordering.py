"""
Ordering engine.

The order is a function of ledger-observable facts only, so any third party
reading the same ledger can reproduce it:

    primary    finality weight ascending; an attempt without a weight sorts
               after every attempt that has one
    tiebreak   txid, bytewise lexicographic ascending

Two independent dense numberings are derived from the sorted sequence:
provisional ranks over every accepted+valid attempt, and final ranks over
the subsequence that has reached the sale's finality depth.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import StateTransitionError
from .merkle import MerkleLeaf
from .models import ACTIVE_STATUSES, PurchaseAttempt, Sale
from .store import RankUpdates, Store


@dataclass
class OrderingResult:
    sale_id: str
    provisional_ranked: int = 0
    final_ranked: int = 0
    cleared: int = 0
    errors: List[str] = field(default_factory=list)


def sort_key(attempt: Union[PurchaseAttempt, MerkleLeaf]) -> Tuple[int, int, bytes]:
    # Missing weight is an explicit "after everything" bucket, not a sentinel number.
    if attempt.finality_weight is None:
        return (1, 0, attempt.txid.encode("utf-8"))
    return (0, attempt.finality_weight, attempt.txid.encode("utf-8"))


def sort_attempts(attempts: Iterable[PurchaseAttempt]) -> List[PurchaseAttempt]:
    return sorted(attempts, key=sort_key)


def compute_ranks(
    attempts: Sequence[PurchaseAttempt], finality_depth: int
) -> Dict[str, Tuple[int, Optional[int]]]:
    """txid -> (provisional_rank, final_rank) for every rankable attempt."""
    ranked = sort_attempts(a for a in attempts if a.is_rankable)
    ranks: Dict[str, Tuple[int, Optional[int]]] = {}
    final_rank = 0
    for position, attempt in enumerate(ranked, start=1):
        final: Optional[int] = None
        if attempt.confirmations >= finality_depth:
            final_rank += 1
            final = final_rank
        ranks[attempt.txid] = (position, final)
    return ranks


def rank_diff(attempts: Sequence[PurchaseAttempt], finality_depth: int) -> RankUpdates:
    """Only the attempts whose stored ranks differ from the computed ones."""
    computed = compute_ranks(attempts, finality_depth)
    updates: RankUpdates = {}
    for attempt in attempts:
        target = computed.get(attempt.txid, (None, None))
        if (attempt.provisional_rank, attempt.final_rank) != target:
            updates[attempt.txid] = target
    return updates


class OrderingEngine:
    def __init__(self, store: Store, logger: Optional[logging.Logger] = None) -> None:
        self.store = store
        self.log = logger or logging.getLogger("ledger_raffle.ordering")

    def compute_ranks(self, sales: Optional[Iterable[Sale]] = None) -> List[OrderingResult]:
        targets = list(sales) if sales is not None else self.store.list_sales(ACTIVE_STATUSES)
        if not targets:
            self.log.debug("No active sales to rank")
            return []
        return [self.compute_sale_ranks(sale) for sale in targets]

    def compute_sale_ranks(self, sale: Sale) -> OrderingResult:
        result = OrderingResult(sale_id=sale.id)
        if sale.status not in ACTIVE_STATUSES:
            # committed sales are frozen
            result.errors.append(str(StateTransitionError(sale.id, sale.status.value, "recompute ranks")))
            return result

        try:
            attempts = self.store.list_attempts(sale.id)
            updates = rank_diff(attempts, sale.finality_depth)
            if not updates:
                self.log.debug("Ranks unchanged for sale %s", sale.id)
                return result

            stored = {a.txid: a for a in attempts}
            for txid, (provisional, final) in updates.items():
                before = stored[txid]
                if provisional is None and final is None:
                    result.cleared += 1
                    continue
                if provisional != before.provisional_rank:
                    result.provisional_ranked += 1
                if final != before.final_rank:
                    result.final_ranked += 1

            self.store.apply_ranks(sale.id, updates)
            self.log.info(
                "Updated ranks for sale %s: %d provisional, %d final, %d cleared",
                sale.id,
                result.provisional_ranked,
                result.final_ranked,
                result.cleared,
            )
        except Exception as e:
            result.errors.append(str(e))
            self.log.error("Error computing ranks for sale %s: %s", sale.id, e)

        return result


def sale_rankings(
    store: Store, sale: Sale, final_only: bool = False, limit: Optional[int] = None
) -> List[Dict[str, object]]:
    """Ranked view of a sale for status pages."""
    attempts = [
        a
        for a in store.list_attempts(sale.id)
        if a.is_rankable and (not final_only or a.confirmations >= sale.finality_depth)
    ]
    ordered = sort_attempts(attempts)
    if limit is not None:
        ordered = ordered[:limit]
    return [
        {
            "txid": a.txid,
            "buyer_id_hash": a.buyer_id_hash,
            "provisional_rank": a.provisional_rank,
            "final_rank": a.final_rank,
            "confirmations": a.confirmations,
            "is_winner": a.final_rank is not None and a.final_rank <= sale.supply_total,
        }
        for a in ordered
    ]

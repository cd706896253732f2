"""
Acceptance tracker.

Refreshes acceptance and confirmation depth for every valid attempt that is
not yet final, and backfills the finality weight of accepted attempts that
have none. Lookups are batched and issued sequentially per sale; sales
may be processed on a thread pool. Failures are collected into the result,
never raised.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .errors import AdapterError, StateTransitionError
from .ledger import LedgerAdapter, TransactionAcceptance
from .models import ACTIVE_STATUSES, VALID_STATUSES, PurchaseAttempt, Sale
from .project_constants import DEFAULT_BATCH_SIZE
from .store import Store


@dataclass
class TrackingResult:
    sale_id: str
    updated_count: int = 0
    newly_accepted: int = 0
    newly_final: int = 0
    batches: int = 0
    errors: List[str] = field(default_factory=list)

    def absorb(self, other: "TrackingResult") -> None:
        self.updated_count += other.updated_count
        self.newly_accepted += other.newly_accepted
        self.newly_final += other.newly_final
        self.errors.extend(other.errors)


def needs_tracking(attempt: PurchaseAttempt, finality_depth: int) -> bool:
    # a final attempt without a weight would sort after every weighted one
    return attempt.validation_status in VALID_STATUSES and (
        not attempt.accepted
        or attempt.confirmations < finality_depth
        or attempt.finality_weight is None
    )


class AcceptanceTracker:
    def __init__(
        self,
        store: Store,
        adapter: LedgerAdapter,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_workers: int = 1,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.store = store
        self.adapter = adapter
        self.batch_size = batch_size
        self.max_workers = max_workers
        self.clock = clock
        self.log = logger or logging.getLogger("ledger_raffle.tracker")

    def track(self, sales: Optional[Iterable[Sale]] = None) -> List[TrackingResult]:
        targets = list(sales) if sales is not None else self.store.list_sales(ACTIVE_STATUSES)
        if not targets:
            self.log.debug("No active sales to track")
            return []

        if self.max_workers <= 1 or len(targets) == 1:
            return [self.track_sale(sale) for sale in targets]
        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            return list(pool.map(self.track_sale, targets))

    def track_sale(self, sale: Sale) -> TrackingResult:
        result = TrackingResult(sale_id=sale.id)
        if sale.status not in ACTIVE_STATUSES:
            result.errors.append(str(StateTransitionError(sale.id, sale.status.value, "track acceptance")))
            return result

        try:
            attempts = [
                a for a in self.store.list_attempts(sale.id) if needs_tracking(a, sale.finality_depth)
            ]
            if not attempts:
                self.log.debug("No attempts to track for sale %s", sale.id)
                return result

            for i in range(0, len(attempts), self.batch_size):
                batch = attempts[i : i + self.batch_size]
                result.batches += 1
                result.absorb(self._track_batch(batch, sale))

            if result.updated_count:
                self.log.info(
                    "Tracked %d attempt(s) for sale %s: %d newly accepted, %d newly final",
                    result.updated_count,
                    sale.id,
                    result.newly_accepted,
                    result.newly_final,
                )
        except Exception as e:
            result.errors.append(str(e))
            self.log.error("Error tracking sale %s: %s", sale.id, e)

        return result

    def _track_batch(self, batch: List[PurchaseAttempt], sale: Sale) -> TrackingResult:
        result = TrackingResult(sale_id=sale.id)
        try:
            acceptance = self.adapter.get_transactions_acceptance([a.txid for a in batch])
            by_txid: Dict[str, TransactionAcceptance] = {acc.txid: acc for acc in acceptance}

            # one write per attempt; earlier writes survive a later failure
            for attempt in batch:
                acc = by_txid.get(attempt.txid)
                if acc is None:
                    changes = self._weight_backfill(attempt) if attempt.accepted else {}
                else:
                    changes = self._changes(attempt, acc)
                if not changes:
                    continue

                changes["last_checked_at"] = self.clock()
                self.store.update_acceptance(sale.id, attempt.txid, **changes)
                result.updated_count += 1

                if acc is None:
                    continue
                if not attempt.accepted and acc.is_accepted:
                    result.newly_accepted += 1
                was_final = attempt.accepted and attempt.confirmations >= sale.finality_depth
                if not was_final and acc.is_accepted and acc.confirmations >= sale.finality_depth:
                    result.newly_final += 1
        except Exception as e:
            result.errors.append(str(e))
            self.log.error("Batch of %d failed for sale %s: %s", len(batch), sale.id, e)
        return result

    def _changes(self, attempt: PurchaseAttempt, acc: TransactionAcceptance) -> Dict[str, object]:
        changes: Dict[str, object] = {}
        if attempt.accepted != acc.is_accepted:
            changes["accepted"] = acc.is_accepted
        if attempt.confirmations != acc.confirmations:
            changes["confirmations"] = acc.confirmations

        ref = acc.accepting_block_ref
        if ref and ref != attempt.accepting_block_ref:
            changes["accepting_block_ref"] = ref
            weight = self._resolve_weight(ref)
            if weight is not None and weight != attempt.finality_weight:
                changes["finality_weight"] = weight
        elif acc.is_accepted:
            # earlier lookup failed, or the ref came from the listing
            changes.update(self._weight_backfill(attempt, ref))
        return changes

    def _weight_backfill(
        self, attempt: PurchaseAttempt, block_ref: Optional[str] = None
    ) -> Dict[str, object]:
        ref = block_ref or attempt.accepting_block_ref
        if not ref or attempt.finality_weight is not None:
            return {}
        weight = self._resolve_weight(ref)
        return {} if weight is None else {"finality_weight": weight}

    def _resolve_weight(self, block_ref: str) -> Optional[int]:
        """Best effort: on failure the attempt keeps its previous weight."""
        try:
            block = self.adapter.get_block_details(block_ref)
        except AdapterError as e:
            self.log.warning("Could not resolve finality weight of block %s: %s", block_ref, e)
            return None
        if block is None:
            self.log.warning("Block %s not found; finality weight unresolved", block_ref)
            return None
        return block.finality_weight

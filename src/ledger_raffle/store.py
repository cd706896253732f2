"""
Persistence interface for sales and purchase attempts.

Writers are split by field group so the recurring loops can interleave
safely: the acceptance tracker only touches acceptance fields, the ordering
engine only touches rank fields, and the validator only touches validation
fields.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections import Counter
from dataclasses import replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import NotFoundError, StateTransitionError
from .models import (
    LEGAL_PREDECESSOR,
    PurchaseAttempt,
    Sale,
    SaleStatus,
    ValidationStatus,
)

ACCEPTANCE_FIELDS = frozenset(
    {"accepted", "accepting_block_ref", "finality_weight", "confirmations", "last_checked_at"}
)
VALIDATION_FIELDS = frozenset({"validation_status", "invalid_reason", "buyer_id_hash"})

# txid -> (provisional_rank, final_rank)
RankUpdates = Dict[str, Tuple[Optional[int], Optional[int]]]


class Store(ABC):
    @abstractmethod
    def get_sale(self, sale_id: str) -> Optional[Sale]:
        ...

    @abstractmethod
    def list_sales(self, statuses: Iterable[SaleStatus]) -> List[Sale]:
        ...

    @abstractmethod
    def add_sale(self, sale: Sale) -> None:
        ...

    @abstractmethod
    def transition_sale(self, sale_id: str, target: SaleStatus, **changes: object) -> Sale:
        """Compare-and-set on status; raises StateTransitionError from the wrong state."""

    @abstractmethod
    def insert_attempts(self, attempts: Iterable[PurchaseAttempt]) -> int:
        """Insert, skipping (sale_id, txid) duplicates. Returns rows inserted."""

    @abstractmethod
    def get_attempt(self, sale_id: str, txid: str) -> Optional[PurchaseAttempt]:
        ...

    @abstractmethod
    def list_attempts(
        self,
        sale_id: str,
        statuses: Optional[Iterable[ValidationStatus]] = None,
    ) -> List[PurchaseAttempt]:
        ...

    @abstractmethod
    def update_acceptance(self, sale_id: str, txid: str, **fields: object) -> PurchaseAttempt:
        ...

    @abstractmethod
    def update_validation(self, sale_id: str, txid: str, **fields: object) -> PurchaseAttempt:
        ...

    @abstractmethod
    def apply_ranks(self, sale_id: str, updates: RankUpdates) -> int:
        """Write all rank changes of one sale atomically. Returns rows written."""

    @abstractmethod
    def count_by_status(self, sale_id: str) -> Dict[ValidationStatus, int]:
        ...

    def existing_txids(self, sale_id: str) -> Set[str]:
        return {a.txid for a in self.list_attempts(sale_id)}


class MemoryStore(Store):
    """Thread-safe in-process store. Rows are immutable dataclasses."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._sales: Dict[str, Sale] = {}
        # sale_id -> txid -> attempt, insertion ordered
        self._attempts: Dict[str, Dict[str, PurchaseAttempt]] = {}

    def get_sale(self, sale_id: str) -> Optional[Sale]:
        with self._lock:
            return self._sales.get(sale_id)

    def list_sales(self, statuses: Iterable[SaleStatus]) -> List[Sale]:
        wanted = set(statuses)
        with self._lock:
            return [s for s in self._sales.values() if s.status in wanted]

    def add_sale(self, sale: Sale) -> None:
        with self._lock:
            if sale.id in self._sales:
                raise ValueError(f"Sale already exists: {sale.id}")
            self._sales[sale.id] = sale
            self._attempts.setdefault(sale.id, {})

    def transition_sale(self, sale_id: str, target: SaleStatus, **changes: object) -> Sale:
        with self._lock:
            sale = self._sales.get(sale_id)
            if sale is None:
                raise NotFoundError(f"Sale not found: {sale_id}")
            if sale.status != LEGAL_PREDECESSOR[target]:
                raise StateTransitionError(sale_id, sale.status.value, f"move to '{target.value}'")
            updated = replace(sale, status=target, **changes)
            self._sales[sale_id] = updated
            return updated

    def insert_attempts(self, attempts: Iterable[PurchaseAttempt]) -> int:
        inserted = 0
        with self._lock:
            for attempt in attempts:
                if attempt.sale_id not in self._sales:
                    raise NotFoundError(f"Sale not found: {attempt.sale_id}")
                rows = self._attempts[attempt.sale_id]
                if attempt.txid in rows:
                    continue
                rows[attempt.txid] = attempt
                inserted += 1
        return inserted

    def get_attempt(self, sale_id: str, txid: str) -> Optional[PurchaseAttempt]:
        with self._lock:
            return self._attempts.get(sale_id, {}).get(txid)

    def list_attempts(
        self,
        sale_id: str,
        statuses: Optional[Iterable[ValidationStatus]] = None,
    ) -> List[PurchaseAttempt]:
        with self._lock:
            rows = list(self._attempts.get(sale_id, {}).values())
        if statuses is None:
            return rows
        wanted = set(statuses)
        return [a for a in rows if a.validation_status in wanted]

    def _update(
        self, sale_id: str, txid: str, allowed: frozenset, fields: Dict[str, object]
    ) -> PurchaseAttempt:
        illegal = set(fields) - allowed
        if illegal:
            raise ValueError(f"Fields not writable here: {sorted(illegal)}")
        with self._lock:
            rows = self._attempts.get(sale_id, {})
            attempt = rows.get(txid)
            if attempt is None:
                raise NotFoundError(f"Attempt not found: sale={sale_id} txid={txid}")
            updated = replace(attempt, **fields)
            rows[txid] = updated
            return updated

    def update_acceptance(self, sale_id: str, txid: str, **fields: object) -> PurchaseAttempt:
        return self._update(sale_id, txid, ACCEPTANCE_FIELDS, fields)

    def update_validation(self, sale_id: str, txid: str, **fields: object) -> PurchaseAttempt:
        return self._update(sale_id, txid, VALIDATION_FIELDS, fields)

    def apply_ranks(self, sale_id: str, updates: RankUpdates) -> int:
        with self._lock:
            rows = self._attempts.get(sale_id, {})
            missing = [txid for txid in updates if txid not in rows]
            if missing:
                raise NotFoundError(f"Attempts not found for sale {sale_id}: {missing}")
            for txid, (provisional, final) in updates.items():
                rows[txid] = replace(rows[txid], provisional_rank=provisional, final_rank=final)
        return len(updates)

    def count_by_status(self, sale_id: str) -> Dict[ValidationStatus, int]:
        with self._lock:
            rows = list(self._attempts.get(sale_id, {}).values())
        return dict(Counter(a.validation_status for a in rows))

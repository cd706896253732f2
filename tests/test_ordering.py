from __future__ import annotations

import random
from dataclasses import replace
from typing import Dict, List, Optional, Tuple

from ledger_raffle import ordering
from ledger_raffle.models import PurchaseAttempt, SaleStatus, ValidationStatus
from ledger_raffle.ordering import OrderingEngine
from ledger_raffle.store import MemoryStore, RankUpdates

from conftest import OTHER_SALE_ID, final_attempt, make_sale


def _ranks(store: MemoryStore, sale_id: str) -> Dict[str, Tuple[Optional[int], Optional[int]]]:
    return {a.txid: (a.provisional_rank, a.final_rank) for a in store.list_attempts(sale_id)}


def test_weight_then_txid_order(store: MemoryStore, sale) -> None:
    store.insert_attempts(
        [final_attempt("aa", 5), final_attempt("bb", 3), final_attempt("cc", 3)]
    )
    OrderingEngine(store).compute_ranks()
    assert _ranks(store, sale.id) == {"bb": (1, 1), "cc": (2, 2), "aa": (3, 3)}


def test_tiebreak_is_bytewise() -> None:
    # uppercase sorts before lowercase bytewise
    a = final_attempt("b0", 7)
    b = final_attempt("B0", 7)
    assert [x.txid for x in ordering.sort_attempts([a, b])] == ["B0", "b0"]


def test_missing_weight_sorts_last() -> None:
    attempts = [
        final_attempt("00", None),
        final_attempt("ff", 2**63),
        final_attempt("11", 0),
    ]
    assert [a.txid for a in ordering.sort_attempts(attempts)] == ["11", "ff", "00"]


def test_final_ranks_are_a_contiguous_subsequence() -> None:
    attempts = [
        final_attempt("aa", 1, confirmations=10),
        final_attempt("bb", 2, confirmations=0),
        final_attempt("cc", 3, confirmations=10),
        final_attempt("dd", 4, confirmations=1),
    ]
    ranks = ordering.compute_ranks(attempts, finality_depth=5)
    assert ranks == {"aa": (1, 1), "bb": (2, None), "cc": (3, 2), "dd": (4, None)}


def test_only_accepted_valid_attempts_are_ranked() -> None:
    attempts = [
        final_attempt("aa", 1),
        final_attempt("bb", 2, accepted=False),
        final_attempt("cc", 3, validation_status=ValidationStatus.INVALID_POW),
        final_attempt("dd", 4, validation_status=ValidationStatus.VALID_FALLBACK),
    ]
    ranks = ordering.compute_ranks(attempts, finality_depth=1)
    assert ranks == {"aa": (1, 1), "dd": (2, 2)}


def test_order_ignores_input_order() -> None:
    attempts = [final_attempt(f"{i:02x}", i % 7) for i in range(40)]
    shuffled = list(attempts)
    random.Random(7).shuffle(shuffled)
    assert ordering.compute_ranks(attempts, 1) == ordering.compute_ranks(shuffled, 1)


def test_second_run_writes_nothing(store: MemoryStore, sale) -> None:
    store.insert_attempts([final_attempt("aa", 2), final_attempt("bb", 1)])
    engine = OrderingEngine(store)
    first = engine.compute_sale_ranks(sale)
    assert first.provisional_ranked == 2

    calls: List[RankUpdates] = []
    real = store.apply_ranks

    def recording(sale_id: str, updates: RankUpdates) -> int:
        calls.append(updates)
        return real(sale_id, updates)

    store.apply_ranks = recording  # type: ignore[method-assign]
    second = engine.compute_sale_ranks(sale)
    assert calls == []
    assert second.provisional_ranked == 0
    assert second.final_ranked == 0


def test_stale_ranks_are_cleared(store: MemoryStore, sale) -> None:
    store.insert_attempts([final_attempt("aa", 2), final_attempt("bb", 1)])
    engine = OrderingEngine(store)
    engine.compute_sale_ranks(sale)

    store.update_acceptance(sale.id, "bb", accepted=False)
    result = engine.compute_sale_ranks(sale)

    assert result.cleared == 1
    assert _ranks(store, sale.id) == {"aa": (1, 1), "bb": (None, None)}


def test_newly_final_attempt_gets_a_final_rank(store: MemoryStore, sale) -> None:
    store.insert_attempts([final_attempt("aa", 2), final_attempt("bb", 1, confirmations=0)])
    engine = OrderingEngine(store)
    engine.compute_sale_ranks(sale)
    assert _ranks(store, sale.id) == {"aa": (2, 1), "bb": (1, None)}

    store.update_acceptance(sale.id, "bb", confirmations=3)
    result = engine.compute_sale_ranks(sale)
    assert result.final_ranked == 2
    assert _ranks(store, sale.id) == {"aa": (2, 2), "bb": (1, 1)}


def test_finalized_sale_is_frozen(store: MemoryStore) -> None:
    frozen = make_sale(status=SaleStatus.FINALIZED)
    store.add_sale(frozen)
    store.insert_attempts([final_attempt("aa", 1)])

    result = OrderingEngine(store).compute_sale_ranks(frozen)
    assert result.errors
    assert _ranks(store, frozen.id) == {"aa": (None, None)}


def test_default_run_skips_inactive_sales(store: MemoryStore) -> None:
    store.add_sale(make_sale(status=SaleStatus.FINALIZED))
    assert OrderingEngine(store).compute_ranks() == []


def test_failure_in_one_sale_does_not_stop_others(store: MemoryStore, sale) -> None:
    other = make_sale(id=OTHER_SALE_ID)
    store.add_sale(other)
    store.insert_attempts([final_attempt("aa", 1)])
    store.insert_attempts([replace(final_attempt("bb", 1), sale_id=OTHER_SALE_ID)])

    real = store.list_attempts

    def flaky(sale_id: str, statuses=None) -> List[PurchaseAttempt]:
        if sale_id == sale.id:
            raise RuntimeError("store offline")
        return real(sale_id, statuses)

    store.list_attempts = flaky  # type: ignore[method-assign]
    results = {r.sale_id: r for r in OrderingEngine(store).compute_ranks()}

    assert results[sale.id].errors == ["store offline"]
    assert results[OTHER_SALE_ID].errors == []
    assert store.get_attempt(OTHER_SALE_ID, "bb").final_rank == 1  # type: ignore[union-attr]


def test_sale_rankings_view(store: MemoryStore, sale) -> None:
    store.insert_attempts(
        [final_attempt("aa", 3), final_attempt("bb", 1), final_attempt("cc", 2, confirmations=0)]
    )
    OrderingEngine(store).compute_sale_ranks(sale)

    rows = ordering.sale_rankings(store, sale)
    assert [r["txid"] for r in rows] == ["bb", "cc", "aa"]
    assert [r["is_winner"] for r in rows] == [True, False, True]

    final_rows = ordering.sale_rankings(store, sale, final_only=True, limit=1)
    assert [r["txid"] for r in final_rows] == ["bb"]

from __future__ import annotations

import logging
from typing import Optional

from .allocation import AllocationBuilder, AllocationSnapshot
from .errors import NotFoundError, StateTransitionError, ValidationError
from .merkle import create_commit_payload
from .models import Sale, SaleStatus
from .store import Store


class SaleLifecycle:
    """
    scheduled -> live -> finalizing -> finalized

    `commit` is the freeze point: it stores the Merkle root of the current
    winners together with the on-chain commit txid, after which the tracker
    and ordering engine leave the sale alone.
    """

    def __init__(
        self,
        store: Store,
        builder: Optional[AllocationBuilder] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.builder = builder or AllocationBuilder(store)
        self.log = logger or logging.getLogger("ledger_raffle.sales")

    def _require(self, sale_id: str, status: SaleStatus, action: str) -> Sale:
        sale = self.store.get_sale(sale_id)
        if sale is None:
            raise NotFoundError(f"Sale not found: {sale_id}")
        if sale.status is not status:
            raise StateTransitionError(sale_id, sale.status.value, action)
        return sale

    def publish(self, sale_id: str) -> Sale:
        sale = self.store.transition_sale(sale_id, SaleStatus.LIVE)
        self.log.info("Sale %s is live", sale_id)
        return sale

    def begin_finalization(self, sale_id: str) -> Sale:
        sale = self.store.transition_sale(sale_id, SaleStatus.FINALIZING)
        self.log.info("Sale %s is finalizing", sale_id)
        return sale

    def commit_payload(self, sale_id: str) -> str:
        """Hex memo to broadcast before calling commit()."""
        self._require(sale_id, SaleStatus.FINALIZING, "build a commit payload")
        snapshot = self.builder.generate(sale_id)
        return create_commit_payload(sale_id, snapshot.computed_merkle_root)

    def commit(
        self, sale_id: str, commit_txid: str, merkle_root: Optional[str] = None
    ) -> AllocationSnapshot:
        """
        Pass the root that went into the broadcast payload as merkle_root to
        refuse the commit if the winners changed since.
        """
        if not commit_txid:
            raise ValidationError("commit_txid is required")
        self._require(sale_id, SaleStatus.FINALIZING, "commit")

        root = self.builder.generate(sale_id).computed_merkle_root
        if merkle_root is not None and merkle_root.lower() != root:
            raise ValidationError(
                f"Sale {sale_id}: winners changed since payload was built "
                f"(payload root {merkle_root}, current root {root})"
            )
        self.store.transition_sale(
            sale_id, SaleStatus.FINALIZED, merkle_root=root, commit_txid=commit_txid
        )
        snapshot = self.builder.generate(sale_id)
        self.log.info(
            "Sale %s finalized with %d winners, root %s (commit tx %s)",
            sale_id,
            len(snapshot.winners),
            root,
            commit_txid,
        )
        return snapshot

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional

from .ledger import LedgerAdapter
from .models import PurchaseAttempt, Sale, SaleStatus
from .store import Store


@dataclass
class ScanResult:
    sale_id: str
    treasury_address: str
    new_tx_count: int = 0
    pages: int = 0
    errors: List[str] = field(default_factory=list)


class TreasuryScanner:
    """Records payments to live sales' treasuries as pending purchase attempts."""

    def __init__(
        self,
        store: Store,
        adapter: LedgerAdapter,
        fetch_limit: int = 100,
        max_pages: int = 50,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.fetch_limit = fetch_limit
        self.max_pages = max_pages
        self.clock = clock
        self.log = logger or logging.getLogger("ledger_raffle.scanner")

    def scan(self, sales: Optional[Iterable[Sale]] = None) -> List[ScanResult]:
        targets = list(sales) if sales is not None else self.store.list_sales([SaleStatus.LIVE])
        if not targets:
            self.log.debug("No live sales to scan")
            return []

        self.log.info("Scanning %d live sale(s)", len(targets))
        return [self.scan_sale(sale) for sale in targets]

    def scan_sale(self, sale: Sale) -> ScanResult:
        result = ScanResult(sale_id=sale.id, treasury_address=sale.treasury_address)
        try:
            known = self.store.existing_txids(sale.id)
            cursor: Optional[str] = None
            fresh: List[PurchaseAttempt] = []

            # Pages arrive newest first; stop once a page holds nothing new.
            while result.pages < self.max_pages:
                page = self.adapter.list_address_transactions(
                    sale.treasury_address, limit=self.fetch_limit, cursor=cursor
                )
                result.pages += 1

                now = self.clock()
                new_on_page = 0
                for tx in page.transactions:
                    if not tx.txid or tx.txid in known:
                        continue
                    known.add(tx.txid)
                    new_on_page += 1
                    fresh.append(
                        PurchaseAttempt(
                            sale_id=sale.id,
                            txid=tx.txid,
                            payload_hex=tx.payload,
                            accepted=tx.is_accepted,
                            accepting_block_ref=tx.accepting_block_ref,
                            confirmations=tx.confirmations,
                            detected_at=now,
                        )
                    )

                if not page.has_more or not page.cursor or new_on_page == 0:
                    break
                cursor = page.cursor

            if not fresh:
                self.log.debug("No new transactions for sale %s", sale.id)
                return result

            result.new_tx_count = self.store.insert_attempts(fresh)
            self.log.info("Inserted %d new tx(s) for sale %s", result.new_tx_count, sale.id)
        except Exception as e:
            result.errors.append(str(e))
            self.log.error("Error scanning sale %s: %s", sale.id, e)

        return result

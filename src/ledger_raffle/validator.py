"""
Purchase attempt validation.

Checks, in order: payload present (or fallback mode), payload decodes,
payload names this sale, PoW passes at the sale's difficulty, and the
transaction pays exactly the ticket price to the treasury.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from . import payload as codec
from . import pow as puzzle
from .errors import AdapterError, PayloadError
from .ledger import LedgerAdapter, LedgerTransaction
from .models import ACTIVE_STATUSES, PurchaseAttempt, Sale, ValidationStatus
from .store import Store


@dataclass(frozen=True)
class ValidationResult:
    sale_id: str
    txid: str
    status: ValidationStatus
    invalid_reason: Optional[str] = None
    buyer_id_hash: Optional[str] = None
    error: Optional[str] = None  # transient failure; attempt stays pending


def pays_ticket_price(tx: LedgerTransaction, treasury_address: str, price: int) -> bool:
    treasury = treasury_address.lower()
    return any(
        (o.address or "").lower() == treasury and o.value == price for o in tx.outputs
    )


class PurchaseValidator:
    def __init__(
        self,
        store: Store,
        adapter: LedgerAdapter,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.adapter = adapter
        self.log = logger or logging.getLogger("ledger_raffle.validator")

    def validate_pending(self) -> List[ValidationResult]:
        results: List[ValidationResult] = []
        for sale in self.store.list_sales(ACTIVE_STATUSES):
            pending = self.store.list_attempts(sale.id, statuses=[ValidationStatus.PENDING])
            if not pending:
                continue
            self.log.info("Validating %d pending attempt(s) for sale %s", len(pending), sale.id)

            for attempt in pending:
                result = self.validate_attempt(attempt, sale)
                results.append(result)
                if result.status is ValidationStatus.PENDING:
                    continue
                self.store.update_validation(
                    sale.id,
                    attempt.txid,
                    validation_status=result.status,
                    invalid_reason=result.invalid_reason,
                    buyer_id_hash=result.buyer_id_hash,
                )
        return results

    def validate_attempt(self, attempt: PurchaseAttempt, sale: Sale) -> ValidationResult:
        try:
            return self._classify(attempt, sale)
        except AdapterError as e:
            self.log.error("Ledger error validating %s: %s", attempt.txid, e)
            return ValidationResult(
                sale.id, attempt.txid, ValidationStatus.PENDING, error=str(e)
            )

    def _classify(self, attempt: PurchaseAttempt, sale: Sale) -> ValidationResult:
        def verdict(status: ValidationStatus, reason: Optional[str] = None) -> ValidationResult:
            if reason:
                self.log.debug("Attempt %s: %s (%s)", attempt.txid, status.value, reason)
            return ValidationResult(sale.id, attempt.txid, status, invalid_reason=reason)

        wrong_amount = (
            f"Amount mismatch: expected {sale.ticket_price} to {sale.treasury_address}"
        )

        tx: Optional[LedgerTransaction] = None
        payload_hex = attempt.payload_hex
        if not payload_hex:
            tx = self.adapter.get_transaction(attempt.txid)
            if tx is None:
                return verdict(ValidationStatus.INVALID_BAD_PAYLOAD, "Transaction not found")
            payload_hex = tx.payload
            if not payload_hex:
                if not sale.fallback_enabled:
                    return verdict(
                        ValidationStatus.INVALID_MISSING_PAYLOAD, "No payload in transaction"
                    )
                if not pays_ticket_price(tx, sale.treasury_address, sale.ticket_price):
                    return verdict(ValidationStatus.INVALID_WRONG_AMOUNT, wrong_amount)
                # fallback mode: no buyer identity, no PoW
                return verdict(ValidationStatus.VALID_FALLBACK)

        try:
            decoded = codec.decode(payload_hex)
        except PayloadError as e:
            return verdict(ValidationStatus.INVALID_BAD_PAYLOAD, str(e))

        if decoded.sale_id != sale.id.lower():
            return verdict(
                ValidationStatus.INVALID_WRONG_SALE,
                f"Sale ID mismatch: expected {sale.id}, got {decoded.sale_id}",
            )

        if not puzzle.verify(sale.id, decoded.buyer_id_hash, sale.pow_difficulty, decoded.pow_nonce):
            return verdict(ValidationStatus.INVALID_POW, f"PoW failed: difficulty {sale.pow_difficulty}")

        if tx is None:
            tx = self.adapter.get_transaction(attempt.txid)
            if tx is None:
                # not visible yet; try again next run
                return ValidationResult(
                    sale.id, attempt.txid, ValidationStatus.PENDING, error="Transaction not visible yet"
                )
        if not pays_ticket_price(tx, sale.treasury_address, sale.ticket_price):
            return verdict(ValidationStatus.INVALID_WRONG_AMOUNT, wrong_amount)

        return ValidationResult(
            sale.id, attempt.txid, ValidationStatus.VALID, buyer_id_hash=decoded.buyer_id_hash
        )

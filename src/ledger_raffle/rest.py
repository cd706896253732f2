from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import quote

import httpx
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt

from .errors import AdapterError, RateLimitedError
from .ledger import (
    AddressTransactionsPage,
    BlockDetails,
    LedgerAdapter,
    LedgerTransaction,
    TransactionAcceptance,
    TxOutput,
)

MAINNET_BASE_URL = "https://api.kaspa.org"
TESTNET_BASE_URL = "https://api-tn10.kaspa.org"


def _to_int(value: Any, fallback: Optional[int] = 0) -> Optional[int]:
    if value is None:
        return fallback
    try:
        return int(str(value))
    except ValueError:
        return fallback


def _retry_after_seconds(resp: httpx.Response) -> Optional[float]:
    raw = resp.headers.get("Retry-After")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        # HTTP-date form; fall back to linear backoff
        return None


class LedgerRestClient(LedgerAdapter):
    """
    Ledger adapter over the Kaspa REST API.

    429 responses and transport errors are retried up to max_retries times.
    A Retry-After hint is honoured; otherwise the wait grows linearly with
    the attempt number. Once retries run out the call raises AdapterError.
    """

    def __init__(
        self,
        base_url: str,
        timeout_s: float = 30.0,
        max_retries: int = 3,
        retry_delay_s: float = 1.0,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.max_retries = max_retries
        self.retry_delay_s = retry_delay_s
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout_s, transport=transport)
        self._sleep = sleep
        self.log = logger or logging.getLogger("ledger_raffle.rest")

    def close(self) -> None:
        self.client.close()

    def _backoff(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return exc.retry_after
        return self.retry_delay_s * retry_state.attempt_number

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        resp = self.client.request(method, path, **kwargs)
        if resp.status_code == 429:
            hint = _retry_after_seconds(resp)
            self.log.debug("Rate limited on %s %s (retry-after=%s)", method, path, hint)
            raise RateLimitedError(f"{method} {path}: rate limited", retry_after=hint)
        return resp

    def _request(
        self, method: str, path: str, allow_404: bool = False, **kwargs: Any
    ) -> Optional[httpx.Response]:
        retrying = Retrying(
            stop=stop_after_attempt(self.max_retries + 1),
            wait=self._backoff,
            retry=retry_if_exception_type((RateLimitedError, httpx.TransportError)),
            sleep=self._sleep,
            reraise=True,
        )
        try:
            resp = retrying(self._send, method, path, **kwargs)
        except RateLimitedError as e:
            raise AdapterError(
                f"{method} {path}: still rate limited after {self.max_retries} retries"
            ) from e
        except httpx.TransportError as e:
            raise AdapterError(
                f"{method} {path}: transport error after {self.max_retries} retries: {e}"
            ) from e

        if allow_404 and resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise AdapterError(f"Ledger API error: {resp.status_code} {resp.text}")
        return resp

    def _json(self, resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as e:
            raise AdapterError(f"Ledger API returned invalid JSON: {e}") from e

    def current_blue_score(self) -> int:
        resp = self._request("GET", "/info/virtual-chain-blue-score")
        return _to_int(self._json(resp).get("blueScore")) or 0

    def _current_blue_score_or_zero(self) -> int:
        try:
            return self.current_blue_score()
        except AdapterError as e:
            # zero confirmations is the conservative reading
            self.log.warning("Could not fetch virtual blue score: %s", e)
            return 0

    @staticmethod
    def _confirmations(accepted: bool, accepting_score: Optional[int], current: int) -> int:
        if not accepted or accepting_score is None or current <= accepting_score:
            return 0
        return current - accepting_score

    def _map_transaction(self, tx: Dict[str, Any], current: int) -> LedgerTransaction:
        accepted = bool(tx.get("is_accepted"))
        accepting_score = _to_int(tx.get("accepting_block_blue_score"), None)
        outputs = [
            TxOutput(
                value=_to_int(o.get("amount")) or 0,
                address=o.get("script_public_key_address"),
                script_public_key=o.get("script_public_key") or "",
            )
            for o in (tx.get("outputs") or [])
            if o
        ]
        return LedgerTransaction(
            txid=tx.get("transaction_id") or tx.get("hash") or "",
            is_accepted=accepted,
            accepting_block_ref=tx.get("accepting_block_hash"),
            confirmations=self._confirmations(accepted, accepting_score, current),
            outputs=outputs,
            payload=tx.get("payload") or None,
            block_time_ms=_to_int(tx.get("block_time"), None),
        )

    def list_address_transactions(
        self,
        address: str,
        limit: int = 100,
        cursor: Optional[str] = None,
        accepted_only: bool = False,
    ) -> AddressTransactionsPage:
        params: Dict[str, Any] = {"limit": limit, "resolve_previous_outpoints": "no"}
        if accepted_only:
            params["acceptance"] = "accepted"
        if cursor:
            params["before"] = cursor

        resp = self._request(
            "GET", f"/addresses/{quote(address, safe='')}/full-transactions-page", params=params
        )
        data = self._json(resp)
        current = self._current_blue_score_or_zero()
        next_cursor = resp.headers.get("x-next-page-before") or None
        return AddressTransactionsPage(
            transactions=[self._map_transaction(tx, current) for tx in data if tx],
            cursor=next_cursor,
            has_more=next_cursor is not None,
        )

    def get_transactions_acceptance(self, txids: List[str]) -> List[TransactionAcceptance]:
        if not txids:
            return []
        resp = self._request(
            "POST", "/transactions/acceptance", json={"transactionIds": list(txids)}
        )
        data = self._json(resp)
        current = self._current_blue_score_or_zero()

        out: List[TransactionAcceptance] = []
        for item in data:
            accepted = bool(item.get("accepted"))
            out.append(
                TransactionAcceptance(
                    txid=item.get("transactionId") or "",
                    is_accepted=accepted,
                    accepting_block_ref=item.get("acceptingBlockHash"),
                    confirmations=self._confirmations(
                        accepted, _to_int(item.get("acceptingBlueScore"), None), current
                    ),
                )
            )
        return out

    def get_transaction(self, txid: str) -> Optional[LedgerTransaction]:
        resp = self._request(
            "GET",
            f"/transactions/{quote(txid, safe='')}",
            allow_404=True,
            params={"inputs": "true", "outputs": "true", "resolve_previous_outpoints": "no"},
        )
        if resp is None:
            return None
        return self._map_transaction(self._json(resp), self._current_blue_score_or_zero())

    def get_block_details(self, block_ref: str) -> Optional[BlockDetails]:
        resp = self._request(
            "GET",
            f"/blocks/{quote(block_ref, safe='')}",
            allow_404=True,
            params={"includeTransactions": "false"},
        )
        if resp is None:
            return None
        block = self._json(resp)
        header = block.get("header") or {}
        verbose = block.get("verboseData") or {}
        weight = _to_int(verbose.get("blueScore", header.get("blueScore")), None)
        if weight is None:
            return None
        parents = [h for p in (header.get("parents") or []) for h in (p.get("parentHashes") or [])]
        return BlockDetails(
            block_ref=verbose.get("hash") or block_ref,
            finality_weight=weight,
            timestamp_ms=_to_int(header.get("timestamp")) or 0,
            parent_refs=parents,
        )

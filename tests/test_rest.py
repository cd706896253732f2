from __future__ import annotations

import json
from typing import Callable, List

import httpx
import pytest

from ledger_raffle.errors import AdapterError
from ledger_raffle.rest import LedgerRestClient


def _client(handler: Callable[[httpx.Request], httpx.Response], sleeps: List[float], **kwargs: object) -> LedgerRestClient:
    options = dict(max_retries=3, retry_delay_s=1.0)
    options.update(kwargs)
    return LedgerRestClient(
        "https://ledger.test",
        transport=httpx.MockTransport(handler),
        sleep=sleeps.append,
        **options,  # type: ignore[arg-type]
    )


def _score(score: int) -> httpx.Response:
    return httpx.Response(200, json={"blueScore": score})


def test_acceptance_maps_confirmations() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/info/virtual-chain-blue-score":
            return _score(110)
        return httpx.Response(
            200,
            json=[
                {"transactionId": "aa", "accepted": True, "acceptingBlockHash": "blk", "acceptingBlueScore": 100},
                {"transactionId": "bb", "accepted": False},
            ],
        )

    rows = _client(handler, []).get_transactions_acceptance(["aa", "bb"])

    assert json.loads(seen[0].content) == {"transactionIds": ["aa", "bb"]}
    assert [(r.txid, r.is_accepted, r.accepting_block_ref, r.confirmations) for r in rows] == [
        ("aa", True, "blk", 10),
        ("bb", False, None, 0),
    ]


def test_empty_acceptance_query_skips_network() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    assert _client(handler, []).get_transactions_acceptance([]) == []


def test_retry_after_is_honoured() -> None:
    calls = []
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429, headers={"Retry-After": "2"})
        return httpx.Response(200, json={"blueScore": 7})

    assert _client(handler, sleeps).current_blue_score() == 7
    assert sleeps == [2.0]


def test_linear_backoff_without_hint() -> None:
    calls = []
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) <= 2:
            return httpx.Response(429)
        return _score(1)

    assert _client(handler, sleeps).current_blue_score() == 1
    assert sleeps == [1.0, 2.0]


def test_transport_errors_are_retried() -> None:
    calls = []
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return _score(3)

    assert _client(handler, sleeps).current_blue_score() == 3
    assert sleeps == [1.0]


def test_exhausted_retries_raise_adapter_error() -> None:
    calls = []
    sleeps: List[float] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429)

    with pytest.raises(AdapterError):
        _client(handler, sleeps, max_retries=2).current_blue_score()
    assert len(calls) == 3
    assert sleeps == [1.0, 2.0]


def test_server_error_is_not_retried() -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(500, text="boom")

    with pytest.raises(AdapterError):
        _client(handler, []).current_blue_score()
    assert len(calls) == 1


def test_unknown_transaction_is_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404)

    assert _client(handler, []).get_transaction("ff") is None


def test_transaction_mapping() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/info/virtual-chain-blue-score":
            return _score(50)
        assert request.url.path == "/transactions/aa"
        return httpx.Response(
            200,
            json={
                "transaction_id": "aa",
                "payload": "544b5331",
                "is_accepted": True,
                "accepting_block_hash": "blk",
                "accepting_block_blue_score": 45,
                "block_time": 1700000000000,
                "outputs": [
                    {"amount": 100000000, "script_public_key_address": "kaspatest:qz0treasury"},
                    {"amount": "5", "script_public_key_address": "kaspatest:qchange"},
                ],
            },
        )

    tx = _client(handler, []).get_transaction("aa")

    assert tx is not None
    assert tx.payload == "544b5331"
    assert tx.confirmations == 5
    assert [(o.value, o.address) for o in tx.outputs] == [
        (100000000, "kaspatest:qz0treasury"),
        (5, "kaspatest:qchange"),
    ]


def test_score_failure_means_zero_confirmations() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/info/virtual-chain-blue-score":
            return httpx.Response(503)
        return httpx.Response(
            200, json=[{"transactionId": "aa", "accepted": True, "acceptingBlueScore": 1}]
        )

    [row] = _client(handler, []).get_transactions_acceptance(["aa"])
    assert row.is_accepted
    assert row.confirmations == 0


def test_address_page_cursor() -> None:
    seen: List[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/info/virtual-chain-blue-score":
            return _score(0)
        seen.append(request)
        return httpx.Response(
            200,
            json=[{"transaction_id": "aa"}],
            headers={"x-next-page-before": "1699999999999"},
        )

    page = _client(handler, []).list_address_transactions("kaspatest:qz0treasury", limit=10, cursor="42")

    assert seen[0].url.path == "/addresses/kaspatest:qz0treasury/full-transactions-page"
    assert seen[0].url.params["before"] == "42"
    assert seen[0].url.params["limit"] == "10"
    assert page.cursor == "1699999999999"
    assert page.has_more
    assert [t.txid for t in page.transactions] == ["aa"]


def test_block_weight() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "header": {"timestamp": "1700000000000", "parents": [{"parentHashes": ["p1", "p2"]}]},
                "verboseData": {"hash": "blk", "blueScore": "123456"},
            },
        )

    block = _client(handler, []).get_block_details("blk")

    assert block is not None
    assert block.finality_weight == 123456
    assert block.parent_refs == ["p1", "p2"]

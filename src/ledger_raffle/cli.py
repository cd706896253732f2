from __future__ import annotations

import argparse
import json
import logging
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, List

from . import merkle
from . import payload as codec
from . import pow as puzzle
from .allocation import AllocationBuilder
from .config import Settings
from .errors import RaffleError
from .loops import IndexerService
from .models import Sale, SaleStatus
from .rest import LedgerRestClient
from .store import MemoryStore
from .verify import verify_proof_response, verify_snapshot


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")


def _buyer_hash(args: argparse.Namespace) -> str:
    if args.buyer_hash:
        return args.buyer_hash.lower()
    if args.buyer_address:
        return codec.buyer_id_hash(args.buyer_address)
    raise SystemExit("Pass --buyer-hash or --buyer-address.")


def cmd_pow_solve(args: argparse.Namespace) -> int:
    log = logging.getLogger("pow")
    buyer_hash = _buyer_hash(args)
    log.info("Expected work: ~%d hashes", puzzle.estimate_hash_count(args.difficulty))

    started = time.monotonic()
    solution = puzzle.solve(
        args.sale_id,
        buyer_hash,
        args.difficulty,
        start_nonce=args.start_nonce,
        max_iterations=args.max_iterations,
    )
    elapsed = time.monotonic() - started

    memo = codec.encode_hex(
        codec.PurchasePayload(
            sale_id=args.sale_id,
            buyer_id_hash=buyer_hash,
            client_time_ms=int(datetime.now(timezone.utc).timestamp() * 1000),
            pow_nonce=solution.nonce,
            pow_difficulty=args.difficulty,
        )
    )

    print("========================================")
    print("ADMISSION PUZZLE SOLVED")
    print("========================================")
    print(f"Sale          : {args.sale_id}")
    print(f"Buyer hash    : {buyer_hash}")
    print(f"Difficulty    : {args.difficulty}")
    print(f"Nonce         : {solution.nonce}")
    print(f"Hash          : {solution.hash_hex}")
    print(f"Elapsed       : {elapsed:.2f}s")
    print("----------------------------------------")
    print(f"Payload (hex) : {memo}")
    return 0


def cmd_pow_verify(args: argparse.Namespace) -> int:
    ok = puzzle.verify(args.sale_id, _buyer_hash(args), args.difficulty, args.nonce)
    print("VALID" if ok else "INVALID")
    return 0 if ok else 1


def cmd_decode_payload(args: argparse.Namespace) -> int:
    decoded = codec.decode(args.hex.strip())
    print(
        json.dumps(
            {
                "version": decoded.version,
                "sale_id": decoded.sale_id,
                "buyer_id_hash": decoded.buyer_id_hash,
                "client_time_ms": str(decoded.client_time_ms),
                "pow_algo": decoded.pow_algo,
                "pow_difficulty": decoded.pow_difficulty,
                "pow_nonce": str(decoded.pow_nonce),
            },
            indent=2,
        )
    )
    return 0


def cmd_commit_payload(args: argparse.Namespace) -> int:
    print(merkle.create_commit_payload(args.sale_id, args.root))
    return 0


def cmd_acceptance(args: argparse.Namespace) -> int:
    settings = Settings.from_env(api_url_override=args.api_url, network_override=args.network)
    client = LedgerRestClient(
        settings.ledger_api_url,
        timeout_s=settings.timeout_s,
        max_retries=settings.max_retries,
        retry_delay_s=settings.retry_delay_s,
    )
    try:
        rows = client.get_transactions_acceptance(args.txid)
    finally:
        client.close()

    for row in rows:
        status = "accepted" if row.is_accepted else "not accepted"
        print(f"{row.txid}  {status:<12}  confirmations={row.confirmations}  block={row.accepting_block_ref or '-'}")
    return 0


def _load_sales(path: str) -> List[Sale]:
    with open(path, "r", encoding="utf-8") as f:
        raw: List[Dict[str, Any]] = json.load(f)
    sales = []
    for item in raw:
        item = dict(item)
        item["status"] = SaleStatus(item.get("status", SaleStatus.LIVE.value))
        sales.append(Sale(**item))
    return sales


def cmd_run(args: argparse.Namespace) -> int:
    settings = Settings.from_env(api_url_override=args.api_url, network_override=args.network)
    log = logging.getLogger("run")

    store = MemoryStore()
    for sale in _load_sales(args.sales):
        store.add_sale(sale)
        log.info("Loaded sale %s (%s)", sale.id, sale.status.value)

    client = LedgerRestClient(
        settings.ledger_api_url,
        timeout_s=settings.timeout_s,
        max_retries=settings.max_retries,
        retry_delay_s=settings.retry_delay_s,
    )
    service = IndexerService(store, client, settings)
    service.start()
    log.info("Indexer running against %s; Ctrl-C to stop", settings.ledger_api_url)
    try:
        deadline = time.monotonic() + args.duration if args.duration else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.5)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        client.close()

    os.makedirs(args.out_dir, exist_ok=True)
    builder = AllocationBuilder(store)
    for sale in store.list_sales(list(SaleStatus)):
        path = os.path.join(args.out_dir, f"allocation-{sale.id}.json")
        with open(path, "w", encoding="utf-8") as f:
            f.write(builder.generate(sale.id).to_json())
        print(f"Wrote snapshot: {path}")
    return 0


def cmd_verify_snapshot(args: argparse.Namespace) -> int:
    result = verify_snapshot(args.snapshot)
    print("SNAPSHOT VERIFIED")
    print(f"Sale          : {result['sale_id']}")
    print(f"Winners       : {result['winners']}")
    print(f"Merkle root   : {result['merkle_root']}")
    print(f"Commit tx     : {result['commit_txid'] or '(not committed)'}")
    return 0


def cmd_verify_proof(args: argparse.Namespace) -> int:
    result = verify_proof_response(args.proof)
    print("PROOF VERIFIED")
    print(f"Txid          : {result['txid']}")
    print(f"Final rank    : {result['final_rank']}")
    print(f"Merkle root   : {result['merkle_root']}")
    return 0


def _add_buyer_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--sale-id", required=True, help="Sale UUID.")
    p.add_argument("--difficulty", required=True, type=int, help="Leading zero bits.")
    p.add_argument("--buyer-hash", default=None, help="40-hex buyer identity hash.")
    p.add_argument("--buyer-address", default=None, help="Buyer address (hashed for you).")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="ledger-raffle",
        description="Verifiable ledger-ordered raffle tooling.",
    )
    p.add_argument("--verbose", action="store_true", help="Enable debug logging.")
    p.add_argument("--api-url", default=None, help="Override ledger API URL (else use env).")
    p.add_argument("--network", default=None, help="mainnet | testnet (else use env).")

    sub = p.add_subparsers(dest="cmd", required=True)

    s = sub.add_parser("pow-solve", help="Solve the admission puzzle and build a payload.")
    _add_buyer_args(s)
    s.add_argument("--start-nonce", type=int, default=0)
    s.add_argument("--max-iterations", type=int, default=None)
    s.set_defaults(func=cmd_pow_solve)

    v = sub.add_parser("pow-verify", help="Check a puzzle solution.")
    _add_buyer_args(v)
    v.add_argument("--nonce", required=True, type=int)
    v.set_defaults(func=cmd_pow_verify)

    d = sub.add_parser("decode-payload", help="Decode a purchase memo.")
    d.add_argument("--hex", required=True, help="Payload as hex.")
    d.set_defaults(func=cmd_decode_payload)

    c = sub.add_parser("commit-payload", help="Build the on-chain commit memo.")
    c.add_argument("--sale-id", required=True)
    c.add_argument("--root", required=True, help="Merkle root hex.")
    c.set_defaults(func=cmd_commit_payload)

    a = sub.add_parser("acceptance", help="Query acceptance of transactions.")
    a.add_argument("--txid", required=True, nargs="+")
    a.set_defaults(func=cmd_acceptance)

    r = sub.add_parser("run", help="Run the indexer loops for sales in a JSON file.")
    r.add_argument("--sales", required=True, help="JSON list of sale definitions.")
    r.add_argument("--out-dir", default="allocations", help="Where snapshots are written on exit.")
    r.add_argument("--duration", type=float, default=None, help="Stop after N seconds.")
    r.set_defaults(func=cmd_run)

    vs = sub.add_parser("verify-snapshot", help="Verify an allocation snapshot JSON.")
    vs.add_argument("--snapshot", required=True)
    vs.set_defaults(func=cmd_verify_snapshot)

    vp = sub.add_parser("verify-proof", help="Verify a Merkle proof response JSON.")
    vp.add_argument("--proof", required=True)
    vp.set_defaults(func=cmd_verify_proof)

    return p


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.verbose)
    try:
        code = args.func(args)
    except RaffleError as e:
        logging.getLogger("cli").error("%s", e)
        code = 2
    raise SystemExit(code)

"""
Offline verification for third parties.

Everything here works from published JSON alone: no store, no server.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List

from . import merkle
from .errors import ValidationError
from .merkle import MerkleLeaf, ProofStep
from .ordering import sort_key


def _load(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def check_snapshot(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    supply_total = int(snapshot["supply_total"])
    leaves: List[MerkleLeaf] = [MerkleLeaf.from_dict(w) for w in snapshot["winners"]]

    if len(leaves) > supply_total:
        raise ValidationError(
            f"Too many winners: {len(leaves)} listed for supply {supply_total}"
        )

    ranks = [leaf.final_rank for leaf in leaves]
    if ranks != list(range(1, len(leaves) + 1)):
        raise ValidationError(f"Final ranks are not a contiguous 1..n sequence: {ranks}")

    # Recreate the order from ledger facts (weight asc, then txid bytes asc).
    expected_order = sorted(leaves, key=sort_key)
    if [leaf.txid for leaf in expected_order] != [leaf.txid for leaf in leaves]:
        raise ValidationError("Winners are not in canonical order (finality weight, txid)")

    if len(leaves) < supply_total and int(snapshot.get("losers_count", 0)) != 0:
        raise ValidationError("Losers reported while supply was not exhausted")

    root = merkle.root(leaves)
    expected_root = snapshot.get("merkle_root")
    if root != expected_root:
        raise ValidationError(f"Merkle root mismatch: snapshot={expected_root} recomputed={root}")

    return {
        "ok": True,
        "sale_id": snapshot.get("sale_id"),
        "winners": len(leaves),
        "merkle_root": root,
        "commit_txid": snapshot.get("commit_txid"),
    }


def verify_snapshot(snapshot_path: str) -> Dict[str, Any]:
    return check_snapshot(_load(snapshot_path))


def check_proof_response(response: Dict[str, Any]) -> Dict[str, Any]:
    if not response.get("found"):
        raise ValidationError(f"Proof response has no proof: {response.get('message')}")

    leaf = MerkleLeaf.from_dict(response["leaf"])
    if leaf.final_rank != int(response["final_rank"]):
        raise ValidationError(
            f"Rank mismatch: response={response['final_rank']} leaf={leaf.final_rank}"
        )
    if leaf.txid.lower() != str(response["txid"]).lower():
        raise ValidationError(f"Txid mismatch: response={response['txid']} leaf={leaf.txid}")

    steps = [ProofStep(hash=s["hash"], position=s["position"]) for s in response["proof"]]
    root = response["merkle_root"]
    if not merkle.verify_leaf_inclusion(leaf, steps, root):
        raise ValidationError(f"Proof does not lead to root {root}")

    return {
        "ok": True,
        "txid": leaf.txid,
        "final_rank": leaf.final_rank,
        "merkle_root": root,
        "commit_txid": response.get("commit_txid"),
    }


def verify_proof_response(proof_path: str) -> Dict[str, Any]:
    return check_proof_response(_load(proof_path))

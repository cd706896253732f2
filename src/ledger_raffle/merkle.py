"""
Merkle commitment over a sale's winners list.

leaf  = sha256("finalRank|txid|acceptingBlockRef|finalityWeight|buyerIdHash")
node  = sha256(min(a, b) + max(a, b))   over the lowercase hex digests
empty = sha256("EMPTY_TREE")

An odd node at any level is paired with itself. Pair hashing is order
independent; proofs still record the sibling side so verifiers can replay
them step by step.
"""

from __future__ import annotations

import binascii
import hashlib
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from .errors import ValidationError
from .project_constants import COMMIT_TAG, COMMIT_VERSION, EMPTY_TREE_SENTINEL

LEFT = "left"
RIGHT = "right"


@dataclass(frozen=True)
class MerkleLeaf:
    final_rank: int
    txid: str
    accepting_block_ref: Optional[str]
    finality_weight: Optional[int]
    buyer_id_hash: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "final_rank": self.final_rank,
            "txid": self.txid,
            "accepting_block_ref": self.accepting_block_ref,
            # big int; store as string for safety
            "finality_weight": None if self.finality_weight is None else str(self.finality_weight),
            "buyer_id_hash": self.buyer_id_hash,
        }

    @staticmethod
    def from_dict(d: Dict[str, Any]) -> "MerkleLeaf":
        weight = d.get("finality_weight")
        return MerkleLeaf(
            final_rank=int(d["final_rank"]),
            txid=str(d["txid"]),
            accepting_block_ref=d.get("accepting_block_ref"),
            finality_weight=None if weight is None else int(weight),
            buyer_id_hash=d.get("buyer_id_hash"),
        )


@dataclass(frozen=True)
class ProofStep:
    hash: str
    position: str  # side of the sibling: "left" | "right"

    def to_dict(self) -> Dict[str, str]:
        return {"hash": self.hash, "position": self.position}


@dataclass(frozen=True)
class MerkleProof:
    leaf: str
    leaf_index: int
    steps: List[ProofStep]
    root: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf": self.leaf,
            "leaf_index": self.leaf_index,
            "proof": [s.to_dict() for s in self.steps],
            "root": self.root,
        }


@dataclass(frozen=True)
class CommitPayload:
    sale_id: str
    merkle_root: str


def _sha256_hex(message: str) -> str:
    return hashlib.sha256(message.encode("utf-8")).hexdigest()


def hash_pair(a: str, b: str) -> str:
    first, second = (a, b) if a < b else (b, a)
    return _sha256_hex(first + second)


def leaf_hash(leaf: MerkleLeaf) -> str:
    data = "|".join(
        [
            str(leaf.final_rank),
            leaf.txid,
            leaf.accepting_block_ref or "",
            "" if leaf.finality_weight is None else str(leaf.finality_weight),
            leaf.buyer_id_hash or "",
        ]
    )
    return _sha256_hex(data)


def build_tree(leaves: Sequence[MerkleLeaf]) -> List[List[str]]:
    """All levels, leaf hashes first, root level last."""
    if not leaves:
        return [[_sha256_hex(EMPTY_TREE_SENTINEL)]]

    level = [leaf_hash(leaf) for leaf in leaves]
    tree = [level]
    while len(level) > 1:
        nxt: List[str] = []
        for i in range(0, len(level), 2):
            left = level[i]
            right = level[i + 1] if i + 1 < len(level) else left
            nxt.append(hash_pair(left, right))
        level = nxt
        tree.append(level)
    return tree


def root(leaves: Sequence[MerkleLeaf]) -> str:
    return build_tree(leaves)[-1][0]


def proof(leaves: Sequence[MerkleLeaf], index: int) -> Optional[MerkleProof]:
    """Inclusion proof for leaves[index], or None if index is out of range."""
    if index < 0 or index >= len(leaves):
        return None

    tree = build_tree(leaves)
    steps: List[ProofStep] = []
    current = index
    for level in tree[:-1]:
        if current % 2 == 0:
            sibling = current + 1
            if sibling < len(level):
                steps.append(ProofStep(level[sibling], RIGHT))
            else:
                # odd node, paired with itself
                steps.append(ProofStep(level[current], RIGHT))
        else:
            steps.append(ProofStep(level[current - 1], LEFT))
        current //= 2

    return MerkleProof(leaf=tree[0][index], leaf_index=index, steps=steps, root=tree[-1][0])


def fold(leaf_digest: str, steps: Sequence[ProofStep]) -> Optional[str]:
    current = leaf_digest
    for step in steps:
        if step.position == LEFT:
            current = hash_pair(step.hash, current)
        elif step.position == RIGHT:
            current = hash_pair(current, step.hash)
        else:
            return None
    return current


def verify(merkle_proof: MerkleProof, expected_root: Optional[str] = None) -> bool:
    """Replay the proof; compares against expected_root, else the proof's own root."""
    target = merkle_proof.root if expected_root is None else expected_root
    return fold(merkle_proof.leaf, merkle_proof.steps) == target


def verify_leaf_inclusion(
    leaf: MerkleLeaf, steps: Sequence[ProofStep], expected_root: str
) -> bool:
    return fold(leaf_hash(leaf), steps) == expected_root


def _normalize_root(merkle_root: str) -> str:
    value = merkle_root.lower()
    if len(value) != 64:
        raise ValidationError(f"Merkle root must be 64 hex chars, got {len(value)}")
    try:
        bytes.fromhex(value)
    except ValueError as e:
        raise ValidationError(f"Merkle root is not hex: {merkle_root!r}") from e
    return value


def create_commit_payload(sale_id: str, merkle_root: str) -> str:
    """Hex of "TKCommit|v1|{saleId}|{merkleRoot}" for the on-chain memo."""
    if not sale_id or "|" in sale_id:
        raise ValidationError(f"Invalid sale id for commit payload: {sale_id!r}")
    text = f"{COMMIT_TAG}|{COMMIT_VERSION}|{sale_id}|{_normalize_root(merkle_root)}"
    return text.encode("utf-8").hex()


def parse_commit_payload(payload_hex: str) -> Optional[CommitPayload]:
    try:
        text = binascii.unhexlify(payload_hex).decode("utf-8")
    except (binascii.Error, ValueError):
        return None

    parts = text.split("|")
    if len(parts) != 4:
        return None
    tag, version, sale_id, merkle_root = parts
    if tag != COMMIT_TAG or version != COMMIT_VERSION or not sale_id or not merkle_root:
        return None
    return CommitPayload(sale_id=sale_id, merkle_root=merkle_root)

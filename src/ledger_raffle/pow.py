"""
Admission puzzle (proof of work).

A buyer must find a nonce such that

    sha256("TickastingPoW|v1|{saleId}|{buyerIdHashHex}|{nonce}")

has at least `difficulty` leading zero bits. Expected work is 2**difficulty
hash evaluations; verification is a single hash.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Optional

from .errors import PuzzleExhausted, ValidationError
from .project_constants import DEFAULT_POW_MAX_ITERATIONS, POW_PREFIX, POW_VERSION

MAX_DIFFICULTY = 256


@dataclass(frozen=True)
class PowSolution:
    nonce: int
    hash_hex: str


def build_message(sale_id: str, buyer_id_hash: str, nonce: int) -> str:
    return f"{POW_PREFIX}|{POW_VERSION}|{sale_id}|{buyer_id_hash}|{nonce}"


def leading_zero_bits(digest: bytes) -> int:
    count = 0
    for byte in digest:
        if byte == 0:
            count += 8
            continue
        # bit_length of a non-zero byte is 1..8
        count += 8 - byte.bit_length()
        break
    return count


def _check_difficulty(difficulty: int) -> None:
    if not 0 <= difficulty <= MAX_DIFFICULTY:
        raise ValidationError(
            f"difficulty must be within 0..{MAX_DIFFICULTY}, got {difficulty}"
        )


def pow_digest(sale_id: str, buyer_id_hash: str, nonce: int) -> bytes:
    return hashlib.sha256(
        build_message(sale_id, buyer_id_hash, nonce).encode("utf-8")
    ).digest()


def verify(sale_id: str, buyer_id_hash: str, difficulty: int, nonce: int) -> bool:
    _check_difficulty(difficulty)
    if nonce < 0:
        return False
    return leading_zero_bits(pow_digest(sale_id, buyer_id_hash, nonce)) >= difficulty


def solve(
    sale_id: str,
    buyer_id_hash: str,
    difficulty: int,
    start_nonce: int = 0,
    max_iterations: Optional[int] = None,
) -> PowSolution:
    """
    Linear search from start_nonce. Synchronous and CPU bound; callers on a
    request path should run it in a worker thread.

    Raises PuzzleExhausted when max_iterations nonces were tried without
    success.
    """
    _check_difficulty(difficulty)
    if start_nonce < 0:
        raise ValidationError(f"start_nonce must be >= 0, got {start_nonce}")
    limit = DEFAULT_POW_MAX_ITERATIONS if max_iterations is None else max_iterations
    if limit < 0:
        raise ValidationError(f"max_iterations must be >= 0, got {limit}")

    for nonce in range(start_nonce, start_nonce + limit):
        digest = pow_digest(sale_id, buyer_id_hash, nonce)
        if leading_zero_bits(digest) >= difficulty:
            return PowSolution(nonce=nonce, hash_hex=digest.hex())

    raise PuzzleExhausted(limit)


def estimate_hash_count(difficulty: int) -> int:
    _check_difficulty(difficulty)
    return 2**difficulty

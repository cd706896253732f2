from __future__ import annotations

import hashlib

import pytest

from ledger_raffle import pow as puzzle
from ledger_raffle.errors import PuzzleExhausted, ValidationError

from conftest import SALE_ID

BUYER = "ab" * 20


def test_message_format() -> None:
    assert puzzle.build_message(SALE_ID, BUYER, 42) == f"TickastingPoW|v1|{SALE_ID}|{BUYER}|42"


def test_leading_zero_bits() -> None:
    assert puzzle.leading_zero_bits(b"\x00\x00\xff") == 16
    assert puzzle.leading_zero_bits(b"\x00\x01") == 15
    assert puzzle.leading_zero_bits(b"\x80") == 0
    assert puzzle.leading_zero_bits(b"\x0f\x00") == 4
    assert puzzle.leading_zero_bits(b"\x00" * 32) == 256


def test_difficulty_zero_returns_nonce_zero() -> None:
    solution = puzzle.solve(SALE_ID, BUYER, 0)
    assert solution.nonce == 0
    expected = hashlib.sha256(puzzle.build_message(SALE_ID, BUYER, 0).encode()).hexdigest()
    assert solution.hash_hex == expected


@pytest.mark.parametrize(
    "difficulty",
    [*range(0, 17), *(pytest.param(d, marks=pytest.mark.slow) for d in (18, 20, 22, 24))],
)
def test_solution_verifies(difficulty: int) -> None:
    solution = puzzle.solve(SALE_ID, BUYER, difficulty)
    assert puzzle.verify(SALE_ID, BUYER, difficulty, solution.nonce)
    assert puzzle.leading_zero_bits(bytes.fromhex(solution.hash_hex)) >= difficulty


def test_every_nonce_before_the_solution_fails() -> None:
    solution = puzzle.solve(SALE_ID, BUYER, 10)
    for nonce in range(solution.nonce):
        assert not puzzle.verify(SALE_ID, BUYER, 10, nonce)


def test_digest_is_bound_to_sale_and_buyer() -> None:
    base = puzzle.pow_digest(SALE_ID, BUYER, 7)
    assert puzzle.pow_digest(SALE_ID, "cd" * 20, 7) != base
    assert puzzle.pow_digest("00000000-0000-4000-8000-000000000000", BUYER, 7) != base
    assert puzzle.pow_digest(SALE_ID, BUYER, 8) != base


def test_start_nonce_is_honoured() -> None:
    solution = puzzle.solve(SALE_ID, BUYER, 0, start_nonce=1000)
    assert solution.nonce == 1000


def test_iteration_cap_raises_puzzle_exhausted() -> None:
    with pytest.raises(PuzzleExhausted) as exc:
        puzzle.solve(SALE_ID, BUYER, 24, max_iterations=50)
    assert exc.value.max_iterations == 50


def test_bad_difficulty_is_rejected() -> None:
    with pytest.raises(ValidationError):
        puzzle.verify(SALE_ID, BUYER, -1, 0)
    with pytest.raises(ValidationError):
        puzzle.solve(SALE_ID, BUYER, 257)


def test_negative_nonce_never_verifies() -> None:
    assert not puzzle.verify(SALE_ID, BUYER, 0, -1)


def test_estimate_hash_count() -> None:
    assert puzzle.estimate_hash_count(18) == 262_144

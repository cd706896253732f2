"""
Purchase memo codec (v1).

Fixed 59-byte layout, all integers big-endian:

    magic(4) "TKS1" | version(1) | saleId(16, UUID bytes) | buyerIdHash(20)
    | clientTimeMs(8) | powAlgo(1) | powDifficulty(1) | powNonce(8)
"""

from __future__ import annotations

import binascii
import hashlib
import struct
import uuid
from dataclasses import dataclass
from typing import Union

from .errors import (
    PayloadError,
    PayloadLengthError,
    PayloadMagicError,
    PayloadVersionError,
)
from .project_constants import (
    BUYER_ID_HASH_BYTES,
    PAYLOAD_LENGTH,
    PAYLOAD_MAGIC,
    PAYLOAD_VERSION,
    POW_ALGO_SHA256,
)

_LAYOUT = struct.Struct(">4sB16s20sQBBQ")

_UINT64_MAX = 2**64 - 1


@dataclass(frozen=True)
class PurchasePayload:
    sale_id: str  # canonical UUID string
    buyer_id_hash: str  # 40 lowercase hex chars
    client_time_ms: int
    pow_nonce: int
    pow_difficulty: int
    pow_algo: int = POW_ALGO_SHA256
    version: int = PAYLOAD_VERSION


def buyer_id_hash(address: str) -> str:
    """First 20 bytes of sha256(address), hex."""
    return hashlib.sha256(address.encode("utf-8")).digest()[:BUYER_ID_HASH_BYTES].hex()


def _sale_id_bytes(sale_id: str) -> bytes:
    try:
        return uuid.UUID(sale_id).bytes
    except ValueError as e:
        raise PayloadError(f"Invalid sale id (expected UUID): {sale_id!r}") from e


def _buyer_hash_bytes(value: str) -> bytes:
    if len(value) != BUYER_ID_HASH_BYTES * 2:
        raise PayloadError(
            f"buyer_id_hash must be {BUYER_ID_HASH_BYTES * 2} hex chars, got {len(value)}"
        )
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise PayloadError(f"buyer_id_hash is not hex: {value!r}") from e


def _check_range(name: str, value: int, upper: int) -> None:
    if not 0 <= value <= upper:
        raise PayloadError(f"{name} out of range 0..{upper}: {value}")


def encode(payload: PurchasePayload) -> bytes:
    _check_range("version", payload.version, 0xFF)
    _check_range("client_time_ms", payload.client_time_ms, _UINT64_MAX)
    _check_range("pow_algo", payload.pow_algo, 0xFF)
    _check_range("pow_difficulty", payload.pow_difficulty, 0xFF)
    _check_range("pow_nonce", payload.pow_nonce, _UINT64_MAX)
    return _LAYOUT.pack(
        PAYLOAD_MAGIC,
        payload.version,
        _sale_id_bytes(payload.sale_id),
        _buyer_hash_bytes(payload.buyer_id_hash),
        payload.client_time_ms,
        payload.pow_algo,
        payload.pow_difficulty,
        payload.pow_nonce,
    )


def encode_hex(payload: PurchasePayload) -> str:
    return encode(payload).hex()


def decode(raw: Union[bytes, str]) -> PurchasePayload:
    """
    Accepts raw bytes or a hex string.

    Raises PayloadLengthError, PayloadMagicError or PayloadVersionError so
    callers can tell "not our format" apart from "corrupted".
    """
    if isinstance(raw, str):
        if len(raw) != PAYLOAD_LENGTH * 2:
            raise PayloadLengthError(
                f"Invalid payload length: expected {PAYLOAD_LENGTH * 2} hex chars, got {len(raw)}"
            )
        try:
            data = binascii.unhexlify(raw)
        except (binascii.Error, ValueError) as e:
            raise PayloadError(f"Payload is not valid hex: {e}") from e
    else:
        data = bytes(raw)

    if len(data) != PAYLOAD_LENGTH:
        raise PayloadLengthError(
            f"Invalid payload length: expected {PAYLOAD_LENGTH} bytes, got {len(data)}"
        )

    magic, version, sale_id, buyer_hash, client_time_ms, algo, difficulty, nonce = (
        _LAYOUT.unpack(data)
    )
    if magic != PAYLOAD_MAGIC:
        raise PayloadMagicError(f"Invalid magic: expected {PAYLOAD_MAGIC!r}, got {magic!r}")
    if version != PAYLOAD_VERSION:
        raise PayloadVersionError(f"Unsupported version: {version}")

    return PurchasePayload(
        sale_id=str(uuid.UUID(bytes=sale_id)),
        buyer_id_hash=buyer_hash.hex(),
        client_time_ms=client_time_ms,
        pow_nonce=nonce,
        pow_difficulty=difficulty,
        pow_algo=algo,
        version=version,
    )

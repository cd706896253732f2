"""
Public, wire-level parameters of the raffle.

These values are part of the auditable contract: clients solve puzzles and
encode payloads against them, and third parties recompute Merkle roots with
them. Changing any of them breaks compatibility and MUST be announced.
"""

# Admission puzzle: sha256("TickastingPoW|v1|{saleId}|{buyerIdHash}|{nonce}")
POW_PREFIX = "TickastingPoW"
POW_VERSION = "v1"
POW_ALGO_SHA256 = 0x01
DEFAULT_POW_MAX_ITERATIONS = 2**32

# On-chain memo layout (59 bytes total)
PAYLOAD_MAGIC = b"TKS1"
PAYLOAD_VERSION = 0x01
PAYLOAD_LENGTH = 59
BUYER_ID_HASH_BYTES = 20

# Merkle commitment
COMMIT_TAG = "TKCommit"
COMMIT_VERSION = "v1"
EMPTY_TREE_SENTINEL = "EMPTY_TREE"

# Published ordering rule (plain text, shown on the audit page)
ORDERING_PRIMARY = "acceptingBlock.finalityWeight asc (missing weight sorts last)"
ORDERING_TIEBREAKER = "txid bytewise lexicographic asc"

# Acceptance tracking
DEFAULT_BATCH_SIZE = 100

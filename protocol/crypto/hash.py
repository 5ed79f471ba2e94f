# MIT License
# Copyright (c) 2025 Hashborn

import hashlib
from typing import Any, List

FIELD_SEPARATOR = "|"


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash_fields(*fields: Any) -> str:
    """Hex SHA256 over the fields joined with FIELD_SEPARATOR (None hashes as "")."""
    payload = FIELD_SEPARATOR.join("" if f is None else str(f) for f in fields)
    return sha256(payload.encode("utf-8")).hex()


def state_leaf(kind: str, *fields: Any) -> bytes:
    """Merkle leaf for one state entry, e.g. state_leaf("tok", address, balance)."""
    return bytes.fromhex(hash_fields(kind, *fields))


def merkle_root(hashes: List[bytes]) -> bytes:
    """
    Merkle root of 32-byte hashes. An odd node is paired with itself.

    Empty input gives 32 zero bytes.
    """
    if not hashes:
        return b'\x00' * 32

    level = list(hashes)
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [sha256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]

# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import List
from .tx import Transaction
from .staking import LogEntry
from ..crypto.hash import hash_fields

class BlockHeader(BaseModel):
    height: int                 # block number
    prev_hash: str              # hex string of SHA256 of previous block
    timestamp: int              # simulated unix time
    chain_id: str               # "stakeledger-devnet-1"

    tx_root: str                # Merkle root of all txs
    state_root: str             # Merkle root of state (accounts + stakes)

    def hash(self) -> str:
        # Important: hash is calculated only on header, without body
        return hash_fields(self.height, self.prev_hash, self.timestamp, self.chain_id, self.tx_root, self.state_root)

class Block(BaseModel):
    header: BlockHeader
    txs: List[Transaction]
    logs: List[LogEntry] = Field(default_factory=list)  # emitted by txs, in order

    def hash(self) -> str:
        return self.header.hash()

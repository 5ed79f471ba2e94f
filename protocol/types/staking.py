# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import Any, Dict, List
from .common import EventType


class StakeAccount(BaseModel):
    """Per-address position held by the staking ledger."""
    address: str
    staked_balance: int = 0     # principal in minimal token units
    last_updated_at: int = 0    # block timestamp of the last settlement
    accrued_reward: int = 0     # settled but not yet claimed
    claimed_total: int = 0      # never decreases


class LogEntry(BaseModel):
    """Event emitted by the token or the ledger during a transaction."""
    event: EventType
    address: str                # emitter (token or ledger address)
    args: Dict[str, Any] = Field(default_factory=dict)

    # Filled in by the chain once the transaction is mined
    block_height: int = -1
    tx_hash: str = ""
    log_index: int = 0


class OpResult(BaseModel):
    """Return value of a state-changing call: its result plus the logs it emitted, in order."""
    value: int = 0
    logs: List[LogEntry] = Field(default_factory=list)

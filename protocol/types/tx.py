# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel, Field
from typing import Optional, Dict, Any
from ..crypto.hash import hash_fields
from .common import TxType


class Transaction(BaseModel):
    tx_type: TxType
    from_address: str
    to_address: Optional[str] = None  # Ledger/token address for contract calls
    amount: int = 0       # token amount in minimal units (10^-18)
    value: int = 0        # native value attached to the call
    nonce: int = 0
    payload: Dict[str, Any] = Field(default_factory=dict)  # Extra data (e.g. spender)

    def hash(self) -> str:
        return hash_fields(
            self.tx_type.value,
            self.from_address,
            self.to_address,
            self.amount,
            self.value,
            self.nonce,
            ",".join(f"{k}={self.payload[k]}" for k in sorted(self.payload)),
        )

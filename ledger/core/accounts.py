# MIT License
# Copyright (c) 2025 Hashborn

from pydantic import BaseModel

class Account(BaseModel):
    """Native-currency account of the local chain."""
    address: str
    balance: int = 0
    nonce: int = 0

# MIT License
# Copyright (c) 2025 Hashborn

from enum import Enum
from typing import Optional


class TxType(str, Enum):
    TRANSFER = "TRANSFER"              # Native value transfer
    TOKEN_TRANSFER = "TOKEN_TRANSFER"
    TOKEN_APPROVE = "TOKEN_APPROVE"

    # Staking ledger calls
    STAKE = "STAKE"
    CLAIM = "CLAIM"
    COMPOUND = "COMPOUND"
    WITHDRAW = "WITHDRAW"


class EventType(str, Enum):
    # Token events
    TRANSFER = "Transfer"
    APPROVAL = "Approval"

    # Staking events
    STAKE = "Stake"
    CLAIM = "Claim"
    COMPOUND = "Compound"
    WITHDRAW = "Withdraw"


class ProtocolError(Exception):
    pass


class ValidationError(ProtocolError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvalidTransaction(ValidationError):
    pass


class StakingError(ProtocolError):
    """Base class for failures raised by the token or the staking ledger."""


class InsufficientBalance(StakingError):
    """Raised when an account holds less than an operation needs."""

    def __init__(self, account: str, balance: int, needed: int, message: Optional[str] = None):
        self.account = account
        self.balance = balance
        self.needed = needed
        super().__init__(message or f"Insufficient balance: {account} has {balance}, needs {needed}")


class InsufficientRewardPool(InsufficientBalance):
    """The custody holds too few spare tokens to back a reward."""

    def __init__(self, account: str, balance: int, needed: int):
        super().__init__(
            account, balance, needed,
            message=f"Reward pool exhausted: {account} has {balance} spare, needs {needed}",
        )


class InsufficientAllowance(StakingError):
    def __init__(self, spender: str, allowance: int, needed: int):
        self.spender = spender
        self.allowance = allowance
        self.needed = needed
        super().__init__(f"Insufficient allowance: {spender} may spend {allowance}, needs {needed}")


class InsufficientReward(StakingError):
    def __init__(self, account: str):
        self.account = account
        super().__init__(f"No reward to claim for {account}")


class UnsupportedTokenReceived(StakingError):
    def __init__(self, sender: str, value: int):
        self.sender = sender
        self.value = value
        super().__init__(f"Native value not accepted: {sender} sent {value}")

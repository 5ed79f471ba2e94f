# MIT License
# Copyright (c) 2025 Hashborn

"""
Fungible token (ERC20-like) holding the balances the staking ledger takes custody of.
"""
from typing import Dict
import logging
from pydantic import BaseModel, Field

from protocol.config.params import DECIMALS
from protocol.types.common import EventType, InsufficientBalance, InsufficientAllowance, InvalidAmount
from protocol.types.staking import LogEntry, OpResult

logger = logging.getLogger(__name__)


class TokenState(BaseModel):
    balances: Dict[str, int] = Field(default_factory=dict)
    # owner -> spender -> amount
    allowances: Dict[str, Dict[str, int]] = Field(default_factory=dict)
    total_supply: int = 0


class FungibleToken:
    def __init__(self, address: str, name: str, symbol: str, decimals: int = DECIMALS, state: TokenState = None):
        self.address = address
        self.name = name
        self.symbol = symbol
        self.decimals = decimals
        self.state = state if state is not None else TokenState()

    def clone(self) -> 'FungibleToken':
        """Creates an independent copy (for simulation)."""
        return FungibleToken(self.address, self.name, self.symbol, self.decimals,
                             self.state.model_copy(deep=True))

    # --- Views ---
    @property
    def total_supply(self) -> int:
        return self.state.total_supply

    def balance_of(self, account: str) -> int:
        return self.state.balances.get(account, 0)

    def allowance(self, owner: str, spender: str) -> int:
        return self.state.allowances.get(owner, {}).get(spender, 0)

    # --- Mutations ---
    def mint(self, to: str, amount: int) -> OpResult:
        """Creates new supply. Only used when the chain is set up."""
        if amount < 0:
            raise InvalidAmount(f"Mint amount must be non-negative, got {amount}")
        self.state.balances[to] = self.balance_of(to) + amount
        self.state.total_supply += amount
        logger.debug(f"Minted {amount} {self.symbol} to {to}")
        return OpResult(value=amount, logs=[self._transfer_log("", to, amount)])

    def approve(self, owner: str, spender: str, amount: int) -> OpResult:
        if amount < 0:
            raise InvalidAmount(f"Approval amount must be non-negative, got {amount}")
        self.state.allowances.setdefault(owner, {})[spender] = amount
        log = LogEntry(
            event=EventType.APPROVAL,
            address=self.address,
            args={"owner": owner, "spender": spender, "value": amount},
        )
        return OpResult(value=amount, logs=[log])

    def transfer(self, sender: str, to: str, amount: int) -> OpResult:
        self._check_transfer(sender, amount)
        return self._move(sender, to, amount)

    def transfer_from(self, spender: str, owner: str, to: str, amount: int) -> OpResult:
        """
        Moves `amount` from `owner` to `to` on behalf of `spender`.

        Raises:
            InsufficientAllowance: spender was approved for less than amount
            InsufficientBalance: owner holds less than amount
        """
        allowed = self.allowance(owner, spender)
        if allowed < amount:
            raise InsufficientAllowance(spender, allowed, amount)
        self._check_transfer(owner, amount)

        self.state.allowances[owner][spender] = allowed - amount
        return self._move(owner, to, amount)

    def _check_transfer(self, sender: str, amount: int):
        if amount < 0:
            raise InvalidAmount(f"Transfer amount must be non-negative, got {amount}")
        balance = self.balance_of(sender)
        if balance < amount:
            raise InsufficientBalance(sender, balance, amount)

    def _move(self, sender: str, to: str, amount: int) -> OpResult:
        self.state.balances[sender] = self.balance_of(sender) - amount
        self.state.balances[to] = self.balance_of(to) + amount
        return OpResult(value=amount, logs=[self._transfer_log(sender, to, amount)])

    def _transfer_log(self, sender: str, to: str, amount: int) -> LogEntry:
        return LogEntry(
            event=EventType.TRANSFER,
            address=self.address,
            args={"from": sender, "to": to, "value": amount},
        )

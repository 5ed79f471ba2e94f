# MIT License
# Copyright (c) 2025 Hashborn

"""
Staking ledger with time-proportional reward accrual.

Accounts move tokens into the ledger's custody with `stake()`. Every staked
unit earns `reward_rate_per_second` (fixed-point, see RATE_PRECISION) per
second until the position is settled again. Rewards settled by a later
stake or withdraw are kept in `accrued_reward` until claimed or compounded.

All mutating calls validate before they touch state, so a raised error
leaves the ledger and the token unchanged.
"""
from typing import Dict, List
import logging
from pydantic import BaseModel, Field

from protocol.types.common import (
    EventType,
    InsufficientBalance,
    InsufficientReward,
    InsufficientRewardPool,
    InvalidAmount,
    UnsupportedTokenReceived,
)
from protocol.types.staking import StakeAccount, LogEntry, OpResult
from .rewards import calculate_reward
from .token import FungibleToken

logger = logging.getLogger(__name__)


class LedgerState(BaseModel):
    accounts: Dict[str, StakeAccount] = Field(default_factory=dict)
    total_staked: int = 0
    total_claimed: int = 0


class StakingLedger:
    def __init__(self, address: str, token: FungibleToken, reward_rate_per_second: int, state: LedgerState = None):
        if reward_rate_per_second < 0:
            raise ValueError(f"reward_rate_per_second must be non-negative, got {reward_rate_per_second}")
        self.address = address
        self.token = token
        self.reward_rate_per_second = reward_rate_per_second
        self.state = state if state is not None else LedgerState()

    def clone(self, token: FungibleToken) -> 'StakingLedger':
        """Copies the ledger, bound to `token` (normally the clone of the current token)."""
        return StakingLedger(self.address, token, self.reward_rate_per_second,
                             self.state.model_copy(deep=True))

    def get_account(self, address: str) -> StakeAccount:
        if address in self.state.accounts:
            return self.state.accounts[address]
        return StakeAccount(address=address)

    # --- Views ---
    def get_balance(self, account: str) -> int:
        return self.get_account(account).staked_balance

    def get_last_updated_at(self, account: str) -> int:
        return self.get_account(account).last_updated_at

    def get_claimed(self, account: str) -> int:
        return self.get_account(account).claimed_total

    def rewards(self, account: str, now: int) -> int:
        """Pending (unclaimed) reward of `account` at block time `now`."""
        return self._pending(self.get_account(account), now)

    def total_rewards(self, now: int) -> int:
        """Sum of pending rewards over every account."""
        return sum(self._pending(acc, now) for acc in self.state.accounts.values())

    @property
    def total_staked(self) -> int:
        return self.state.total_staked

    @property
    def total_claimed(self) -> int:
        return self.state.total_claimed

    def reward_reserve(self) -> int:
        """Custody tokens not backing staked principal."""
        return self.token.balance_of(self.address) - self.state.total_staked

    def stakers(self) -> List[StakeAccount]:
        return [acc for acc in self.state.accounts.values() if acc.staked_balance > 0]

    # --- Mutations ---
    def stake(self, account: str, amount: int, now: int) -> OpResult:
        if amount <= 0:
            raise InvalidAmount(f"Stake amount must be positive, got {amount}")

        # Pulls the tokens first: the token validates allowance and balance before moving anything
        transfer = self.token.transfer_from(self.address, account, self.address, amount)

        acc = self.get_account(account)
        self._settle(acc, now)
        acc.staked_balance += amount
        self.state.total_staked += amount
        self._set_account(acc)

        logger.info(f"Stake: {account} +{amount} (balance {acc.staked_balance})")
        return OpResult(value=amount, logs=transfer.logs + [
            self._log(EventType.STAKE, account=account, amount=amount),
        ])

    def claim(self, account: str, now: int) -> OpResult:
        acc = self.get_account(account)
        reward = self._pending(acc, now)
        if reward == 0:
            raise InsufficientReward(account)
        self._check_reserve(reward)

        transfer = self.token.transfer(self.address, account, reward)

        acc.accrued_reward = 0
        acc.last_updated_at = now
        acc.claimed_total += reward
        self.state.total_claimed += reward
        self._set_account(acc)

        logger.info(f"Claim: {account} received {reward} (claimed total {acc.claimed_total})")
        return OpResult(value=reward, logs=transfer.logs + [
            self._log(EventType.CLAIM, account=account, amount=reward),
        ])

    def compound(self, account: str, now: int) -> OpResult:
        acc = self.get_account(account)
        reward = self._pending(acc, now)
        self._check_reserve(reward)

        acc.accrued_reward = 0
        acc.last_updated_at = now
        acc.staked_balance += reward
        self.state.total_staked += reward
        self._set_account(acc)

        logger.info(f"Compound: {account} +{reward} (balance {acc.staked_balance})")
        return OpResult(value=acc.staked_balance, logs=[
            self._log(EventType.COMPOUND, account=account, new_balance=acc.staked_balance),
        ])

    def withdraw(self, account: str, amount: int, now: int) -> OpResult:
        if amount <= 0:
            raise InvalidAmount(f"Withdraw amount must be positive, got {amount}")
        acc = self.get_account(account)
        if amount > acc.staked_balance:
            raise InsufficientBalance(account, acc.staked_balance, amount)

        transfer = self.token.transfer(self.address, account, amount)

        # Pending reward stays claimable; only principal leaves custody
        self._settle(acc, now)
        acc.staked_balance -= amount
        self.state.total_staked -= amount
        self._set_account(acc)

        logger.info(f"Withdraw: {account} -{amount} (balance {acc.staked_balance})")
        return OpResult(value=amount, logs=transfer.logs + [
            self._log(EventType.WITHDRAW, account=account, amount=amount),
        ])

    def receive(self, sender: str, value: int):
        """Direct native-currency transfers are rejected."""
        raise UnsupportedTokenReceived(sender, value)

    # --- Internals ---
    def _pending(self, acc: StakeAccount, now: int) -> int:
        elapsed = now - acc.last_updated_at
        return acc.accrued_reward + calculate_reward(acc.staked_balance, self.reward_rate_per_second, elapsed)

    def _settle(self, acc: StakeAccount, now: int):
        acc.accrued_reward = self._pending(acc, now)
        acc.last_updated_at = now

    def _check_reserve(self, reward: int):
        reserve = self.reward_reserve()
        if reward > reserve:
            raise InsufficientRewardPool(self.address, reserve, reward)

    def _set_account(self, acc: StakeAccount):
        self.state.accounts[acc.address] = acc

    def _log(self, event: EventType, **args) -> LogEntry:
        return LogEntry(event=event, address=self.address, args=args)

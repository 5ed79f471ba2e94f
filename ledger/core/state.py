# MIT License
# Copyright (c) 2025 Hashborn

from typing import Dict
import logging
from .accounts import Account
from .token import FungibleToken, TokenState
from .staking import StakingLedger, LedgerState
from protocol.types.tx import Transaction
from protocol.types.common import TxType, InvalidTransaction, InsufficientBalance, InvalidAmount
from protocol.types.staking import OpResult
from protocol.crypto.hash import sha256, state_leaf, merkle_root
from protocol.crypto.addresses import is_valid_address
from ..storage.db import StorageDB

logger = logging.getLogger(__name__)

STAKING_CALLS = (TxType.STAKE, TxType.CLAIM, TxType.COMPOUND, TxType.WITHDRAW)

class WorldState:
    """Native accounts, the token and the staking ledger, mutated together one transaction at a time."""

    def __init__(self, db: StorageDB, token: FungibleToken, staking: StakingLedger,
                 accounts: Dict[str, Account] = None):
        self.db = db
        self.token = token
        self.staking = staking
        # Cache for modified/accessed accounts: address -> Account
        self._accounts: Dict[str, Account] = accounts if accounts is not None else {}

    def clone(self) -> 'WorldState':
        """Creates a copy of the state (for simulation)."""
        new_accounts = {k: v.model_copy() for k, v in self._accounts.items()}
        token = self.token.clone()
        return WorldState(self.db, token, self.staking.clone(token), new_accounts)

    def get_account(self, address: str) -> Account:
        if address in self._accounts:
            return self._accounts[address]

        # Try load from DB
        raw_json = self.db.get_state(f"acc:{address}")
        if raw_json:
            acc = Account.model_validate_json(raw_json)
            self._accounts[address] = acc
            return acc

        # Return generic new account
        return Account(address=address)

    def set_account(self, account: Account):
        """Updates account in local cache."""
        self._accounts[account.address] = account

    def persist(self):
        """Writes accounts, token balances and stakes to DB."""
        items = {f"acc:{addr}": acc.model_dump_json() for addr, acc in self._accounts.items()}
        items["token"] = self.token.state.model_dump_json()
        items["ledger"] = self.staking.state.model_dump_json()
        self.db.set_state_many(items)

    def load(self) -> bool:
        """Restores token and ledger state from DB. Returns False when nothing was stored."""
        token_json = self.db.get_state("token")
        ledger_json = self.db.get_state("ledger")
        if not token_json or not ledger_json:
            return False
        self.token.state = TokenState.model_validate_json(token_json)
        self.staking.state = LedgerState.model_validate_json(ledger_json)
        self._accounts = {}
        return True

    def apply_transaction(self, tx: Transaction, timestamp: int) -> OpResult:
        """
        Applies transaction to state (in-memory). Raises error on failure.

        Args:
            tx: Transaction to apply
            timestamp: Timestamp of the block the transaction is mined in
        """
        # Contract custody moves only through the contracts' own operations
        if tx.from_address in (self.token.address, self.staking.address):
            raise InvalidTransaction(f"{tx.from_address} is a contract and cannot send transactions")

        sender = self.get_account(tx.from_address)

        # 1. Nonce check
        if tx.nonce != sender.nonce:
            raise InvalidTransaction(f"Invalid nonce: expected {sender.nonce}, got {tx.nonce}")

        if tx.value < 0 or tx.amount < 0:
            raise InvalidAmount(f"Negative amount/value in tx {tx.hash()[:16]}")

        # 2. Native value
        if tx.value > 0:
            if tx.to_address == self.staking.address or tx.tx_type in STAKING_CALLS:
                self.staking.receive(tx.from_address, tx.value)
            if tx.to_address == self.token.address or tx.tx_type != TxType.TRANSFER:
                raise InvalidTransaction(f"{tx.tx_type.value} does not accept native value")
            if sender.balance < tx.value:
                raise InsufficientBalance(tx.from_address, sender.balance, tx.value)

        # 3. Route by Type
        if tx.tx_type == TxType.TRANSFER:
            self._check_recipient(tx.to_address)
            sender.balance -= tx.value
            self.set_account(sender)
            recipient = self.get_account(tx.to_address)
            recipient.balance += tx.value
            self.set_account(recipient)
            result = OpResult(value=tx.value)

        elif tx.tx_type == TxType.TOKEN_TRANSFER:
            self._check_recipient(tx.to_address)
            result = self.token.transfer(tx.from_address, tx.to_address, tx.amount)

        elif tx.tx_type == TxType.TOKEN_APPROVE:
            spender = tx.payload.get("spender")
            if not spender:
                raise InvalidTransaction("TOKEN_APPROVE must provide 'spender' in payload")
            self._check_recipient(spender)
            result = self.token.approve(tx.from_address, spender, tx.amount)

        elif tx.tx_type in STAKING_CALLS:
            if tx.to_address and tx.to_address != self.staking.address:
                raise InvalidTransaction(f"{tx.tx_type.value} must target the staking ledger {self.staking.address}")
            result = self._call_staking(tx, timestamp)

        else:
            raise InvalidTransaction(f"Unsupported tx type {tx.tx_type}")

        # 4. Bump nonce only once the call went through
        sender = self.get_account(tx.from_address)
        sender.nonce += 1
        self.set_account(sender)
        logger.debug(f"Applied {tx.tx_type.value} from {tx.from_address} at {timestamp}")
        return result

    def _check_recipient(self, address: str):
        if not address or not is_valid_address(address):
            raise InvalidTransaction(f"Invalid address: {address!r}")

    def _call_staking(self, tx: Transaction, timestamp: int) -> OpResult:
        if tx.tx_type == TxType.STAKE:
            return self.staking.stake(tx.from_address, tx.amount, timestamp)
        if tx.tx_type == TxType.CLAIM:
            return self.staking.claim(tx.from_address, timestamp)
        if tx.tx_type == TxType.COMPOUND:
            return self.staking.compound(tx.from_address, timestamp)
        return self.staking.withdraw(tx.from_address, tx.amount, timestamp)

    def all_accounts(self) -> Dict[str, Account]:
        """Accounts from DB with the local cache overlaid."""
        final_state: Dict[str, Account] = {}
        for k, v in self.db.get_state_by_prefix("acc:").items():
            addr = k.split(":", 1)[1]
            final_state[addr] = Account.model_validate_json(v)
        final_state.update(self._accounts)
        return final_state

    def compute_state_root(self) -> str:
        """Computes Merkle root over native accounts, token balances and stakes."""
        items = []
        for addr, acc in sorted(self.all_accounts().items()):
            items.append(state_leaf("acc", addr, acc.balance, acc.nonce))
        for addr, balance in sorted(self.token.state.balances.items()):
            items.append(state_leaf("tok", addr, balance))
        for addr, pos in sorted(self.staking.state.accounts.items()):
            items.append(state_leaf("stk", addr, pos.staked_balance, pos.last_updated_at,
                                    pos.accrued_reward, pos.claimed_total))

        if not items:
            return sha256(b"").hex()
        return merkle_root(items).hex()

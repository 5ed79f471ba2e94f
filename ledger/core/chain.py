# MIT License
# Copyright (c) 2025 Hashborn

"""
Local chain hosting the token and the staking ledger.

Every successful transaction is mined in its own block. Block timestamps
come from a simulated clock: each block is `block_interval_sec` after the
previous one unless `increase_time()` or `set_next_block_timestamp()` moved
the clock. Read-only ledger views are evaluated at the latest block's
timestamp.
"""
from typing import Optional, List, Dict, Any
import logging
import os
import json
import threading
from protocol.types.block import Block, BlockHeader
from protocol.types.tx import Transaction
from protocol.types.common import TxType, EventType, ProtocolError
from protocol.types.staking import LogEntry
from protocol.crypto.hash import merkle_root
from protocol.crypto.addresses import signer_address, contract_address, is_valid_address
from protocol.config.params import CURRENT_NETWORK, NetworkConfig
from ..storage.db import StorageDB
from ..observability import metrics
from .state import WorldState
from .token import FungibleToken
from .staking import StakingLedger
from .events import EventBus, LogFilter, event_bus
from .tx_receipt import TxReceipt, TxReceiptStore, tx_receipt_store

logger = logging.getLogger(__name__)

class LocalChain:
    def __init__(self, db_path: str = ":memory:", config: NetworkConfig = None, genesis_path: str = None,
                 bus: EventBus = None, receipts: TxReceiptStore = None):
        self.config = config or CURRENT_NETWORK
        self.db = StorageDB(db_path)
        self._lock = threading.RLock()
        self.bus = bus if bus is not None else event_bus
        self.receipts = receipts if receipts is not None else tx_receipt_store

        # Dev signers; the first one deploys the contracts and holds the initial supply
        prefix = self.config.bech32_prefix_acc
        self.accounts: List[str] = [
            signer_address(i, self.config.chain_id, prefix=prefix) for i in range(self.config.signer_count)
        ]
        if not self.accounts:
            raise ValueError("signer_count must be at least 1")
        self.deployer = self.accounts[0]

        token = FungibleToken(
            contract_address(self.deployer, 0, prefix=self.config.bech32_prefix_contract),
            self.config.token_name,
            self.config.token_symbol,
        )
        staking = StakingLedger(
            contract_address(self.deployer, 1, prefix=self.config.bech32_prefix_contract),
            token,
            self.config.reward_rate_per_second,
        )
        self.state = WorldState(self.db, token, staking)

        if genesis_path is None and db_path != ":memory:":
            genesis_path = os.path.join(os.path.dirname(db_path), "genesis.json")
        self.genesis_path = genesis_path

        self.logs: List[LogEntry] = []
        self._time_increase = 0
        self._next_timestamp: Optional[int] = None
        self._load_chain_state()

    @property
    def token(self) -> FungibleToken:
        return self.state.token

    @property
    def staking(self) -> StakingLedger:
        return self.state.staking

    def _load_chain_state(self):
        last = self.db.get_last_block()
        if last:
            self.height, self.last_hash, data = last
            self.timestamp = Block.model_validate_json(data).header.timestamp
            self.state.load()
            for h in range(self.height + 1):
                blk = self.get_block(h)
                if blk:
                    self.logs.extend(blk.logs)
            logger.info(f"Chain initialized at height {self.height} (timestamp {self.timestamp})")
        else:
            self.height = -1
            self.last_hash = "0" * 64
            self.timestamp = self.config.genesis_time
            self._apply_genesis()

    def _apply_genesis(self):
        """Mints the initial supply, funds signers and applies genesis.json if present."""
        genesis_logs = self.token.mint(self.deployer, self.config.token_initial_supply).logs

        for address in self.accounts:
            acc = self.state.get_account(address)
            acc.balance = self.config.signer_native_balance
            self.state.set_account(acc)

        data: Dict[str, Any] = {}
        if self.genesis_path and os.path.exists(self.genesis_path):
            with open(self.genesis_path, "r") as f:
                data = json.load(f)
        elif self.genesis_path:
            logger.warning(f"No genesis file at {self.genesis_path}. Using signer defaults only.")

        if "genesis_time" in data:
            self.timestamp = int(data["genesis_time"])

        for address in list(data.get("alloc", {})) + list(data.get("token_alloc", {})):
            if not is_valid_address(address, expected_prefix=self.config.bech32_prefix_acc):
                raise ValueError(f"Invalid genesis address: {address}")

        for address, amount in data.get("alloc", {}).items():
            acc = self.state.get_account(address)
            acc.balance = int(amount)
            self.state.set_account(acc)

        for address, amount in data.get("token_alloc", {}).items():
            genesis_logs += self.token.transfer(self.deployer, address, int(amount)).logs

        self._mine_block([], genesis_logs, self.timestamp)
        logger.info(
            f"Genesis applied: {self.config.token_initial_supply} {self.token.symbol} to {self.deployer}, "
            f"{len(self.accounts)} signers, {len(data.get('token_alloc', {}))} token allocations"
        )

    # --- Clock ---
    def increase_time(self, seconds: int) -> int:
        """Moves the clock forward for the next block. Returns the total pending increase."""
        if seconds < 0:
            raise ValueError(f"Cannot move time backwards ({seconds}s)")
        with self._lock:
            self._time_increase += seconds
            return self._time_increase

    def set_next_block_timestamp(self, timestamp: int):
        with self._lock:
            if timestamp <= self.timestamp:
                raise ValueError(f"Timestamp {timestamp} must be greater than latest block timestamp {self.timestamp}")
            self._next_timestamp = timestamp

    def mine(self, blocks: int = 1) -> Block:
        """Mines empty blocks, applying any pending time change to the first one."""
        if blocks < 1:
            raise ValueError("blocks must be >= 1")
        with self._lock:
            block = None
            for _ in range(blocks):
                block = self._mine_block([], [], self._consume_next_timestamp())
            return block

    def _peek_next_timestamp(self) -> int:
        if self._next_timestamp is not None:
            return self._next_timestamp
        if self._time_increase > 0:
            return self.timestamp + self._time_increase
        return self.timestamp + self.config.block_interval_sec

    def _consume_next_timestamp(self) -> int:
        ts = self._peek_next_timestamp()
        self._next_timestamp = None
        self._time_increase = 0
        return ts

    # --- Transactions ---
    def send_transaction(self, tx: Transaction) -> TxReceipt:
        """
        Executes and mines a transaction.

        Raises:
            ProtocolError: the transaction was rejected; state is unchanged
        """
        with self._lock:
            tx_hash = tx.hash()
            timestamp = self._peek_next_timestamp()

            # Apply to a copy so a failure leaves the committed state untouched
            tmp_state = self.state.clone()
            try:
                result = tmp_state.apply_transaction(tx, timestamp)
            except ProtocolError as e:
                logger.error(f"Tx {tx_hash[:16]} ({tx.tx_type.value}) failed: {e}")
                metrics.transactions_failed_total.labels(tx_type=tx.tx_type.value, error=type(e).__name__).inc()
                self.receipts.mark_failed(tx_hash, e, self.timestamp)
                self.bus.emit('tx_failed', tx_hash=tx_hash, tx=tx, error=e)
                raise

            prev_stake = self.state.staking.get_balance(tx.from_address)
            self.state = tmp_state
            block = self._mine_block([tx], result.logs, self._consume_next_timestamp(), tx_hash=tx_hash)
            metrics.transactions_total.labels(tx_type=tx.tx_type.value).inc()
            if tx.tx_type == TxType.CLAIM:
                metrics.rewards_claimed_total.inc(result.value)
            elif tx.tx_type == TxType.COMPOUND:
                metrics.rewards_compounded_total.inc(result.value - prev_stake)

            receipt = self.receipts.mark_confirmed(
                tx_hash, block.header.height, block.header.timestamp, block.logs, result.value
            )

        self.bus.emit('tx_confirmed', tx_hash=tx_hash, block_height=block.header.height, receipt=receipt)
        for log in receipt.logs:
            self.bus.emit_log(log)
        return receipt

    def _next_nonce(self, address: str) -> int:
        return self.state.get_account(address).nonce

    def _call(self, tx_type: TxType, sender: str, to: Optional[str], amount: int = 0, value: int = 0,
              payload: Dict[str, Any] = None) -> TxReceipt:
        with self._lock:
            tx = Transaction(
                tx_type=tx_type,
                from_address=sender,
                to_address=to,
                amount=amount,
                value=value,
                nonce=self._next_nonce(sender),
                payload=payload or {},
            )
            return self.send_transaction(tx)

    def approve(self, owner: str, amount: int, spender: str = None) -> TxReceipt:
        """Approves `spender` (the staking ledger by default) to pull `amount` tokens from `owner`."""
        spender = spender or self.staking.address
        return self._call(TxType.TOKEN_APPROVE, owner, self.token.address, amount, payload={"spender": spender})

    def transfer_token(self, sender: str, to: str, amount: int) -> TxReceipt:
        return self._call(TxType.TOKEN_TRANSFER, sender, to, amount)

    def fund_rewards(self, amount: int, sender: str = None) -> TxReceipt:
        """Sends tokens to the ledger's custody to pay future rewards."""
        return self.transfer_token(sender or self.deployer, self.staking.address, amount)

    def send_value(self, sender: str, to: str, value: int) -> TxReceipt:
        return self._call(TxType.TRANSFER, sender, to, value=value)

    def stake(self, account: str, amount: int) -> TxReceipt:
        return self._call(TxType.STAKE, account, self.staking.address, amount)

    def claim(self, account: str) -> TxReceipt:
        return self._call(TxType.CLAIM, account, self.staking.address)

    def compound(self, account: str) -> TxReceipt:
        return self._call(TxType.COMPOUND, account, self.staking.address)

    def withdraw(self, account: str, amount: int) -> TxReceipt:
        return self._call(TxType.WITHDRAW, account, self.staking.address, amount)

    # --- Views (latest block) ---
    def get_balance(self, account: str) -> int:
        return self.staking.get_balance(account)

    def get_last_updated_at(self, account: str) -> int:
        return self.staking.get_last_updated_at(account)

    def get_claimed(self, account: str) -> int:
        return self.staking.get_claimed(account)

    def rewards(self, account: str) -> int:
        return self.staking.rewards(account, self.timestamp)

    def total_rewards(self) -> int:
        return self.staking.total_rewards(self.timestamp)

    def total_staked(self) -> int:
        return self.staking.total_staked

    def reward_reserve(self) -> int:
        return self.staking.reward_reserve()

    def token_balance(self, account: str) -> int:
        return self.token.balance_of(account)

    def allowance(self, owner: str, spender: str = None) -> int:
        return self.token.allowance(owner, spender or self.staking.address)

    def native_balance(self, address: str) -> int:
        return self.state.get_account(address).balance

    def get_nonce(self, address: str) -> int:
        return self.state.get_account(address).nonce

    # --- Blocks, receipts, logs ---
    def _mine_block(self, txs: List[Transaction], logs: List[LogEntry], timestamp: int, tx_hash: str = "") -> Block:
        if timestamp <= self.timestamp and self.height >= 0:
            raise ValueError(f"Invalid timestamp: must be > {self.timestamp}")

        height = self.height + 1
        stamped = [
            log.model_copy(update={"block_height": height, "tx_hash": tx_hash, "log_index": i})
            for i, log in enumerate(logs)
        ]
        tx_root = merkle_root([bytes.fromhex(tx.hash()) for tx in txs]).hex()
        header = BlockHeader(
            height=height,
            prev_hash=self.last_hash,
            timestamp=timestamp,
            chain_id=self.config.chain_id,
            tx_root=tx_root,
            state_root=self.state.compute_state_root(),
        )
        block = Block(header=header, txs=txs, logs=stamped)

        self.state.persist()
        self.db.save_block(height, block.hash(), block.model_dump_json())
        self.height = height
        self.last_hash = block.hash()
        self.timestamp = timestamp
        self.logs.extend(stamped)

        metrics.blocks_total.inc()
        metrics.update_metrics(self)
        logger.info(f"Block {height} mined. Hash: {self.last_hash[:8]}... ts={timestamp} txs={len(txs)} logs={len(stamped)}")
        self.bus.emit('block_mined', block=block)
        return block

    def get_block(self, height: int) -> Optional[Block]:
        data = self.db.get_block_by_height(height)
        if data:
            return Block.model_validate_json(data)
        return None

    def get_block_by_hash(self, block_hash: str) -> Optional[Block]:
        data = self.db.get_block_by_hash(block_hash)
        if data:
            return Block.model_validate_json(data)
        return None

    def get_receipt(self, tx_hash: str) -> Optional[TxReceipt]:
        return self.receipts.get(tx_hash)

    def get_confirmations(self, tx_hash: str) -> Optional[int]:
        """Blocks on top of (and including) the one that mined `tx_hash`; None if not mined."""
        return self.receipts.get_confirmations(tx_hash, self.height)

    def get_logs(self, event: EventType = None, address: str = None, from_block: int = 0,
                 to_block: int = None, **args: Any) -> List[LogEntry]:
        """
        Returns emitted logs matching every given filter.

        Args:
            event: Event type (e.g. EventType.STAKE)
            address: Emitter address (token or ledger)
            from_block: First block height (inclusive)
            to_block: Last block height (inclusive), defaults to latest
            **args: Exact matches on log arguments (e.g. account=...)
        """
        flt = LogFilter(event=event, address=address, from_block=from_block,
                        to_block=self.height if to_block is None else to_block, args=args)
        return [log for log in self.logs if flt.matches(log)]

    def close(self):
        self.db.close()

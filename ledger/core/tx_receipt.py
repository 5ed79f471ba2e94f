"""
Transaction receipt tracking.

Stores the outcome of each submitted transaction, including the logs it
emitted, for querying after the fact.
"""
from dataclasses import dataclass, field
from typing import Optional, Dict, List
import logging
from threading import RLock

from protocol.types.staking import LogEntry

logger = logging.getLogger(__name__)


@dataclass
class TxReceipt:
    """
    Transaction receipt.

    Attributes:
        tx_hash: Transaction hash
        status: Transaction status ('confirmed', 'failed')
        block_height: Block height where TX was included (None if failed)
        timestamp: Block timestamp (simulated chain time)
        error: Error message if TX failed (None otherwise)
        error_type: Exception class name if TX failed
        logs: Events emitted by the transaction, in order
        return_value: Value returned by the call (staked amount, reward, new balance...)
    """
    tx_hash: str
    status: str  # 'confirmed', 'failed'
    block_height: Optional[int] = None
    timestamp: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    logs: List[LogEntry] = field(default_factory=list)
    return_value: int = 0

    @property
    def succeeded(self) -> bool:
        return self.status == 'confirmed'


class TxReceiptStore:
    """
    In-memory store for transaction receipts.

    Thread-safe storage with automatic cleanup of old receipts.
    """

    def __init__(self, max_receipts: int = 10000):
        """
        Initialize receipt store.

        Args:
            max_receipts: Maximum number of receipts to keep in memory
        """
        self.receipts: Dict[str, TxReceipt] = {}
        self.max_receipts = max_receipts
        self.lock = RLock()

    def mark_confirmed(self, tx_hash: str, block_height: int, timestamp: int,
                       logs: List[LogEntry], return_value: int = 0) -> TxReceipt:
        """
        Record a mined transaction.

        Args:
            tx_hash: Transaction hash
            block_height: Block height where TX was included
            timestamp: Block timestamp
            logs: Logs emitted by the transaction
            return_value: Value returned by the call

        Returns:
            Stored receipt
        """
        with self.lock:
            receipt = TxReceipt(
                tx_hash=tx_hash,
                status='confirmed',
                block_height=block_height,
                timestamp=timestamp,
                logs=list(logs),
                return_value=return_value,
            )
            self._store(receipt)
            logger.debug(f"Marked confirmed: {tx_hash[:16]}... at height {block_height}")
            return receipt

    def mark_failed(self, tx_hash: str, error: Exception, timestamp: int = 0) -> TxReceipt:
        """
        Record a rejected transaction.

        Args:
            tx_hash: Transaction hash
            error: The exception that rejected it
            timestamp: Chain time when it was rejected

        Returns:
            Stored receipt, or the existing one if the hash was already mined
        """
        with self.lock:
            existing = self.receipts.get(tx_hash)
            if existing and existing.status == 'confirmed':
                # Replay of a mined tx: the original outcome stands
                logger.warning(f"Rejected replay of confirmed tx {tx_hash[:16]}...: {error}")
                return existing

            receipt = TxReceipt(
                tx_hash=tx_hash,
                status='failed',
                timestamp=timestamp,
                error=str(error),
                error_type=type(error).__name__,
            )
            self._store(receipt)
            logger.debug(f"Marked failed: {tx_hash[:16]}... - {error}")
            return receipt

    def get(self, tx_hash: str) -> Optional[TxReceipt]:
        """
        Get receipt for transaction.

        Args:
            tx_hash: Transaction hash

        Returns:
            Receipt if found, None otherwise
        """
        with self.lock:
            return self.receipts.get(tx_hash)

    def get_confirmations(self, tx_hash: str, current_height: int) -> Optional[int]:
        """
        Get number of confirmations for a transaction.

        Returns:
            Number of confirmations, or None if TX not found or not confirmed
        """
        with self.lock:
            receipt = self.receipts.get(tx_hash)
            if not receipt or receipt.status != 'confirmed' or receipt.block_height is None:
                return None

            return current_height - receipt.block_height + 1

    def _store(self, receipt: TxReceipt) -> None:
        self.receipts[receipt.tx_hash] = receipt
        if len(self.receipts) > self.max_receipts:
            self._cleanup_old_receipts()

    def _cleanup_old_receipts(self) -> None:
        """
        Remove oldest receipts to stay under max_receipts limit.

        Removes 10% of oldest receipts when limit is exceeded.
        """
        num_to_remove = max(1, len(self.receipts) // 10)

        # Oldest first; failed receipts have no height and go first
        sorted_receipts = sorted(
            self.receipts.items(),
            key=lambda x: (x[1].timestamp, x[1].block_height or -1)
        )

        for tx_hash, _ in sorted_receipts[:num_to_remove]:
            del self.receipts[tx_hash]

        logger.info(f"Cleaned up {num_to_remove} old receipts (total: {len(self.receipts)})")

    def clear(self) -> None:
        """Clear all receipts (for testing)."""
        with self.lock:
            self.receipts.clear()
            logger.debug("Cleared all receipts")


# Global receipt store instance
tx_receipt_store = TxReceiptStore()

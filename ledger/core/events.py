# MIT License
# Copyright (c) 2025 Hashborn

"""
Chain notifications.

Two kinds of subscribers:
- lifecycle topics ('tx_confirmed', 'tx_failed', 'block_mined') receive
  keyword data from `emit()`;
- log watchers receive each matching LogEntry from `emit_log()`, filtered
  the same way `LocalChain.get_logs()` filters.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
import logging

from protocol.types.common import EventType
from protocol.types.staking import LogEntry

logger = logging.getLogger(__name__)

LIFECYCLE_TOPICS = ('tx_confirmed', 'tx_failed', 'block_mined')


@dataclass
class LogFilter:
    """Matches logs by event, emitter, block range and exact argument values."""
    event: Optional[EventType] = None
    address: Optional[str] = None
    from_block: int = 0
    to_block: Optional[int] = None
    args: Dict[str, Any] = field(default_factory=dict)

    def matches(self, log: LogEntry) -> bool:
        if log.block_height < self.from_block:
            return False
        if self.to_block is not None and log.block_height > self.to_block:
            return False
        if self.event is not None and log.event != self.event:
            return False
        if self.address is not None and log.address != self.address:
            return False
        return all(log.args.get(k) == v for k, v in self.args.items())


@dataclass
class LogWatch:
    callback: Callable[[LogEntry], Any]
    filter: LogFilter


class EventBus:
    """Synchronous pub/sub; a failing callback is logged and skipped."""

    def __init__(self):
        self.listeners: Dict[str, List[Callable]] = {}
        self.watches: List[LogWatch] = []

    # --- Lifecycle topics ---
    def subscribe(self, topic: str, callback: Callable) -> None:
        if topic not in LIFECYCLE_TOPICS:
            raise ValueError(f"Unknown topic '{topic}' (use watch() for ledger logs)")
        self.listeners.setdefault(topic, []).append(callback)
        logger.debug(f"Subscribed to {topic}")

    def unsubscribe(self, topic: str, callback: Callable) -> None:
        callbacks = self.listeners.get(topic, [])
        if callback in callbacks:
            callbacks.remove(callback)
            logger.debug(f"Unsubscribed from {topic}")

    def emit(self, topic: str, **data: Any) -> None:
        for callback in list(self.listeners.get(topic, [])):
            self._deliver(topic, callback, **data)

    # --- Ledger logs ---
    def watch(self, callback: Callable[[LogEntry], Any], event: EventType = None, address: str = None,
              **args: Any) -> LogWatch:
        """
        Calls `callback(log)` for every emitted log matching the filter.

        Returns:
            Handle to pass to unwatch()
        """
        handle = LogWatch(callback, LogFilter(event=event, address=address, args=args))
        self.watches.append(handle)
        logger.debug(f"Watching logs: event={event.value if event else '*'} address={address or '*'}")
        return handle

    def unwatch(self, handle: LogWatch) -> None:
        if handle in self.watches:
            self.watches.remove(handle)

    def emit_log(self, log: LogEntry) -> int:
        """Delivers a mined log to matching watchers. Returns how many matched."""
        matched = [w for w in self.watches if w.filter.matches(log)]
        for w in matched:
            self._deliver(log.event.value, w.callback, log)
        return len(matched)

    def clear(self) -> None:
        self.listeners.clear()
        self.watches.clear()

    def _deliver(self, name: str, callback: Callable, *args: Any, **kwargs: Any) -> None:
        try:
            callback(*args, **kwargs)
        except Exception as e:
            logger.error(f"Error in {name} callback: {e}", exc_info=True)


# Global event bus instance
event_bus = EventBus()

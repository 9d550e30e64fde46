"""
Execution-level signal dedup.

In-process set of signal ids (strategy|market|time) already handed to the
reconciliation engine. Grows monotonically for the process lifetime and is
not persisted: the alert store is the durable safeguard across restarts.
"""
from typing import Set

from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)


class SignalRegistry:
    """Set of processed signal ids owned by one service instance."""

    def __init__(self):
        self._seen: Set[str] = set()

    def __contains__(self, signal_id: str) -> bool:
        return signal_id in self._seen

    def __len__(self) -> int:
        return len(self._seen)

    def claim(self, signal_id: str) -> bool:
        """
        Mark a signal as processed.

        Returns False when it was already claimed. Check and mark happen without
        an await in between, so two tasks can never both claim the same id.
        """
        if signal_id in self._seen:
            logger.info("SIGNAL_DUPLICATE_IGNORED", signal_id=signal_id)
            return False
        self._seen.add(signal_id)
        return True

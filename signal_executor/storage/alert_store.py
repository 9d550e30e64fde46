"""
Inbound alert dedup store.

Persists the set of alert keys (strategy_market_time) that were already
accepted, so a webhook re-delivered after a restart is still recognized.

Design decisions:
- JSON file (not DB); the core only needs get/set-by-key semantics
- Atomic write via temp file + rename
- File lock for concurrent access safety
- Keys are marked seen BEFORE execution starts: a valid alert whose
  execution later fails is not retried on re-delivery
"""
import asyncio
import fcntl
import json
import os
from pathlib import Path
from typing import Dict, Optional

from signal_executor.constants import DEFAULT_ALERT_STORE_PATH
from signal_executor.domain.protocols import IdempotencyStore
from signal_executor.monitoring.logger import get_logger

logger = get_logger(__name__)


def _alert_store_path() -> Path:
    """Store path: ALERT_STORE_PATH env, or data/executed-alerts.json under the cwd."""
    env_path = os.environ.get("ALERT_STORE_PATH")
    if env_path:
        return Path(env_path)
    return Path.cwd() / DEFAULT_ALERT_STORE_PATH


class JsonFileAlertStore:
    """Key -> seen mapping in a single JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self._path = Path(path) if path else _alert_store_path()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, bool]:
        """Load the mapping from disk. Missing file → empty mapping."""
        if not self._path.exists():
            return {}

        try:
            with open(self._path, "r") as f:
                fcntl.flock(f, fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
        except (json.JSONDecodeError, ValueError) as e:
            corrupt_path = self._path.with_suffix(".corrupt")
            logger.critical(
                "ALERT_STORE_CORRUPT_RESET",
                error=str(e),
                path=str(self._path),
                moved_to=str(corrupt_path),
            )
            self._path.replace(corrupt_path)
            return {}
        except OSError as e:
            logger.critical("ALERT_STORE_READ_FAILED", error=str(e), path=str(self._path))
            raise

        if not isinstance(data, dict):
            logger.critical("ALERT_STORE_NOT_A_MAPPING", path=str(self._path))
            return {}
        return {str(k): bool(v) for k, v in data.items()}

    def save(self, mapping: Dict[str, bool]) -> None:
        """Atomically persist the mapping to disk."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_suffix(".tmp")

        try:
            with open(tmp_path, "w") as f:
                fcntl.flock(f, fcntl.LOCK_EX)
                try:
                    json.dump(mapping, f, indent=2)
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)
            tmp_path.replace(self._path)
        except OSError as e:
            logger.critical("ALERT_STORE_WRITE_FAILED", error=str(e), path=str(self._path))
            raise


class MemoryAlertStore:
    """In-memory store for tests and dry runs."""

    def __init__(self, initial: Optional[Dict[str, bool]] = None):
        self.data: Dict[str, bool] = dict(initial or {})
        self.saves = 0

    def load(self) -> Dict[str, bool]:
        return dict(self.data)

    def save(self, mapping: Dict[str, bool]) -> None:
        self.data = dict(mapping)
        self.saves += 1


class AlertDeduplicator:
    """
    Inbound dedup layer over an IdempotencyStore.

    check_and_mark is serialized with an asyncio.Lock so two near-simultaneous
    deliveries of the same alert cannot both pass.
    """

    def __init__(self, store: IdempotencyStore):
        self.store = store
        self._lock = asyncio.Lock()

    async def check_and_mark(self, key: str) -> bool:
        """Return True and persist the key if unseen; False if it was already seen."""
        async with self._lock:
            mapping = self.store.load()
            if mapping.get(key):
                logger.info("ALERT_DUPLICATE_IGNORED", key=key)
                return False
            mapping[key] = True
            self.store.save(mapping)
            return True

    def seen(self, key: str) -> bool:
        return bool(self.store.load().get(key))

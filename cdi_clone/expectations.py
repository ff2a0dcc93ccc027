"""Pod creation expectations for clone reconciliation."""

import logging
import time
from threading import Lock
from typing import Callable, Optional

from .models import ExpectationRecord

logger = logging.getLogger(__name__)

DEFAULT_EXPECTATIONS_TIMEOUT = 300.0


class ControllerExpectations:
    """
    Tracks pod creations and deletions issued but not yet seen in the cache.

    A reconciler raises an expectation before each create call; the cache event
    handler lowers it once the new pod shows up. While a key has outstanding
    expectations the reconciler must not create pods for it, which keeps a
    lagging cache from causing duplicate pods.

    Records older than ``timeout`` count as satisfied so that a lost watch event
    cannot block a key forever.

    Thread-safe for concurrent access from worker and informer threads.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_EXPECTATIONS_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize expectation tracker.

        Args:
            timeout: Seconds after which an unfulfilled record is ignored
            clock: Monotonic time source
        """
        self.timeout = timeout
        self._clock = clock
        self._records: dict[str, ExpectationRecord] = {}
        self._lock = Lock()

    def get_expectations(self, key: str) -> Optional[ExpectationRecord]:
        """
        Get a copy of the record for a key.

        Args:
            key: Reconciliation key (namespace/name)

        Returns:
            ExpectationRecord or None if nothing is tracked for the key
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return None
            return ExpectationRecord(
                key=record.key,
                adds=record.adds,
                deletes=record.deletes,
                timestamp=record.timestamp,
            )

    def satisfied_expectations(self, key: str) -> bool:
        """
        Check whether the reconciler may act on a key.

        Args:
            key: Reconciliation key

        Returns:
            True if no record exists, the record is fulfilled, or it has expired
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return True
            if record.fulfilled():
                logger.debug(f"Expectations fulfilled for {key}")
                return True
            if self._clock() - record.timestamp > self.timeout:
                logger.warning(
                    f"Expectations for {key} expired with adds={record.adds} "
                    f"deletes={record.deletes}"
                )
                return True
            logger.debug(
                f"Expectations pending for {key}: adds={record.adds} deletes={record.deletes}"
            )
            return False

    def set_expectations(self, key: str, adds: int, deletes: int) -> None:
        """
        Re-arm a key to a fresh baseline.

        Args:
            key: Reconciliation key
            adds: Expected pod additions
            deletes: Expected pod deletions
        """
        with self._lock:
            self._records[key] = ExpectationRecord(
                key=key, adds=adds, deletes=deletes, timestamp=self._clock()
            )

    def raise_expectations(self, key: str, adds: int, deletes: int) -> None:
        """
        Increase outstanding expectations for a key.

        Creates the record if it does not exist yet.
        """
        with self._lock:
            record = self._records.get(key)
            if record is None:
                self._records[key] = ExpectationRecord(
                    key=key, adds=adds, deletes=deletes, timestamp=self._clock()
                )
                return
            record.adds += adds
            record.deletes += deletes

    def lower_expectations(self, key: str, adds: int, deletes: int) -> None:
        """Decrease outstanding expectations for a key, if tracked."""
        with self._lock:
            record = self._records.get(key)
            if record is None:
                return
            record.adds -= adds
            record.deletes -= deletes

    def creation_observed(self, key: str) -> None:
        """Record that one expected pod creation was observed (or rolled back)."""
        self.lower_expectations(key, 1, 0)

    def deletion_observed(self, key: str) -> None:
        """Record that one expected pod deletion was observed."""
        self.lower_expectations(key, 0, 1)

    def delete_expectations(self, key: str) -> None:
        """Forget everything tracked for a key."""
        with self._lock:
            self._records.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

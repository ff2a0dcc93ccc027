"""Generic reconciliation runner and cache event routing."""

import logging
from threading import Event, Thread
from typing import Any, Optional, Protocol

from .cache import EventHandler, meta_namespace_key
from .constants import LABEL_TARGET_POD_NAMESPACE
from .expectations import ControllerExpectations
from .queue import WorkQueue

logger = logging.getLogger(__name__)


class Reconciler(Protocol):
    """Capabilities a controller provides to the reconciliation runner."""

    def resolve_by_key(self, key: str) -> Optional[Any]:
        """Look up the object for a key, None if it no longer exists."""
        ...

    def reconcile(self, key: str, obj: Optional[Any]) -> None:
        """Drive the object towards its desired state; raise to retry."""
        ...


class ReconciliationRunner:
    """
    Runs worker threads that feed queued keys to a Reconciler.

    A key whose pass raises is logged once and re-queued with backoff. A key
    whose pass succeeds has its backoff reset.
    """

    def __init__(self, reconciler: Reconciler, queue: WorkQueue, name: str = "controller"):
        """
        Initialize runner.

        Args:
            reconciler: Object implementing resolve_by_key and reconcile
            queue: Work queue shared with the event router
            name: Name used for worker threads and log messages
        """
        self.reconciler = reconciler
        self.queue = queue
        self.name = name
        self._workers: list[Thread] = []

    def process_next_item(self) -> bool:
        """
        Process one key from the queue.

        Returns:
            False once the queue is shutting down
        """
        key, shutdown = self.queue.get()
        if shutdown or key is None:
            return False

        try:
            obj = self.reconciler.resolve_by_key(key)
            self.reconciler.reconcile(key, obj)
        except Exception as e:
            logger.error(f"[{self.name}] error processing {key!r}: {e}")
            self.queue.add_rate_limited(key)
            return True
        finally:
            self.queue.done(key)

        self.queue.forget(key)
        logger.debug(f"[{self.name}] processing {key!r} completed")
        return True

    def _run_worker(self) -> None:
        while self.process_next_item():
            pass

    def start(self, threadiness: int) -> None:
        """Start ``threadiness`` worker threads."""
        logger.info(f"Starting {threadiness} {self.name} workers")
        for i in range(threadiness):
            worker = Thread(target=self._run_worker, name=f"{self.name}-worker-{i}", daemon=True)
            worker.start()
            self._workers.append(worker)

    def stop(self, timeout: Optional[float] = None) -> None:
        """
        Stop handing out keys and wait for in-flight passes to finish.

        Args:
            timeout: Maximum seconds to wait for each worker
        """
        logger.info(f"Stopping {self.name} workers")
        self.queue.shut_down()
        for worker in self._workers:
            worker.join(timeout)
        self._workers.clear()

    def run(self, threadiness: int, stop_event: Event) -> None:
        """
        Run workers until ``stop_event`` is set.

        Args:
            threadiness: Number of worker threads
            stop_event: Shutdown signal
        """
        self.start(threadiness)
        stop_event.wait()
        self.stop()


def controlling_claim_key(pod: Any) -> Optional[str]:
    """
    Get the reconciliation key of the claim controlling a pod.

    Clone source pods live in the source claim's namespace, so the namespace of
    the controlling claim is read from the target namespace label when present.
    """
    owner = next(
        (ref for ref in pod.metadata.owner_references or [] if ref.controller),
        None,
    )
    if owner is None or owner.kind != "PersistentVolumeClaim":
        return None
    namespace = (pod.metadata.labels or {}).get(LABEL_TARGET_POD_NAMESPACE) or pod.metadata.namespace
    return f"{namespace}/{owner.name}"


class ClaimEventRouter:
    """Turns claim and pod cache notifications into queued claim keys."""

    def __init__(self, queue: WorkQueue, expectations: ControllerExpectations):
        self.queue = queue
        self.expectations = expectations

    def enqueue_claim(self, claim: Any) -> None:
        self.queue.add(meta_namespace_key(claim))

    def on_claim_update(self, old: Any, new: Any) -> None:
        self.enqueue_claim(new)

    def on_pod_add(self, pod: Any) -> None:
        key = controlling_claim_key(pod)
        if key is None:
            return
        self.expectations.creation_observed(key)
        self.queue.add(key)

    def on_pod_update(self, old: Any, new: Any) -> None:
        if old.metadata.resource_version == new.metadata.resource_version:
            return
        key = controlling_claim_key(new)
        if key is not None:
            self.queue.add(key)

    def on_pod_delete(self, pod: Any) -> None:
        key = controlling_claim_key(pod)
        if key is None:
            return
        self.expectations.deletion_observed(key)
        self.queue.add(key)

    def claim_handler(self) -> EventHandler:
        return EventHandler(
            on_add=self.enqueue_claim,
            on_update=self.on_claim_update,
            on_delete=self.enqueue_claim,
        )

    def pod_handler(self) -> EventHandler:
        return EventHandler(
            on_add=self.on_pod_add,
            on_update=self.on_pod_update,
            on_delete=self.on_pod_delete,
        )

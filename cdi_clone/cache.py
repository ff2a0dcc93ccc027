"""Watch-backed local object cache for claims, pods and storage classes."""

import logging
from dataclasses import dataclass
from threading import Event, RLock
from typing import Any, Callable, Iterable, Optional

from kubernetes import watch as k8s_watch
from kubernetes.client.exceptions import ApiException

logger = logging.getLogger(__name__)


def meta_namespace_key(obj: Any) -> str:
    """
    Build the cache key of an object.

    Returns:
        "namespace/name" for namespaced objects, "name" for cluster-scoped ones
    """
    metadata = obj.metadata
    if metadata.namespace:
        return f"{metadata.namespace}/{metadata.name}"
    return metadata.name


def labels_match(labels: Optional[dict[str, str]], selector: dict[str, str]) -> bool:
    """Check an equality-based label selector against a label set."""
    labels = labels or {}
    return all(labels.get(k) == v for k, v in selector.items())


class ObjectCache:
    """
    Thread-safe in-memory store of API objects keyed by namespace/name.

    Readers never see partially applied updates. Objects are returned as
    stored and must be treated as read-only.
    """

    def __init__(self, resource_type: str):
        """
        Initialize object cache.

        Args:
            resource_type: Kind of object stored, used in log messages
        """
        self.resource_type = resource_type
        self._items: dict[str, Any] = {}
        self._lock = RLock()

    def get_by_key(self, key: str) -> Optional[Any]:
        """
        Get an object by key.

        Args:
            key: "namespace/name" (or "name" for cluster-scoped objects)

        Returns:
            Cached object or None if not present
        """
        with self._lock:
            return self._items.get(key)

    def get(self, name: str, namespace: Optional[str] = None) -> Optional[Any]:
        key = f"{namespace}/{name}" if namespace else name
        return self.get_by_key(key)

    def add(self, obj: Any) -> Optional[Any]:
        """Store an object, returning the previous version if there was one."""
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = obj
            return old

    update = add

    def delete(self, obj: Any) -> Optional[Any]:
        """Remove an object, returning the stored version if there was one."""
        with self._lock:
            return self._items.pop(meta_namespace_key(obj), None)

    def replace(self, objs: Iterable[Any]) -> tuple[list[Any], list[tuple[Any, Any]], list[Any]]:
        """
        Replace the whole content of the cache.

        Returns:
            Tuple of (added, updated as (old, new) pairs, deleted)
        """
        fresh = {meta_namespace_key(obj): obj for obj in objs}
        with self._lock:
            previous = self._items
            self._items = fresh

        added = [obj for key, obj in fresh.items() if key not in previous]
        updated = [(previous[key], obj) for key, obj in fresh.items() if key in previous]
        deleted = [obj for key, obj in previous.items() if key not in fresh]
        return added, updated, deleted

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._items.keys())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def list(
        self,
        namespace: Optional[str] = None,
        selector: Optional[dict[str, str]] = None,
    ) -> list[Any]:
        """
        List cached objects.

        Args:
            namespace: Only return objects in this namespace
            selector: Equality-based label selector

        Returns:
            Matching objects
        """
        with self._lock:
            items = list(self._items.values())

        result = []
        for obj in items:
            if namespace is not None and obj.metadata.namespace != namespace:
                continue
            if selector and not labels_match(obj.metadata.labels, selector):
                continue
            result.append(obj)
        return result


@dataclass
class EventHandler:
    """Callbacks invoked when the cache content changes."""

    on_add: Optional[Callable[[Any], None]] = None
    on_update: Optional[Callable[[Any, Any], None]] = None
    on_delete: Optional[Callable[[Any], None]] = None


class Informer:
    """
    Keeps an ObjectCache current with a list + watch loop.

    Every change is applied to the cache first and then announced to the
    registered handlers, so a handler reading the cache sees the new state.
    """

    def __init__(
        self,
        list_func: Callable[..., Any],
        cache: ObjectCache,
        watch_timeout_seconds: int = 300,
        retry_delay_seconds: float = 1.0,
    ):
        """
        Initialize informer.

        Args:
            list_func: kubernetes client list call (e.g. list_pod_for_all_namespaces)
            cache: Cache to keep up to date
            watch_timeout_seconds: Server-side watch timeout before re-watching
            retry_delay_seconds: Pause before relisting after an unexpected error
        """
        self.list_func = list_func
        self.cache = cache
        self.watch_timeout_seconds = watch_timeout_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._handlers: list[EventHandler] = []
        self._watch = k8s_watch.Watch()
        self._resource_version: Optional[str] = None
        self._synced = Event()
        self._stopped = Event()

    @property
    def resource_type(self) -> str:
        return self.cache.resource_type

    def add_event_handler(self, handler: EventHandler) -> None:
        """Register callbacks for cache changes."""
        self._handlers.append(handler)

    def has_synced(self) -> bool:
        """True once the initial list has been loaded into the cache."""
        return self._synced.is_set()

    def wait_for_sync(self, timeout: Optional[float] = None) -> bool:
        return self._synced.wait(timeout)

    def _emit(self, kind: str, *objs: Any) -> None:
        for handler in self._handlers:
            callback = getattr(handler, f"on_{kind}")
            if callback is None:
                continue
            try:
                callback(*objs)
            except Exception as e:
                logger.error(
                    f"Error in {self.resource_type} {kind} handler: {e}", exc_info=True
                )

    def list_and_replace(self) -> None:
        """Load the full object list into the cache and announce the differences."""
        result = self.list_func()
        self._resource_version = result.metadata.resource_version
        added, updated, deleted = self.cache.replace(result.items or [])
        self._synced.set()

        logger.debug(
            f"Listed {len(self.cache)} {self.resource_type} objects "
            f"at resource version {self._resource_version}"
        )
        for obj in added:
            self._emit("add", obj)
        for old, new in updated:
            self._emit("update", old, new)
        for obj in deleted:
            self._emit("delete", obj)

    def watch_once(self) -> bool:
        """
        Stream watch events until the server closes the watch.

        Returns:
            False if the resource version expired and a relist is required
        """
        for event in self._watch.stream(
            self.list_func,
            resource_version=self._resource_version,
            timeout_seconds=self.watch_timeout_seconds,
        ):
            event_type = event["type"]
            obj = event["object"]

            if event_type == "ERROR":
                raw = event.get("raw_object") or {}
                if raw.get("code") == 410:
                    logger.warning(f"Watch on {self.resource_type} expired, relisting...")
                    return False
                logger.error(f"Watch error on {self.resource_type}: {raw}")
                return False

            self._resource_version = obj.metadata.resource_version
            if event_type == "ADDED":
                old = self.cache.add(obj)
                if old is None:
                    self._emit("add", obj)
                else:
                    self._emit("update", old, obj)
            elif event_type == "MODIFIED":
                old = self.cache.update(obj)
                if old is None:
                    self._emit("add", obj)
                else:
                    self._emit("update", old, obj)
            elif event_type == "DELETED":
                stored = self.cache.delete(obj)
                self._emit("delete", stored or obj)

            if self._stopped.is_set():
                break
        return True

    def run(self, stop_event: Optional[Event] = None) -> None:
        """
        List and watch until stopped.

        Args:
            stop_event: Optional event that ends the loop when set
        """
        logger.info(f"Starting {self.resource_type} informer")
        needs_list = True
        while not self._stopped.is_set() and not (stop_event and stop_event.is_set()):
            try:
                if needs_list:
                    self.list_and_replace()
                needs_list = not self.watch_once()
            except ApiException as e:
                needs_list = True
                if e.status == 410:
                    logger.warning(f"Watch on {self.resource_type} expired, relisting...")
                    continue
                logger.error(f"Error watching {self.resource_type}: {e}", exc_info=True)
                self._stopped.wait(self.retry_delay_seconds)
            except Exception as e:
                needs_list = True
                logger.error(f"Unexpected error in {self.resource_type} informer: {e}", exc_info=True)
                self._stopped.wait(self.retry_delay_seconds)
        logger.info(f"{self.resource_type} informer stopped")

    def stop(self) -> None:
        """Stop the watch loop."""
        self._stopped.set()
        self._watch.stop()

"""In-memory watch cache fed by kubernetes list/watch.

Objects are stored as plain dicts keyed by ``namespace/name``. Registered
handlers are called for every add, update and delete the cache observes.
"""

from __future__ import annotations

import random
import threading
from collections.abc import Callable
from typing import Any

from kubernetes import client, watch
from kubernetes.client.exceptions import ApiException

from .constants import API_GROUP, API_VERSION, PIPELINE_PLURAL
from .errors import NotFoundError
from .logging import logger
from .utils.keys import DeletedFinalStateUnknown, meta_namespace_key

AddHandler = Callable[[Any], None]
UpdateHandler = Callable[[Any, Any], None]
DeleteHandler = Callable[[Any], None]


class ResourceStore:
    """Thread-safe object cache that dispatches change notifications."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        self._items: dict[str, dict[str, Any]] = {}
        self._handlers: list[tuple[AddHandler | None, UpdateHandler | None, DeleteHandler | None]] = []
        self._synced = threading.Event()
        self._lock = threading.RLock()

    def add_event_handler(
        self,
        on_add: AddHandler | None = None,
        on_update: UpdateHandler | None = None,
        on_delete: DeleteHandler | None = None,
    ) -> None:
        with self._lock:
            self._handlers.append((on_add, on_update, on_delete))

    def has_synced(self) -> bool:
        return self._synced.is_set()

    def mark_synced(self) -> None:
        self._synced.set()

    def get_by_key(self, key: str) -> dict[str, Any]:
        """Return the cached object for ``key`` or raise :class:`NotFoundError`."""
        with self._lock:
            obj = self._items.get(key)
        if obj is None:
            raise NotFoundError(self.kind, key)
        return obj

    def get(self, namespace: str, name: str) -> dict[str, Any]:
        return self.get_by_key(f"{namespace}/{name}" if namespace else name)

    def list_all(self) -> list[dict[str, Any]]:
        with self._lock:
            return list(self._items.values())

    def apply(self, event_type: str, obj: dict[str, Any]) -> None:
        """Apply a single watch event (``ADDED``, ``MODIFIED`` or ``DELETED``)."""
        key = meta_namespace_key(obj)
        with self._lock:
            old = self._items.get(key)
            if event_type == "DELETED":
                self._items.pop(key, None)
            else:
                self._items[key] = obj
            handlers = list(self._handlers)

        for on_add, on_update, on_delete in handlers:
            if event_type == "DELETED":
                if on_delete is not None:
                    on_delete(obj)
            elif old is None:
                if on_add is not None:
                    on_add(obj)
            elif on_update is not None:
                on_update(old, obj)

    def replace(self, objects: list[dict[str, Any]]) -> None:
        """Replace the cache contents with a fresh listing."""
        seen = set()
        for obj in objects:
            seen.add(meta_namespace_key(obj))
            self.apply("MODIFIED", obj)

        with self._lock:
            missing = [(key, obj) for key, obj in self._items.items() if key not in seen]
            for key, _ in missing:
                del self._items[key]
            handlers = list(self._handlers)

        # Deletions that happened while the watch was down
        for key, obj in missing:
            tombstone = DeletedFinalStateUnknown(key, obj)
            for _, _, on_delete in handlers:
                if on_delete is not None:
                    on_delete(tombstone)


def wait_for_cache_sync(
    stop_event: threading.Event, *synced: Callable[[], bool], period: float = 0.1
) -> bool:
    """Block until every ``synced`` callable returns True; False if stopped first."""
    while not stop_event.is_set():
        if all(fn() for fn in synced):
            return True
        stop_event.wait(period)
    return False


def _to_dict(obj: Any) -> Any:
    if isinstance(obj, dict):
        return obj
    return client.ApiClient().sanitize_for_serialization(obj)


class Informer:
    """Keeps a :class:`ResourceStore` in sync through list + watch.

    The initial listing marks the store synced. Watches restart from the last
    seen resourceVersion; an expired version (HTTP 410) triggers a relist.
    """

    def __init__(
        self,
        store: ResourceStore,
        list_func: Callable[..., Any],
        *list_args: Any,
        watch_timeout: int = 300,
    ) -> None:
        self.store = store
        self._list_func = list_func
        self._list_args = list_args
        self._watch_timeout = watch_timeout
        self._watch: watch.Watch | None = None

    def _list(self) -> str:
        result = _to_dict(self._list_func(*self._list_args))
        items = [_to_dict(item) for item in result.get("items") or []]
        self.store.replace(items)
        self.store.mark_synced()
        logger.info(
            f"Listed {len(items)} {self.store.kind} objects",
            event="informer",
            reason="Listed",
            kind=self.store.kind,
        )
        return (result.get("metadata") or {}).get("resourceVersion", "")

    def _watch_once(self, resource_version: str, stop_event: threading.Event) -> str:
        self._watch = watch.Watch()
        for event in self._watch.stream(
            self._list_func,
            *self._list_args,
            resource_version=resource_version,
            timeout_seconds=self._watch_timeout,
        ):
            if stop_event.is_set():
                self._watch.stop()
                break

            event_type = event.get("type")
            raw = event.get("raw_object") or _to_dict(event.get("object"))
            if event_type == "ERROR":
                code = (raw or {}).get("code")
                raise ApiException(status=code, reason=(raw or {}).get("message"))

            resource_version = (raw.get("metadata") or {}).get("resourceVersion", resource_version)
            if event_type in ("ADDED", "MODIFIED", "DELETED"):
                self.store.apply(event_type, raw)
        return resource_version

    def run(self, stop_event: threading.Event) -> None:
        backoff_seconds = 1.0
        resource_version = ""
        while not stop_event.is_set():
            try:
                if not resource_version:
                    resource_version = self._list()
                resource_version = self._watch_once(resource_version, stop_event)
                backoff_seconds = 1.0
            except ApiException as e:
                if e.status == 410:
                    logger.info(
                        "Watch resourceVersion expired, relisting",
                        event="informer",
                        reason="WatchExpired",
                        kind=self.store.kind,
                    )
                    resource_version = ""
                    continue
                logger.warning(
                    f"Watch failed: {e}",
                    event="informer",
                    reason="WatchFailed",
                    kind=self.store.kind,
                    status=e.status,
                )
                resource_version = ""
                stop_event.wait(backoff_seconds * (0.5 + random.random()))  # noqa: S311
                backoff_seconds = min(backoff_seconds * 2, 30.0)
            except Exception as e:
                logger.error(
                    f"Unexpected informer error: {e}",
                    event="informer",
                    reason="InformerError",
                    kind=self.store.kind,
                    exc_info=True,
                )
                resource_version = ""
                stop_event.wait(backoff_seconds * (0.5 + random.random()))  # noqa: S311
                backoff_seconds = min(backoff_seconds * 2, 30.0)

    def start(self, stop_event: threading.Event) -> threading.Thread:
        thread = threading.Thread(
            target=self.run, args=(stop_event,), name=f"{self.store.kind}-informer", daemon=True
        )
        thread.start()
        return thread

    def stop(self) -> None:
        if self._watch is not None:
            self._watch.stop()


def pipeline_informer(custom_api: client.CustomObjectsApi) -> Informer:
    return Informer(
        ResourceStore("pipeline"),
        custom_api.list_cluster_custom_object,
        API_GROUP,
        API_VERSION,
        PIPELINE_PLURAL,
    )


def namespace_informer(core_api: client.CoreV1Api) -> Informer:
    return Informer(ResourceStore("namespace"), core_api.list_namespace)

"""Kubernetes Event recording for pipeline objects."""

from __future__ import annotations

import queue
import threading
from typing import Any

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from .constants import API_GROUP_VERSION, CONTROLLER_NAME, PIPELINE_KIND
from .logging import logger

_STOP = object()


class EventRecorder:
    """Posts Events asynchronously from a single sender thread.

    Events are best-effort: a failed post is logged and dropped. Every event is
    also written to the structured log. The recorder must be started before
    use and closed when the controller stops.
    """

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        component: str = CONTROLLER_NAME,
        max_pending: int = 1000,
    ) -> None:
        self._core_api = core_api
        self.component = component
        self._pending: queue.Queue[Any] = queue.Queue(maxsize=max_pending)
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._send_loop, name=f"{self.component}-events", daemon=True
        )
        self._thread.start()

    def close(self, timeout: float = 5.0) -> None:
        """Stop the sender thread. Events still queued after ``timeout`` are lost."""
        if self._thread is None:
            return
        try:
            self._pending.put(_STOP, timeout=timeout)
        except queue.Full:
            logger.warning(
                "Event queue still full at shutdown, abandoning pending events",
                controller=PIPELINE_KIND,
                event="lifecycle",
                reason="EventsDropped",
                pending=self._pending.qsize(),
            )
        else:
            self._thread.join(timeout)
        self._thread = None

    def event(self, obj: dict[str, Any], type_: str, reason: str, message: str) -> None:
        metadata = obj.get("metadata") or {}
        namespace = metadata.get("namespace", "")
        name = metadata.get("name", "")

        log = logger.warning if type_ == "Warning" else logger.info
        log(
            message,
            controller=PIPELINE_KIND,
            resource=f"{namespace}/{name}",
            event="event",
            reason=reason,
        )

        if self._core_api is None or self._thread is None:
            return

        body = client.CoreV1Event(
            metadata=client.V1ObjectMeta(generate_name=f"{name}-", namespace=namespace),
            type=type_,
            reason=reason,
            message=message,
            source=client.V1EventSource(component=self.component),
            involved_object=client.V1ObjectReference(
                api_version=API_GROUP_VERSION,
                kind=PIPELINE_KIND,
                name=name,
                namespace=namespace,
                uid=metadata.get("uid"),
                resource_version=metadata.get("resourceVersion"),
            ),
        )
        try:
            self._pending.put_nowait((namespace, body))
        except queue.Full:
            logger.debug(
                "Event queue full, dropping event",
                controller=PIPELINE_KIND,
                resource=f"{namespace}/{name}",
                reason=reason,
            )

    def _send_loop(self) -> None:
        while True:
            item = self._pending.get()
            if item is _STOP:
                return
            namespace, body = item
            try:
                self._core_api.create_namespaced_event(namespace=namespace, body=body)
            except ApiException as e:
                logger.debug(
                    f"Failed to post event: {e}",
                    controller=PIPELINE_KIND,
                    resource=f"{namespace}/{body.involved_object.name}",
                    reason=body.reason,
                    status=e.status,
                )
            except Exception as e:
                # Transport failures while the API server is unreachable
                logger.warning(
                    f"Failed to post event: {e}",
                    controller=PIPELINE_KIND,
                    resource=f"{namespace}/{body.involved_object.name}",
                    reason=body.reason,
                )

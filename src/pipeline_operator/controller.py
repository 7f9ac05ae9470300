"""Pipeline controller: keeps remote pipeline configs in step with Pipeline resources."""

from __future__ import annotations

import copy
import threading
from time import monotonic
from typing import Any

from . import metrics
from .cache import ResourceStore, wait_for_cache_sync
from .constants import (
    ANNOTATION_SPEC_HASH,
    ANNOTATION_SYNC_STATUS,
    FINALIZER,
    PIPELINE_KIND,
    REASON_DELETE_FAILED,
    REASON_FINALIZER_REMOVED,
    REASON_SYNCED,
    STATUS_SUCCESSFUL,
)
from .errors import (
    DevOpsClientError,
    DevOpsNotFoundError,
    FinalizerRetainedError,
    InvalidKeyError,
    NamespaceNotEligibleError,
    NotFoundError,
)
from .events import EventRecorder
from .logging import logger
from .services.devops import DevOpsClient
from .services.store import PipelineWriter
from .utils.hashing import compute_hash
from .utils.keys import is_devops_project_namespace, meta_namespace_key, split_meta_namespace_key
from .workqueue import RateLimitingQueue


class PipelineController:
    """Reconciles Pipeline resources against the DevOps service.

    Change notifications from the pipeline cache are reduced to
    ``namespace/name`` keys on a deduplicating queue; workers pull keys and run
    :meth:`sync_handler`, which is level based and safe to repeat.
    """

    def __init__(
        self,
        pipeline_store: ResourceStore,
        namespace_store: ResourceStore,
        devops_client: DevOpsClient,
        writer: PipelineWriter,
        *,
        recorder: EventRecorder | None = None,
        queue: RateLimitingQueue | None = None,
        worker_loop_period: float = 1.0,
    ) -> None:
        self._pipeline_store = pipeline_store
        self._namespace_store = namespace_store
        self._devops = devops_client
        self._writer = writer
        self._recorder = recorder or EventRecorder()
        self.queue = queue or RateLimitingQueue(name="pipeline")
        self._worker_loop_period = worker_loop_period

        pipeline_store.add_event_handler(
            on_add=self.enqueue_pipeline,
            on_update=self._on_pipeline_update,
            on_delete=self.enqueue_pipeline,
        )

    def _on_pipeline_update(self, old: dict[str, Any], new: dict[str, Any]) -> None:
        old_version = (old.get("metadata") or {}).get("resourceVersion")
        new_version = (new.get("metadata") or {}).get("resourceVersion")
        # Periodic relists replay objects unchanged
        if old_version == new_version:
            return
        self.enqueue_pipeline(new)

    def enqueue_pipeline(self, obj: Any) -> None:
        """Put the ``namespace/name`` key of ``obj`` onto the work queue."""
        try:
            key = meta_namespace_key(obj)
        except InvalidKeyError as e:
            logger.error(
                f"Could not compute key for pipeline: {e}",
                controller=PIPELINE_KIND,
                event="enqueue",
                reason="EnqueueFailed",
            )
            return
        self.queue.add(key)

    def has_synced(self) -> bool:
        return self._pipeline_store.has_synced() and self._namespace_store.has_synced()

    def start(self, stop_event: threading.Event) -> bool:
        return self.run(1, stop_event)

    def run(self, workers: int, stop_event: threading.Event) -> bool:
        """Run ``workers`` sync loops until ``stop_event`` is set.

        Workers start only once both caches have synced. Returns False if the
        stop signal fired before that.
        """
        self._recorder.start()
        threads: list[threading.Thread] = []
        logger.info(
            "Starting pipeline controller",
            controller=PIPELINE_KIND,
            event="lifecycle",
            reason="Starting",
            workers=workers,
        )
        try:
            if not wait_for_cache_sync(
                stop_event, self._pipeline_store.has_synced, self._namespace_store.has_synced
            ):
                logger.error(
                    "Failed to wait for caches to sync",
                    controller=PIPELINE_KIND,
                    event="lifecycle",
                    reason="CacheSyncFailed",
                )
                return False

            for i in range(workers):
                thread = threading.Thread(
                    target=self._run_worker,
                    args=(stop_event,),
                    name=f"pipeline-worker-{i}",
                    daemon=True,
                )
                thread.start()
                threads.append(thread)

            stop_event.wait()
            return True
        finally:
            self.queue.shut_down()
            for thread in threads:
                thread.join()
            self._recorder.close()
            logger.info(
                "Shutting down pipeline controller",
                controller=PIPELINE_KIND,
                event="lifecycle",
                reason="Stopped",
            )

    def _run_worker(self, stop_event: threading.Event) -> None:
        # Restart the loop after a pause if it ever dies on something unexpected
        while True:
            try:
                while self.process_next_work_item():
                    pass
                return
            except Exception as e:
                logger.error(
                    f"Pipeline worker crashed: {e}",
                    controller=PIPELINE_KIND,
                    event="worker",
                    reason="WorkerCrashed",
                    exc_info=True,
                )
            stop_event.wait(self._worker_loop_period)

    def process_next_work_item(self) -> bool:
        """Process one key from the queue. Returns False once the queue shuts down."""
        item, shutdown = self.queue.get()
        if shutdown:
            return False

        try:
            if not isinstance(item, str):
                self.queue.forget(item)
                logger.error(
                    f"Expected string in workqueue but got {item!r}",
                    controller=PIPELINE_KIND,
                    event="worker",
                    reason="InvalidItem",
                )
                return True

            try:
                self.sync_handler(item)
            except Exception as e:
                self.queue.add_rate_limited(item)
                log = logger.warning if isinstance(e, NamespaceNotEligibleError) else logger.error
                log(
                    f"Error syncing '{item}': {e}, requeuing",
                    controller=PIPELINE_KIND,
                    resource=item,
                    event="sync",
                    reason="ReconcileFailed",
                    requeues=self.queue.num_requeues(item),
                )
                return True

            self.queue.forget(item)
            logger.debug(
                f"Successfully synced '{item}'",
                controller=PIPELINE_KIND,
                resource=item,
                event="worker",
                reason="Synced",
            )
            return True
        finally:
            self.queue.done(item)

    def sync_handler(self, key: str) -> None:
        """Converge the remote pipeline config and the Pipeline resource for ``key``.

        Raises on any failure that should be retried. Missing namespaces and
        pipelines are not errors: there is nothing left to do for them.
        """
        started_at = monotonic()
        result = "success"
        try:
            try:
                namespace_name, name = split_meta_namespace_key(key)
            except InvalidKeyError as e:
                logger.error(
                    f"Could not split pipeline key: {e}",
                    controller=PIPELINE_KIND,
                    resource=key,
                    event="sync",
                    reason="InvalidKey",
                )
                result = "dropped"
                return

            try:
                namespace = self._namespace_store.get_by_key(namespace_name)
            except NotFoundError:
                logger.info(
                    f"Namespace '{namespace_name}' in work queue no longer exists",
                    controller=PIPELINE_KIND,
                    resource=key,
                    event="sync",
                    reason="NamespaceNotFound",
                )
                result = "dropped"
                return

            if not is_devops_project_namespace(namespace):
                raise NamespaceNotEligibleError(namespace_name)

            try:
                pipeline = self._pipeline_store.get(namespace_name, name)
            except NotFoundError:
                logger.debug(
                    f"Pipeline '{key}' in work queue no longer exists",
                    controller=PIPELINE_KIND,
                    resource=key,
                    event="sync",
                    reason="PipelineNotFound",
                )
                result = "dropped"
                return

            updated = copy.deepcopy(pipeline)
            metadata = updated.setdefault("metadata", {})
            if not metadata.get("deletionTimestamp"):
                if self._sync_live(updated, namespace_name, name, key):
                    result = "skipped"
            else:
                self._finalize(updated, namespace_name, name, key)

            if updated != pipeline:
                self._writer.update(updated)
        except Exception:
            result = "error"
            raise
        finally:
            metrics.RECONCILE_TOTAL.labels(kind=PIPELINE_KIND, result=result).inc()
            metrics.RECONCILE_DURATION.labels(kind=PIPELINE_KIND).observe(monotonic() - started_at)

    def _sync_live(self, pipeline: dict[str, Any], namespace: str, name: str, key: str) -> bool:
        """Ensure the finalizer and push the spec remotely. Returns True if remote sync was skipped."""
        metadata = pipeline["metadata"]
        annotations = metadata.get("annotations") or {}
        metadata["annotations"] = annotations

        finalizers = metadata.get("finalizers") or []
        if FINALIZER not in finalizers:
            metadata["finalizers"] = [*finalizers, FINALIZER]
            logger.info(
                "Added pipeline finalizer",
                controller=PIPELINE_KIND,
                resource=key,
                event="finalizer",
                reason="FinalizerAdded",
            )

        spec = pipeline.get("spec")
        spec_hash = compute_hash(spec)
        if (
            annotations.get(ANNOTATION_SYNC_STATUS) == STATUS_SUCCESSFUL
            and annotations.get(ANNOTATION_SPEC_HASH) == spec_hash
        ):
            logger.debug(
                "Pipeline spec unchanged since last sync, skipping",
                controller=PIPELINE_KIND,
                resource=key,
                event="sync",
                reason="SyncSkipped",
            )
            return True

        try:
            remote = self._devops.get_pipeline_config(namespace, name)
        except DevOpsNotFoundError:
            remote = None

        if remote is None:
            self._devops.create_pipeline(namespace, pipeline)
            self._recorder.event(pipeline, "Normal", REASON_SYNCED, "Created pipeline config")
        elif remote.get("spec") != spec:
            self._devops.update_pipeline(namespace, pipeline)
            self._recorder.event(pipeline, "Normal", REASON_SYNCED, "Updated pipeline config")
        else:
            logger.debug(
                "Pipeline config already up to date",
                controller=PIPELINE_KIND,
                resource=key,
                event="sync",
                reason="ConfigUnchanged",
            )

        annotations[ANNOTATION_SYNC_STATUS] = STATUS_SUCCESSFUL
        annotations[ANNOTATION_SPEC_HASH] = spec_hash
        return False

    def _finalize(self, pipeline: dict[str, Any], namespace: str, name: str, key: str) -> None:
        """Delete the remote config, then release the finalizer. Keeps it on any failure."""
        metadata = pipeline["metadata"]
        finalizers = metadata.get("finalizers") or []
        if FINALIZER not in finalizers:
            return

        try:
            self._devops.delete_pipeline(namespace, name)
        except DevOpsNotFoundError:
            logger.info(
                "Pipeline config already absent from devops",
                controller=PIPELINE_KIND,
                resource=key,
                event="finalizer",
                reason="ConfigNotFound",
            )
        except DevOpsClientError as e:
            # The finalizer is the only record that the remote config may still exist
            self._recorder.event(
                pipeline, "Warning", REASON_DELETE_FAILED, f"Failed to delete pipeline config: {e}"
            )
            raise FinalizerRetainedError(key, e) from e

        metadata["finalizers"] = [f for f in finalizers if f != FINALIZER]
        self._recorder.event(
            pipeline, "Normal", REASON_FINALIZER_REMOVED, "Pipeline config deleted, finalizer removed"
        )

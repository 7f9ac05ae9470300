"""Operator entry point: ``kopf run -m pipeline_operator.main``.

kopf owns the process here: startup and cleanup hooks, operator settings
and the liveness probe. It registers no resource handlers. The pipeline and
namespace caches are fed by :class:`~pipeline_operator.cache.Informer`
instead, because the controller must not start workers until both caches
report ``has_synced`` after their initial list, and retries must go through
its own deduplicating rate-limited queue rather than kopf's per-object
handler retries.
"""

from __future__ import annotations

import threading
from contextlib import suppress
from typing import Any

import kopf
from kubernetes import client, config
from kubernetes.config.config_exception import ConfigException
from prometheus_client import start_http_server

from . import logging as structured_logging
from .cache import Informer, namespace_informer, pipeline_informer
from .config import ControllerSettings, load_settings
from .constants import CONTROLLER_NAME
from .controller import PipelineController
from .events import EventRecorder
from .services.devops import DevOpsHTTPClient
from .services.store import PipelineWriter
from .workqueue import RateLimitingQueue, default_controller_rate_limiter


class ControllerRuntime:
    """Owns the informers, the controller thread and the shared stop signal."""

    def __init__(
        self,
        controller: PipelineController,
        informers: list[Informer],
        workers: int = 1,
    ) -> None:
        self.controller = controller
        self.informers = informers
        self.workers = workers
        self.stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def start(self) -> None:
        for informer in self.informers:
            self._threads.append(informer.start(self.stop_event))
        thread = threading.Thread(
            target=self.controller.run,
            args=(self.workers, self.stop_event),
            name=CONTROLLER_NAME,
            daemon=True,
        )
        thread.start()
        self._threads.append(thread)

    def stop(self, timeout: float = 30.0) -> None:
        self.stop_event.set()
        for informer in self.informers:
            informer.stop()
        for thread in self._threads:
            thread.join(timeout)
        self._threads.clear()


def build_runtime(
    settings: ControllerSettings,
    custom_api: client.CustomObjectsApi | None = None,
    core_api: client.CoreV1Api | None = None,
) -> ControllerRuntime:
    custom_api = custom_api or client.CustomObjectsApi()
    core_api = core_api or client.CoreV1Api()

    pipelines = pipeline_informer(custom_api)
    namespaces = namespace_informer(core_api)
    queue = RateLimitingQueue(
        default_controller_rate_limiter(
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            qps=settings.qps,
            burst=settings.burst,
        ),
        name="pipeline",
    )
    controller = PipelineController(
        pipelines.store,
        namespaces.store,
        DevOpsHTTPClient(settings.devops_endpoint, timeout_s=settings.devops_timeout),
        PipelineWriter(custom_api),
        recorder=EventRecorder(core_api),
        queue=queue,
        worker_loop_period=settings.worker_loop_period,
    )
    return ControllerRuntime(controller, [pipelines, namespaces], workers=settings.workers)


_runtime: ControllerRuntime | None = None


@kopf.on.startup()
def configure(settings: kopf.OperatorSettings, **_: Any) -> None:
    global _runtime

    operator_settings = load_settings()
    structured_logging.setup_structured_logging(operator_settings.log_level)

    settings.posting.level = 0
    settings.networking.request_timeout = 30.0

    with suppress(OSError):
        start_http_server(operator_settings.metrics_port)

    try:
        config.load_incluster_config()
    except ConfigException:
        config.load_kube_config()

    _runtime = build_runtime(operator_settings)
    _runtime.start()
    structured_logging.logger.info(
        "Pipeline operator started",
        controller="Pipeline",
        event="lifecycle",
        reason="Started",
        workers=operator_settings.workers,
        devops_endpoint=operator_settings.devops_endpoint,
    )


@kopf.on.cleanup()
def shutdown(**_: Any) -> None:
    global _runtime

    if _runtime is None:
        return
    _runtime.stop()
    _runtime = None


@kopf.on.probe(id="pipelineController")
def controller_probe(**_: Any) -> dict[str, Any]:
    if _runtime is None:
        return {"running": False}
    return {
        "running": not _runtime.stop_event.is_set(),
        "cachesSynced": _runtime.controller.has_synced(),
        "queueDepth": len(_runtime.controller.queue),
    }

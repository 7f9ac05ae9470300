"""Shared fakes for the pipeline controller tests."""

from __future__ import annotations

import copy
from typing import Any
from unittest.mock import MagicMock

import pytest

from pipeline_operator.cache import ResourceStore
from pipeline_operator.constants import DEVOPS_PROJECT_KIND, LABEL_DEVOPS_PROJECT
from pipeline_operator.controller import PipelineController
from pipeline_operator.errors import DevOpsNotFoundError
from pipeline_operator.workqueue import ItemExponentialFailureRateLimiter, RateLimitingQueue


def make_namespace(name: str = "demo-project", eligible: bool = True) -> dict[str, Any]:
    metadata: dict[str, Any] = {"name": name, "labels": {}, "ownerReferences": []}
    if eligible:
        metadata["labels"][LABEL_DEVOPS_PROJECT] = "demo"
        metadata["ownerReferences"].append(
            {
                "apiVersion": "devops.kubesphere.io/v1alpha3",
                "kind": DEVOPS_PROJECT_KIND,
                "name": "demo",
                "uid": "project-uid",
                "controller": True,
            }
        )
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": metadata}


def make_pipeline(
    name: str = "build",
    namespace: str = "demo-project",
    spec: dict[str, Any] | None = None,
    annotations: dict[str, str] | None = None,
    finalizers: list[str] | None = None,
    deleting: bool = False,
    resource_version: str = "1",
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "name": name,
        "namespace": namespace,
        "uid": f"{name}-uid",
        "resourceVersion": resource_version,
    }
    if annotations is not None:
        metadata["annotations"] = annotations
    if finalizers is not None:
        metadata["finalizers"] = finalizers
    if deleting:
        metadata["deletionTimestamp"] = "2024-01-01T00:00:00Z"
    return {
        "apiVersion": "devops.kubesphere.io/v1alpha3",
        "kind": "Pipeline",
        "metadata": metadata,
        "spec": spec if spec is not None else {"type": "pipeline", "pipeline": {"name": name}},
    }


class FakeDevOpsClient:
    """In-memory DevOps service recording every call."""

    def __init__(self) -> None:
        self.configs: dict[tuple[str, str], dict[str, Any]] = {}
        self.calls: list[tuple[str, str, str]] = []
        self.delete_error: Exception | None = None
        self.get_error: Exception | None = None

    def get_pipeline_config(self, namespace: str, name: str) -> dict[str, Any]:
        self.calls.append(("get", namespace, name))
        if self.get_error is not None:
            raise self.get_error
        try:
            return copy.deepcopy(self.configs[(namespace, name)])
        except KeyError:
            raise DevOpsNotFoundError() from None

    def create_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]:
        name = pipeline["metadata"]["name"]
        self.calls.append(("create", namespace, name))
        self.configs[(namespace, name)] = {"spec": copy.deepcopy(pipeline["spec"])}
        return self.configs[(namespace, name)]

    def update_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]:
        name = pipeline["metadata"]["name"]
        self.calls.append(("update", namespace, name))
        self.configs[(namespace, name)] = {"spec": copy.deepcopy(pipeline["spec"])}
        return self.configs[(namespace, name)]

    def delete_pipeline(self, namespace: str, name: str) -> None:
        self.calls.append(("delete", namespace, name))
        if self.delete_error is not None:
            raise self.delete_error
        if (namespace, name) not in self.configs:
            raise DevOpsNotFoundError()
        del self.configs[(namespace, name)]


class FakeWriter:
    """Writer that stores updates back into the pipeline cache."""

    def __init__(self, store: ResourceStore) -> None:
        self.store = store
        self.updates: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def update(self, pipeline: dict[str, Any]) -> dict[str, Any]:
        if self.error is not None:
            raise self.error
        self.updates.append(copy.deepcopy(pipeline))
        stored = copy.deepcopy(pipeline)
        version = int(stored["metadata"].get("resourceVersion", "0")) + 1
        stored["metadata"]["resourceVersion"] = str(version)
        self.store.apply("MODIFIED", stored)
        return stored


@pytest.fixture
def pipeline_store() -> ResourceStore:
    store = ResourceStore("pipeline")
    store.mark_synced()
    return store


@pytest.fixture
def namespace_store() -> ResourceStore:
    store = ResourceStore("namespace")
    store.apply("ADDED", make_namespace())
    store.mark_synced()
    return store


@pytest.fixture
def devops() -> FakeDevOpsClient:
    return FakeDevOpsClient()


@pytest.fixture
def writer(pipeline_store: ResourceStore) -> FakeWriter:
    return FakeWriter(pipeline_store)


@pytest.fixture
def recorder() -> MagicMock:
    return MagicMock()


@pytest.fixture
def queue():
    q = RateLimitingQueue(ItemExponentialFailureRateLimiter(0.001, 0.01), name="test")
    yield q
    q.shut_down()


@pytest.fixture
def controller(
    pipeline_store: ResourceStore,
    namespace_store: ResourceStore,
    devops: FakeDevOpsClient,
    writer: FakeWriter,
    recorder: MagicMock,
    queue: RateLimitingQueue,
) -> PipelineController:
    return PipelineController(
        pipeline_store,
        namespace_store,
        devops,
        writer,
        recorder=recorder,
        queue=queue,
        worker_loop_period=0.01,
    )

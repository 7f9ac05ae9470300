"""Writes pipeline metadata changes back to the cluster."""

from __future__ import annotations

from typing import Any

from kubernetes import client
from kubernetes.client.exceptions import ApiException

from ..constants import API_GROUP, API_VERSION, PIPELINE_PLURAL
from ..errors import StoreConflictError


class PipelineWriter:
    """Persists a mutated Pipeline with optimistic concurrency on resourceVersion."""

    def __init__(self, custom_api: client.CustomObjectsApi | None = None) -> None:
        self._custom_api = custom_api or client.CustomObjectsApi()

    def update(self, pipeline: dict[str, Any]) -> dict[str, Any]:
        metadata = pipeline.get("metadata") or {}
        try:
            return self._custom_api.replace_namespaced_custom_object(
                group=API_GROUP,
                version=API_VERSION,
                namespace=metadata.get("namespace"),
                plural=PIPELINE_PLURAL,
                name=metadata.get("name"),
                body=pipeline,
            )
        except ApiException as e:
            if e.status == 409:
                raise StoreConflictError(
                    f"pipeline {metadata.get('namespace')}/{metadata.get('name')} "
                    f"was modified concurrently: {e.reason}"
                ) from e
            raise

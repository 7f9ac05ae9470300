"""REST client for the DevOps pipeline service."""

from __future__ import annotations

from typing import Any, Optional, Protocol

import requests

from .. import metrics
from ..errors import DevOpsClientError, DevOpsNotFoundError


class DevOpsClient(Protocol):
    def get_pipeline_config(self, namespace: str, name: str) -> dict[str, Any]: ...

    def create_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]: ...

    def update_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]: ...

    def delete_pipeline(self, namespace: str, name: str) -> None: ...


def _pipeline_body(namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]:
    metadata = pipeline.get("metadata") or {}
    return {
        "metadata": {"name": metadata.get("name"), "namespace": namespace},
        "spec": pipeline.get("spec") or {},
    }


class DevOpsHTTPClient:
    """
    Talks to the DevOps service that owns the remote job configuration.

    Every method raises :class:`DevOpsNotFoundError` when the service answers
    404 and :class:`DevOpsClientError` for any other failure, including
    transport errors.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        session: Optional[requests.Session] = None,
        timeout_s: float = 30.0,
    ) -> None:
        self._endpoint = endpoint.rstrip("/")
        self._session = session or requests.Session()
        self._timeout_s = timeout_s

    def _url(self, namespace: str, name: str | None = None) -> str:
        url = f"{self._endpoint}/namespaces/{namespace}/pipelines"
        if name:
            url = f"{url}/{name}"
        return url

    def _request(self, operation: str, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            resp = self._session.request(method, url, timeout=self._timeout_s, **kwargs)
        except requests.RequestException as e:
            metrics.REMOTE_CALLS_TOTAL.labels(operation=operation, result="error").inc()
            raise DevOpsClientError(None, str(e)) from e

        if resp.status_code == 404:
            metrics.REMOTE_CALLS_TOTAL.labels(operation=operation, result="not_found").inc()
            raise DevOpsNotFoundError(resp.text[:500] or "not found")
        if resp.status_code >= 400:
            metrics.REMOTE_CALLS_TOTAL.labels(operation=operation, result="error").inc()
            raise DevOpsClientError(resp.status_code, resp.text[:500])

        metrics.REMOTE_CALLS_TOTAL.labels(operation=operation, result="success").inc()
        return resp

    @staticmethod
    def _json(resp: requests.Response) -> dict[str, Any]:
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as e:
            raise DevOpsClientError(resp.status_code, f"invalid JSON response: {e}") from e
        return data if isinstance(data, dict) else {}

    def get_pipeline_config(self, namespace: str, name: str) -> dict[str, Any]:
        resp = self._request("get", "GET", self._url(namespace, name))
        return self._json(resp)

    def create_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]:
        resp = self._request(
            "create", "POST", self._url(namespace), json=_pipeline_body(namespace, pipeline)
        )
        return self._json(resp)

    def update_pipeline(self, namespace: str, pipeline: dict[str, Any]) -> dict[str, Any]:
        name = (pipeline.get("metadata") or {}).get("name")
        resp = self._request(
            "update", "PUT", self._url(namespace, name), json=_pipeline_body(namespace, pipeline)
        )
        return self._json(resp)

    def delete_pipeline(self, namespace: str, name: str) -> None:
        self._request("delete", "DELETE", self._url(namespace, name))

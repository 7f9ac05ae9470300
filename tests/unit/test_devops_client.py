"""Tests for the DevOps service REST client."""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_pipeline

from pipeline_operator import metrics
from pipeline_operator.errors import DevOpsClientError, DevOpsNotFoundError
from pipeline_operator.services.devops import DevOpsHTTPClient


def make_response(status_code=200, payload=None, text=""):
    resp = MagicMock(spec=requests.Response)
    resp.status_code = status_code
    resp.text = text
    resp.content = b"{}" if payload is not None else b""
    resp.json.return_value = payload
    return resp


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def devops_client(session):
    return DevOpsHTTPClient("http://devops.example/", session=session, timeout_s=5)


class TestDevOpsHTTPClient:
    def test_get_pipeline_config(self, devops_client, session):
        session.request.return_value = make_response(payload={"spec": {"type": "pipeline"}})

        config = devops_client.get_pipeline_config("demo-project", "build")

        assert config == {"spec": {"type": "pipeline"}}
        session.request.assert_called_once_with(
            "GET", "http://devops.example/namespaces/demo-project/pipelines/build", timeout=5
        )

    def test_get_missing_config_raises_not_found(self, devops_client, session):
        session.request.return_value = make_response(404, text="job not found")

        with pytest.raises(DevOpsNotFoundError) as exc_info:
            devops_client.get_pipeline_config("demo-project", "build")

        assert exc_info.value.status == 404

    def test_create_posts_name_and_spec(self, devops_client, session):
        session.request.return_value = make_response(201, payload={"metadata": {"name": "build"}})
        pipeline = make_pipeline(spec={"type": "pipeline"})

        devops_client.create_pipeline("demo-project", pipeline)

        args, kwargs = session.request.call_args
        assert args == ("POST", "http://devops.example/namespaces/demo-project/pipelines")
        assert kwargs["json"] == {
            "metadata": {"name": "build", "namespace": "demo-project"},
            "spec": {"type": "pipeline"},
        }

    def test_update_puts_to_named_url(self, devops_client, session):
        session.request.return_value = make_response(200, payload={})

        devops_client.update_pipeline("demo-project", make_pipeline())

        args, _ = session.request.call_args
        assert args == ("PUT", "http://devops.example/namespaces/demo-project/pipelines/build")

    def test_delete_with_empty_body(self, devops_client, session):
        session.request.return_value = make_response(204)

        assert devops_client.delete_pipeline("demo-project", "build") is None

    def test_delete_not_found(self, devops_client, session):
        session.request.return_value = make_response(404)

        with pytest.raises(DevOpsNotFoundError):
            devops_client.delete_pipeline("demo-project", "build")

    def test_server_error_is_not_not_found(self, devops_client, session):
        session.request.return_value = make_response(500, text="boom")

        with pytest.raises(DevOpsClientError) as exc_info:
            devops_client.delete_pipeline("demo-project", "build")

        assert not isinstance(exc_info.value, DevOpsNotFoundError)
        assert exc_info.value.status == 500

    def test_transport_error_is_wrapped(self, devops_client, session):
        session.request.side_effect = requests.ConnectionError("refused")

        with pytest.raises(DevOpsClientError) as exc_info:
            devops_client.get_pipeline_config("demo-project", "build")

        assert exc_info.value.status is None

    def test_invalid_json_is_a_client_error(self, devops_client, session):
        resp = make_response(200, payload={})
        resp.json.side_effect = ValueError("bad json")
        session.request.return_value = resp

        with pytest.raises(DevOpsClientError):
            devops_client.get_pipeline_config("demo-project", "build")

    def test_requests_are_counted(self, devops_client, session):
        metrics.REMOTE_CALLS_TOTAL.clear()
        session.request.return_value = make_response(404)

        with pytest.raises(DevOpsNotFoundError):
            devops_client.delete_pipeline("demo-project", "build")

        counter = metrics.REMOTE_CALLS_TOTAL.labels(operation="delete", result="not_found")
        assert counter._value.get() == 1

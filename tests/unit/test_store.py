"""Tests for the pipeline state store writer."""

from unittest.mock import MagicMock

import pytest
from kubernetes.client.exceptions import ApiException

from conftest import make_pipeline

from pipeline_operator.errors import StoreConflictError
from pipeline_operator.services.store import PipelineWriter


class TestPipelineWriter:
    def test_update_replaces_custom_object(self):
        custom_api = MagicMock()
        pipeline = make_pipeline()

        PipelineWriter(custom_api).update(pipeline)

        custom_api.replace_namespaced_custom_object.assert_called_once_with(
            group="devops.kubesphere.io",
            version="v1alpha3",
            namespace="demo-project",
            plural="pipelines",
            name="build",
            body=pipeline,
        )

    def test_conflict_is_translated(self):
        custom_api = MagicMock()
        custom_api.replace_namespaced_custom_object.side_effect = ApiException(
            status=409, reason="Conflict"
        )

        with pytest.raises(StoreConflictError):
            PipelineWriter(custom_api).update(make_pipeline())

    def test_other_api_errors_propagate(self):
        custom_api = MagicMock()
        custom_api.replace_namespaced_custom_object.side_effect = ApiException(status=500)

        with pytest.raises(ApiException):
            PipelineWriter(custom_api).update(make_pipeline())

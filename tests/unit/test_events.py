"""Tests for the Kubernetes event recorder."""

import threading
import time
from unittest.mock import MagicMock, patch

from kubernetes.client.exceptions import ApiException
from urllib3.exceptions import MaxRetryError

from conftest import make_pipeline

from pipeline_operator.events import EventRecorder


def wait_for_calls(mock, count, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if mock.call_count >= count:
            return True
        time.sleep(0.01)
    return False


class TestEventRecorder:
    def test_posts_event_for_pipeline(self):
        core_api = MagicMock()
        recorder = EventRecorder(core_api)
        recorder.start()
        try:
            recorder.event(make_pipeline(), "Normal", "Synced", "Created pipeline config")
            assert wait_for_calls(core_api.create_namespaced_event, 1)
        finally:
            recorder.close()

        kwargs = core_api.create_namespaced_event.call_args.kwargs
        body = kwargs["body"]
        assert kwargs["namespace"] == "demo-project"
        assert body.reason == "Synced"
        assert body.type == "Normal"
        assert body.involved_object.kind == "Pipeline"
        assert body.involved_object.name == "build"
        assert body.source.component == "pipeline-controller"

    def test_event_before_start_is_only_logged(self):
        core_api = MagicMock()
        recorder = EventRecorder(core_api)

        with patch("pipeline_operator.events.logger") as mock_logger:
            recorder.event(make_pipeline(), "Warning", "DeleteFailed", "boom")

        core_api.create_namespaced_event.assert_not_called()
        assert "DeleteFailed" in str(mock_logger.warning.call_args)

    def test_failed_post_does_not_stop_sender(self):
        core_api = MagicMock()
        core_api.create_namespaced_event.side_effect = [ApiException(status=403), None]
        recorder = EventRecorder(core_api)
        recorder.start()
        try:
            recorder.event(make_pipeline(), "Normal", "Synced", "first")
            recorder.event(make_pipeline(), "Normal", "Synced", "second")
            assert wait_for_calls(core_api.create_namespaced_event, 2)
        finally:
            recorder.close()

    def test_close_is_idempotent(self):
        recorder = EventRecorder(MagicMock())
        recorder.close()
        recorder.start()
        recorder.close()
        recorder.close()

    def test_without_api_events_are_logged(self):
        recorder = EventRecorder()
        recorder.start()
        try:
            with patch("pipeline_operator.events.logger") as mock_logger:
                recorder.event(make_pipeline(), "Normal", "Synced", "ok")
        finally:
            recorder.close()

        assert "Synced" in str(mock_logger.info.call_args)

    def test_transport_error_does_not_stop_sender(self):
        core_api = MagicMock()
        core_api.create_namespaced_event.side_effect = [
            MaxRetryError(None, "/api/v1/namespaces/demo-project/events"),
            None,
        ]
        recorder = EventRecorder(core_api, max_pending=2)
        recorder.start()
        sender = recorder._thread
        try:
            with patch("pipeline_operator.events.logger") as mock_logger:
                recorder.event(make_pipeline(), "Normal", "Synced", "first")
                recorder.event(make_pipeline(), "Normal", "Synced", "second")
                assert wait_for_calls(core_api.create_namespaced_event, 2)
            assert sender.is_alive()
        finally:
            recorder.close(timeout=1.0)

        assert not sender.is_alive()
        assert "Failed to post event" in str(mock_logger.warning.call_args)

    def test_close_returns_when_queue_is_full(self):
        release = threading.Event()
        core_api = MagicMock()
        core_api.create_namespaced_event.side_effect = lambda **_: release.wait(5)
        recorder = EventRecorder(core_api, max_pending=1)
        recorder.start()
        try:
            recorder.event(make_pipeline(), "Normal", "Synced", "in flight")
            assert wait_for_calls(core_api.create_namespaced_event, 1)
            recorder.event(make_pipeline(), "Normal", "Synced", "queued")

            started = time.monotonic()
            with patch("pipeline_operator.events.logger") as mock_logger:
                recorder.close(timeout=0.2)
            elapsed = time.monotonic() - started
        finally:
            release.set()

        assert elapsed < 2.0
        assert "EventsDropped" in str(mock_logger.warning.call_args)

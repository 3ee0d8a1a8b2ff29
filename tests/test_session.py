"""Tests for per-actor session wiring."""

from unittest.mock import patch

import pytest

from delivery_client.models import AvailabilityStatus, StatusSnapshot
from delivery_client.results import ErrorCode, OperationResult
from delivery_client.session import DeliverySession


@pytest.fixture
def session(settings, fixed_now):
    return DeliverySession(settings=settings, now_fn=lambda: fixed_now)


class TestDeliverySession:
    """Test login, logout and initial sync."""

    def test_starts_unauthenticated(self, session):
        assert session.is_authenticated is False
        assert session.client.has_credential() is False
        assert session.start() is False

    def test_caches_are_per_session(self, settings):
        first = DeliverySession(settings=settings, token="a")
        second = DeliverySession(settings=settings, token="b")

        assert first.status_cache is not second.status_cache
        assert first.task_cache is not second.task_cache
        assert first.current_token() == "a"
        assert second.current_token() == "b"

    def test_login_clears_stale_credential_error(self, session):
        session.reconciler.update_status("online")
        assert session.status_cache.last_error.code == ErrorCode.MISSING_CREDENTIAL

        session.login("fresh-token")

        assert session.is_authenticated
        assert session.status_cache.last_error is None
        assert session.client.has_credential()

    def test_login_keeps_other_errors(self, session):
        session.task_cache.record_error(ErrorCode.REMOTE_CALL_FAILED, "Network error")

        session.login("fresh-token")

        assert session.task_cache.last_error.code == ErrorCode.REMOTE_CALL_FAILED

    @patch("delivery_client.session.DeliveryReconciler.load_tasks")
    @patch("delivery_client.session.DeliveryReconciler.load_current_status")
    def test_start_loads_status_then_tasks(self, mock_status, mock_tasks, session):
        session.login("token")
        calls = []

        def load_status():
            calls.append("status")
            return OperationResult.ok()

        def load_tasks():
            calls.append("tasks")
            return OperationResult.ok()

        mock_status.side_effect = load_status
        mock_tasks.side_effect = load_tasks

        assert session.start() is True
        assert calls == ["status", "tasks"]

    def test_logout_clears_state(self, session):
        session.login("token")
        session.status_cache.apply_snapshot(StatusSnapshot(status=AvailabilityStatus.ONLINE))

        session.logout()

        assert session.is_authenticated is False
        assert session.client.has_credential() is False
        assert session.status_cache.status == AvailabilityStatus.OFFLINE
        assert session.task_cache.tasks == []

    def test_urgent_window_from_settings(self, settings):
        settings = settings.model_copy(update={"urgent_window_minutes": 15})
        session = DeliverySession(settings=settings)
        assert session.task_cache.urgent_window.total_seconds() == 15 * 60

"""Tests for wire models and the task lifecycle graph."""

from datetime import UTC

import pytest
from pydantic import ValidationError

from delivery_client.models import (
    AvailabilityStatus,
    DeliveryTask,
    StatusSnapshot,
    TaskStatus,
    TaskType,
    can_transition,
    normalize_task_status,
)


class TestDeliveryTask:
    """Test DeliveryTask parsing."""

    def test_snake_case_payload(self, task_payloads):
        task = DeliveryTask.model_validate(task_payloads[0])

        assert task.id == "1"
        assert task.order_id == "501"
        assert task.task_type == TaskType.DELIVERY
        assert task.status == TaskStatus.ASSIGNED
        assert task.customer_name == "Alice"
        assert task.assigned_at.tzinfo is not None

    def test_camel_case_payload(self, task_payloads):
        task = DeliveryTask.model_validate(task_payloads[1])

        assert task.task_number == "TASK-2"
        assert task.task_type == TaskType.PICKUP
        assert task.status == TaskStatus.DELIVERED
        assert task.order_id == "502"
        assert task.delivered_at is not None

    def test_legacy_in_progress_reads_as_in_transit(self):
        task = DeliveryTask.model_validate({"id": 5, "status": "in_progress"})
        assert task.status == TaskStatus.IN_TRANSIT

    def test_naive_timestamps_are_utc(self):
        task = DeliveryTask.model_validate(
            {"id": 5, "status": "assigned", "assigned_at": "2025-03-14T09:00:00"}
        )
        assert task.assigned_at.tzinfo == UTC

    def test_missing_task_type_defaults_to_delivery(self):
        task = DeliveryTask.model_validate({"id": 5, "status": "pending", "task_type": None})
        assert task.task_type == TaskType.DELIVERY

    def test_unknown_status_rejected(self):
        with pytest.raises(ValidationError):
            DeliveryTask.model_validate({"id": 5, "status": "teleported"})

    def test_tasks_are_immutable(self):
        task = DeliveryTask(id="1", status=TaskStatus.PENDING)
        with pytest.raises(ValidationError):
            task.status = TaskStatus.ASSIGNED


class TestTaskLifecycle:
    """Test the allowed transitions between task statuses."""

    @pytest.mark.parametrize(
        "current,new",
        [
            (TaskStatus.PENDING, TaskStatus.ASSIGNED),
            (TaskStatus.ASSIGNED, TaskStatus.PICKED_UP),
            (TaskStatus.PICKED_UP, TaskStatus.IN_TRANSIT),
            (TaskStatus.DELIVERED, TaskStatus.COMPLETED),
            (TaskStatus.IN_TRANSIT, TaskStatus.FAILED),
            (TaskStatus.ACCEPTED, TaskStatus.CANCELLED),
            (TaskStatus.IN_TRANSIT, TaskStatus.OVERDUE),
            (TaskStatus.FAILED, TaskStatus.ASSIGNED),
            (TaskStatus.OVERDUE, TaskStatus.DELIVERED),
        ],
    )
    def test_allowed(self, current, new):
        assert can_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (TaskStatus.IN_TRANSIT, TaskStatus.ACCEPTED),
            (TaskStatus.COMPLETED, TaskStatus.FAILED),
            (TaskStatus.CANCELLED, TaskStatus.ASSIGNED),
            (TaskStatus.FAILED, TaskStatus.PENDING),
            (TaskStatus.ASSIGNED, TaskStatus.ASSIGNED),
        ],
    )
    def test_rejected(self, current, new):
        assert not can_transition(current, new)

    def test_normalize_task_status(self):
        assert normalize_task_status("Picked_Up") == TaskStatus.PICKED_UP
        assert normalize_task_status(TaskStatus.FAILED) == TaskStatus.FAILED
        with pytest.raises(ValueError):
            normalize_task_status("busy")


class TestStatusSnapshot:
    """Test parsing of status endpoint payloads."""

    def test_current_status_shape(self):
        snapshot = StatusSnapshot.from_payload(
            {
                "success": True,
                "message": "Delivery status retrieved successfully",
                "data": {"delivery_status": "online", "can_change_manually": True},
            }
        )
        assert snapshot.status == AvailabilityStatus.ONLINE
        assert snapshot.can_change_manually is True
        assert snapshot.message == "Delivery status retrieved successfully"

    def test_update_status_shape_uses_data_first(self):
        snapshot = StatusSnapshot.from_payload(
            {
                "success": True,
                "data": {"delivery_status": "offline"},
                "current_status": "offline",
            }
        )
        assert snapshot.status == AvailabilityStatus.OFFLINE

    def test_top_level_current_status(self):
        snapshot = StatusSnapshot.from_payload({"success": True, "current_status": "busy"})
        assert snapshot.status == AvailabilityStatus.BUSY
        assert snapshot.can_change_manually is False

    def test_flat_echo_shape(self):
        snapshot = StatusSnapshot.from_payload(
            {"status": "online", "can_change_manually": True}
        )
        assert snapshot.status == AvailabilityStatus.ONLINE
        assert snapshot.can_change_manually is True

    def test_flat_can_change_manually_respected(self):
        snapshot = StatusSnapshot.from_payload(
            {"status": "online", "can_change_manually": False}
        )
        assert snapshot.can_change_manually is False

    def test_unknown_candidate_falls_through(self):
        snapshot = StatusSnapshot.from_payload(
            {"data": {"status": "ok"}, "status": "offline"}
        )
        assert snapshot.status == AvailabilityStatus.OFFLINE

    def test_non_dict_payload_returns_none(self):
        assert StatusSnapshot.from_payload(["online"]) is None

    def test_no_status_returns_none(self):
        assert StatusSnapshot.from_payload({"success": True}) is None
        assert StatusSnapshot.from_payload({"data": {"delivery_status": "asleep"}}) is None

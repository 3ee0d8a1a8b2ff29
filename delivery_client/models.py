"""
Pydantic models and enums for delivery status reconciliation.

These models define the data structures mirrored from the backend:
- Manager availability status
- Delivery task lifecycle status and the allowed transitions
- Delivery task records
- Status snapshots echoed by the status endpoints
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class AvailabilityStatus(str, Enum):
    """Delivery manager availability."""

    ONLINE = "online"
    OFFLINE = "offline"
    BUSY = "busy"


# Values a manager may request by hand; busy is server-controlled.
MANUAL_STATUSES = frozenset({AvailabilityStatus.ONLINE, AvailabilityStatus.OFFLINE})


class TaskStatus(str, Enum):
    """Unified lifecycle status for pickup, delivery and return tasks."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    OVERDUE = "overdue"


class TaskType(str, Enum):
    """Kinds of fulfillment work."""

    PICKUP = "pickup"
    DELIVERY = "delivery"
    RETURN = "return"


LIFECYCLE_ORDER: tuple[TaskStatus, ...] = (
    TaskStatus.PENDING,
    TaskStatus.ASSIGNED,
    TaskStatus.ACCEPTED,
    TaskStatus.PICKED_UP,
    TaskStatus.IN_TRANSIT,
    TaskStatus.DELIVERED,
    TaskStatus.COMPLETED,
)
SIDE_BRANCHES = frozenset({TaskStatus.FAILED, TaskStatus.CANCELLED, TaskStatus.OVERDUE})
TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.CANCELLED})

# Lifecycle step -> timestamp field stamped when the step is confirmed
STATUS_TIMESTAMP_FIELDS: dict[TaskStatus, str] = {
    TaskStatus.ASSIGNED: "assigned_at",
    TaskStatus.ACCEPTED: "accepted_at",
    TaskStatus.PICKED_UP: "picked_up_at",
    TaskStatus.DELIVERED: "delivered_at",
    TaskStatus.COMPLETED: "completed_at",
}

# Older backend builds report "in_progress" for tasks on the road.
_LEGACY_STATUS_ALIASES = {"in_progress": TaskStatus.IN_TRANSIT.value}


def normalize_task_status(value: str | TaskStatus) -> TaskStatus:
    """Parse a status value, accepting legacy spellings.

    Raises:
        ValueError: If the value is not a known task status
    """
    if isinstance(value, TaskStatus):
        return value
    raw = str(value).strip().lower()
    return TaskStatus(_LEGACY_STATUS_ALIASES.get(raw, raw))


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    """Check whether ``current -> new`` follows the task lifecycle graph.

    Main-path moves must go forward (skipping steps is allowed). Side
    branches are reachable from any non-terminal status. A failed or overdue
    task may re-enter the main path anywhere after ``pending``.
    """
    if current == new or current in TERMINAL_STATUSES:
        return False
    if new in SIDE_BRANCHES:
        return True
    if current in SIDE_BRANCHES:
        return new != TaskStatus.PENDING
    return LIFECYCLE_ORDER.index(new) > LIFECYCLE_ORDER.index(current)


class DeliveryTask(BaseModel):
    """One unit of delivery or borrow-fulfillment work."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(description="Task identifier")
    task_number: str = Field(
        default="", validation_alias=AliasChoices("task_number", "taskNumber")
    )
    task_type: TaskType = Field(
        default=TaskType.DELIVERY, validation_alias=AliasChoices("task_type", "taskType")
    )
    status: TaskStatus
    order_id: str = Field(default="", validation_alias=AliasChoices("order_id", "orderId"))
    assigned_to: str | None = Field(
        default=None,
        validation_alias=AliasChoices("assigned_to", "assignedTo", "delivery_person_id"),
    )

    customer_name: str = Field(
        default="", validation_alias=AliasChoices("customer_name", "customerName")
    )
    customer_phone: str = Field(
        default="", validation_alias=AliasChoices("customer_phone", "customerPhone")
    )
    delivery_address: str = Field(
        default="", validation_alias=AliasChoices("delivery_address", "deliveryAddress")
    )
    delivery_city: str = Field(
        default="", validation_alias=AliasChoices("delivery_city", "deliveryCity")
    )
    latitude: float | None = None
    longitude: float | None = None
    notes: str | None = None

    assigned_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("assigned_at", "assignedAt")
    )
    accepted_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("accepted_at", "acceptedAt")
    )
    picked_up_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("picked_up_at", "pickedUpAt")
    )
    delivered_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("delivered_at", "deliveredAt")
    )
    completed_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("completed_at", "completedAt")
    )
    estimated_delivery_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("estimated_delivery_time", "estimatedDeliveryTime"),
    )
    created_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("created_at", "createdAt")
    )
    updated_at: datetime | None = Field(
        default=None, validation_alias=AliasChoices("updated_at", "updatedAt")
    )

    failure_reason: str | None = Field(
        default=None, validation_alias=AliasChoices("failure_reason", "failureReason")
    )
    retry_count: int = Field(
        default=0, ge=0, validation_alias=AliasChoices("retry_count", "retryCount")
    )

    @field_validator("id", "order_id", mode="before")
    @classmethod
    def coerce_identifier(cls, v: Any) -> str:
        """Backends send numeric ids; keep them as strings."""
        return "" if v is None else str(v)

    @field_validator("assigned_to", mode="before")
    @classmethod
    def coerce_assignee(cls, v: Any) -> str | None:
        return None if v in (None, "") else str(v)

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            return normalize_task_status(v)
        return v

    @field_validator("task_type", mode="before")
    @classmethod
    def default_task_type(cls, v: Any) -> Any:
        return TaskType.DELIVERY if v in (None, "") else v

    @field_validator(
        "assigned_at",
        "accepted_at",
        "picked_up_at",
        "delivered_at",
        "completed_at",
        "estimated_delivery_time",
        "created_at",
        "updated_at",
    )
    @classmethod
    def ensure_timezone(cls, v: datetime | None) -> datetime | None:
        """Treat naive timestamps as UTC so comparisons stay well-defined."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class StatusSnapshot(BaseModel):
    """Authoritative availability state echoed by the server."""

    model_config = ConfigDict(frozen=True)

    status: AvailabilityStatus
    can_change_manually: bool = True
    message: str | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "StatusSnapshot | None":
        """Extract a snapshot from any of the status endpoint response shapes.

        Handles the flat ``{status, can_change_manually}`` echo as well as
        the wrapped ``{success, data: {delivery_status, ...}}`` form. The
        first candidate that names a known status wins.

        Returns None when the payload carries no recognizable status.
        """
        if not isinstance(payload, dict):
            return None
        data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
        candidates = (
            data.get("delivery_status"),
            payload.get("current_status"),
            data.get("status"),
            payload.get("delivery_status"),
            payload.get("status"),
        )
        status = None
        for raw in candidates:
            try:
                status = AvailabilityStatus(raw)
                break
            except ValueError:
                continue
        if status is None:
            return None

        can_change = data.get("can_change_manually")
        if can_change is None:
            can_change = payload.get("can_change_manually")
        if can_change is None:
            can_change = status != AvailabilityStatus.BUSY

        message = payload.get("message")
        return cls(
            status=status,
            can_change_manually=bool(can_change),
            message=message if isinstance(message, str) else None,
        )

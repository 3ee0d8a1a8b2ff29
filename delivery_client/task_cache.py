"""
In-memory task list for one delivery manager session.

The list is always replaced wholesale on load; derived views (assigned,
in transit, completed, urgent, overdue) are recomputed from the full list on
every access so a count can never drift from the list it describes.
"""

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

import structlog

from delivery_client.models import (
    STATUS_TIMESTAMP_FIELDS,
    DeliveryTask,
    TaskStatus,
)
from delivery_client.observable import Observable
from delivery_client.results import CacheError, ErrorCode

logger = structlog.get_logger(__name__)

ASSIGNED_STATUSES = frozenset({TaskStatus.ASSIGNED, TaskStatus.ACCEPTED})
IN_TRANSIT_STATUSES = frozenset({TaskStatus.PICKED_UP, TaskStatus.IN_TRANSIT})
COMPLETED_STATUSES = frozenset({TaskStatus.DELIVERED, TaskStatus.COMPLETED})

# Tasks in these states no longer have a delivery deadline to miss
_INACTIVE_STATUSES = frozenset(
    {
        TaskStatus.DELIVERED,
        TaskStatus.COMPLETED,
        TaskStatus.CANCELLED,
        TaskStatus.FAILED,
    }
)


def utc_now() -> datetime:
    return datetime.now(UTC)


def is_active(task: DeliveryTask) -> bool:
    return task.status not in _INACTIVE_STATUSES


def is_overdue(task: DeliveryTask, now: datetime) -> bool:
    """Overdue if the server says so, or an active task missed its ETA."""
    if task.status == TaskStatus.OVERDUE:
        return True
    return (
        is_active(task)
        and task.estimated_delivery_time is not None
        and task.estimated_delivery_time < now
    )


def is_urgent(task: DeliveryTask, now: datetime, window: timedelta) -> bool:
    """Failed, overdue, or an active task due within ``window``."""
    if task.status == TaskStatus.FAILED or is_overdue(task, now):
        return True
    return (
        is_active(task)
        and task.estimated_delivery_time is not None
        and task.estimated_delivery_time <= now + window
    )


def with_confirmed_status(
    task: DeliveryTask,
    status: TaskStatus,
    now: datetime,
    failure_reason: str | None = None,
) -> DeliveryTask:
    """Copy of ``task`` reflecting a server-confirmed status change."""
    update: dict = {"status": status, "updated_at": now}
    timestamp_field = STATUS_TIMESTAMP_FIELDS.get(status)
    if timestamp_field:
        update[timestamp_field] = now
    if status == TaskStatus.FAILED and failure_reason:
        update["failure_reason"] = failure_reason
    return task.model_copy(update=update)


class TaskListCache(Observable):
    """
    Task list mirror with derived views.

    Example:
        >>> cache = TaskListCache()
        >>> cache.replace_all([
        ...     DeliveryTask(id="1", status=TaskStatus.ASSIGNED),
        ...     DeliveryTask(id="2", status=TaskStatus.DELIVERED),
        ... ])
        >>> cache.assigned_tasks_count
        1
        >>> cache.completed_tasks_count
        1

    Events:
        tasks_changed: the list or one of its tasks was replaced
        loading_changed: a remote call started or finished
        error_changed: last_error was set or cleared
        cleared: the cache was reset at session teardown
    """

    def __init__(
        self,
        urgent_window: timedelta = timedelta(minutes=60),
        now_fn: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the cache.

        Args:
            urgent_window: How close an ETA must be for a task to be urgent
            now_fn: Clock used by the time-based views
        """
        super().__init__()
        self._tasks: list[DeliveryTask] = []
        self._is_loading = False
        self._last_error: CacheError | None = None
        self.urgent_window = urgent_window
        self._now_fn = now_fn

    @property
    def tasks(self) -> list[DeliveryTask]:
        return list(self._tasks)

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> CacheError | None:
        return self._last_error

    def now(self) -> datetime:
        return self._now_fn()

    def get(self, task_id: str) -> DeliveryTask | None:
        for task in self._tasks:
            if task.id == task_id:
                return task
        return None

    def __len__(self) -> int:
        return len(self._tasks)

    # Mutations (reconciler only, after server confirmation)

    def replace_all(self, tasks: Iterable[DeliveryTask]) -> None:
        self._tasks = list(tasks)
        logger.debug("Task cache replaced", task_count=len(self._tasks))
        self.notify("tasks_changed")

    def replace_task(self, task: DeliveryTask) -> bool:
        """
        Swap in a new version of a cached task.

        Returns:
            True if a task with the same id was replaced, False if absent
        """
        for index, existing in enumerate(self._tasks):
            if existing.id == task.id:
                self._tasks[index] = task
                logger.debug(
                    "Task updated in cache", task_id=task.id, status=task.status.value
                )
                self.notify("tasks_changed")
                return True
        return False

    def set_loading(self, loading: bool) -> None:
        if self._is_loading != loading:
            self._is_loading = loading
            self.notify("loading_changed")

    def record_error(self, code: ErrorCode, message: str) -> None:
        self._last_error = CacheError(code=code, message=message)
        self.notify("error_changed")

    def clear_error(self) -> None:
        if self._last_error is not None:
            self._last_error = None
            self.notify("error_changed")

    def clear(self) -> None:
        """Drop all session state (logout)."""
        self._tasks = []
        self._is_loading = False
        self._last_error = None
        self.notify("cleared")

    # Derived views

    def tasks_with_status(self, statuses: Iterable[TaskStatus]) -> list[DeliveryTask]:
        wanted = frozenset(statuses)
        return [t for t in self._tasks if t.status in wanted]

    @property
    def assigned_tasks(self) -> list[DeliveryTask]:
        return self.tasks_with_status(ASSIGNED_STATUSES)

    @property
    def in_transit_tasks(self) -> list[DeliveryTask]:
        return self.tasks_with_status(IN_TRANSIT_STATUSES)

    @property
    def completed_tasks(self) -> list[DeliveryTask]:
        return self.tasks_with_status(COMPLETED_STATUSES)

    @property
    def overdue_tasks(self) -> list[DeliveryTask]:
        now = self.now()
        return [t for t in self._tasks if is_overdue(t, now)]

    @property
    def urgent_tasks(self) -> list[DeliveryTask]:
        now = self.now()
        return [t for t in self._tasks if is_urgent(t, now, self.urgent_window)]

    @property
    def assigned_tasks_count(self) -> int:
        return len(self.assigned_tasks)

    @property
    def in_transit_tasks_count(self) -> int:
        return len(self.in_transit_tasks)

    @property
    def completed_tasks_count(self) -> int:
        return len(self.completed_tasks)

    @property
    def overdue_tasks_count(self) -> int:
        return len(self.overdue_tasks)

    @property
    def urgent_tasks_count(self) -> int:
        return len(self.urgent_tasks)

    def summary(self) -> dict[str, int]:
        """Counts per view, for dashboards and logging."""
        return {
            "total": len(self._tasks),
            "assigned": self.assigned_tasks_count,
            "in_transit": self.in_transit_tasks_count,
            "completed": self.completed_tasks_count,
            "overdue": self.overdue_tasks_count,
            "urgent": self.urgent_tasks_count,
        }

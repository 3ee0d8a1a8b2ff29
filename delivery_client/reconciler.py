"""
Reconciles local caches with server-authoritative delivery state.

Every mutation follows confirm-then-apply: the remote call goes first, and
only a confirmed response is mirrored into a cache, using the value the
server echoed rather than the one that was requested. Failures leave the
caches untouched and are recorded as ``last_error`` on the owning cache.
"""

import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

import structlog
from pydantic import ValidationError

from delivery_client.api_client import MISSING_CREDENTIAL_MESSAGE, DeliveryAPIClient
from delivery_client.models import (
    AvailabilityStatus,
    DeliveryTask,
    StatusSnapshot,
    TaskStatus,
    can_transition,
    normalize_task_status,
)
from delivery_client.results import ErrorCode, OperationResult
from delivery_client.status_cache import StatusCache, TransitionRejected, parse_manual_status
from delivery_client.task_cache import TaskListCache, with_confirmed_status

logger = structlog.get_logger(__name__)

# Confirmed task moves after which the server may have changed availability
STATUS_AFFECTING_TASK_STATUSES = frozenset(
    {
        TaskStatus.ACCEPTED,
        TaskStatus.DELIVERED,
        TaskStatus.COMPLETED,
        TaskStatus.FAILED,
        TaskStatus.CANCELLED,
    }
)


def _remote_error_code(data: Any) -> ErrorCode:
    if isinstance(data, dict) and data.get("error_code") == ErrorCode.MISSING_CREDENTIAL.value:
        return ErrorCode.MISSING_CREDENTIAL
    return ErrorCode.REMOTE_CALL_FAILED


def _remote_error_message(data: Any) -> str:
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return "Unknown error"


def _echoed_task_status(data: Any) -> TaskStatus | None:
    """Status echoed back by the task endpoint, if it sent one."""
    if not isinstance(data, dict):
        return None
    echo = data.get("data") if isinstance(data.get("data"), dict) else data
    raw = echo.get("status")
    if not isinstance(raw, str):
        return None
    try:
        return normalize_task_status(raw)
    except ValueError:
        return None


class DeliveryReconciler:
    """
    Operations that keep one session's caches in step with the server.

    Example:
        >>> client = DeliveryAPIClient(token_provider=lambda: token)
        >>> reconciler = DeliveryReconciler(client)
        >>> reconciler.load_current_status()
        >>> result = reconciler.update_status("online")
        >>> if not result:
        ...     print(reconciler.status_cache.last_error.message)
    """

    def __init__(
        self,
        client: DeliveryAPIClient,
        status_cache: StatusCache | None = None,
        task_cache: TaskListCache | None = None,
        auto_reset_when_busy: bool = True,
    ):
        """
        Initialize the reconciler.

        Args:
            client: Transport for the delivery backend
            status_cache: Availability cache to mirror into
            task_cache: Task list cache to mirror into
            auto_reset_when_busy: Run the safety reset when a load reports busy
        """
        self.client = client
        self.status_cache = status_cache or StatusCache()
        self.task_cache = task_cache or TaskListCache()
        self.auto_reset_when_busy = auto_reset_when_busy
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()

    # Availability status

    def load_current_status(self) -> OperationResult:
        """
        Load the authoritative status, e.g. after login or app start.

        Without a credential this is a silent no-op: nothing is recorded or
        notified. A 'busy' result triggers the safety reset sweep.
        """
        if not self.client.has_credential():
            logger.debug("No credential available, skipping status load")
            return OperationResult.fail(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        result = self._fetch_status("Error loading status")
        if result and self.status_cache.is_busy and self.auto_reset_when_busy:
            logger.info("Loaded status is busy, running safety reset")
            reset = self.reset_status_if_no_active_deliveries()
            if not reset:
                logger.warning("Safety reset did not complete", error=reset.message)
        return result

    def refresh_status(self) -> OperationResult:
        """Re-read the status without the reset sweep (silent when logged out)."""
        if not self.client.has_credential():
            return OperationResult.fail(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )
        return self._fetch_status("Error refreshing status")

    def update_status(self, new_status: str | AvailabilityStatus) -> OperationResult:
        """
        Request a manual change between online and offline.

        The cache adopts the status the server echoes, never the requested
        value. Requests for the current status succeed without a remote call.
        """
        cache = self.status_cache

        if not self.client.has_credential():
            return self._status_failure(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        try:
            target = parse_manual_status(cache.status, new_status)
        except TransitionRejected as e:
            return self._status_failure(e.code, e.message)

        if target == cache.status:
            logger.debug("Status already current, nothing to update", status=target.value)
            return OperationResult.ok(f"Status is already {target.value}")

        cache.set_loading(True)
        cache.clear_error()
        try:
            success, data = self.client.update_status(target.value)
        finally:
            cache.set_loading(False)

        if not success:
            return self._status_failure(
                _remote_error_code(data),
                f"Error updating status: {_remote_error_message(data)}",
            )

        snapshot = StatusSnapshot.from_payload(data)
        if snapshot is None:
            logger.warning("Status update confirmed without echo, reloading")
            return self._fetch_status("Error loading status after update")

        cache.apply_snapshot(snapshot)
        logger.info(
            "Availability status updated",
            requested=target.value,
            status=snapshot.status.value,
        )
        return OperationResult.ok(snapshot.message or "Status updated")

    def reset_status_if_no_active_deliveries(self) -> OperationResult:
        """
        Ask the server to clear a stale 'busy' status.

        The server alone decides whether any active delivery still justifies
        'busy'; the cache adopts whatever status it reports.
        """
        cache = self.status_cache

        if not self.client.has_credential():
            return self._status_failure(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        cache.set_loading(True)
        cache.clear_error()
        try:
            success, data = self.client.reset_status()
        finally:
            cache.set_loading(False)

        if not success:
            return self._status_failure(
                _remote_error_code(data),
                f"Error resetting status: {_remote_error_message(data)}",
            )

        snapshot = StatusSnapshot.from_payload(data)
        if snapshot is None:
            return self._status_failure(
                ErrorCode.REMOTE_CALL_FAILED, "Failed to reset status"
            )

        cache.apply_snapshot(
            StatusSnapshot(
                status=snapshot.status,
                can_change_manually=snapshot.status != AvailabilityStatus.BUSY,
                message=snapshot.message,
            )
        )
        details = data.get("data") if isinstance(data.get("data"), dict) else {}
        was_reset = details.get("was_reset")
        logger.info(
            "Status reset checked", status=snapshot.status.value, was_reset=was_reset
        )
        return OperationResult.ok(snapshot.message or "Status reset checked")

    # Tasks

    def load_tasks(self) -> OperationResult:
        """Fetch the full task list and replace the cache wholesale."""
        cache = self.task_cache

        if not self.client.has_credential():
            return self._task_failure(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        cache.set_loading(True)
        cache.clear_error()
        try:
            success, data = self.client.get_tasks()
        finally:
            cache.set_loading(False)

        if not success:
            return self._task_failure(
                _remote_error_code(data),
                f"Failed to load tasks: {_remote_error_message(data)}",
            )

        tasks: list[DeliveryTask] = []
        for item in data:
            try:
                tasks.append(DeliveryTask.model_validate(item))
            except ValidationError as e:
                logger.warning(
                    "Skipping malformed task record",
                    task_id=item.get("id") if isinstance(item, dict) else None,
                    error=str(e),
                )

        cache.replace_all(tasks)
        logger.info("Tasks loaded", **cache.summary())
        return OperationResult.ok(f"Loaded {len(tasks)} tasks")

    def update_task_status(
        self,
        task_id: str | int,
        new_status: str | TaskStatus,
        notes: str | None = None,
        failure_reason: str | None = None,
    ) -> OperationResult:
        """
        Move a task along its lifecycle.

        The local task changes only after the server confirms. Requests that
        break the lifecycle graph are rejected without a remote call.
        """
        task_id = str(task_id)

        try:
            target = normalize_task_status(new_status)
        except ValueError:
            return self._task_failure(
                ErrorCode.INVALID_TRANSITION, f"Unknown task status: {new_status}"
            )

        if not self.client.has_credential():
            return self._task_failure(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        current = self.task_cache.get(task_id)
        if current is not None and not can_transition(current.status, target):
            return self._task_failure(
                ErrorCode.INVALID_TRANSITION,
                f"Cannot move task {task_id} from {current.status.value} "
                f"to {target.value}",
            )

        with self._claim(task_id) as claimed:
            if not claimed:
                return self._call_in_progress(task_id)

            self.task_cache.clear_error()
            success, data = self.client.update_task_status(
                task_id, target.value, notes=notes, failure_reason=failure_reason
            )
            if not success:
                return self._task_failure(
                    _remote_error_code(data),
                    f"Failed to update task status: {_remote_error_message(data)}",
                )

            confirmed = _echoed_task_status(data) or target
            result = self._mirror(
                task_id,
                lambda task, now: with_confirmed_status(
                    task, confirmed, now, failure_reason
                ),
            )

        if result:
            logger.info("Task status updated", task_id=task_id, status=confirmed.value)
            if confirmed in STATUS_AFFECTING_TASK_STATUSES:
                self.refresh_status()
        return result

    def accept_task(self, task_id: str | int) -> OperationResult:
        return self.update_task_status(task_id, TaskStatus.ACCEPTED)

    def mark_picked_up(self, task_id: str | int) -> OperationResult:
        return self.update_task_status(task_id, TaskStatus.PICKED_UP)

    def mark_in_transit(self, task_id: str | int) -> OperationResult:
        return self.update_task_status(task_id, TaskStatus.IN_TRANSIT)

    def mark_delivered(self, task_id: str | int) -> OperationResult:
        return self.update_task_status(task_id, TaskStatus.DELIVERED)

    def mark_completed(self, task_id: str | int) -> OperationResult:
        return self.update_task_status(task_id, TaskStatus.COMPLETED)

    def mark_failed(self, task_id: str | int, reason: str) -> OperationResult:
        return self.update_task_status(
            task_id, TaskStatus.FAILED, failure_reason=reason
        )

    def update_task_eta(self, task_id: str | int, eta: datetime) -> OperationResult:
        """Set a new estimated delivery time once the server accepts it."""
        task_id = str(task_id)
        if eta.tzinfo is None:
            eta = eta.replace(tzinfo=UTC)

        return self._confirmed_task_update(
            task_id,
            lambda: self.client.update_task_eta(task_id, eta),
            lambda task, now: task.model_copy(
                update={"estimated_delivery_time": eta, "updated_at": now}
            ),
            "Failed to update ETA",
        )

    def update_task_location(
        self, task_id: str | int, latitude: float, longitude: float
    ) -> OperationResult:
        """Record the manager's position against a task once confirmed."""
        task_id = str(task_id)
        return self._confirmed_task_update(
            task_id,
            lambda: self.client.update_location(task_id, latitude, longitude),
            lambda task, now: task.model_copy(
                update={"latitude": latitude, "longitude": longitude, "updated_at": now}
            ),
            "Failed to update location",
        )

    def end_session(self) -> None:
        """Drop all mirrored state (logout / teardown)."""
        with self._in_flight_lock:
            self._in_flight.clear()
        self.status_cache.clear()
        self.task_cache.clear()
        logger.info("Delivery session state cleared")

    # Internals

    def _fetch_status(self, error_prefix: str) -> OperationResult:
        cache = self.status_cache
        cache.set_loading(True)
        cache.clear_error()
        try:
            success, data = self.client.get_current_status()
        finally:
            cache.set_loading(False)

        if not success:
            return self._status_failure(
                _remote_error_code(data),
                f"{error_prefix}: {_remote_error_message(data)}",
            )

        snapshot = StatusSnapshot.from_payload(data)
        if snapshot is None:
            return self._status_failure(
                ErrorCode.REMOTE_CALL_FAILED, "Failed to load current status"
            )

        cache.apply_snapshot(snapshot)
        return OperationResult.ok(snapshot.message or "Status loaded")

    def _confirmed_task_update(
        self,
        task_id: str,
        remote_call: Callable[[], tuple[bool, Any]],
        apply: Callable[[DeliveryTask, datetime], DeliveryTask],
        error_prefix: str,
    ) -> OperationResult:
        if not self.client.has_credential():
            return self._task_failure(
                ErrorCode.MISSING_CREDENTIAL, MISSING_CREDENTIAL_MESSAGE
            )

        with self._claim(task_id) as claimed:
            if not claimed:
                return self._call_in_progress(task_id)

            self.task_cache.clear_error()
            success, data = remote_call()
            if not success:
                return self._task_failure(
                    _remote_error_code(data),
                    f"{error_prefix}: {_remote_error_message(data)}",
                )
            return self._mirror(task_id, apply)

    def _mirror(
        self,
        task_id: str,
        apply: Callable[[DeliveryTask, datetime], DeliveryTask],
    ) -> OperationResult:
        """Apply a confirmed change locally, reloading if the task is missing."""
        task = self.task_cache.get(task_id)
        if task is None:
            logger.warning(
                "Confirmed task missing from local cache, reloading", task_id=task_id
            )
            reload = self.load_tasks()
            message = f"Task not found in local list: {task_id}"
            if reload:
                self.task_cache.record_error(ErrorCode.TASK_NOT_FOUND, message)
            return OperationResult.fail(ErrorCode.TASK_NOT_FOUND, message)

        self.task_cache.replace_task(apply(task, self.task_cache.now()))
        return OperationResult.ok()

    @contextmanager
    def _claim(self, task_id: str) -> Iterator[bool]:
        """Hold the in-flight slot for ``task_id`` for the duration of a call."""
        with self._in_flight_lock:
            if task_id in self._in_flight:
                claimed = False
            else:
                self._in_flight.add(task_id)
                claimed = True
        try:
            yield claimed
        finally:
            if claimed:
                with self._in_flight_lock:
                    self._in_flight.discard(task_id)

    def _call_in_progress(self, task_id: str) -> OperationResult:
        return self._task_failure(
            ErrorCode.CALL_IN_PROGRESS,
            f"An update for task {task_id} is already in progress",
        )

    def _status_failure(self, code: ErrorCode, message: str) -> OperationResult:
        logger.warning("Status operation failed", error_code=code.value, error=message)
        self.status_cache.record_error(code, message)
        return OperationResult.fail(code, message)

    def _task_failure(self, code: ErrorCode, message: str) -> OperationResult:
        logger.warning("Task operation failed", error_code=code.value, error=message)
        self.task_cache.record_error(code, message)
        return OperationResult.fail(code, message)

"""
In-memory mirror of the delivery manager's availability status.

The cache never decides a status on its own: every value it holds was echoed
by the server. The transition guard below only rejects requests the server
would refuse anyway, so no remote call is wasted on them.
"""

import structlog

from delivery_client.models import MANUAL_STATUSES, AvailabilityStatus, StatusSnapshot
from delivery_client.observable import Observable
from delivery_client.results import CacheError, ErrorCode

logger = structlog.get_logger(__name__)


class TransitionRejected(Exception):
    """A manual status change the client must not request."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def parse_manual_status(
    current: AvailabilityStatus, requested: str | AvailabilityStatus
) -> AvailabilityStatus:
    """
    Validate a manual availability change.

    Args:
        current: Status currently held in the cache
        requested: Status the manager asked for

    Returns:
        The requested status as an enum member

    Raises:
        TransitionRejected: If the value is not manually settable, or the
            manager is busy
    """
    try:
        target = AvailabilityStatus(requested)
    except ValueError:
        target = None

    if target not in MANUAL_STATUSES:
        raise TransitionRejected(
            ErrorCode.INVALID_TRANSITION,
            "Invalid status. You can only manually change between online and offline.",
        )

    if current == AvailabilityStatus.BUSY:
        raise TransitionRejected(
            ErrorCode.FORBIDDEN_WHILE_BUSY,
            "Cannot change status manually while busy. Status will change to "
            "online when the delivery is completed.",
        )

    return target


class StatusCache(Observable):
    """
    Availability state for one delivery manager session.

    Events:
        status_changed: status or can_change_manually was overwritten
        loading_changed: a remote call started or finished
        error_changed: last_error was set or cleared
        cleared: the cache was reset at session teardown
    """

    def __init__(self) -> None:
        super().__init__()
        self._status = AvailabilityStatus.OFFLINE
        self._can_change_manually = True
        self._is_loading = False
        self._last_error: CacheError | None = None

    @property
    def status(self) -> AvailabilityStatus:
        return self._status

    @property
    def can_change_manually(self) -> bool:
        return self._can_change_manually

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def last_error(self) -> CacheError | None:
        return self._last_error

    @property
    def is_online(self) -> bool:
        return self._status == AvailabilityStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return self._status == AvailabilityStatus.OFFLINE

    @property
    def is_busy(self) -> bool:
        return self._status == AvailabilityStatus.BUSY

    def apply_snapshot(self, snapshot: StatusSnapshot) -> None:
        """Overwrite local state with a server-confirmed snapshot."""
        previous = self._status
        self._status = snapshot.status
        self._can_change_manually = snapshot.can_change_manually

        logger.debug(
            "Status cache updated",
            previous=previous.value,
            status=snapshot.status.value,
            can_change_manually=snapshot.can_change_manually,
        )
        self.notify("status_changed")

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
        self._status = AvailabilityStatus.OFFLINE
        self._can_change_manually = True
        self._is_loading = False
        self._last_error = None
        self.notify("cleared")

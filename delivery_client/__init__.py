"""Delivery status reconciliation client."""

from .api_client import DeliveryAPIClient
from .config import DeliveryClientSettings, configure_structlog, get_settings
from .models import (
    AvailabilityStatus,
    DeliveryTask,
    StatusSnapshot,
    TaskStatus,
    TaskType,
    can_transition,
)
from .reconciler import DeliveryReconciler
from .results import CacheError, ErrorCode, OperationResult
from .session import DeliverySession
from .status_cache import StatusCache
from .task_cache import TaskListCache

__all__ = [
    "AvailabilityStatus",
    "CacheError",
    "DeliveryAPIClient",
    "DeliveryClientSettings",
    "DeliveryReconciler",
    "DeliverySession",
    "DeliveryTask",
    "ErrorCode",
    "OperationResult",
    "StatusCache",
    "StatusSnapshot",
    "TaskListCache",
    "TaskStatus",
    "TaskType",
    "can_transition",
    "configure_structlog",
    "get_settings",
]

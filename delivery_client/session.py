"""Per-actor wiring of client, caches and reconciler."""

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog

from delivery_client.api_client import MISSING_CREDENTIAL_MESSAGE, DeliveryAPIClient
from delivery_client.config import DeliveryClientSettings, get_settings
from delivery_client.reconciler import DeliveryReconciler
from delivery_client.results import ErrorCode
from delivery_client.status_cache import StatusCache
from delivery_client.task_cache import TaskListCache, utc_now

logger = structlog.get_logger(__name__)


class DeliverySession:
    """
    State and operations for one logged-in delivery manager.

    Create one session per actor and pass it to whatever needs it; nothing
    here is shared between sessions.
    """

    def __init__(
        self,
        settings: DeliveryClientSettings | None = None,
        token: str | None = None,
        client: DeliveryAPIClient | None = None,
        now_fn: Callable[[], datetime] = utc_now,
    ):
        self.settings = settings or get_settings()
        self._token = token

        self.client = client or DeliveryAPIClient(
            token_provider=self.current_token, settings=self.settings
        )
        self.status_cache = StatusCache()
        self.task_cache = TaskListCache(
            urgent_window=timedelta(minutes=self.settings.urgent_window_minutes),
            now_fn=now_fn,
        )
        self.reconciler = DeliveryReconciler(
            self.client,
            status_cache=self.status_cache,
            task_cache=self.task_cache,
            auto_reset_when_busy=self.settings.auto_reset_when_busy,
        )

    def current_token(self) -> str | None:
        return self._token

    @property
    def is_authenticated(self) -> bool:
        return bool(self._token)

    def login(self, token: str) -> None:
        """Attach a credential obtained from the auth collaborator."""
        self._token = token
        # A stale "please login" error no longer applies
        for cache in (self.status_cache, self.task_cache):
            error = cache.last_error
            if error is not None and error.code == ErrorCode.MISSING_CREDENTIAL:
                cache.clear_error()
        logger.info("Delivery session authenticated")

    def logout(self) -> None:
        """Drop the credential and all mirrored state."""
        self._token = None
        self.reconciler.end_session()
        logger.info("Delivery session ended")

    def start(self) -> bool:
        """Initial sync after login: status first, then tasks."""
        if not self.is_authenticated:
            logger.debug(MISSING_CREDENTIAL_MESSAGE)
            return False
        status = self.reconciler.load_current_status()
        tasks = self.reconciler.load_tasks()
        return bool(status) and bool(tasks)

    def close(self) -> None:
        self.client.close()

"""
API client for the delivery backend.

Handles all HTTP communication and error handling. Every public method
returns a ``(success, data)`` tuple instead of raising, so callers can mirror
the outcome into their caches without try/except around each call.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import requests
import structlog
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from delivery_client.config import DeliveryClientSettings, get_settings

logger = structlog.get_logger(__name__)

TokenProvider = Callable[[], str | None]

MISSING_CREDENTIAL_MESSAGE = "No authentication token available. Please login again."

# Endpoint paths, relative to the configured base URL
CURRENT_STATUS_ENDPOINT = "/delivery-profiles/current_status/"
UPDATE_STATUS_ENDPOINT = "/delivery-profiles/update_status/"
RESET_STATUS_ENDPOINT = "/delivery-profiles/reset_status/"
TASKS_ENDPOINT = "/delivery/assignments/my-assignments/"
TASK_STATUS_ENDPOINT = "/delivery/assignments/{task_id}/update-status/"
TASK_ETA_ENDPOINT = "/delivery/tasks/{task_id}/eta/"
LOCATION_ENDPOINT = "/delivery/location/"

_DEFAULT_HTTP_MESSAGES = {
    400: "Invalid request",
    401: "Authentication failed. Please login again.",
    403: "Permission denied",
    404: "Resource not found",
}


class DeliveryAPIClient:
    """HTTP client for delivery status and task endpoints."""

    def __init__(
        self,
        base_url: str | None = None,
        token_provider: TokenProvider | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        settings: DeliveryClientSettings | None = None,
    ):
        """Initialize the API client.

        Args:
            base_url: Backend URL. If None, read from settings.
            token_provider: Callable returning the current bearer token
            timeout: Per-request timeout in seconds
            max_retries: Transport retries for GET requests
            settings: Settings to read defaults from
        """
        settings = settings or get_settings()
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.request_timeout_seconds
        self._token_provider: TokenProvider = token_provider or (lambda: None)

        retries = max_retries if max_retries is not None else settings.max_retries
        retry = Retry(
            total=retries,
            backoff_factor=0.2,
            status_forcelist=(502, 503, 504),
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        self.session = requests.Session()
        adapter = HTTPAdapter(max_retries=retry)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

        logger.info(
            "API client initialized",
            base_url=self.base_url,
            timeout=self.timeout,
            get_retries=retries,
        )

    def has_credential(self) -> bool:
        return bool(self._token_provider())

    def _make_request(
        self, method: str, endpoint: str, **kwargs
    ) -> tuple[bool, Any]:
        """Issue an authenticated request.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API path appended to the base URL
            **kwargs: Additional arguments for requests

        Returns:
            (success, response_json_or_error_dict)
        """
        token = self._token_provider()
        if not token:
            return False, {
                "error": MISSING_CREDENTIAL_MESSAGE,
                "error_code": "missing_credential",
            }

        url = f"{self.base_url}{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {token}",
        }

        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.Timeout:
            logger.warning(
                "API request timed out",
                method=method,
                endpoint=endpoint,
                timeout=self.timeout,
            )
            return False, {"error": f"Request timed out after {self.timeout} seconds"}
        except requests.exceptions.RequestException as e:
            logger.warning(
                "API request failed", method=method, endpoint=endpoint, error=str(e)
            )
            return False, {"error": f"Network error: {str(e)}"}

        data = _json_or_none(response)

        if response.status_code >= 400 or (
            isinstance(data, dict) and data.get("success") is False
        ):
            error = _error_message(response.status_code, data)
            logger.warning(
                "API request rejected",
                method=method,
                endpoint=endpoint,
                status_code=response.status_code,
                error=error,
            )
            failure: dict[str, Any] = {
                "error": error,
                "status_code": response.status_code,
            }
            if isinstance(data, dict):
                if data.get("error_code"):
                    failure["error_code"] = data["error_code"]
                if data.get("current_status"):
                    failure["current_status"] = data["current_status"]
            return False, failure

        return True, data if data is not None else {}

    # Availability status

    def get_current_status(self) -> tuple[bool, dict[str, Any]]:
        """Get the manager's availability status.

        Returns:
            (success, payload) where payload["data"] holds delivery_status and
            can_change_manually
        """
        return self._make_request("GET", CURRENT_STATUS_ENDPOINT)

    def update_status(self, status: str) -> tuple[bool, dict[str, Any]]:
        """Request a manual availability change (online/offline)."""
        logger.info("Requesting availability change", requested=status)
        return self._make_request(
            "POST", UPDATE_STATUS_ENDPOINT, json={"delivery_status": status}
        )

    def reset_status(self) -> tuple[bool, dict[str, Any]]:
        """Ask the server to clear a stale 'busy' status if nothing is active."""
        return self._make_request("POST", RESET_STATUS_ENDPOINT)

    # Tasks

    def get_tasks(self) -> tuple[bool, list[dict[str, Any]] | dict[str, Any]]:
        """Fetch all tasks assigned to the current manager.

        Accepts both a bare list and a paginated ``{"results": [...]}`` body.

        Returns:
            (success, task_dicts) or (False, error_dict)
        """
        success, data = self._make_request("GET", TASKS_ENDPOINT)
        if not success:
            return False, data

        if isinstance(data, list):
            return True, data
        if isinstance(data, dict) and isinstance(data.get("results"), list):
            return True, data["results"]

        logger.error("Unexpected task list payload", payload_type=type(data).__name__)
        return False, {"error": "Unexpected task list response from server"}

    def update_task_status(
        self,
        task_id: str,
        status: str,
        notes: str | None = None,
        failure_reason: str | None = None,
    ) -> tuple[bool, dict[str, Any]]:
        """Move a task to a new lifecycle status."""
        body: dict[str, Any] = {
            "status": status,
            "notes": notes or "Status updated via delivery client",
        }
        if failure_reason:
            body["failure_reason"] = failure_reason

        logger.info("Requesting task status change", task_id=task_id, status=status)
        return self._make_request(
            "PATCH", TASK_STATUS_ENDPOINT.format(task_id=task_id), json=body
        )

    def update_task_eta(
        self, task_id: str, eta: datetime
    ) -> tuple[bool, dict[str, Any]]:
        """Set a new estimated arrival time (sent as dd/mm/yyyy and HH:MM)."""
        body = {
            "eta": {
                "date": eta.strftime("%d/%m/%Y"),
                "time": eta.strftime("%H:%M"),
            }
        }
        return self._make_request(
            "PUT", TASK_ETA_ENDPOINT.format(task_id=task_id), json=body
        )

    def update_location(
        self, task_id: str, latitude: float, longitude: float
    ) -> tuple[bool, dict[str, Any]]:
        """Report the manager's position while working a task."""
        body = {
            "task_id": task_id,
            "latitude": latitude,
            "longitude": longitude,
            "timestamp": datetime.now(UTC).isoformat(),
        }
        return self._make_request("POST", LOCATION_ENDPOINT, json=body)

    def close(self) -> None:
        self.session.close()


def _json_or_none(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _error_message(status_code: int, data: Any) -> str:
    """Prefer the server's own message; fall back to a status-based one."""
    if isinstance(data, dict):
        for key in ("message", "error", "detail"):
            if data.get(key):
                return str(data[key])
    return _DEFAULT_HTTP_MESSAGES.get(status_code, f"Request failed: HTTP {status_code}")

"""Shared test configuration and fixtures for all tests."""

import os
from datetime import UTC, datetime, timedelta
from unittest.mock import Mock

import pytest
import requests

from delivery_client.api_client import DeliveryAPIClient
from delivery_client.config import DeliveryClientSettings
from delivery_client.reconciler import DeliveryReconciler
from delivery_client.status_cache import StatusCache
from delivery_client.task_cache import TaskListCache

# Mock environment variables for testing
os.environ["DELIVERY_BASE_URL"] = "http://test-backend:8000/api"

FIXED_NOW = datetime(2025, 3, 14, 12, 0, tzinfo=UTC)


@pytest.fixture
def settings() -> DeliveryClientSettings:
    return DeliveryClientSettings(
        base_url="http://test-backend:8000/api",
        request_timeout_seconds=5,
        max_retries=1,
    )


@pytest.fixture
def fixed_now() -> datetime:
    return FIXED_NOW


@pytest.fixture
def task_payloads() -> list[dict]:
    """Task records as the backend returns them (mixed key styles)."""
    return [
        {
            "id": 1,
            "task_number": "TASK-1",
            "task_type": "delivery",
            "status": "assigned",
            "order_id": 501,
            "customer_name": "Alice",
            "delivery_address": "1 Main St",
            "assigned_at": "2025-03-14T09:00:00Z",
            "estimated_delivery_time": "2025-03-14T18:00:00Z",
        },
        {
            "id": 2,
            "taskNumber": "TASK-2",
            "taskType": "pickup",
            "status": "delivered",
            "orderId": 502,
            "customerName": "Bob",
            "deliveredAt": "2025-03-14T10:30:00Z",
        },
    ]


@pytest.fixture
def mock_client() -> Mock:
    """Transport double with a credential present and no canned responses."""
    client = Mock(spec=DeliveryAPIClient)
    client.has_credential.return_value = True
    return client


@pytest.fixture
def reconciler(mock_client: Mock, fixed_now: datetime) -> DeliveryReconciler:
    return DeliveryReconciler(
        mock_client,
        status_cache=StatusCache(),
        task_cache=TaskListCache(now_fn=lambda: fixed_now),
    )


@pytest.fixture
def make_response():
    """Factory for requests.Response stand-ins."""

    def _make(status_code: int = 200, payload=None) -> Mock:
        response = Mock(spec=requests.Response)
        response.status_code = status_code
        if payload is None:
            response.json.side_effect = ValueError("No JSON body")
        else:
            response.json.return_value = payload
        return response

    return _make

"""
Pytest configuration and shared fixtures for Mixpanel driver tests.

Provides:
- Mock client fixtures
- Mock HTTP responses
- Test data
- Configuration
"""

import json
import pytest
from unittest.mock import Mock, MagicMock, patch
from typing import Any, Dict, Optional

import requests


@pytest.fixture
def mock_env_vars(monkeypatch):
    """Set up mock environment variables."""
    monkeypatch.setenv("MIXPANEL_PROJECT_TOKEN", "test_token_12345")
    monkeypatch.setenv("MIXPANEL_PROJECT_SECRET", "test_secret_67890")
    monkeypatch.setenv("MIXPANEL_REGION", "us")
    monkeypatch.setenv("MIXPANEL_TIMEOUT", "30")
    monkeypatch.setenv("MIXPANEL_DEBUG", "false")


@pytest.fixture
def mock_session():
    """Create a mock requests session."""
    session = MagicMock()
    session.headers = {}
    session.request = MagicMock()
    return session


@pytest.fixture
def sleeps():
    """Collects backoff delays instead of sleeping."""
    return []


def _make_client(mock_session, sleeps, **kwargs):
    from mixpanel_driver import MixpanelDriver

    params = dict(
        project_token="test_token_12345",
        project_secret="test_secret_67890",
        region="us",
        timeout=30,
        max_retries=3,
        retry_delay=1.0,
        debug=False,
    )
    params.update(kwargs)

    with patch.object(MixpanelDriver, '_create_session', return_value=mock_session):
        client = MixpanelDriver(**params)
    client.session = mock_session
    client.retry_policy.sleep = sleeps.append
    return client


@pytest.fixture
def mixpanel_client(mock_session, sleeps):
    """Create a test Mixpanel driver with mocked session and no real sleeping."""
    return _make_client(mock_session, sleeps)


@pytest.fixture
def service_account_client(mock_session, sleeps):
    """Mixpanel driver with service account credentials."""
    return _make_client(
        mock_session,
        sleeps,
        service_account_username="sa_user",
        service_account_secret="sa_secret",
    )


def make_response(
    status_code: int = 200,
    text: Optional[str] = None,
    json_data: Any = None,
    headers: Optional[Dict[str, str]] = None,
) -> Mock:
    """Build a mock requests.Response."""
    if text is None:
        text = json.dumps(json_data) if json_data is not None else ""

    response = Mock()
    response.status_code = status_code
    response.text = text
    response.content = text.encode("utf-8")
    response.headers = headers or {}

    def _json():
        return json.loads(text)

    response.json.side_effect = _json

    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None

    return response


@pytest.fixture
def response_factory():
    """Factory for mock HTTP responses."""
    return make_response


@pytest.fixture
def sample_events() -> list:
    """Create sample raw event data for testing."""
    return [
        {
            "event": "Page View",
            "distinct_id": "user_123",
            "time": 1609459200,
            "properties": {"page": "/home", "referrer": "google"},
        },
        {
            "eventName": "Button Click",
            "distinctId": "user_456",
            "time": 1609459200000,
            "properties": {"button_id": "cta_main"},
        },
        {
            "event": "Purchase",
            "distinct_id": "user_789",
            "time": 1609459260,
            "$insert_id": "custom-insert-id",
            "properties": {"product_id": "prod_001", "price": 99.99},
        },
    ]


@pytest.fixture
def mock_import_response() -> Dict[str, Any]:
    """Mock response from the /import endpoint."""
    return {
        "code": 200,
        "num_records_imported": 3,
        "status": "OK",
    }


@pytest.fixture
def mock_engage_page() -> Dict[str, Any]:
    """Mock paginated response from /2.0/engage."""
    return {
        "page": 0,
        "page_size": 1000,
        "session_id": "1234567890-EXAMPL",
        "status": "ok",
        "total": 2,
        "results": [
            {"$distinct_id": "user_1", "$properties": {"$name": "Ada"}},
            {"$distinct_id": "user_2", "$properties": {"$name": "Grace"}},
        ],
    }


@pytest.fixture
def mock_export_body() -> str:
    """Mock newline-delimited export body."""
    events = [
        {"event": "Page View", "properties": {"distinct_id": "user_1", "time": 1735689600}},
        {"event": "Button Click", "properties": {"distinct_id": "user_2", "time": 1735689660}},
        {"event": "Purchase", "properties": {"distinct_id": "user_3", "time": 1735689720}},
    ]
    return "\n".join(json.dumps(event) for event in events) + "\n"

"""
Test suite for Mixpanel driver client.

Tests:
- Driver initialization and configuration
- Regional endpoints and auth selection
- Request dispatch per API family
- Ingestion batching
- Error mapping
"""

import pytest
import requests
from unittest.mock import Mock, patch

from mixpanel_driver import (
    MixpanelDriver,
    Credentials,
    Region,
    ApiFamily,
    Endpoints,
    TokenAuth,
    BasicSecretAuth,
    ServiceAccountAuth,
    auth_for,
    resolve_base_url,
    ConfigurationError,
    AuthenticationError,
    BadRequestError,
    PaymentRequiredError,
    RateLimitError,
    ServerError,
    IngestionRejectedError,
    ProtocolError,
    ConnectionError,
    TimeoutError,
    ApiError,
)


class TestMixpanelDriverInitialization:
    """Test driver initialization."""

    def test_driver_initialization_with_credentials(self):
        """Test initializing driver with explicit credentials."""
        with patch.object(MixpanelDriver, '_create_session'):
            driver = MixpanelDriver(
                project_token="tok",
                project_secret="secret",
                region="eu",
                timeout=10,
                max_retries=5,
            )

        assert driver.credentials.project_token == "tok"
        assert driver.credentials.project_secret == "secret"
        assert driver.credentials.region is Region.EU
        assert driver.timeout == 10
        assert driver.export_timeout == 20
        assert driver.retry_policy.max_attempts == 5

    def test_driver_initialization_from_env(self, mock_env_vars):
        """Test initializing driver from environment variables."""
        with patch.object(MixpanelDriver, '_create_session'):
            driver = MixpanelDriver.from_env()

        assert driver.credentials.project_token == "test_token_12345"
        assert driver.credentials.project_secret == "test_secret_67890"
        assert driver.credentials.region is Region.US
        assert driver.debug is False

    def test_from_env_reads_service_account_and_export_timeout(self, mock_env_vars, monkeypatch):
        monkeypatch.setenv("MIXPANEL_SERVICE_ACCOUNT_USERNAME", "sa")
        monkeypatch.setenv("MIXPANEL_SERVICE_ACCOUNT_SECRET", "sa-secret")
        monkeypatch.setenv("MIXPANEL_EXPORT_TIMEOUT", "300")
        monkeypatch.setenv("MIXPANEL_REGION", "in")

        with patch.object(MixpanelDriver, '_create_session'):
            driver = MixpanelDriver.from_env()

        assert driver.credentials.has_service_account is True
        assert driver.export_timeout == 300
        assert driver.credentials.region is Region.IN

    def test_driver_initialization_missing_credentials(self):
        """Test from_env fails without credentials."""
        import os
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(AuthenticationError):
                MixpanelDriver.from_env()

    def test_missing_secret_is_configuration_error(self):
        with pytest.raises(ConfigurationError):
            MixpanelDriver(project_token="tok")

    def test_unknown_region(self):
        with pytest.raises(ConfigurationError):
            MixpanelDriver(project_token="tok", project_secret="secret", region="mars")

    def test_credentials_repr_hides_secret(self):
        creds = Credentials("tok_abcdefgh", "super-secret")
        assert "super-secret" not in repr(creds)

    def test_session_has_no_auth_header(self):
        driver = MixpanelDriver(project_token="tok", project_secret="secret")
        try:
            assert "Authorization" not in driver.session.headers
            assert driver.session.headers["Accept"] == "application/json"
            assert driver.session.headers["User-Agent"].startswith("MixpanelDriver-Python-Driver/")
        finally:
            driver.close()

    def test_context_manager_closes_session(self, mixpanel_client):
        with mixpanel_client as client:
            assert client is mixpanel_client
        mixpanel_client.session.close.assert_called_once()


class TestRegionalEndpoints:
    """Test regional endpoint resolution."""

    @pytest.mark.parametrize("region, family, url", [
        ("us", ApiFamily.INGESTION, "https://api.mixpanel.com"),
        ("eu", ApiFamily.INGESTION, "https://api-eu.mixpanel.com"),
        ("in", ApiFamily.INGESTION, "https://api-in.mixpanel.com"),
        ("us", ApiFamily.QUERY, "https://mixpanel.com/api"),
        ("eu", ApiFamily.QUERY, "https://eu.mixpanel.com/api"),
        ("in", ApiFamily.EXPORT, "https://data-in.mixpanel.com/api/2.0/export"),
        ("eu", ApiFamily.SERVICE_ACCOUNT, "https://eu.mixpanel.com/api"),
    ])
    def test_resolve(self, region, family, url):
        assert resolve_base_url(region, family) == url

    def test_every_family_has_every_region(self):
        for region in Region:
            for family in ApiFamily:
                assert resolve_base_url(region, family).startswith("https://")

    def test_unknown_region(self):
        with pytest.raises(ConfigurationError):
            resolve_base_url("apac", ApiFamily.QUERY)

    def test_unknown_family(self):
        with pytest.raises(ConfigurationError):
            resolve_base_url("us", "billing")


class TestAuthSelection:
    """Test per-family auth variants."""

    def test_variants(self):
        creds = Credentials("tok", "secret", service_account_username="sa", service_account_secret="sa-secret")

        assert auth_for(ApiFamily.INGESTION, creds) == TokenAuth(token="tok")
        assert auth_for(ApiFamily.QUERY, creds) == BasicSecretAuth(secret="secret")
        assert auth_for(ApiFamily.EXPORT, creds) == BasicSecretAuth(secret="secret")
        assert auth_for(ApiFamily.SERVICE_ACCOUNT, creds) == ServiceAccountAuth(username="sa", secret="sa-secret")

    def test_requests_auth_tuples(self):
        assert TokenAuth("tok").requests_auth() is None
        assert BasicSecretAuth("secret").requests_auth() == ("secret", "")
        assert ServiceAccountAuth("sa", "pw").requests_auth() == ("sa", "pw")

    def test_service_account_missing(self):
        creds = Credentials("tok", "secret", service_account_username="sa")
        with pytest.raises(ConfigurationError):
            auth_for(ApiFamily.SERVICE_ACCOUNT, creds)


class TestDispatch:
    """Test request shaping per API family."""

    def test_ingestion_request(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="1")

        result = mixpanel_client.request(ApiFamily.INGESTION, "POST", Endpoints.TRACK, body=[{"event": "x"}])

        assert result.to_record() == {"success": True}
        args, kwargs = mixpanel_client.session.request.call_args
        assert args == ("POST", "https://api.mixpanel.com/track")
        assert kwargs["json"] == [{"event": "x"}]
        assert kwargs["auth"] is None
        assert kwargs["timeout"] == 30
        assert kwargs["headers"] == {"Accept": "text/plain"}

    def test_ingestion_zero_is_rejected(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="0")

        with pytest.raises(IngestionRejectedError):
            mixpanel_client.request(ApiFamily.INGESTION, "POST", Endpoints.TRACK, body=[])

    def test_ingestion_unrecognized_body(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="<html>")

        with pytest.raises(ProtocolError):
            mixpanel_client.request(ApiFamily.INGESTION, "POST", Endpoints.TRACK, body=[])

    def test_query_get_uses_query_string(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(json_data={"data": {}})

        result = mixpanel_client.request(
            ApiFamily.QUERY, "get", Endpoints.INSIGHTS, body={"ignored": True}, params={"bookmark_id": "1"},
        )

        assert result == {"data": {}}
        args, kwargs = mixpanel_client.session.request.call_args
        assert args == ("GET", "https://mixpanel.com/api/2.0/insights")
        assert kwargs["params"] == {"bookmark_id": "1"}
        assert kwargs["auth"] == ("test_secret_67890", "")
        assert "json" not in kwargs

    def test_query_post_sends_json(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(json_data=[{"value": 1}])

        result = mixpanel_client.request(ApiFamily.QUERY, "POST", Endpoints.JQL, body={"script": "main()"})

        assert result == [{"value": 1}]
        _, kwargs = mixpanel_client.session.request.call_args
        assert kwargs["json"] == {"script": "main()"}

    def test_query_empty_body(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="")
        assert mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.COHORTS_LIST) == {}

    def test_query_invalid_json(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="not json")

        with pytest.raises(ProtocolError):
            mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.COHORTS_LIST)

    def test_export_uses_longer_timeout(self, mixpanel_client, response_factory, mock_export_body):
        mixpanel_client.session.request.return_value = response_factory(text=mock_export_body)

        records = mixpanel_client.request(ApiFamily.EXPORT, "GET", Endpoints.RAW_EXPORT, params={"from_date": "2025-01-01"})

        assert len(records) == 3
        args, kwargs = mixpanel_client.session.request.call_args
        assert args == ("GET", "https://data.mixpanel.com/api/2.0/export")
        assert kwargs["timeout"] == 60
        assert kwargs["auth"] == ("test_secret_67890", "")

    def test_export_array_body(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text='[{"a": 1}, {"b": 2}]')

        records = mixpanel_client.request(ApiFamily.EXPORT, "GET", Endpoints.RAW_EXPORT)

        assert records == [{"a": 1}, {"b": 2}]

    def test_export_single_object_body(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text='{\n  "a": 1\n}')

        records = mixpanel_client.request(ApiFamily.EXPORT, "GET", Endpoints.RAW_EXPORT)

        assert records == [{"a": 1}]

    def test_export_invalid_line(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text='{"a": 1}\n{"b":\n')

        with pytest.raises(ProtocolError) as exc_info:
            mixpanel_client.request(ApiFamily.EXPORT, "GET", Endpoints.RAW_EXPORT)

        assert exc_info.value.details["line_number"] == 2

    def test_service_account_request(self, service_account_client, response_factory):
        service_account_client.session.request.return_value = response_factory(json_data={"results": []})

        service_account_client.request(ApiFamily.SERVICE_ACCOUNT, "GET", Endpoints.LOOKUP_TABLES)

        _, kwargs = service_account_client.session.request.call_args
        assert kwargs["auth"] == ("sa_user", "sa_secret")

    def test_service_account_missing_fails_before_network(self, mixpanel_client):
        with pytest.raises(ConfigurationError):
            mixpanel_client.request(ApiFamily.SERVICE_ACCOUNT, "GET", Endpoints.LOOKUP_TABLES)

        mixpanel_client.session.request.assert_not_called()


class TestErrorHandling:
    """Test mapping of upstream failures."""

    @pytest.mark.parametrize("status_code, error_type", [
        (400, BadRequestError),
        (401, AuthenticationError),
        (402, PaymentRequiredError),
        (429, RateLimitError),
        (500, ServerError),
        (503, ServerError),
        (404, ApiError),
    ])
    def test_status_mapping(self, mixpanel_client, response_factory, status_code, error_type):
        mixpanel_client.session.request.return_value = response_factory(
            status_code=status_code, json_data={"error": "upstream says no"},
        )

        with pytest.raises(error_type) as exc_info:
            mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS)

        assert exc_info.value.status_code == status_code
        assert "upstream says no" in exc_info.value.message
        assert exc_info.value.details["api_response"] == "upstream says no"

    def test_plain_text_error_body(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(status_code=400, text="bad things")

        with pytest.raises(BadRequestError, match="bad things"):
            mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS)

    def test_retry_after_recorded(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(
            status_code=429, text="slow down", headers={"Retry-After": "60"},
        )

        with pytest.raises(RateLimitError) as exc_info:
            mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS)

        assert exc_info.value.details["retry_after"] == "60"

    @pytest.mark.parametrize("raised, error_type", [
        (requests.exceptions.Timeout("timed out"), TimeoutError),
        (requests.exceptions.ConnectionError("dns"), ConnectionError),
        (requests.exceptions.TooManyRedirects("loop"), ApiError),
    ])
    def test_transport_failures_wrapped(self, mixpanel_client, raised, error_type):
        mixpanel_client.session.request.side_effect = raised

        with pytest.raises(error_type) as exc_info:
            mixpanel_client.request(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS)

        assert not isinstance(exc_info.value, requests.RequestException)

    def test_call_retries_rate_limit(self, mixpanel_client, response_factory, sleeps):
        mixpanel_client.session.request.side_effect = [
            response_factory(status_code=429, text="slow down"),
            response_factory(status_code=429, text="slow down"),
            response_factory(json_data={"ok": True}),
        ]

        assert mixpanel_client.call(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS) == {"ok": True}
        assert mixpanel_client.session.request.call_count == 3
        assert sleeps == [1.0, 2.0]

    def test_call_does_not_retry_server_error(self, mixpanel_client, response_factory, sleeps):
        mixpanel_client.session.request.return_value = response_factory(status_code=500, text="oops")

        with pytest.raises(ServerError):
            mixpanel_client.call(ApiFamily.QUERY, "GET", Endpoints.INSIGHTS)

        assert mixpanel_client.session.request.call_count == 1
        assert sleeps == []


class TestIngestBatching:
    """Test sequential batch dispatch."""

    def test_splits_into_batches(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="1")
        records = [{"n": i} for i in range(5)]

        results = mixpanel_client.ingest(Endpoints.TRACK, records, batch_size=2)

        assert [r["batch_size"] for r in results] == [2, 2, 1]
        assert [r["batch_index"] for r in results] == [0, 1, 2]
        sent = [call.kwargs["json"] for call in mixpanel_client.session.request.call_args_list]
        assert sent == [records[0:2], records[2:4], records[4:5]]

    def test_default_batch_size_is_2000(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.return_value = response_factory(text="1")

        results = mixpanel_client.ingest(Endpoints.IMPORT, [{"n": i} for i in range(4001)])

        assert [r["batch_size"] for r in results] == [2000, 2000, 1]

    def test_no_records_no_requests(self, mixpanel_client):
        assert mixpanel_client.ingest(Endpoints.TRACK, []) == []
        mixpanel_client.session.request.assert_not_called()

    def test_failure_stops_remaining_batches(self, mixpanel_client, response_factory):
        mixpanel_client.session.request.side_effect = [
            response_factory(text="1"),
            response_factory(status_code=500, text="oops"),
            response_factory(text="1"),
        ]

        with pytest.raises(ServerError) as exc_info:
            mixpanel_client.ingest(Endpoints.TRACK, [{"n": i} for i in range(5)], batch_size=2)

        assert mixpanel_client.session.request.call_count == 2
        assert exc_info.value.details["batch_index"] == 1
        assert exc_info.value.details["batch_size"] == 2
        assert exc_info.value.details["batches_completed"] == 1

    def test_rate_limited_batch_is_retried(self, mixpanel_client, response_factory, sleeps):
        mixpanel_client.session.request.side_effect = [
            response_factory(text="1"),
            response_factory(status_code=429, text="slow down"),
            response_factory(text="1"),
        ]

        results = mixpanel_client.ingest(Endpoints.TRACK, [{"n": i} for i in range(4)], batch_size=2)

        assert len(results) == 2
        assert sleeps == [1.0]
        assert mixpanel_client.session.request.call_args_list[1].kwargs["json"] == \
            mixpanel_client.session.request.call_args_list[2].kwargs["json"]

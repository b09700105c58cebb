"""
Mixpanel Driver

A Python driver for the Mixpanel HTTP APIs.

Supports:
- Event ingestion (/track, /import) with 2,000-record batching
- User and group profile updates (/engage, /groups)
- Query API (insights, funnels, retention, segmentation, JQL, cohorts)
- Raw event export and profile export
- Lookup tables (service account)

Each API family resolves its own regional base URL and auth scheme.
Rate-limited requests (429) are retried with exponential backoff;
every other failure is raised as a structured DriverError.
"""

import os
import logging
from functools import partial
from typing import List, Dict, Any, Optional, Union

import requests
from requests.adapters import HTTPAdapter

from . import __version__
from .auth import Credentials, auth_for
from .batching import split_into_batches
from .endpoints import (
    ApiFamily,
    Endpoints,
    INGESTION_BATCH_SIZE,
    DEFAULT_TIMEOUT,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_RETRY_DELAY,
    parse_family,
    resolve_base_url,
)
from .exceptions import (
    DriverError,
    ApiError,
    AuthenticationError,
    BadRequestError,
    ConnectionError,
    IngestionRejectedError,
    PaymentRequiredError,
    ProtocolError,
    RateLimitError,
    ServerError,
    TimeoutError,
)
from .payloads import (
    build_event,
    build_group_update,
    build_profile_update,
    build_query_params,
    clean_record,
    format_date,
    shape_events,
)
from .responses import (
    Failure,
    IngestionResult,
    classify_ingestion_response,
    parse_export_body,
)
from .retry import RetryPolicy


FAMILY_LABELS = {
    ApiFamily.INGESTION: "Ingestion API",
    ApiFamily.QUERY: "Query API",
    ApiFamily.EXPORT: "Export API",
    ApiFamily.SERVICE_ACCOUNT: "Service Account API",
}


class MixpanelDriver:
    """
    Mixpanel API driver.

    This driver handles the 4 Mixpanel API families:
    1. Ingestion - token inside each record, body answers 1/0
    2. Query - Basic auth with project secret
    3. Export - Basic auth with project secret, newline-delimited JSON, longer timeout
    4. Service account - Basic auth with service account username/secret

    Batches of one logical operation are sent one after another; a failed
    batch stops the operation and earlier batches stay accepted.

    Example:
        client = MixpanelDriver.from_env()
        client.track_event("Purchase", "user_1", {"price": 9.99})
        client.close()
    """

    def __init__(
        self,
        project_token: Optional[str] = None,
        project_secret: Optional[str] = None,
        service_account_username: Optional[str] = None,
        service_account_secret: Optional[str] = None,
        region: str = "us",
        timeout: int = DEFAULT_TIMEOUT,
        export_timeout: Optional[int] = None,
        max_retries: int = DEFAULT_RETRY_ATTEMPTS,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        debug: bool = False,
        credentials: Optional[Credentials] = None,
    ):
        """
        Initialize Mixpanel driver.

        Args:
            project_token: Project token (ingestion)
            project_secret: Project secret (query, export)
            service_account_username: Service account username (lookup tables)
            service_account_secret: Service account secret (lookup tables)
            region: "us", "eu" or "in" (default: "us")
            timeout: Request timeout in seconds (default: 30)
            export_timeout: Export request timeout in seconds (default: 2x timeout)
            max_retries: Attempts per batch when rate limited (default: 3)
            retry_delay: Base backoff delay in seconds (default: 1.0)
            debug: Enable debug logging (default: False)
            credentials: Prebuilt Credentials, overrides the individual fields

        Raises:
            ConfigurationError: If token/secret are missing or region is unknown
        """
        self.driver_name = "MixpanelDriver"
        self.credentials = credentials or Credentials(
            project_token=project_token,
            project_secret=project_secret,
            region=region or "us",
            service_account_username=service_account_username,
            service_account_secret=service_account_secret,
        )

        self.logger = logging.getLogger(__name__)
        if debug:
            self.logger.setLevel(logging.DEBUG)
        else:
            self.logger.setLevel(logging.WARNING)

        self.timeout = timeout or DEFAULT_TIMEOUT
        self.export_timeout = export_timeout or self.timeout * 2
        self.max_retries = max_retries or DEFAULT_RETRY_ATTEMPTS
        self.debug = debug
        self.retry_policy = RetryPolicy(max_attempts=self.max_retries, base_delay=retry_delay)

        self.session = self._create_session()

        self._validate_connection()

    @classmethod
    def from_env(cls, **kwargs) -> "MixpanelDriver":
        """
        Create driver instance from environment variables.

        Environment variables:
            MIXPANEL_PROJECT_TOKEN: Project token (required)
            MIXPANEL_PROJECT_SECRET: Project secret (required)
            MIXPANEL_SERVICE_ACCOUNT_USERNAME: Service account username (optional)
            MIXPANEL_SERVICE_ACCOUNT_SECRET: Service account secret (optional)
            MIXPANEL_REGION: "us", "eu" or "in" (default: "us")
            MIXPANEL_TIMEOUT: Request timeout in seconds (default: 30)
            MIXPANEL_EXPORT_TIMEOUT: Export timeout in seconds (default: 2x timeout)
            MIXPANEL_DEBUG: Enable debug logging (default: False)

        Raises:
            AuthenticationError: If token or secret is not set
        """
        project_token = os.getenv("MIXPANEL_PROJECT_TOKEN")
        project_secret = os.getenv("MIXPANEL_PROJECT_SECRET")
        export_timeout = os.getenv("MIXPANEL_EXPORT_TIMEOUT")

        if not project_token or not project_secret:
            raise AuthenticationError(
                "Missing Mixpanel credentials. Set MIXPANEL_PROJECT_TOKEN and MIXPANEL_PROJECT_SECRET.",
                details={
                    "env_vars": ["MIXPANEL_PROJECT_TOKEN", "MIXPANEL_PROJECT_SECRET"],
                    "token_set": bool(project_token),
                    "secret_set": bool(project_secret),
                }
            )

        kwargs.setdefault("debug", os.getenv("MIXPANEL_DEBUG", "false").lower() == "true")
        kwargs.setdefault("timeout", int(os.getenv("MIXPANEL_TIMEOUT", str(DEFAULT_TIMEOUT))))
        if export_timeout:
            kwargs.setdefault("export_timeout", int(export_timeout))

        return cls(
            project_token=project_token,
            project_secret=project_secret,
            service_account_username=os.getenv("MIXPANEL_SERVICE_ACCOUNT_USERNAME"),
            service_account_secret=os.getenv("MIXPANEL_SERVICE_ACCOUNT_SECRET"),
            region=os.getenv("MIXPANEL_REGION", "us"),
            **kwargs
        )

    # ========================================================================
    # Dispatch
    # ========================================================================

    def request(
        self,
        family: Union[ApiFamily, str],
        method: str,
        endpoint: str,
        body: Optional[Union[Dict[str, Any], List[Any]]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """
        Send one request to an API family. No retries.

        Returns:
            Ingestion: Success or Payload
            Query / service account: decoded JSON
            Export: list of records

        Raises:
            ConfigurationError: Service account family without service account credentials
            IngestionRejectedError: Ingestion body was 0
            ApiError subclasses: Non-2xx response or transport failure
            ProtocolError: Body does not match the family's encoding
        """
        family = parse_family(family)
        auth = auth_for(family, self.credentials)
        url = f"{resolve_base_url(self.credentials.region, family)}{endpoint}"
        method = method.upper()
        label = FAMILY_LABELS[family]

        kwargs: Dict[str, Any] = {
            "params": params or None,
            "auth": auth.requests_auth(),
            "timeout": self.export_timeout if family is ApiFamily.EXPORT else self.timeout,
        }
        if family is ApiFamily.INGESTION:
            kwargs["json"] = body if body is not None else []
            kwargs["headers"] = {"Accept": "text/plain"}
        elif family is not ApiFamily.EXPORT and method != "GET" and body:
            kwargs["json"] = body  # Sets Content-Type: application/json

        try:
            if self.debug:
                self.logger.debug(f"[{label}] {method} {url} params={params}")

            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()

        except requests.HTTPError as e:
            self._handle_api_error(e, context=f"{method} {endpoint or '/'} on {label}")
        except requests.exceptions.Timeout:
            raise TimeoutError(
                f"{label} request timed out",
                details={"timeout": kwargs["timeout"], "url": url}
            )
        except requests.exceptions.ConnectionError as e:
            raise ConnectionError(
                f"Cannot reach {label}: {e}",
                details={"url": url}
            )
        except requests.RequestException as e:
            raise ApiError(
                f"{label} request failed: {e}",
                details={"url": url}
            )

        return self._parse_response(family, response, label)

    def _parse_response(self, family: ApiFamily, response, label: str) -> Any:
        if family is ApiFamily.INGESTION:
            result = classify_ingestion_response(response.text)
            if isinstance(result, Failure):
                raise IngestionRejectedError(
                    result.reason,
                    status_code=response.status_code,
                )
            return result

        if family is ApiFamily.EXPORT:
            records = parse_export_body(response.text)
            if self.debug:
                self.logger.debug(f"[{label}] Parsed {len(records)} records")
            return records

        if not response.content or not response.content.strip():
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise ProtocolError(
                f"{label} returned invalid JSON",
                details={"error": str(e), "body": response.text[:500]}
            )

    def call(
        self,
        family: Union[ApiFamily, str],
        method: str,
        endpoint: str,
        body: Optional[Union[Dict[str, Any], List[Any]]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Send one request under the retry policy."""
        return self.retry_policy.call(
            partial(self.request, family, method, endpoint, body=body, params=params)
        )

    def ingest(
        self,
        endpoint: str,
        records: List[Dict[str, Any]],
        batch_size: int = INGESTION_BATCH_SIZE,
    ) -> List[Dict[str, Any]]:
        """
        Send records to an ingestion endpoint in sequential batches.

        Args:
            endpoint: Endpoints.TRACK, IMPORT, ENGAGE or GROUPS
            records: Shaped, cleaned records
            batch_size: Records per request (default: 2,000)

        Returns:
            One result per batch with batch_index and batch_size

        Raises:
            DriverError: From the failing batch, with batch_index, batch_size
                and batches_completed in details
        """
        results = []
        batches = split_into_batches(records, batch_size)

        for index, batch in enumerate(batches):
            try:
                result: IngestionResult = self.call(ApiFamily.INGESTION, "POST", endpoint, body=batch)
            except DriverError as e:
                e.details.setdefault("batch_index", index)
                e.details.setdefault("batch_size", len(batch))
                e.details.setdefault("batches_completed", index)
                raise

            if self.debug:
                self.logger.debug(
                    f"[Ingestion API] {endpoint} batch {index + 1}/{len(batches)} accepted ({len(batch)} records)"
                )
            results.append({
                "batch_index": index,
                "batch_size": len(batch),
                **result.to_record(),
            })

        return results

    # ========================================================================
    # Events
    # ========================================================================

    def track_event(
        self,
        event_name: str,
        distinct_id: str,
        properties: Optional[Dict[str, Any]] = None,
        insert_id: Optional[str] = None,
        time: Optional[Union[int, float, str]] = None,
        ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Track a single event (/track).

        Example:
            client.track_event("Purchase", "user_1", {"price": 9.99})
        """
        event = build_event(
            self.credentials.project_token,
            event_name,
            distinct_id,
            properties=properties,
            insert_id=insert_id,
            time=time,
            ip=ip,
        )
        result = self.ingest(Endpoints.TRACK, [event])[0]

        return {
            "success": True,
            "event": event["event"],
            "distinct_id": event["properties"]["distinct_id"],
            "insert_id": event["properties"]["$insert_id"],
            **{k: v for k, v in result.items() if k not in ("batch_index", "batch_size")},
        }

    def track_events(self, events: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Track many events (/track), 2,000 per request."""
        shaped = shape_events(events, self.credentials.project_token)
        return self._batch_summary(shaped, self.ingest(Endpoints.TRACK, shaped))

    def import_events(self, events: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        Import historical events (/import), 2,000 per request.

        Every event needs an explicit time.
        """
        shaped = shape_events(events, self.credentials.project_token, require_time=True)
        return self._batch_summary(shaped, self.ingest(Endpoints.IMPORT, shaped))

    @staticmethod
    def _batch_summary(events: List[Dict[str, Any]], results: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "success": True,
            "total_events": len(events),
            "batches": len(results),
            "results": results,
        }

    # ========================================================================
    # Profiles and groups
    # ========================================================================

    def update_profile(
        self,
        distinct_id: str,
        operation: str,
        payload: Any,
        ip: Optional[str] = None,
        ignore_time: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Apply one update operation to a user profile (/engage).

        Example:
            client.update_profile("user_1", "$set", {"plan": "premium"})
        """
        update = build_profile_update(
            self.credentials.project_token, distinct_id, operation, payload,
            ip=ip, ignore_time=ignore_time,
        )
        result = self.ingest(Endpoints.ENGAGE, [clean_record(update)])[0]
        return {
            "success": True,
            "operation": operation,
            "distinct_id": distinct_id,
            **{k: v for k, v in result.items() if k not in ("batch_index", "batch_size")},
        }

    def update_group(
        self,
        group_key: str,
        group_id: str,
        operation: str,
        payload: Any,
    ) -> Dict[str, Any]:
        """Apply one update operation to a group profile (/groups)."""
        update = build_group_update(
            self.credentials.project_token, group_key, group_id, operation, payload,
        )
        result = self.ingest(Endpoints.GROUPS, [clean_record(update)])[0]
        return {
            "success": True,
            "operation": operation,
            "group_key": group_key,
            "group_id": group_id,
            **{k: v for k, v in result.items() if k not in ("batch_index", "batch_size")},
        }

    # ========================================================================
    # Query API
    # ========================================================================

    def query(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """GET a Query API endpoint with cleaned query parameters."""
        return self.call(ApiFamily.QUERY, "GET", endpoint, params=build_query_params(params or {}))

    def query_insights(self, from_date, to_date, bookmark_id: str) -> Any:
        return self.query(Endpoints.INSIGHTS, {
            "from_date": format_date(from_date),
            "to_date": format_date(to_date),
            "bookmark_id": bookmark_id,
        })

    def query_funnels(
        self,
        from_date,
        to_date,
        funnel_id: str,
        unit: Optional[str] = None,
        interval: Optional[int] = None,
        on: Optional[str] = None,
    ) -> Any:
        return self.query(Endpoints.FUNNELS, {
            "from_date": format_date(from_date),
            "to_date": format_date(to_date),
            "funnel_id": funnel_id,
            "unit": unit,
            "interval": interval,
            "on": on,
        })

    def query_retention(
        self,
        from_date,
        to_date,
        born_event: str,
        event: Optional[str] = None,
        unit: Optional[str] = None,
        interval_count: Optional[int] = None,
        where: Optional[str] = None,
    ) -> Any:
        return self.query(Endpoints.RETENTION, {
            "from_date": format_date(from_date),
            "to_date": format_date(to_date),
            "born_event": born_event,
            "event": event,
            "unit": unit,
            "interval_count": interval_count,
            "where": where,
        })

    def query_segmentation(
        self,
        from_date,
        to_date,
        event: str,
        type: Optional[str] = None,
        unit: Optional[str] = None,
        on: Optional[str] = None,
        where: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Any:
        return self.query(Endpoints.SEGMENTATION, {
            "from_date": format_date(from_date),
            "to_date": format_date(to_date),
            "event": event,
            "type": type,
            "unit": unit,
            "on": on,
            "where": where,
            "limit": limit,
        })

    def run_jql(self, script: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Run a JQL script. The script is sent as an opaque string."""
        return self.call(
            ApiFamily.QUERY, "POST", Endpoints.JQL,
            body={"script": script, "params": params or {}},
        )

    # ========================================================================
    # Cohorts
    # ========================================================================

    def list_cohorts(self) -> Any:
        return self.call(ApiFamily.QUERY, "GET", Endpoints.COHORTS_LIST)

    def get_cohort(self, cohort_id: str) -> Any:
        return self.call(ApiFamily.QUERY, "GET", Endpoints.COHORTS, params={"id": cohort_id})

    def get_cohort_members(
        self,
        cohort_id: str,
        page: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Any:
        params = build_query_params({"id": cohort_id, "page": page, "session_id": session_id})
        return self.call(
            ApiFamily.QUERY, "GET", f"{Endpoints.COHORTS}/{cohort_id}/users", params=params,
        )

    # ========================================================================
    # Export
    # ========================================================================

    def export_events(
        self,
        from_date,
        to_date,
        event: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """
        Export raw events between two dates (inclusive).

        Returns:
            List of event records decoded from newline-delimited JSON

        Raises:
            ProtocolError: If any line of the export is not valid JSON
        """
        params = build_query_params({
            "from_date": format_date(from_date),
            "to_date": format_date(to_date),
            "event": [event] if event else None,
            "limit": limit,
        })
        return self.call(ApiFamily.EXPORT, "GET", Endpoints.RAW_EXPORT, params=params)

    def export_people(
        self,
        where: Optional[str] = None,
        output_properties: Optional[List[str]] = None,
        page: Optional[int] = None,
        session_id: Optional[str] = None,
    ) -> Any:
        """Export user profiles (one page of the Engage API)."""
        params = build_query_params({
            "where": where,
            "output_properties": output_properties or None,
            "page": page,
            "session_id": session_id,
        })
        return self.call(ApiFamily.QUERY, "GET", Endpoints.ENGAGE_EXPORT, params=params)

    # ========================================================================
    # Lookup tables (service account)
    # ========================================================================

    def list_lookup_tables(self) -> Any:
        return self.call(ApiFamily.SERVICE_ACCOUNT, "GET", Endpoints.LOOKUP_TABLES)

    def create_lookup_table(self, name: str, csv_data: str) -> Any:
        return self.call(
            ApiFamily.SERVICE_ACCOUNT, "POST", Endpoints.LOOKUP_TABLES,
            body={"name": name, "data": csv_data},
        )

    def replace_lookup_table(self, table_id: str, csv_data: str) -> Any:
        return self.call(
            ApiFamily.SERVICE_ACCOUNT, "PUT", f"{Endpoints.LOOKUP_TABLES}/{table_id}",
            body={"data": csv_data},
        )

    def delete_lookup_table(self, table_id: str) -> Any:
        return self.call(
            ApiFamily.SERVICE_ACCOUNT, "DELETE", f"{Endpoints.LOOKUP_TABLES}/{table_id}",
        )

    # ========================================================================
    # Lifecycle
    # ========================================================================

    def close(self):
        """
        Close session and cleanup resources.

        Example:
            with MixpanelDriver.from_env() as client:
                client.track_event("Signup", "user_1")
        """
        if self.session:
            self.session.close()
            if self.debug:
                self.logger.debug("Session closed")

    def __enter__(self) -> "MixpanelDriver":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ========================================================================
    # Internal Methods
    # ========================================================================

    def _create_session(self) -> requests.Session:
        """
        Create HTTP session.

        Auth is attached per request (it differs by API family) and so is
        Content-Type. The adapter keeps urllib3 retries off: RetryPolicy
        decides what is retried.
        """
        session = requests.Session()

        session.headers.update({
            "Accept": "application/json",
            "User-Agent": f"{self.driver_name}-Python-Driver/{__version__}",
        })

        adapter = HTTPAdapter(max_retries=0)
        session.mount("https://", adapter)
        session.mount("http://", adapter)

        return session

    def _validate_connection(self):
        """
        Validate configuration at initialization (fail fast, no network).

        Raises:
            ConfigurationError: Unknown region
        """
        resolve_base_url(self.credentials.region, ApiFamily.INGESTION)

        if self.debug:
            self.logger.debug(f"[Validation] Region: {self.credentials.region.value}")
            self.logger.debug(f"[Validation] Project token: {self.credentials.project_token[:6]}...")
            if not self.credentials.has_service_account:
                self.logger.debug("[Validation] Service account not set (required for lookup tables)")

    def _handle_api_error(self, error: requests.HTTPError, context: str = "") -> None:
        """
        Convert HTTP errors to structured driver exceptions.

        Raises:
            Appropriate ApiError subclass
        """
        response = error.response
        status_code = response.status_code if response is not None else None

        if response is None:
            raise ApiError(f"API request failed: {error}", details={"context": context})

        try:
            error_data = response.json()
            if isinstance(error_data, dict):
                error_msg = error_data.get("error") or error_data.get("message") or "Unknown error"
            else:
                error_msg = str(error_data)
        except ValueError:
            error_msg = response.text[:500] or "Unknown error"

        details = {
            "context": context,
            "api_response": error_msg,
        }

        if status_code == 400:
            raise BadRequestError(f"Bad request: {error_msg}", status_code=400, details=details)

        elif status_code == 401:
            raise AuthenticationError(
                f"Authentication failed: {error_msg}",
                status_code=401,
                details={**details, "suggestion": "Check your project secret and region"}
            )

        elif status_code == 402:
            raise PaymentRequiredError(f"Payment required: {error_msg}", status_code=402, details=details)

        elif status_code == 429:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                details["retry_after"] = retry_after
            raise RateLimitError(f"API rate limit exceeded: {error_msg}", status_code=429, details=details)

        elif status_code >= 500:
            raise ServerError(f"API server error: {error_msg}", status_code=status_code, details=details)

        raise ApiError(f"API request failed: {error_msg}", status_code=status_code, details=details)


# Allow importing as MixpanelDriver or MixpanelClient
MixpanelClient = MixpanelDriver

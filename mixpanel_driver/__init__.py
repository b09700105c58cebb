"""
Mixpanel Python Driver

A driver for the Mixpanel ingestion, query, export and management APIs.

Example:
    Basic usage:

    >>> from mixpanel_driver import MixpanelDriver
    >>>
    >>> # Create driver from environment
    >>> client = MixpanelDriver.from_env()
    >>>
    >>> # Track an event
    >>> client.track_event("Purchase", "user_1", {"price": 9.99})
    >>>
    >>> # Update a profile
    >>> client.update_profile("user_1", "$set", {"plan": "premium"})
    >>>
    >>> # Export events
    >>> events = client.export_events("2025-01-01", "2025-01-02")
    >>> print(f"Exported {len(events)} events")
    >>>
    >>> client.close()

Supports:
    - Event tracking and historical import (2,000 events per request)
    - User and group profile updates ($set, $set_once, $add, $append,
      $union, $remove, $unset, $delete)
    - Query API (insights, funnels, retention, segmentation, JQL, cohorts)
    - Raw event export and profile export
    - Lookup tables (service account)

Authentication:
    Set environment variables:
    - MIXPANEL_PROJECT_TOKEN: Required for ingestion
    - MIXPANEL_PROJECT_SECRET: Required for query and export
    - MIXPANEL_SERVICE_ACCOUNT_USERNAME / MIXPANEL_SERVICE_ACCOUNT_SECRET: Lookup tables
    - MIXPANEL_REGION: "us", "eu" or "in" (default: "us")
    - MIXPANEL_DEBUG: "true" or "false" (default: "false")

Rate Limits:
    - Ingestion: 2,000 records per request
    - Query API: 60 queries/hour, 5 concurrent
    - Export API: 60 queries/hour
    Rate-limited requests (429) are retried with exponential backoff.
"""

__version__ = "1.0.0"
__license__ = "MIT"

from .auth import (
    Credentials,
    AuthScheme,
    TokenAuth,
    BasicSecretAuth,
    ServiceAccountAuth,
    auth_for,
)

from .client import (
    MixpanelDriver,
    MixpanelClient,
)

from .endpoints import (
    Region,
    ApiFamily,
    Endpoints,
    ProfileOperation,
    INGESTION_BATCH_SIZE,
    resolve_base_url,
)

from .exceptions import (
    DriverError,
    ValidationError,
    InvalidPayloadError,
    ConfigurationError,
    ProtocolError,
    ApiError,
    BadRequestError,
    AuthenticationError,
    PaymentRequiredError,
    RateLimitError,
    ServerError,
    IngestionRejectedError,
    ConnectionError,
    TimeoutError,
)

from .operations import OperationRegistry, build_registry
from .retry import RetryPolicy, RetryState
from .runner import NoticeState, run_job

__all__ = [
    # Driver classes
    "MixpanelDriver",
    "MixpanelClient",
    # Auth
    "Credentials",
    "AuthScheme",
    "TokenAuth",
    "BasicSecretAuth",
    "ServiceAccountAuth",
    "auth_for",
    # Endpoints
    "Region",
    "ApiFamily",
    "Endpoints",
    "ProfileOperation",
    "INGESTION_BATCH_SIZE",
    "resolve_base_url",
    # Dispatch
    "OperationRegistry",
    "build_registry",
    "RetryPolicy",
    "RetryState",
    "NoticeState",
    "run_job",
    # Exceptions
    "DriverError",
    "ValidationError",
    "InvalidPayloadError",
    "ConfigurationError",
    "ProtocolError",
    "ApiError",
    "BadRequestError",
    "AuthenticationError",
    "PaymentRequiredError",
    "RateLimitError",
    "ServerError",
    "IngestionRejectedError",
    "ConnectionError",
    "TimeoutError",
]

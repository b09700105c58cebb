"""
Mixpanel Driver Exception Hierarchy

Structured exceptions for clear error handling by callers.
Each exception includes a descriptive message and structured details for programmatic handling.

Taxonomy:
- Input validation (ValidationError, InvalidPayloadError): raised before any network call
- Configuration (ConfigurationError): unknown region, missing service account credentials
- Transport/API (ApiError and subclasses): non-2xx responses and network failures
- Protocol shape (ProtocolError): response body that cannot be interpreted
"""

from typing import Dict, Any, Optional


class DriverError(Exception):
    """Base exception for all driver errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        """Return descriptive error message"""
        return f"{self.__class__.__name__}: {self.message}"


class ValidationError(DriverError):
    """
    Caller input failed validation (missing event name, distinct id, import time...).

    Never retried. Caller should:
    - Check required fields are present
    - Fix data types
    """
    pass


class InvalidPayloadError(ValidationError):
    """
    A JSON parameter could not be decoded.

    The offending parameter name is available as `field`.
    """

    def __init__(self, message: str, field: str, details: Optional[Dict[str, Any]] = None):
        details = dict(details or {})
        details.setdefault("field", field)
        super().__init__(message, details=details)
        self.field = field


class ConfigurationError(DriverError):
    """
    Driver configuration is unusable.

    Caller should:
    - Check the region is one of us, eu, in
    - Configure service account credentials for lookup table operations
    """
    pass


class ProtocolError(DriverError):
    """
    Response body does not match the shape the API family promises.

    Raised for ingestion bodies that are neither 1, 0 nor a JSON object,
    and for export lines that are not valid JSON.
    """
    pass


class ApiError(DriverError):
    """
    Uniform wrapper for API and transport failures.

    Carries the upstream status code (None for network failures) and message.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        super().__init__(message, details=details)
        self.status_code = status_code


class BadRequestError(ApiError):
    """
    Malformed request (400).

    Caller should:
    - Check the payload matches the endpoint's expected format
    """
    pass


class AuthenticationError(ApiError):
    """
    Invalid or missing credentials (401).

    Caller should:
    - Check project token and project secret are correctly set
    - Verify the project belongs to the configured region
    """
    pass


class PaymentRequiredError(ApiError):
    """
    The project's plan does not include this API (402).
    """
    pass


class RateLimitError(ApiError):
    """
    API rate limit exceeded (429).

    The only retryable failure. Raised to the caller only after
    the retry policy has exhausted its attempts.
    """
    pass


class ServerError(ApiError):
    """
    Upstream server error (5xx). Not retried.
    """
    pass


class IngestionRejectedError(ApiError):
    """
    Ingestion API answered 0: the records were not accepted.

    Caller should:
    - Check event names, distinct ids and the project token
    """
    pass


class ConnectionError(ApiError):
    """
    Cannot reach API (network issue, DNS, TLS).
    """
    pass


class TimeoutError(ApiError):
    """
    Request timed out.

    Caller should:
    - Increase timeout (or export_timeout for exports)
    - Retry with a smaller date range
    """
    pass

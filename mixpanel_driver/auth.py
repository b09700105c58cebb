"""
Credentials and per-family authentication.

Each API family authenticates differently:
- Ingestion: project token inside every record, no header
- Query and export: HTTP Basic with the project secret as username, empty password
- Service account (lookup tables): HTTP Basic with username and secret

The variant is picked once per request by `auth_for()`; each variant holds
only the credentials it needs.
"""

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from .endpoints import ApiFamily, Region, parse_family, parse_region
from .exceptions import ConfigurationError


@dataclass(frozen=True)
class Credentials:
    """Access to one Mixpanel project"""
    project_token: str
    project_secret: str
    region: Union[Region, str] = Region.US
    service_account_username: Optional[str] = None
    service_account_secret: Optional[str] = None

    def __post_init__(self):
        missing = [
            name for name in ("project_token", "project_secret")
            if not getattr(self, name)
        ]
        if missing:
            raise ConfigurationError(
                f"Missing required credentials: {', '.join(missing)}",
                details={"missing": missing}
            )
        object.__setattr__(self, "region", parse_region(self.region))

    @property
    def has_service_account(self) -> bool:
        return bool(self.service_account_username and self.service_account_secret)

    def __repr__(self):
        return (
            f"Credentials(project_token='{self.project_token[:6]}...', "
            f"region='{self.region.value}', "
            f"service_account={self.has_service_account})"
        )


class AuthScheme:
    """How a request proves its identity"""

    def requests_auth(self) -> Optional[Tuple[str, str]]:
        """Value for the `auth` argument of requests, or None"""
        return None


@dataclass(frozen=True)
class TokenAuth(AuthScheme):
    """Token travels inside each record (ingestion)"""
    token: str


@dataclass(frozen=True)
class BasicSecretAuth(AuthScheme):
    """Basic auth with the project secret (query, export)"""
    secret: str

    def requests_auth(self) -> Tuple[str, str]:
        return (self.secret, "")


@dataclass(frozen=True)
class ServiceAccountAuth(AuthScheme):
    """Basic auth with a service account (management APIs)"""
    username: str
    secret: str

    def requests_auth(self) -> Tuple[str, str]:
        return (self.username, self.secret)


def auth_for(family: Union[ApiFamily, str], credentials: Credentials) -> AuthScheme:
    """
    Select the auth variant for an API family.

    Raises:
        ConfigurationError: Service account family without service account credentials
    """
    family = parse_family(family)

    if family is ApiFamily.INGESTION:
        return TokenAuth(token=credentials.project_token)

    if family is ApiFamily.SERVICE_ACCOUNT:
        if not credentials.has_service_account:
            raise ConfigurationError(
                "Service account credentials are required for this operation. "
                "Set MIXPANEL_SERVICE_ACCOUNT_USERNAME and MIXPANEL_SERVICE_ACCOUNT_SECRET.",
                details={
                    "username_set": bool(credentials.service_account_username),
                    "secret_set": bool(credentials.service_account_secret),
                }
            )
        return ServiceAccountAuth(
            username=credentials.service_account_username,
            secret=credentials.service_account_secret,
        )

    return BasicSecretAuth(secret=credentials.project_secret)

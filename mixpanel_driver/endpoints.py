"""
Regional endpoints, API paths and wire constants for the Mixpanel APIs.
"""

from enum import Enum
from typing import Dict, Union

from .exceptions import ConfigurationError


class Region(Enum):
    """Data-residency zone of a Mixpanel project"""
    US = "us"
    EU = "eu"
    IN = "in"


class ApiFamily(Enum):
    """Which URL and auth rules apply to a request"""
    INGESTION = "ingestion"
    QUERY = "query"
    EXPORT = "export"
    SERVICE_ACCOUNT = "service_account"


INGESTION_URLS: Dict[Region, str] = {
    Region.US: "https://api.mixpanel.com",
    Region.EU: "https://api-eu.mixpanel.com",
    Region.IN: "https://api-in.mixpanel.com",
}

QUERY_URLS: Dict[Region, str] = {
    Region.US: "https://mixpanel.com/api",
    Region.EU: "https://eu.mixpanel.com/api",
    Region.IN: "https://in.mixpanel.com/api",
}

EXPORT_URLS: Dict[Region, str] = {
    Region.US: "https://data.mixpanel.com/api/2.0/export",
    Region.EU: "https://data-eu.mixpanel.com/api/2.0/export",
    Region.IN: "https://data-in.mixpanel.com/api/2.0/export",
}

# Service account calls share the query hosts
BASE_URLS: Dict[ApiFamily, Dict[Region, str]] = {
    ApiFamily.INGESTION: INGESTION_URLS,
    ApiFamily.QUERY: QUERY_URLS,
    ApiFamily.EXPORT: EXPORT_URLS,
    ApiFamily.SERVICE_ACCOUNT: QUERY_URLS,
}


class Endpoints:
    """Paths relative to the family base URL"""

    # Ingestion
    TRACK = "/track"
    IMPORT = "/import"
    ENGAGE = "/engage"
    GROUPS = "/groups"

    # Query
    INSIGHTS = "/2.0/insights"
    FUNNELS = "/2.0/funnels"
    RETENTION = "/2.0/retention"
    SEGMENTATION = "/2.0/segmentation"
    JQL = "/2.0/jql"

    # Cohorts
    COHORTS = "/2.0/cohorts"
    COHORTS_LIST = "/2.0/cohorts/list"

    # Profiles export
    ENGAGE_EXPORT = "/2.0/engage"

    # Lookup tables (service account)
    LOOKUP_TABLES = "/2.0/lookup-tables"

    # Raw event export uses the export base as-is
    RAW_EXPORT = ""


class ProfileOperation:
    """Profile/group update keywords on the wire"""
    SET = "$set"
    SET_ONCE = "$set_once"
    ADD = "$add"
    APPEND = "$append"
    UNION = "$union"
    REMOVE = "$remove"
    UNSET = "$unset"
    DELETE = "$delete"


PROFILE_OPERATIONS = frozenset({
    ProfileOperation.SET,
    ProfileOperation.SET_ONCE,
    ProfileOperation.ADD,
    ProfileOperation.APPEND,
    ProfileOperation.UNION,
    ProfileOperation.REMOVE,
    ProfileOperation.UNSET,
    ProfileOperation.DELETE,
})

# Records per ingestion request (/track, /import)
INGESTION_BATCH_SIZE = 2000

DEFAULT_TIMEOUT = 30
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_RETRY_DELAY = 1.0


def parse_region(region: Union[Region, str]) -> Region:
    """
    Coerce a region name into a Region.

    Raises:
        ConfigurationError: If the region is not one of us, eu, in
    """
    if isinstance(region, Region):
        return region
    try:
        return Region(str(region).strip().lower())
    except ValueError:
        raise ConfigurationError(
            f"Invalid region: {region}",
            details={
                "provided": region,
                "available": [r.value for r in Region],
            }
        )


def parse_family(family: Union[ApiFamily, str]) -> ApiFamily:
    """Coerce an API family name into an ApiFamily"""
    if isinstance(family, ApiFamily):
        return family
    try:
        return ApiFamily(family)
    except ValueError:
        raise ConfigurationError(
            f"Invalid API family: {family}",
            details={
                "provided": family,
                "available": [f.value for f in ApiFamily],
            }
        )


def resolve_base_url(region: Union[Region, str], family: Union[ApiFamily, str]) -> str:
    """
    Resolve the base URL for a region and API family.

    Args:
        region: Region or region name ("us", "eu", "in")
        family: ApiFamily or family name

    Returns:
        Base URL without trailing slash

    Raises:
        ConfigurationError: If the pair has no mapped URL

    Example:
        >>> resolve_base_url("eu", ApiFamily.INGESTION)
        'https://api-eu.mixpanel.com'
    """
    region = parse_region(region)
    family = parse_family(family)

    url = BASE_URLS.get(family, {}).get(region)
    if not url:
        raise ConfigurationError(
            f"No {family.value} endpoint for region {region.value}",
            details={"region": region.value, "family": family.value}
        )
    return url

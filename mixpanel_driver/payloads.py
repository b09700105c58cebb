"""
Payload shaping for the Mixpanel wire formats.

Pure functions that turn caller input into the records each endpoint expects:
event properties (/track, /import), profile updates (/engage) and
group updates (/groups). Also holds timestamp normalization, insert id
generation and query string helpers.

Known limitation:
    Timestamps are classified by magnitude. Anything below 10,000,000,000 is
    read as seconds, anything at or above as milliseconds. Second timestamps
    after the year 2286 and millisecond timestamps from the first ~115 days
    of 1970 are therefore misread.
"""

import json
import math
import secrets
import string
import time
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from .endpoints import PROFILE_OPERATIONS
from .exceptions import InvalidPayloadError, ValidationError

Number = Union[int, float]

MILLISECONDS_THRESHOLD = 10_000_000_000

_INSERT_ID_ALPHABET = string.ascii_lowercase + string.digits
_INSERT_ID_RANDOM_LENGTH = 9


# ============================================================================
# Timestamps
# ============================================================================


def _coerce_timestamp(value: Union[Number, str]) -> Number:
    if isinstance(value, bool):
        raise ValidationError(
            "Timestamp must be numeric",
            details={"provided": value}
        )
    if isinstance(value, int):
        return value
    if isinstance(value, float) and math.isfinite(value):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            pass
        try:
            number = float(text)
        except ValueError:
            number = None
        if number is not None and math.isfinite(number):
            return number
    raise ValidationError(
        f"Timestamp must be numeric, got {value!r}",
        details={"provided": value}
    )


def to_seconds(value: Union[Number, str]) -> Number:
    """
    Normalize a timestamp to seconds.

    Values at or above 10,000,000,000 are treated as milliseconds
    and floor-divided by 1000.

    Example:
        >>> to_seconds(1700000000000)
        1700000000
        >>> to_seconds("1700000000")
        1700000000
    """
    ts = _coerce_timestamp(value)
    if ts >= MILLISECONDS_THRESHOLD:
        return int(ts // 1000)
    return ts


def to_milliseconds(value: Union[Number, str]) -> Number:
    """
    Normalize a timestamp to milliseconds.

    Values below 10,000,000,000 are treated as seconds and multiplied by 1000.
    """
    ts = _coerce_timestamp(value)
    if ts < MILLISECONDS_THRESHOLD:
        return ts * 1000
    return ts


def now_seconds() -> int:
    return int(time.time())


# ============================================================================
# Insert ids
# ============================================================================


def generate_insert_id(distinct_id: str) -> str:
    """
    Generate a deduplication key for one event.

    Format: "{distinct_id}_{epoch_ms}_{random}". The random part is
    9 lowercase alphanumerics and never contains "_", so
    `key.rsplit("_", 2)` always yields [distinct_id, epoch_ms, random].
    """
    timestamp = int(time.time() * 1000)
    random_part = "".join(
        secrets.choice(_INSERT_ID_ALPHABET) for _ in range(_INSERT_ID_RANDOM_LENGTH)
    )
    return f"{distinct_id}_{timestamp}_{random_part}"


# ============================================================================
# Input decoding and cleanup
# ============================================================================


def parse_json_input(value: Any, field: str) -> Any:
    """
    Decode a JSON parameter, or pass through an already-decoded value.

    Raises:
        InvalidPayloadError: If the string is not valid JSON
    """
    if not isinstance(value, str):
        return value
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError(
            f"Invalid JSON in '{field}': {e.msg}",
            field=field,
            details={"position": e.pos}
        )


def clean_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """
    Drop keys whose value is None or "" (recursively through nested dicts).

    0, False, empty lists and empty dicts are kept: the service treats them
    as real values. Lists are not descended into.

    Example:
        >>> clean_record({"a": "v", "b": None, "c": "", "e": 0, "g": {"h": None, "i": "x"}})
        {'a': 'v', 'e': 0, 'g': {'i': 'x'}}
    """
    cleaned = {}
    for key, value in record.items():
        if value is None or (isinstance(value, str) and value == ""):
            continue
        if isinstance(value, dict):
            cleaned[key] = clean_record(value)
        else:
            cleaned[key] = value
    return cleaned


def _require_text(value: Any, field: str, message: str) -> str:
    if value is None or not isinstance(value, (str, int)) or isinstance(value, bool) or str(value) == "":
        raise ValidationError(message, details={"field": field, "provided": value})
    return str(value)


def _require_mapping(value: Any, field: str) -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise InvalidPayloadError(
            f"'{field}' must be a JSON object",
            field=field,
            details={"provided_type": type(value).__name__}
        )
    return value


# ============================================================================
# Builders
# ============================================================================


def build_event_properties(
    token: str,
    distinct_id: str,
    insert_id: str,
    extra_props: Optional[Dict[str, Any]] = None,
    time: Optional[Union[Number, str]] = None,
    ip: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build the `properties` object of a tracked event.

    Caller properties are merged first. `token`, `distinct_id` and
    `$insert_id` always reflect the arguments. `time` comes from the explicit
    argument, else from a `time` key in the caller properties, else the
    current second; it is always normalized to integer seconds.
    """
    properties: Dict[str, Any] = dict(extra_props or {})

    explicit_time = time if time not in (None, "", 0) else properties.get("time")
    if explicit_time not in (None, "", 0):
        properties["time"] = int(to_seconds(explicit_time))
    else:
        properties["time"] = now_seconds()

    properties["token"] = token
    properties["distinct_id"] = distinct_id
    properties["$insert_id"] = insert_id

    if ip:
        properties["ip"] = ip

    return properties


def build_event(
    token: str,
    event_name: Any,
    distinct_id: Any,
    properties: Optional[Dict[str, Any]] = None,
    insert_id: Optional[str] = None,
    time: Optional[Union[Number, str]] = None,
    ip: Optional[str] = None,
    require_time: bool = False,
) -> Dict[str, Any]:
    """
    Build one wire event: {"event": name, "properties": {...}}.

    Raises:
        ValidationError: Missing event name, distinct id, or time when require_time
    """
    event_name = _require_text(event_name, "event", "Each event must have an event name")
    distinct_id = _require_text(distinct_id, "distinct_id", "Each event must have a distinct_id")
    properties = _require_mapping(properties, "properties")

    if require_time and time in (None, "", 0):
        raise ValidationError(
            "Each imported event must have a time field",
            details={"event": event_name, "distinct_id": distinct_id}
        )

    insert_id = insert_id or generate_insert_id(distinct_id)
    merged = build_event_properties(token, distinct_id, insert_id, properties, time=time, ip=ip)

    return {
        "event": event_name,
        "properties": clean_record(merged),
    }


def shape_events(
    raw_events: Any,
    token: str,
    require_time: bool = False,
) -> List[Dict[str, Any]]:
    """
    Shape a list of caller events for /track or /import.

    Each raw event may use `event` or `eventName`, `distinct_id` or
    `distinctId`, and carry optional `$insert_id`, `time`, `ip` and
    `properties`.

    Raises:
        ValidationError: If the input is not a list or an event is incomplete
    """
    if not isinstance(raw_events, list):
        raise ValidationError(
            "Events must be an array",
            details={"provided_type": type(raw_events).__name__}
        )

    events = []
    for index, raw in enumerate(raw_events):
        if not isinstance(raw, dict):
            raise ValidationError(
                f"Event at index {index} must be an object",
                details={"index": index}
            )
        try:
            events.append(build_event(
                token,
                raw.get("event") or raw.get("eventName"),
                raw.get("distinct_id") or raw.get("distinctId"),
                properties=raw.get("properties"),
                insert_id=raw.get("$insert_id"),
                time=raw.get("time"),
                ip=raw.get("ip"),
                require_time=require_time,
            ))
        except ValidationError as e:
            e.details.setdefault("index", index)
            raise
    return events


def _check_operation(operation: str) -> str:
    if operation not in PROFILE_OPERATIONS:
        raise ValidationError(
            f"Unknown update operation: {operation}",
            details={"provided": operation, "available": sorted(PROFILE_OPERATIONS)}
        )
    return operation


def build_profile_update(
    token: str,
    distinct_id: str,
    operation: str,
    payload: Any,
    ip: Optional[str] = None,
    ignore_time: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Build a user profile update for /engage.

    Example:
        >>> build_profile_update("tok", "u1", "$set", {"name": "John"})
        {'$token': 'tok', '$distinct_id': 'u1', '$set': {'name': 'John'}}
    """
    update = {
        "$token": token,
        "$distinct_id": distinct_id,
        _check_operation(operation): payload,
    }
    if ip:
        update["$ip"] = ip
    if ignore_time:
        update["$ignore_time"] = True
    return update


def build_group_update(
    token: str,
    group_key: str,
    group_id: str,
    operation: str,
    payload: Any,
) -> Dict[str, Any]:
    """Build a group profile update for /groups."""
    return {
        "$token": token,
        "$group_key": group_key,
        "$group_id": group_id,
        _check_operation(operation): payload,
    }


# ============================================================================
# Query strings
# ============================================================================


def format_date(value: Union[date, datetime, str]) -> str:
    """
    Format a date-like value as YYYY-MM-DD (UTC for aware datetimes).

    Raises:
        ValidationError: If a string value is not an ISO date/datetime
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.strftime("%Y-%m-%d")
    if isinstance(value, date):
        return value.strftime("%Y-%m-%d")
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            return format_date(datetime.fromisoformat(text))
        except ValueError:
            pass
    raise ValidationError(
        f"Invalid date: {value!r}. Expected YYYY-MM-DD or an ISO datetime",
        details={"provided": value}
    )


def build_query_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Prepare query string parameters.

    Drops None and "" values, formats dates, JSON-encodes lists and dicts.
    """
    query = {}
    for key, value in params.items():
        if value is None or value == "":
            continue
        if isinstance(value, (date, datetime)):
            query[key] = format_date(value)
        elif isinstance(value, (list, dict)):
            query[key] = json.dumps(value)
        else:
            query[key] = value
    return query


def split_names(value: Union[str, Iterable[str]]) -> List[str]:
    """Split a comma separated list of names, dropping blanks."""
    if isinstance(value, str):
        value = value.split(",")
    return [name.strip() for name in value if name and name.strip()]

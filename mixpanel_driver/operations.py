"""
Resource/operation registry.

Maps a (resource, operation) pair such as ("event", "track") to a handler.
A handler takes the driver and the raw caller parameters (JSON fields may
still be strings) and returns a list of output records.

Example:
    registry = build_registry()
    records = registry.execute(driver, "profile", "set", {
        "distinctId": "user_1",
        "properties": '{"plan": "premium"}',
    })
"""

from typing import Any, Callable, Dict, List, Tuple

from .client import MixpanelDriver
from .endpoints import ProfileOperation
from .exceptions import ConfigurationError, InvalidPayloadError, ValidationError
from .payloads import parse_json_input, split_names
from .responses import normalize_paginated, wrap_response

Params = Dict[str, Any]
Handler = Callable[[MixpanelDriver, Params], List[Dict[str, Any]]]


class OperationRegistry:
    """Handlers keyed by (resource, operation)"""

    def __init__(self):
        self._handlers: Dict[Tuple[str, str], Handler] = {}

    def register(self, resource: str, operation: str, handler: Handler) -> None:
        key = (resource, operation)
        if key in self._handlers:
            raise ConfigurationError(
                f"Handler already registered for {resource}.{operation}",
                details={"resource": resource, "operation": operation}
            )
        self._handlers[key] = handler

    def get(self, resource: str, operation: str) -> Handler:
        try:
            return self._handlers[(resource, operation)]
        except KeyError:
            raise ConfigurationError(
                f"Unknown operation '{operation}' for resource '{resource}'",
                details={
                    "resource": resource,
                    "operation": operation,
                    "available": [f"{r}.{o}" for r, o in sorted(self._handlers)],
                }
            )

    def execute(
        self,
        driver: MixpanelDriver,
        resource: str,
        operation: str,
        params: Params,
    ) -> List[Dict[str, Any]]:
        return self.get(resource, operation)(driver, params or {})

    def operations(self) -> List[Tuple[str, str]]:
        return sorted(self._handlers)

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._handlers

    def __len__(self) -> int:
        return len(self._handlers)


# ============================================================================
# Parameter helpers
# ============================================================================


def _required(params: Params, name: str) -> Any:
    value = params.get(name)
    if value is None or value == "":
        raise ValidationError(
            f"Missing required parameter: {name}",
            details={"field": name}
        )
    return value


def _options(params: Params, name: str) -> Params:
    options = parse_json_input(params.get(name) or {}, name)
    if not isinstance(options, dict):
        raise InvalidPayloadError(f"'{name}' must be an object", field=name)
    return options


def _json_object(params: Params, name: str, default: str = "{}") -> Dict[str, Any]:
    value = parse_json_input(params.get(name) or default, name)
    if not isinstance(value, dict):
        raise InvalidPayloadError(f"'{name}' must be a JSON object", field=name)
    return value


def _json_array(params: Params, name: str) -> List[Any]:
    value = parse_json_input(_required(params, name), name)
    if not isinstance(value, list):
        raise InvalidPayloadError(f"'{name}' must be a JSON array", field=name)
    return value


# ============================================================================
# Events
# ============================================================================


def track_event(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "options")
    result = driver.track_event(
        _required(params, "eventName"),
        _required(params, "distinctId"),
        properties=_json_object(params, "properties"),
        insert_id=options.get("insertId") or None,
        time=options.get("time") or None,
        ip=options.get("ip") or None,
    )
    return wrap_response(result)


def track_batch(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.track_events(_json_array(params, "events")))


def import_events(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.import_events(_json_array(params, "importEvents")))


# ============================================================================
# Profiles and groups
# ============================================================================


def _properties_payload(params: Params) -> Any:
    return _json_object(params, "properties")


def _list_payload(params: Params) -> Any:
    return {_required(params, "propertyName"): parse_json_input(_required(params, "values"), "values")}


def _names_payload(params: Params) -> Any:
    return _json_array(params, "propertyNames")


def _empty_payload(params: Params) -> Any:
    return {}


PROFILE_ACTIONS: Dict[str, Tuple[str, Callable[[Params], Any]]] = {
    "set": (ProfileOperation.SET, _properties_payload),
    "setOnce": (ProfileOperation.SET_ONCE, _properties_payload),
    "add": (ProfileOperation.ADD, _properties_payload),
    "append": (ProfileOperation.APPEND, _list_payload),
    "union": (ProfileOperation.UNION, _list_payload),
    "remove": (ProfileOperation.REMOVE, _list_payload),
    "unset": (ProfileOperation.UNSET, _names_payload),
    "delete": (ProfileOperation.DELETE, _empty_payload),
}

GROUP_ACTIONS: Dict[str, Tuple[str, Callable[[Params], Any]]] = {
    "set": (ProfileOperation.SET, _properties_payload),
    "setOnce": (ProfileOperation.SET_ONCE, _properties_payload),
    "delete": (ProfileOperation.DELETE, _empty_payload),
}


def profile_handler(operation: str) -> Handler:
    keyword, payload_for = PROFILE_ACTIONS[operation]

    def handle(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
        options = _options(params, "options")
        result = driver.update_profile(
            _required(params, "distinctId"),
            keyword,
            payload_for(params),
            ip=options.get("ip") or None,
            ignore_time=options.get("ignoreTime") or None,
        )
        return wrap_response({**result, "operation": operation})

    return handle


def group_handler(operation: str) -> Handler:
    keyword, payload_for = GROUP_ACTIONS[operation]

    def handle(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
        result = driver.update_group(
            _required(params, "groupKey"),
            _required(params, "groupId"),
            keyword,
            payload_for(params),
        )
        return wrap_response({**result, "operation": operation})

    return handle


# ============================================================================
# Queries
# ============================================================================


def query_insights(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.query_insights(
        _required(params, "fromDate"),
        _required(params, "toDate"),
        _required(params, "bookmarkId"),
    ))


def query_funnels(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "funnelOptions")
    return wrap_response(driver.query_funnels(
        _required(params, "fromDate"),
        _required(params, "toDate"),
        _required(params, "funnelId"),
        unit=options.get("unit"),
        interval=options.get("interval"),
        on=options.get("on"),
    ))


def query_retention(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "retentionOptions")
    return wrap_response(driver.query_retention(
        _required(params, "fromDate"),
        _required(params, "toDate"),
        _required(params, "bornEvent"),
        event=options.get("event"),
        unit=options.get("unit"),
        interval_count=options.get("intervalCount"),
        where=options.get("where"),
    ))


def query_segmentation(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "segmentationOptions")
    return wrap_response(driver.query_segmentation(
        _required(params, "fromDate"),
        _required(params, "toDate"),
        _required(params, "segmentEvent"),
        type=options.get("type"),
        unit=options.get("unit"),
        on=options.get("on"),
        where=options.get("where"),
        limit=options.get("limit"),
    ))


def run_jql(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.run_jql(
        _required(params, "jqlScript"),
        _json_object(params, "jqlParams"),
    ))


# ============================================================================
# Cohorts
# ============================================================================


def list_cohorts(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.list_cohorts())


def get_cohort(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.get_cohort(_required(params, "cohortId")))


def get_cohort_members(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "membersOptions")
    return normalize_paginated(driver.get_cohort_members(
        _required(params, "cohortId"),
        page=options.get("page"),
        session_id=options.get("sessionId"),
    ))


# ============================================================================
# Export
# ============================================================================


def export_raw_events(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "rawEventsOptions")
    return wrap_response(driver.export_events(
        _required(params, "fromDate"),
        _required(params, "toDate"),
        event=options.get("event") or None,
        limit=options.get("limit") or None,
    ))


def export_people(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    options = _options(params, "peopleOptions")
    output_properties = options.get("outputProperties")
    return normalize_paginated(driver.export_people(
        where=options.get("where") or None,
        output_properties=split_names(output_properties) if output_properties else None,
        page=options.get("page"),
        session_id=options.get("sessionId") or None,
    ))


# ============================================================================
# Lookup tables
# ============================================================================


def list_lookup_tables(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    return wrap_response(driver.list_lookup_tables())


def create_lookup_table(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    name = _required(params, "tableName")
    response = driver.create_lookup_table(name, _required(params, "csvData"))
    return wrap_response({"success": True, "table_name": name, **_as_mapping(response)})


def replace_lookup_table(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    table_id = _required(params, "tableId")
    response = driver.replace_lookup_table(table_id, _required(params, "replaceCsvData"))
    return wrap_response({"success": True, "table_id": table_id, **_as_mapping(response)})


def delete_lookup_table(driver: MixpanelDriver, params: Params) -> List[Dict[str, Any]]:
    table_id = _required(params, "tableId")
    response = driver.delete_lookup_table(table_id)
    return wrap_response({"success": True, "table_id": table_id, "deleted": True, **_as_mapping(response)})


def _as_mapping(response: Any) -> Dict[str, Any]:
    if isinstance(response, dict):
        return response
    return {"response": response}


# ============================================================================
# Registry
# ============================================================================


def build_registry() -> OperationRegistry:
    """Build the registry of every supported (resource, operation) pair."""
    registry = OperationRegistry()

    registry.register("event", "track", track_event)
    registry.register("event", "trackBatch", track_batch)
    registry.register("event", "import", import_events)

    for operation in PROFILE_ACTIONS:
        registry.register("profile", operation, profile_handler(operation))
    for operation in GROUP_ACTIONS:
        registry.register("group", operation, group_handler(operation))

    registry.register("query", "insights", query_insights)
    registry.register("query", "funnels", query_funnels)
    registry.register("query", "retention", query_retention)
    registry.register("query", "segmentation", query_segmentation)
    registry.register("query", "jql", run_jql)

    registry.register("cohort", "list", list_cohorts)
    registry.register("cohort", "get", get_cohort)
    registry.register("cohort", "getMembers", get_cohort_members)

    registry.register("export", "rawEvents", export_raw_events)
    registry.register("export", "people", export_people)

    registry.register("lookupTable", "list", list_lookup_tables)
    registry.register("lookupTable", "create", create_lookup_table)
    registry.register("lookupTable", "replace", replace_lookup_table)
    registry.register("lookupTable", "delete", delete_lookup_table)

    return registry
